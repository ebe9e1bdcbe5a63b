"""Build collaborators that produce the bytes of a new shared image.

The rule engine only needs an object with a
``build(request, context, resolver) -> BuiltImage`` method.  The resolver
argument is the rule engine itself, so a build may resolve the shared
images it depends on (e.g. a ``From`` source).

``ShellImageBuilder`` is the default backend: it runs one external command
that writes the image file.  Real image manipulation (qemu-img, mkfs,
partition extraction, VM scripts) lives behind that command.
"""

from __future__ import annotations

import logging
import shlex
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict

from b9forge.core.errors import BuildFailedError
from b9forge.core.host_command import CommandRunner, HostCommandTimeout, run_host_command
from b9forge.models.config import BuildContext, ImageRequest
from b9forge.models.images import (
    EmptyImage,
    FileSystem,
    ImageTarget,
    ImageType,
    SHARED_IMAGE_DEFAULT_TYPE,
    Share,
)

if TYPE_CHECKING:
    from b9forge.core.rule_engine import ResolvedImage

logger = logging.getLogger(__name__)


class BuiltImage(BaseModel):
    """An image file freshly produced by a builder.

    ``temporary`` marks files the rule engine may delete once they are
    stored in the local cache.
    """

    model_config = ConfigDict(frozen=True)

    path: Path
    image_type: ImageType = SHARED_IMAGE_DEFAULT_TYPE
    file_system: FileSystem = FileSystem.EXT4
    temporary: bool = False


@runtime_checkable
class ImageResolver(Protocol):
    """Anything that can resolve a shared image name to a cached file."""

    def resolve(self, request: str | ImageRequest) -> ResolvedImage: ...


@runtime_checkable
class ImageBuilder(Protocol):
    """Protocol for build backends.

    Implementations raise any exception on failure; the rule engine
    reports it as ``BuildFailedError`` for the requested name.
    """

    def build(
        self, request: ImageRequest, context: BuildContext, resolver: ImageResolver
    ) -> BuiltImage: ...


class ShellImageBuilder:
    """Builds an image by running an external command.

    The command template is split like a shell command line, then each
    argument is formatted with these placeholders:

    - ``{name}``: the requested shared image name
    - ``{output}``: the file the command must create
    - ``{build_id}`` / ``{build_date}``: the run's build context
    - ``{source}``: path of the resolved ``source`` shared image (empty if none)

    Parameters
    ----------
    command:
        Command template, e.g. ``"qemu-img convert -O qcow2 {source} {output}"``.
    workdir:
        Directory where outputs are created.
    source:
        Name of a shared image this build starts from.
    image_type, file_system:
        Describe the produced image.
    timeout, timeout_factor:
        Limit for the command; it is killed when exceeded.
    runner:
        Executes host commands; replaceable for tests.
    """

    def __init__(
        self,
        command: str,
        workdir: Path,
        *,
        source: str | None = None,
        image_type: ImageType = SHARED_IMAGE_DEFAULT_TYPE,
        file_system: FileSystem = FileSystem.EXT4,
        timeout: float | None = None,
        timeout_factor: float = 1.0,
        runner: CommandRunner = run_host_command,
    ) -> None:
        self._command = command
        self._workdir = Path(workdir)
        self._source = source
        self._image_type = image_type
        self._file_system = file_system
        self._timeout = timeout
        self._timeout_factor = timeout_factor
        self._runner = runner

    @classmethod
    def from_target(
        cls, command: str, workdir: Path, target: ImageTarget, **kwargs: Any
    ) -> ShellImageBuilder:
        """A builder for a target that publishes a shared image.

        The ``From`` source, if any, becomes the ``{source}`` dependency and the
        ``Share`` destination decides the image type.
        """
        if not isinstance(target.destination, Share):
            raise ValueError(f"Target does not share an image: {target.destination!r}")
        file_system = FileSystem.EXT4
        if isinstance(target.source, EmptyImage):
            file_system = target.source.file_system
        return cls(
            command,
            workdir,
            source=target.shared_image_dependency(),
            image_type=target.destination.image_type,
            file_system=file_system,
            **kwargs,
        )

    def build(
        self, request: ImageRequest, context: BuildContext, resolver: ImageResolver
    ) -> BuiltImage:
        source_path = ""
        if self._source is not None:
            source_path = str(resolver.resolve(self._source).path)

        self._workdir.mkdir(parents=True, exist_ok=True)
        output = self._workdir / (
            f"{request.name}_{context.build_id}.{self._image_type.file_extension}"
        )
        placeholders = {
            "name": request.name,
            "output": str(output),
            "build_id": context.build_id,
            "build_date": context.build_date,
            "source": source_path,
        }
        try:
            argv = [part.format_map(placeholders) for part in shlex.split(self._command)]
        except (KeyError, ValueError) as exc:
            raise BuildFailedError(
                "Invalid build command template", image_name=request.name, cause=exc
            ) from exc

        logger.info("Building shared image %s (build %s)", request.name, context.build_id)
        try:
            result = self._runner(argv, timeout=self._timeout, timeout_factor=self._timeout_factor)
        except HostCommandTimeout as exc:
            output.unlink(missing_ok=True)
            raise BuildFailedError(
                "Build command timed out", image_name=request.name, cause=exc
            ) from exc
        if not result.ok:
            output.unlink(missing_ok=True)
            raise BuildFailedError(
                f"Build command failed with exit code {result.returncode}",
                image_name=request.name,
                cause=result.stderr_text or None,
            )
        if not output.is_file():
            raise BuildFailedError(
                "Build command did not produce an image",
                image_name=request.name,
                cause=f"missing {output}",
            )
        return BuiltImage(
            path=output,
            image_type=self._image_type,
            file_system=self._file_system,
            temporary=True,
        )
