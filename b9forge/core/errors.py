"""Error kinds raised by repositories, synchronization and the rule engine.

Every error names the shared image and repository involved (when known)
and the underlying cause, and states whether retrying may help.
"""

from __future__ import annotations

from typing import ClassVar


class SharedImageError(RuntimeError):
    """Base class for all shared-image repository errors.

    Parameters
    ----------
    message:
        Short description of what failed.
    image_name:
        Name of the shared image involved, if any.
    repo_id:
        Repository involved, if any.
    cause:
        Underlying cause (exception or text), if any.
    """

    retryable: ClassVar[bool] = False

    def __init__(
        self,
        message: str,
        *,
        image_name: str | None = None,
        repo_id: str | None = None,
        cause: BaseException | str | None = None,
    ) -> None:
        self.message = message
        self.image_name = image_name
        self.repo_id = repo_id
        self.cause = cause
        super().__init__(self._render())

    def _render(self) -> str:
        parts = [self.message]
        context: list[str] = []
        if self.image_name:
            context.append(f"image={self.image_name}")
        if self.repo_id:
            context.append(f"repo={self.repo_id}")
        if context:
            parts.append(f"[{', '.join(context)}]")
        parts.append("(retryable)" if self.retryable else "(terminal)")
        if self.cause is not None:
            parts.append(f"cause: {self.cause}")
        return " ".join(parts)


class SharedImageNotFoundError(SharedImageError):
    """The shared image is absent from the repository."""


class RepositoryTimeoutError(SharedImageError):
    """A repository operation exceeded its deadline."""

    retryable = True


class TransferFailedError(SharedImageError):
    """The remote shell or transfer command failed (non-zero exit, connection error)."""

    retryable = True


class CorruptMetadataError(SharedImageError):
    """A shared image sidecar could not be parsed."""


class BuildFailedError(SharedImageError):
    """The external build collaborator reported a failure."""


class RepositoryConfigError(SharedImageError):
    """The repository configuration is malformed."""


class ResolutionCycleError(SharedImageError):
    """A shared image was requested again while its own resolution was running."""
