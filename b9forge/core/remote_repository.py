"""Remote shared image repositories reached over ssh.

Every operation is one or more stateless ``ssh`` / ``rsync -e ssh``
invocations; there is no connection pooling.  The remote layout matches
the local cache: ``<remote_path>/b9_shared_images/<name>_<build_id>.*``.

Atomicity on the remote side follows from two facts:

- rsync writes into a dot-prefixed temporary file and renames it into
  place when the transfer completes, and
- the sidecar is uploaded only after the image, while listings are driven
  by sidecars matched with ``<name>_*.b9si`` (which never matches a
  dot-file).

A failed or interrupted push therefore never shows up in a listing.
"""

from __future__ import annotations

import logging
import os
import shlex
import shutil
import tempfile
from pathlib import Path
from typing import BinaryIO

from b9forge.core.deadline import Deadline
from b9forge.core.errors import (
    CorruptMetadataError,
    RepositoryTimeoutError,
    SharedImageNotFoundError,
    TransferFailedError,
)
from b9forge.core.host_command import (
    CommandRunner,
    HostCommandResult,
    HostCommandTimeout,
    run_host_command,
)
from b9forge.core.repository import copy_stream
from b9forge.models.repository import RemoteRepo
from b9forge.models.shared_image import SHARED_IMAGE_FILE_EXTENSION, SharedImage

logger = logging.getLogger(__name__)

SSH_OPTIONS: list[str] = [
    "-o", "BatchMode=yes",
    "-o", "StrictHostKeyChecking=no",
    "-o", "UserKnownHostsFile=/dev/null",
    "-o", "LogLevel=ERROR",
]

# rsync: "Partial transfer due to error", reported when the source file is missing.
RSYNC_EXIT_PARTIAL_TRANSFER = 23


class RemoteRepository:
    """A ``Repository`` backed by a ``RemoteRepo`` reachable over ssh.

    Parameters
    ----------
    remote:
        Connection and location details.
    runner:
        Executes host commands; replaceable for tests.
    """

    def __init__(self, remote: RemoteRepo, *, runner: CommandRunner = run_host_command) -> None:
        self._remote = remote
        self._runner = runner

    @property
    def repo_id(self) -> str:
        return self._remote.repo_id

    @property
    def remote(self) -> RemoteRepo:
        return self._remote

    # ------------------------------------------------------------------
    # Command construction
    # ------------------------------------------------------------------

    def ssh_command(self) -> list[str]:
        """The ssh invocation (without destination) used for this repository."""
        return [
            "ssh",
            *SSH_OPTIONS,
            "-i", self._remote.ssh_priv_key_file,
            "-p", str(self._remote.ssh_remote_port),
        ]

    def _remote_file(self, file_name: str) -> str:
        return f"{self._remote.shared_images_dir}/{file_name}"

    def _rsync_argv(self, source: str, destination: str) -> list[str]:
        return [
            "rsync",
            "--protect-args",
            "--times",
            "-e", shlex.join(self.ssh_command()),
            source,
            destination,
        ]

    def _remote_target(self, file_name: str) -> str:
        return f"{self._remote.destination}:{self._remote_file(file_name)}"

    def _run(
        self,
        argv: list[str],
        deadline: Deadline,
        operation: str,
        image_name: str | None = None,
    ) -> HostCommandResult:
        deadline.check(operation, image_name=image_name, repo_id=self.repo_id)
        try:
            return self._runner(argv, timeout=deadline.remaining())
        except HostCommandTimeout as exc:
            raise RepositoryTimeoutError(
                f"{operation} timed out",
                image_name=image_name,
                repo_id=self.repo_id,
                cause=exc,
            ) from exc

    def _ssh(
        self,
        script: str,
        deadline: Deadline,
        operation: str,
        image_name: str | None = None,
    ) -> HostCommandResult:
        argv = [*self.ssh_command(), self._remote.destination, script]
        return self._run(argv, deadline, operation, image_name)

    def _require_ok(
        self, result: HostCommandResult, operation: str, image_name: str | None = None
    ) -> None:
        if not result.ok:
            raise TransferFailedError(
                f"{operation} failed with exit code {result.returncode}",
                image_name=image_name,
                repo_id=self.repo_id,
                cause=result.stderr_text or None,
            )

    # ------------------------------------------------------------------
    # List
    # ------------------------------------------------------------------

    def list(self, name: str | None = None, *, deadline: Deadline | None = None) -> list[SharedImage]:
        deadline = deadline or Deadline.never()
        pattern = f"{shlex.quote(name)}_*" if name else "*"
        script = (
            f"cd {shlex.quote(self._remote.shared_images_dir)} 2>/dev/null || exit 0; "
            f"for f in {pattern}.{SHARED_IMAGE_FILE_EXTENSION}; do "
            f'[ -f "$f" ] && cat -- "$f" && echo; '
            f"done; exit 0"
        )
        result = self._ssh(script, deadline, "list", image_name=name)
        self._require_ok(result, "list", image_name=name)

        images: list[SharedImage] = []
        for line_no, line in enumerate(result.stdout.splitlines(), start=1):
            if not line.strip():
                continue
            try:
                image = SharedImage.from_sidecar(line, source=f"{self.repo_id} line {line_no}")
            except CorruptMetadataError as exc:
                logger.warning("Skipping remote shared image metadata: %s", exc)
                continue
            if name is None or image.name == name:
                images.append(image)
        logger.debug("Listed %d shared images in %s", len(images), self.repo_id)
        return images

    def contains(self, image: SharedImage, *, deadline: Deadline | None = None) -> bool:
        return image in self.list(image.name, deadline=deadline)

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def export(self, image: SharedImage, dest_dir: Path, *, deadline: Deadline | None = None) -> Path:
        deadline = deadline or Deadline.never()
        dest_dir = Path(dest_dir)
        dest_dir.mkdir(parents=True, exist_ok=True)
        target = dest_dir / image.image_file_name
        result = self._run(
            self._rsync_argv(self._remote_target(image.image_file_name), str(target)),
            deadline,
            "download",
            image.name,
        )
        if result.returncode == RSYNC_EXIT_PARTIAL_TRANSFER:
            raise SharedImageNotFoundError(
                f"Shared image {image.file_stem} not found",
                image_name=image.name,
                repo_id=self.repo_id,
                cause=result.stderr_text or None,
            )
        self._require_ok(result, "download", image.name)
        return target

    def read(self, image: SharedImage, *, deadline: Deadline | None = None) -> BinaryIO:
        staging = Path(tempfile.mkdtemp(prefix="b9forge-read-"))
        try:
            path = self.export(image, staging, deadline=deadline)
            # The open handle keeps the data alive after the directory is removed.
            return path.open("rb")
        finally:
            shutil.rmtree(staging, ignore_errors=True)

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    def write(
        self,
        image: SharedImage,
        source: Path | BinaryIO,
        *,
        deadline: Deadline | None = None,
    ) -> None:
        deadline = deadline or Deadline.never()
        if self.contains(image, deadline=deadline):
            logger.debug("Shared image %s already in %s", image.file_stem, self.repo_id)
            return

        with tempfile.TemporaryDirectory(prefix="b9forge-push-") as staging_dir:
            staging = Path(staging_dir)
            if isinstance(source, (str, os.PathLike)):
                image_file = Path(source)
            else:
                image_file = staging / image.image_file_name
                with image_file.open("wb") as dst:
                    copy_stream(source, dst, deadline, image_name=image.name, repo_id=self.repo_id)
            sidecar_file = staging / image.sidecar_file_name
            sidecar_file.write_bytes(image.to_sidecar())

            result = self._ssh(
                f"mkdir -p {shlex.quote(self._remote.shared_images_dir)}",
                deadline,
                "prepare upload",
                image.name,
            )
            self._require_ok(result, "prepare upload", image.name)

            # Image before sidecar: the version becomes visible only when complete.
            for local_file, remote_name in (
                (image_file, image.image_file_name),
                (sidecar_file, image.sidecar_file_name),
            ):
                result = self._run(
                    self._rsync_argv(str(local_file), self._remote_target(remote_name)),
                    deadline,
                    "upload",
                    image.name,
                )
                self._require_ok(result, "upload", image.name)

        logger.info("Uploaded shared image %s to %s", image.file_stem, self.repo_id)

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    def delete(self, image: SharedImage) -> None:
        script = "rm -f -- {} {}".format(
            shlex.quote(self._remote_file(image.sidecar_file_name)),
            shlex.quote(self._remote_file(image.image_file_name)),
        )
        result = self._ssh(script, Deadline.never(), "delete", image.name)
        self._require_ok(result, "delete", image.name)
        logger.info("Deleted shared image %s from %s", image.file_stem, self.repo_id)

    def __repr__(self) -> str:
        return f"RemoteRepository(repo_id={self.repo_id!r}, host={self._remote.ssh_remote_host!r})"
