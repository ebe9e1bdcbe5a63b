"""Repository capability interface and the local cache implementation.

Storage layout: {root}/{name}_{build_id}.{raw|qcow2|vmdk} plus a
{name}_{build_id}.b9si sidecar per image.

Writes are atomic from a reader's point of view: bytes go to a dot-prefixed
temporary file which is moved into place with ``os.replace``, and the
sidecar is published only after the image.  Listing is driven by sidecars,
so a half-written image is never listed.  An identity that already exists
is never overwritten.
"""

from __future__ import annotations

import glob
import logging
import os
import uuid
from pathlib import Path
from typing import BinaryIO, Protocol, runtime_checkable

from b9forge.core.deadline import Deadline
from b9forge.core.errors import CorruptMetadataError, SharedImageNotFoundError
from b9forge.models.shared_image import SHARED_IMAGE_FILE_EXTENSION, SharedImage

logger = logging.getLogger(__name__)

LOCAL_REPO_ID = "local-cache"

_CHUNK_SIZE = 1024 * 1024


@runtime_checkable
class Repository(Protocol):
    """Uniform capability set of every shared image store."""

    @property
    def repo_id(self) -> str: ...

    def list(self, name: str | None = None, *, deadline: Deadline | None = None) -> list[SharedImage]:
        """Enumerate shared images, optionally only versions of ``name``."""
        ...

    def contains(self, image: SharedImage, *, deadline: Deadline | None = None) -> bool: ...

    def read(self, image: SharedImage, *, deadline: Deadline | None = None) -> BinaryIO:
        """Open the image bytes; raises ``SharedImageNotFoundError`` if absent."""
        ...

    def export(self, image: SharedImage, dest_dir: Path, *, deadline: Deadline | None = None) -> Path:
        """Copy the image bytes into a local directory and return the file path."""
        ...

    def write(
        self,
        image: SharedImage,
        source: Path | BinaryIO,
        *,
        deadline: Deadline | None = None,
    ) -> None:
        """Store bytes and sidecar atomically; a no-op if ``image`` is already present."""
        ...

    def delete(self, image: SharedImage) -> None:
        """Remove the image and its sidecar."""
        ...


def copy_stream(
    src: BinaryIO,
    dst: BinaryIO,
    deadline: Deadline,
    *,
    image_name: str | None = None,
    repo_id: str | None = None,
) -> int:
    """Copy in chunks, checking ``deadline`` between chunks. Returns bytes copied."""
    total = 0
    while True:
        deadline.check("copy", image_name=image_name, repo_id=repo_id)
        chunk = src.read(_CHUNK_SIZE)
        if not chunk:
            return total
        dst.write(chunk)
        total += len(chunk)


class LocalCacheRepository:
    """The local shared image cache: a flat directory of images and sidecars.

    Parameters
    ----------
    root:
        Directory holding the shared images (usually
        ``<repo_cache>/b9_shared_images``). Created if missing.
    repo_id:
        Name used in log and error messages.
    """

    def __init__(self, root: Path, repo_id: str = LOCAL_REPO_ID) -> None:
        self._root = Path(root)
        self._repo_id = repo_id
        self._root.mkdir(parents=True, exist_ok=True)

    @property
    def repo_id(self) -> str:
        return self._repo_id

    @property
    def root(self) -> Path:
        return self._root

    def image_path(self, image: SharedImage) -> Path:
        return self._root / image.image_file_name

    def sidecar_path(self, image: SharedImage) -> Path:
        return self._root / image.sidecar_file_name

    def _temp_path(self, final_name: str) -> Path:
        return self._root / f".{final_name}.{uuid.uuid4().hex[:8]}.part"

    # ------------------------------------------------------------------
    # List
    # ------------------------------------------------------------------

    def list(self, name: str | None = None, *, deadline: Deadline | None = None) -> list[SharedImage]:
        pattern = f"{glob.escape(name)}_*" if name else "*"
        images: list[SharedImage] = []
        for sidecar in sorted(self._root.glob(f"{pattern}.{SHARED_IMAGE_FILE_EXTENSION}")):
            if sidecar.name.startswith("."):
                continue
            try:
                image = SharedImage.from_sidecar(sidecar.read_bytes(), source=str(sidecar))
            except CorruptMetadataError as exc:
                logger.warning("Skipping shared image metadata: %s", exc)
                continue
            except FileNotFoundError:
                # Removed by a concurrent prune between glob and read.
                continue
            if image.sidecar_file_name != sidecar.name:
                logger.warning(
                    "Skipping shared image metadata: %s describes %s",
                    sidecar,
                    image.sidecar_file_name,
                )
                continue
            if name is not None and image.name != name:
                continue
            if not self.image_path(image).exists():
                logger.warning(
                    "Skipping shared image %s: image file %s is missing",
                    image.file_stem,
                    image.image_file_name,
                )
                continue
            images.append(image)
        return images

    def _stored_version(self, image: SharedImage) -> SharedImage | None:
        """The version recorded under ``image``'s file names, if readable."""
        sidecar = self.sidecar_path(image)
        try:
            return SharedImage.from_sidecar(sidecar.read_bytes(), source=str(sidecar))
        except (FileNotFoundError, CorruptMetadataError):
            return None

    def contains(self, image: SharedImage, *, deadline: Deadline | None = None) -> bool:
        return self._stored_version(image) == image and self.image_path(image).exists()

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def read(self, image: SharedImage, *, deadline: Deadline | None = None) -> BinaryIO:
        if not self.contains(image):
            raise SharedImageNotFoundError(
                f"Shared image {image.file_stem} not found",
                image_name=image.name,
                repo_id=self._repo_id,
            )
        return self.image_path(image).open("rb")

    def export(self, image: SharedImage, dest_dir: Path, *, deadline: Deadline | None = None) -> Path:
        deadline = deadline or Deadline.never()
        dest_dir = Path(dest_dir)
        dest_dir.mkdir(parents=True, exist_ok=True)
        target = dest_dir / image.image_file_name
        tmp = dest_dir / f".{image.image_file_name}.{uuid.uuid4().hex[:8]}.part"
        with self.read(image) as src:
            try:
                with tmp.open("wb") as dst:
                    copy_stream(src, dst, deadline, image_name=image.name, repo_id=self._repo_id)
                os.replace(tmp, target)
            except BaseException:
                tmp.unlink(missing_ok=True)
                raise
        return target

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
        if self.contains(image):
            logger.debug("Shared image %s already in %s", image.file_stem, self._repo_id)
            return
        stored = self._stored_version(image)
        if stored is not None and stored != image:
            raise CorruptMetadataError(
                f"File names of {image.file_stem} already hold the version built {stored.build_date}",
                image_name=image.name,
                repo_id=self._repo_id,
            )

        tmp_image = self._temp_path(image.image_file_name)
        tmp_sidecar = self._temp_path(image.sidecar_file_name)
        placed_image = False
        try:
            with tmp_image.open("wb") as dst:
                if isinstance(source, (str, os.PathLike)):
                    with Path(source).open("rb") as src:
                        size = copy_stream(src, dst, deadline, image_name=image.name, repo_id=self._repo_id)
                else:
                    size = copy_stream(source, dst, deadline, image_name=image.name, repo_id=self._repo_id)
                dst.flush()
                os.fsync(dst.fileno())
            deadline.check("write", image_name=image.name, repo_id=self._repo_id)
            os.replace(tmp_image, self.image_path(image))
            placed_image = True
            tmp_sidecar.write_bytes(image.to_sidecar())
            os.replace(tmp_sidecar, self.sidecar_path(image))
        except BaseException:
            tmp_image.unlink(missing_ok=True)
            tmp_sidecar.unlink(missing_ok=True)
            if placed_image:
                self.image_path(image).unlink(missing_ok=True)
            raise

        logger.info(
            "Stored shared image %s (%d bytes) in %s",
            image.file_stem,
            size,
            self._repo_id,
        )

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    def delete(self, image: SharedImage) -> None:
        sidecar, data = self.sidecar_path(image), self.image_path(image)
        if not sidecar.exists() and not data.exists():
            raise SharedImageNotFoundError(
                f"Shared image {image.file_stem} not found",
                image_name=image.name,
                repo_id=self._repo_id,
            )
        # Sidecar first: the version disappears from listings before its bytes do.
        sidecar.unlink(missing_ok=True)
        data.unlink(missing_ok=True)
        logger.info("Deleted shared image %s from %s", image.file_stem, self._repo_id)

    def __repr__(self) -> str:
        return f"LocalCacheRepository(root={str(self._root)!r})"
