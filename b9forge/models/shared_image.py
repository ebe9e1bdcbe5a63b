"""Shared image identity, ordering and the sidecar format.

A ``SharedImage`` identifies one *version* of a named image.  Versions of
the same name are ordered by ``build_date`` and then ``build_id``; the
image type and file system describe the bytes but take no part in
identity or ordering.

Storage naming (identical in every repository)::

    <name>_<build_id>.<raw|qcow2|vmdk>   image bytes
    <name>_<build_id>.b9si               sidecar (one line of canonical JSON)
"""

from __future__ import annotations

import json
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from b9forge.core.errors import CorruptMetadataError
from b9forge.core.hasher import canonical_json_bytes
from b9forge.models.images import FileSystem, ImageType, SHARED_IMAGE_DEFAULT_TYPE

if TYPE_CHECKING:
    from b9forge.models.config import BuildContext

SHARED_IMAGES_ROOT_DIRECTORY = "b9_shared_images"
SHARED_IMAGE_FILE_EXTENSION = "b9si"

_NAME_PATTERN = r"^[A-Za-z0-9][A-Za-z0-9._-]*$"
# No underscore: it separates name and build id in file names.
BUILD_ID_PATTERN = r"^[A-Za-z0-9][A-Za-z0-9.-]*$"


class SharedImage(BaseModel):
    """One version of a shared image."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(pattern=_NAME_PATTERN)
    build_date: str = Field(min_length=1)
    build_id: str = Field(pattern=BUILD_ID_PATTERN)
    image_type: ImageType = SHARED_IMAGE_DEFAULT_TYPE
    file_system: FileSystem = FileSystem.EXT4

    @classmethod
    def create(
        cls,
        name: str,
        context: BuildContext,
        image_type: ImageType = SHARED_IMAGE_DEFAULT_TYPE,
        file_system: FileSystem = FileSystem.EXT4,
    ) -> SharedImage:
        """A fresh version of ``name`` stamped with the run's build id and date."""
        return cls(
            name=name,
            build_date=context.build_date,
            build_id=context.build_id,
            image_type=image_type,
            file_system=file_system,
        )

    # ------------------------------------------------------------------
    # Identity and ordering
    # ------------------------------------------------------------------

    @property
    def sort_key(self) -> tuple[str, str, str]:
        return (self.name, self.build_date, self.build_id)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SharedImage):
            return NotImplemented
        return self.sort_key == other.sort_key

    def __hash__(self) -> int:
        return hash(self.sort_key)

    def __lt__(self, other: SharedImage) -> bool:
        return self.sort_key < other.sort_key

    def __le__(self, other: SharedImage) -> bool:
        return self.sort_key <= other.sort_key

    def __gt__(self, other: SharedImage) -> bool:
        return self.sort_key > other.sort_key

    def __ge__(self, other: SharedImage) -> bool:
        return self.sort_key >= other.sort_key

    def is_newer_or_equal(self, build_date: str | None) -> bool:
        """Whether this version satisfies a ``newer_than`` freshness requirement."""
        return build_date is None or self.build_date >= build_date

    # ------------------------------------------------------------------
    # File naming
    # ------------------------------------------------------------------

    @property
    def file_stem(self) -> str:
        return f"{self.name}_{self.build_id}"

    @property
    def image_file_name(self) -> str:
        return f"{self.file_stem}.{self.image_type.file_extension}"

    @property
    def sidecar_file_name(self) -> str:
        return f"{self.file_stem}.{SHARED_IMAGE_FILE_EXTENSION}"

    # ------------------------------------------------------------------
    # Sidecar serialization
    # ------------------------------------------------------------------

    def to_sidecar(self) -> bytes:
        """Serialize to a single line of canonical JSON (no trailing newline)."""
        return canonical_json_bytes(self.model_dump(mode="json"))

    @classmethod
    def from_sidecar(cls, data: bytes | str, *, source: str = "<sidecar>") -> SharedImage:
        """Parse a sidecar, raising ``CorruptMetadataError`` on any defect."""
        try:
            payload: Any = json.loads(data)
        except (ValueError, UnicodeDecodeError) as exc:
            raise CorruptMetadataError(
                f"Unparsable shared image metadata in {source}", cause=exc
            ) from exc
        if not isinstance(payload, dict):
            raise CorruptMetadataError(
                f"Shared image metadata in {source} is not an object",
                cause=f"got {type(payload).__name__}",
            )
        try:
            return cls.model_validate(payload)
        except ValidationError as exc:
            raise CorruptMetadataError(
                f"Invalid shared image metadata in {source}",
                image_name=payload.get("name") if isinstance(payload.get("name"), str) else None,
                cause=exc,
            ) from exc


# ---------------------------------------------------------------------------
# Pure helpers over collections of versions
# ---------------------------------------------------------------------------


def compare(a: SharedImage, b: SharedImage) -> int:
    """Three-way comparison by ``(name, build_date, build_id)``."""
    if a.sort_key < b.sort_key:
        return -1
    if a.sort_key > b.sort_key:
        return 1
    return 0


def group_by_name(images: Iterable[SharedImage]) -> dict[str, list[SharedImage]]:
    """Partition versions by name; each group is ascending and free of duplicates.

    Entries with equal identity keys collapse to the first one seen.
    """
    groups: dict[str, dict[tuple[str, str, str], SharedImage]] = {}
    for image in images:
        groups.setdefault(image.name, {}).setdefault(image.sort_key, image)
    return {
        name: sorted(versions.values())
        for name, versions in sorted(groups.items())
    }


def latest(images: Iterable[SharedImage]) -> SharedImage | None:
    """The maximum version, or ``None`` for an empty input."""
    return max(images, key=lambda image: image.sort_key, default=None)
