"""Disk image descriptions: formats, sizes, sources, destinations and targets.

The closed variants (``ImageResize``, ``ImageSource``, ``ImageDestination``)
are tagged unions of frozen models discriminated by ``kind``.  The bytes of
an image are produced by external tools; these models only describe them.
"""

from __future__ import annotations

from enum import Enum
from pathlib import PurePath
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


class ImageType(str, Enum):
    """File format of a virtual hard drive."""

    RAW = "Raw"
    QCOW2 = "QCow2"
    VMDK = "Vmdk"

    @property
    def file_extension(self) -> str:
        return _IMAGE_EXTENSIONS[self]


_IMAGE_EXTENSIONS: dict[ImageType, str] = {
    ImageType.RAW: "raw",
    ImageType.QCOW2: "qcow2",
    ImageType.VMDK: "vmdk",
}

# Image type used for shared images when the source does not determine one.
SHARED_IMAGE_DEFAULT_TYPE = ImageType.QCOW2


class FileSystem(str, Enum):
    """File systems that can live inside an image."""

    NONE = "None"
    EXT4 = "Ext4"
    EXT4_64 = "Ext4_64"
    ISO9660 = "ISO9660"
    VFAT = "VFAT"


class SizeUnit(str, Enum):
    KB = "KB"
    MB = "MB"
    GB = "GB"

    @property
    def kib(self) -> int:
        """Number of KiB one element of this unit represents."""
        return _UNIT_KIB[self]


_UNIT_KIB: dict[SizeUnit, int] = {
    SizeUnit.KB: 1,
    SizeUnit.MB: 1024,
    SizeUnit.GB: 1024 * 1024,
}
_UNIT_ORDER = [SizeUnit.KB, SizeUnit.MB, SizeUnit.GB]


class ImageSize(BaseModel):
    """An image or file system size with its unit, e.g. ``ImageSize(size=10, unit="GB")``."""

    model_config = ConfigDict(frozen=True)

    size: int
    unit: SizeUnit = SizeUnit.KB

    @classmethod
    def bytes_to_kilobytes(cls, num_bytes: int) -> ImageSize:
        """Convert a byte count to KiB, rounding up."""
        kb, rest = divmod(num_bytes, 1024)
        return cls(size=kb + 1 if rest else kb, unit=SizeUnit.KB)

    def to_kib(self) -> int:
        return self.size * self.unit.kib

    def normalize(self) -> ImageSize:
        """Choose the greatest unit that represents this size exactly."""
        size, unit = self.size, self.unit
        while unit is not SizeUnit.GB and size % 1024 == 0:
            size //= 1024
            unit = _UNIT_ORDER[_UNIT_ORDER.index(unit) + 1]
        return ImageSize(size=size, unit=unit)

    def __add__(self, other: ImageSize) -> ImageSize:
        return ImageSize(size=self.to_kib() + other.to_kib(), unit=SizeUnit.KB).normalize()


class Partition(BaseModel):
    """Partition to extract; ``index=None`` means there is no partition table."""

    model_config = ConfigDict(frozen=True)

    index: int | None = Field(default=None, ge=0, le=3)

    @property
    def is_partitioned(self) -> bool:
        return self.index is not None


class Image(BaseModel):
    """A disk image file: path, format and contained file system."""

    model_config = ConfigDict(frozen=True)

    path: str
    image_type: ImageType
    file_system: FileSystem = FileSystem.NONE


def change_image_format(image: Image, image_type: ImageType) -> Image:
    """Return ``image`` converted to ``image_type`` with a matching file extension."""
    path = PurePath(image.path).with_suffix(f".{image_type.file_extension}")
    return image.model_copy(update={"path": str(path), "image_type": image_type})


class MountPoint(BaseModel):
    """Where an image is mounted inside the build environment; ``path=None`` if not mounted."""

    model_config = ConfigDict(frozen=True)

    path: str | None = None


# ---------------------------------------------------------------------------
# ImageResize
# ---------------------------------------------------------------------------


class ResizeImage(BaseModel):
    """Resize the image file but *not* the file system inside it."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["resize_image"] = "resize_image"
    size: ImageSize


class Resize(BaseModel):
    """Resize the image and the contained file system."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["resize"] = "resize"
    size: ImageSize


class ShrinkToMinimumAndIncrease(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["shrink_to_minimum_and_increase"] = "shrink_to_minimum_and_increase"
    size: ImageSize


class ShrinkToMinimum(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["shrink_to_minimum"] = "shrink_to_minimum"


class KeepSize(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["keep_size"] = "keep_size"


ImageResize = Annotated[
    Union[ResizeImage, Resize, ShrinkToMinimumAndIncrease, ShrinkToMinimum, KeepSize],
    Field(discriminator="kind"),
]


# ---------------------------------------------------------------------------
# ImageSource
# ---------------------------------------------------------------------------


class EmptyImage(BaseModel):
    """Create an empty image with a labelled file system of the given size."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["empty"] = "empty"
    label: str
    file_system: FileSystem
    image_type: ImageType
    size: ImageSize


class CopyOnWrite(BaseModel):
    """Deprecated: use ``image`` as a copy-on-write backing file."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["copy_on_write"] = "copy_on_write"
    image: Image


class SourceImage(BaseModel):
    """Clone an existing image file, optionally extracting one partition."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["source_image"] = "source_image"
    image: Image
    partition: Partition = Partition()
    resize: ImageResize = KeepSize()


class From(BaseModel):
    """Use the latest version of a previously shared image."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["from"] = "from"
    name: str
    resize: ImageResize = KeepSize()


ImageSource = Annotated[
    Union[EmptyImage, CopyOnWrite, SourceImage, From],
    Field(discriminator="kind"),
]


# ---------------------------------------------------------------------------
# ImageDestination
# ---------------------------------------------------------------------------


class Share(BaseModel):
    """Publish the image as a shared image so other builds can use it via ``From``."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["share"] = "share"
    name: str
    image_type: ImageType = SHARED_IMAGE_DEFAULT_TYPE
    resize: ImageResize = KeepSize()


class LiveInstallerImage(BaseModel):
    """Deprecated: export a raw image that can be booted directly."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["live_installer"] = "live_installer"
    name: str
    output_dir: str
    resize: ImageResize = KeepSize()


class LocalFile(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["local_file"] = "local_file"
    image: Image
    resize: ImageResize = KeepSize()


class Transient(BaseModel):
    """Do not export the image at all."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["transient"] = "transient"


ImageDestination = Annotated[
    Union[Share, LiveInstallerImage, LocalFile, Transient],
    Field(discriminator="kind"),
]


# ---------------------------------------------------------------------------
# ImageTarget
# ---------------------------------------------------------------------------


class ImageTarget(BaseModel):
    """How one image is obtained, where it goes, and where it is mounted."""

    model_config = ConfigDict(frozen=True)

    destination: ImageDestination
    source: ImageSource
    mount_point: MountPoint = MountPoint()

    def shared_image_dependency(self) -> str | None:
        """Name of the shared image this target reads from, if any."""
        if isinstance(self.source, From):
            return self.source.name
        return None

    def shared_image_output(self) -> str | None:
        """Name of the shared image this target publishes, if any."""
        if isinstance(self.destination, Share):
            return self.destination.name
        return None


def image_source_type(source: EmptyImage | CopyOnWrite | SourceImage | From) -> ImageType | None:
    """Image type determined by a source; ``None`` for ``From`` (depends on the shared image)."""
    if isinstance(source, EmptyImage):
        return source.image_type
    if isinstance(source, (CopyOnWrite, SourceImage)):
        return source.image.image_type
    if isinstance(source, From):
        return None
    raise TypeError(f"Unknown image source: {source!r}")


def split_to_intermediate_shared_image(
    target: ImageTarget, intermediate_name: str
) -> tuple[ImageTarget, ImageTarget]:
    """Split a target into one sharing an intermediate image and one exporting from it."""
    shared = ImageTarget(
        destination=Share(
            name=intermediate_name,
            image_type=image_source_type(target.source) or SHARED_IMAGE_DEFAULT_TYPE,
        ),
        source=target.source,
        mount_point=target.mount_point,
    )
    export = ImageTarget(
        destination=target.destination,
        source=From(name=intermediate_name),
        mount_point=target.mount_point,
    )
    return shared, export
