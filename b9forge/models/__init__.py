"""b9forge data models: all Pydantic v2, all frozen (immutable)."""

from b9forge.models.config import BuildContext, ImageRequest
from b9forge.models.images import (
    CopyOnWrite,
    EmptyImage,
    FileSystem,
    From,
    Image,
    ImageSize,
    ImageTarget,
    ImageType,
    KeepSize,
    LiveInstallerImage,
    LocalFile,
    MountPoint,
    Partition,
    Resize,
    ResizeImage,
    Share,
    ShrinkToMinimum,
    ShrinkToMinimumAndIncrease,
    SizeUnit,
    SourceImage,
    Transient,
)
from b9forge.models.repository import RemoteRepo
from b9forge.models.shared_image import SharedImage, compare, group_by_name, latest

__all__ = [
    # config
    "BuildContext",
    "ImageRequest",
    # images
    "ImageType",
    "FileSystem",
    "SizeUnit",
    "ImageSize",
    "Partition",
    "Image",
    "MountPoint",
    "ResizeImage",
    "Resize",
    "ShrinkToMinimumAndIncrease",
    "ShrinkToMinimum",
    "KeepSize",
    "EmptyImage",
    "CopyOnWrite",
    "SourceImage",
    "From",
    "Share",
    "LiveInstallerImage",
    "LocalFile",
    "Transient",
    "ImageTarget",
    # shared images
    "SharedImage",
    "compare",
    "group_by_name",
    "latest",
    # repositories
    "RemoteRepo",
]
