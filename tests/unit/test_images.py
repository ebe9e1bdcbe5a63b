"""Tests for the disk image description models."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

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
    LocalFile,
    MountPoint,
    Partition,
    Resize,
    Share,
    SizeUnit,
    SourceImage,
    Transient,
    change_image_format,
    image_source_type,
    split_to_intermediate_shared_image,
)


class TestImageType:
    def test_file_extensions(self):
        assert ImageType.RAW.file_extension == "raw"
        assert ImageType.QCOW2.file_extension == "qcow2"
        assert ImageType.VMDK.file_extension == "vmdk"

    def test_change_image_format_renames_file(self):
        image = Image(path="/tmp/disk.raw", image_type=ImageType.RAW, file_system=FileSystem.EXT4)
        converted = change_image_format(image, ImageType.QCOW2)
        assert converted.path == "/tmp/disk.qcow2"
        assert converted.image_type is ImageType.QCOW2
        assert converted.file_system is FileSystem.EXT4


class TestImageSize:
    def test_bytes_to_kilobytes_rounds_up(self):
        assert ImageSize.bytes_to_kilobytes(0) == ImageSize(size=0, unit=SizeUnit.KB)
        assert ImageSize.bytes_to_kilobytes(1024) == ImageSize(size=1, unit=SizeUnit.KB)
        assert ImageSize.bytes_to_kilobytes(1025) == ImageSize(size=2, unit=SizeUnit.KB)

    def test_to_kib(self):
        assert ImageSize(size=3, unit=SizeUnit.MB).to_kib() == 3 * 1024
        assert ImageSize(size=2, unit=SizeUnit.GB).to_kib() == 2 * 1024 * 1024

    def test_normalize_picks_largest_exact_unit(self):
        assert ImageSize(size=2048, unit=SizeUnit.KB).normalize() == ImageSize(size=2, unit=SizeUnit.MB)
        assert ImageSize(size=1024 * 1024, unit=SizeUnit.KB).normalize() == ImageSize(size=1, unit=SizeUnit.GB)
        assert ImageSize(size=1536, unit=SizeUnit.KB).normalize() == ImageSize(size=1536, unit=SizeUnit.KB)
        assert ImageSize(size=4096, unit=SizeUnit.GB).normalize() == ImageSize(size=4096, unit=SizeUnit.GB)

    def test_addition(self):
        total = ImageSize(size=1, unit=SizeUnit.GB) + ImageSize(size=512, unit=SizeUnit.MB)
        assert total == ImageSize(size=1536, unit=SizeUnit.MB)


class TestPartitionAndMountPoint:
    def test_partition_bounds(self):
        assert not Partition().is_partitioned
        assert Partition(index=3).is_partitioned
        with pytest.raises(ValidationError):
            Partition(index=4)

    def test_mount_point_defaults_to_unmounted(self):
        assert MountPoint().path is None


class TestTargets:
    def test_union_parses_by_kind(self):
        target = ImageTarget.model_validate(
            {
                "destination": {"kind": "share", "name": "app"},
                "source": {"kind": "from", "name": "base", "resize": {"kind": "shrink_to_minimum"}},
                "mount_point": {"path": "/"},
            }
        )
        assert isinstance(target.destination, Share)
        assert isinstance(target.source, From)
        assert target.shared_image_dependency() == "base"
        assert target.shared_image_output() == "app"

    def test_unknown_kind_rejected(self):
        with pytest.raises(ValidationError):
            ImageTarget.model_validate(
                {"destination": {"kind": "floppy"}, "source": {"kind": "from", "name": "x"}}
            )

    def test_no_shared_images(self):
        target = ImageTarget(
            destination=Transient(),
            source=SourceImage(image=Image(path="/img/a.vmdk", image_type=ImageType.VMDK)),
        )
        assert target.shared_image_dependency() is None
        assert target.shared_image_output() is None

    def test_image_source_type(self):
        size = ImageSize(size=10, unit=SizeUnit.GB)
        assert image_source_type(
            EmptyImage(label="data", file_system=FileSystem.EXT4, image_type=ImageType.RAW, size=size)
        ) is ImageType.RAW
        assert image_source_type(
            CopyOnWrite(image=Image(path="/a.qcow2", image_type=ImageType.QCOW2))
        ) is ImageType.QCOW2
        assert image_source_type(From(name="base")) is None

    def test_split_to_intermediate_shared_image(self):
        source = SourceImage(
            image=Image(path="/img/debian.raw", image_type=ImageType.RAW),
            resize=Resize(size=ImageSize(size=20, unit=SizeUnit.GB)),
        )
        target = ImageTarget(
            destination=LocalFile(image=Image(path="/out/final.vmdk", image_type=ImageType.VMDK)),
            source=source,
            mount_point=MountPoint(path="/"),
        )
        shared, export = split_to_intermediate_shared_image(target, "debian-intermediate")

        assert shared.source == source
        assert shared.shared_image_output() == "debian-intermediate"
        assert shared.destination.image_type is ImageType.RAW

        assert export.destination == target.destination
        assert export.shared_image_dependency() == "debian-intermediate"
        assert export.source.resize == KeepSize()
        assert export.mount_point == target.mount_point
