"""Tests for LocalCacheRepository: layout, atomic writes, listing and deletion."""

from __future__ import annotations

import io
import logging
import threading

import pytest

from b9forge.core.deadline import Deadline
from b9forge.core.errors import CorruptMetadataError, RepositoryTimeoutError, SharedImageNotFoundError
from b9forge.core.repository import LocalCacheRepository, Repository
from b9forge.models.images import ImageType
from b9forge.models.shared_image import SharedImage


class TestLocalCacheBasics:
    def test_is_a_repository(self, local_cache: LocalCacheRepository):
        assert isinstance(local_cache, Repository)
        assert local_cache.repo_id == "local-cache"

    def test_write_then_list_and_read(self, local_cache, make_image):
        image = make_image()
        local_cache.write(image, io.BytesIO(b"disk bytes"))

        assert local_cache.list() == [image]
        assert local_cache.list("base") == [image]
        assert local_cache.contains(image)
        with local_cache.read(image) as fh:
            assert fh.read() == b"disk bytes"

    def test_layout_on_disk(self, local_cache, make_image):
        image = make_image("debian", build_id="abc", image_type=ImageType.RAW)
        local_cache.write(image, io.BytesIO(b"x"))
        names = sorted(p.name for p in local_cache.root.iterdir())
        assert names == ["debian_abc.b9si", "debian_abc.raw"]

    def test_write_from_path(self, local_cache, make_image, tmp_dir):
        source = tmp_dir / "built.img"
        source.write_bytes(b"from a file")
        image = make_image()
        local_cache.write(image, source)
        assert local_cache.image_path(image).read_bytes() == b"from a file"
        assert source.exists()

    def test_list_filters_by_exact_name(self, local_cache, make_image, seed):
        seed(local_cache, make_image("base"))
        seed(local_cache, make_image("base_extra", build_id="e1"))
        seed(local_cache, make_image("other"))
        assert [i.name for i in local_cache.list("base")] == ["base"]
        assert len(local_cache.list()) == 3

    def test_existing_identity_is_not_overwritten(self, local_cache, make_image):
        image = make_image()
        local_cache.write(image, io.BytesIO(b"first"))
        local_cache.write(image, io.BytesIO(b"second"))
        assert local_cache.image_path(image).read_bytes() == b"first"

    def test_export_copies_bytes(self, local_cache, make_image, seed, tmp_dir):
        image = seed(local_cache, make_image(), b"payload")
        target = local_cache.export(image, tmp_dir / "out")
        assert target.name == image.image_file_name
        assert target.read_bytes() == b"payload"

    def test_contains_checks_recorded_identity(self, local_cache, make_image, seed):
        stored = seed(local_cache, make_image(build_date="2024-01-01-00:00:00"), b"original")
        rebuilt = make_image(build_date="2024-06-01-00:00:00")
        assert local_cache.image_path(rebuilt) == local_cache.image_path(stored)
        assert local_cache.contains(stored)
        assert not local_cache.contains(rebuilt)

    def test_write_refuses_file_names_held_by_another_version(self, local_cache, make_image, seed):
        stored = seed(local_cache, make_image(build_date="2024-01-01-00:00:00"), b"original")
        rebuilt = make_image(build_date="2024-06-01-00:00:00")
        with pytest.raises(CorruptMetadataError):
            local_cache.write(rebuilt, io.BytesIO(b"other"))
        assert local_cache.list() == [stored]
        assert local_cache.image_path(stored).read_bytes() == b"original"


class TestListingRobustness:
    def test_corrupt_sidecar_is_skipped(self, local_cache, make_image, seed, caplog):
        good = seed(local_cache, make_image())
        (local_cache.root / "broken_x.b9si").write_text("{not json")
        with caplog.at_level(logging.WARNING):
            assert local_cache.list() == [good]
        assert "Skipping" in caplog.text

    def test_sidecar_with_mismatched_file_name_is_skipped(self, local_cache, make_image):
        image = make_image()
        (local_cache.root / "base_other.b9si").write_bytes(image.to_sidecar())
        local_cache.image_path(image).write_bytes(b"x")
        assert local_cache.list() == []

    def test_sidecar_without_image_is_skipped(self, local_cache, make_image):
        image = make_image()
        local_cache.sidecar_path(image).write_bytes(image.to_sidecar())
        assert local_cache.list() == []
        assert not local_cache.contains(image)

    def test_dot_files_are_ignored(self, local_cache, make_image):
        image = make_image()
        (local_cache.root / f".{image.sidecar_file_name}.1234.part").write_bytes(image.to_sidecar())
        (local_cache.root / f".{image.image_file_name}.1234.part").write_bytes(b"half")
        (local_cache.root / f".{image.sidecar_file_name}").write_bytes(image.to_sidecar())
        assert local_cache.list() == []


class TestAtomicWrite:
    def test_expired_deadline_leaves_nothing_behind(self, local_cache, make_image):
        image = make_image()
        with pytest.raises(RepositoryTimeoutError):
            local_cache.write(image, io.BytesIO(b"x" * 10), deadline=Deadline(0))
        assert local_cache.list() == []
        assert list(local_cache.root.iterdir()) == []

    def test_failing_source_leaves_nothing_behind(self, local_cache, make_image):
        class ExplodingStream(io.RawIOBase):
            def read(self, size=-1):
                raise OSError("disk on fire")

        with pytest.raises(OSError):
            local_cache.write(make_image(), ExplodingStream())
        assert list(local_cache.root.iterdir()) == []

    def test_failed_sidecar_write_removes_placed_image(self, local_cache, make_image, monkeypatch):
        def broken_sidecar(self):
            raise OSError("no space left on device")

        monkeypatch.setattr(SharedImage, "to_sidecar", broken_sidecar)
        with pytest.raises(OSError):
            local_cache.write(make_image(), io.BytesIO(b"x"))
        assert list(local_cache.root.iterdir()) == []

    def test_concurrent_lister_never_sees_partial_images(self, local_cache, make_image):
        payload = b"\xab" * (3 * 1024 * 1024 + 17)
        images = [make_image(build_id=f"b{n:03d}") for n in range(8)]
        problems: list[str] = []
        done = threading.Event()

        def writer():
            try:
                for image in images:
                    local_cache.write(image, io.BytesIO(payload))
            finally:
                done.set()

        def lister():
            while not done.is_set():
                for image in local_cache.list("base"):
                    with local_cache.read(image) as fh:
                        if fh.read() != payload:
                            problems.append(image.build_id)

        threads = [threading.Thread(target=writer), threading.Thread(target=lister)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=60)

        assert problems == []
        assert sorted(local_cache.list("base")) == images


class TestDelete:
    def test_delete_removes_both_files(self, local_cache, make_image, seed):
        image = seed(local_cache, make_image())
        local_cache.delete(image)
        assert local_cache.list() == []
        assert list(local_cache.root.iterdir()) == []

    def test_delete_missing_raises(self, local_cache, make_image):
        with pytest.raises(SharedImageNotFoundError):
            local_cache.delete(make_image())

    def test_read_missing_raises(self, local_cache, make_image):
        with pytest.raises(SharedImageNotFoundError) as exc_info:
            local_cache.read(make_image())
        assert exc_info.value.image_name == "base"
        assert exc_info.value.repo_id == "local-cache"
