"""Shared test fixtures for b9forge."""

from __future__ import annotations

import io
import threading
import time
import uuid
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from b9forge.core.builder import BuiltImage
from b9forge.core.host_command import HostCommandResult
from b9forge.core.repository import LocalCacheRepository, Repository
from b9forge.models.config import BuildContext, ImageRequest
from b9forge.models.repository import RemoteRepo
from b9forge.models.shared_image import SharedImage


class FakeRunner:
    """Scripted command runner: replays queued results and records every argv."""

    def __init__(self) -> None:
        self.calls: list[list[str]] = []
        self.timeouts: list[float | None] = []
        self._responses: list[HostCommandResult | BaseException] = []

    def queue(self, returncode: int = 0, stdout: bytes = b"", stderr: bytes = b"") -> None:
        self._responses.append(
            HostCommandResult(argv=[], returncode=returncode, stdout=stdout, stderr=stderr)
        )

    def queue_error(self, exc: BaseException) -> None:
        self._responses.append(exc)

    def __call__(
        self,
        argv: list[str],
        *,
        timeout: float | None = None,
        timeout_factor: float = 1.0,
        stdin: bytes | None = None,
    ) -> HostCommandResult:
        self.calls.append(list(argv))
        self.timeouts.append(timeout)
        if not self._responses:
            return HostCommandResult(argv=list(argv), returncode=0)
        response = self._responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        return response.model_copy(update={"argv": list(argv)})


class FakeBuilder:
    """Builder double that writes a small file and counts invocations.

    Parameters
    ----------
    workdir:
        Where build outputs go.
    fail_names:
        Names whose build raises ``RuntimeError``.
    delay:
        Seconds each build sleeps, to widen race windows.
    depends_on:
        Name resolved through the engine before building.
    """

    def __init__(
        self,
        workdir: Path,
        *,
        fail_names: set[str] | None = None,
        delay: float = 0.0,
        depends_on: str | None = None,
        payload: bytes = b"built image bytes",
    ) -> None:
        self.workdir = workdir
        self.fail_names = fail_names or set()
        self.delay = delay
        self.depends_on = depends_on
        self.payload = payload
        self.requests: list[str] = []
        self._lock = threading.Lock()

    @property
    def calls(self) -> int:
        return len(self.requests)

    def build(self, request: ImageRequest, context: BuildContext, resolver: Any) -> BuiltImage:
        with self._lock:
            self.requests.append(request.name)
        if self.depends_on is not None:
            resolver.resolve(self.depends_on)
        if self.delay:
            time.sleep(self.delay)
        if request.name in self.fail_names:
            raise RuntimeError(f"build script for {request.name} exited with 1")
        self.workdir.mkdir(parents=True, exist_ok=True)
        path = self.workdir / f"{request.name}-{uuid.uuid4().hex[:8]}.img"
        path.write_bytes(self.payload)
        return BuiltImage(path=path, temporary=True)


@pytest.fixture
def tmp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test artifacts."""
    return tmp_path


@pytest.fixture
def local_cache(tmp_dir: Path) -> LocalCacheRepository:
    """Provide an empty local cache."""
    return LocalCacheRepository(tmp_dir / "cache")


@pytest.fixture
def remote_store(tmp_dir: Path) -> LocalCacheRepository:
    """A second directory repository standing in for a remote peer."""
    return LocalCacheRepository(tmp_dir / "remote", repo_id="remote-a")


@pytest.fixture
def make_image() -> Callable[..., SharedImage]:
    """Factory for SharedImage values with sensible defaults."""

    def _make(
        name: str = "base",
        build_date: str = "2024-01-01-00:00:00",
        build_id: str = "b100",
        **kwargs: Any,
    ) -> SharedImage:
        return SharedImage(name=name, build_date=build_date, build_id=build_id, **kwargs)

    return _make


@pytest.fixture
def seed() -> Callable[..., SharedImage]:
    """Store an image with some bytes in a repository."""

    def _seed(repo: Repository, image: SharedImage, data: bytes | None = None) -> SharedImage:
        payload = data if data is not None else f"bytes of {image.file_stem}".encode()
        repo.write(image, io.BytesIO(payload))
        return image

    return _seed


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def remote_repo() -> RemoteRepo:
    return RemoteRepo(
        repo_id="build-server",
        remote_path="/srv/b9",
        ssh_priv_key_file="/home/b9/.ssh/id_rsa",
        ssh_remote_host="build.example.org",
        ssh_remote_port=2222,
        ssh_remote_user="b9",
    )


@pytest.fixture
def build_context() -> BuildContext:
    return BuildContext(build_id="run0001", build_date="2024-03-01-12:00:00")


@pytest.fixture
def fake_builder_factory(tmp_dir: Path) -> Callable[..., FakeBuilder]:
    """Factory for FakeBuilder instances writing under a temp build dir."""

    def _factory(**kwargs: Any) -> FakeBuilder:
        return FakeBuilder(tmp_dir / "build", **kwargs)

    return _factory
