"""Rule engine: memoized, at-most-once-per-run resolution of shared images.

For each requested name the engine:

1. Returns the run's published result if one exists (waiting for it if
   another task is still resolving that name).
2. Otherwise claims the name and uses the local cache if its latest
   version satisfies the request.
3. Otherwise pulls from each remote repository in configured order,
   stopping at the first success.
4. Otherwise builds the image, stores it in the local cache, pushes it to
   the configured remotes and prunes old local versions.
5. Publishes the result for the rest of the run.

Claims are per name (a future per name in a table), never global, so a
build that resolves its own dependencies keeps other names independent.
Failures are published too: every requester of a failed name in the same
run sees the same ``BuildFailedError``, and no other name is affected.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Sequence
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict

from b9forge.config import B9Config
from b9forge.core.builder import ImageBuilder
from b9forge.core.errors import (
    BuildFailedError,
    RepositoryTimeoutError,
    ResolutionCycleError,
    SharedImageError,
    SharedImageNotFoundError,
    TransferFailedError,
)
from b9forge.core.host_command import CommandRunner, run_host_command
from b9forge.core.remote_repository import RemoteRepository
from b9forge.core.repo_config import load_remote_repos, select_remote_repos
from b9forge.core.repository import LocalCacheRepository, Repository
from b9forge.core.retention import RetentionPolicy
from b9forge.core.sync import SyncEngine
from b9forge.models.config import BuildContext, ImageRequest
from b9forge.models.shared_image import SharedImage, latest

logger = logging.getLogger(__name__)

ORIGIN_LOCAL = "local"
ORIGIN_BUILT = "built"


def remote_origin(repo_id: str) -> str:
    return f"remote:{repo_id}"


class ResolvedImage(BaseModel):
    """Outcome of resolving a name: the version used and where its bytes are."""

    model_config = ConfigDict(frozen=True)

    image: SharedImage
    path: Path
    origin: str
    warnings: tuple[str, ...] = ()


class RuleEngine:
    """Resolves shared images from cache, remotes or a fresh build.

    Parameters
    ----------
    local:
        The local cache repository.
    remotes:
        Repositories to pull from, in order of preference.
    builder:
        Produces new images when no repository can satisfy a request.
        ``None`` disables building.
    context:
        The run's build id and date.
    sync:
        Synchronization engine; defaults to one without deadlines.
    retention:
        Applied to the local cache after each successful build.
    push_to:
        Repositories receiving every freshly built image.
    pull_retries:
        Extra attempts per remote after a pull timed out.
    max_workers:
        Default thread count for ``resolve_many``.
    """

    def __init__(
        self,
        local: LocalCacheRepository,
        remotes: Sequence[Repository] = (),
        builder: ImageBuilder | None = None,
        context: BuildContext | None = None,
        *,
        sync: SyncEngine | None = None,
        retention: RetentionPolicy | None = None,
        push_to: Sequence[Repository] = (),
        pull_retries: int = 1,
        max_workers: int | None = None,
    ) -> None:
        self.local = local
        self.remotes = list(remotes)
        self.builder = builder
        self.context = context or BuildContext()
        self.sync = sync or SyncEngine(local)
        self.retention = retention or RetentionPolicy()
        self.push_to = list(push_to)
        self.pull_retries = pull_retries
        self.max_workers = max_workers

        # Per-run entry table: name -> future of its resolution
        self._entries: dict[str, Future[ResolvedImage]] = {}
        self._entries_lock = threading.Lock()
        # Names being resolved by the current thread
        self._active = threading.local()

    @classmethod
    def from_config(
        cls,
        config: B9Config,
        builder: ImageBuilder | None = None,
        *,
        context: BuildContext | None = None,
        runner: CommandRunner = run_host_command,
    ) -> RuleEngine:
        """Wire an engine from settings and the repository configuration file.

        Configuration errors surface here, before any repository is touched.
        """
        remote_repos = load_remote_repos(config.repository_config)
        push_repos = select_remote_repos(remote_repos, config.push_to)
        remotes = {repo.repo_id: RemoteRepository(repo, runner=runner) for repo in remote_repos}
        local = LocalCacheRepository(config.shared_images_dir)
        return cls(
            local,
            list(remotes.values()),
            builder,
            context,
            sync=SyncEngine(
                local,
                timeout_seconds=config.default_timeout_seconds,
                timeout_factor=config.timeout_factor,
            ),
            retention=RetentionPolicy(config.keep_versions),
            push_to=[remotes[repo.repo_id] for repo in push_repos],
            pull_retries=config.pull_retries,
            max_workers=config.max_parallel_builds,
        )

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def resolve(self, request: str | ImageRequest) -> ResolvedImage:
        """Resolve a shared image, at most once per name for this run."""
        if isinstance(request, str):
            request = ImageRequest(name=request)
        name = request.name

        active = self._active_names()
        if name in active:
            raise ResolutionCycleError(
                "Shared image requested while it is being resolved", image_name=name
            )

        with self._entries_lock:
            future = self._entries.get(name)
            claimed = future is None
            if claimed:
                future = Future()
                self._entries[name] = future

        if not claimed:
            logger.debug("Waiting for resolution of %s", name)
            return future.result()

        active.add(name)
        try:
            resolved = self._resolve_claimed(request)
        except BaseException as exc:
            future.set_exception(exc)
            raise
        finally:
            active.discard(name)
        future.set_result(resolved)
        return resolved

    def resolve_many(
        self, requests: Iterable[str | ImageRequest], max_workers: int | None = None
    ) -> dict[str, ResolvedImage]:
        """Resolve several images in parallel; re-raises the first failure in input order."""
        requests = [ImageRequest(name=r) if isinstance(r, str) else r for r in requests]
        workers = max_workers or self.max_workers
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="b9forge") as pool:
            futures = [(r.name, pool.submit(self.resolve, r)) for r in requests]
            return {name: future.result() for name, future in futures}

    def resolved_names(self) -> list[str]:
        """Names with a published result (success or failure) in this run."""
        with self._entries_lock:
            return sorted(name for name, future in self._entries.items() if future.done())

    def close(self) -> None:
        """Forget the run's entry table."""
        with self._entries_lock:
            self._entries.clear()

    def __enter__(self) -> RuleEngine:
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Internal: the three sources, in order
    # ------------------------------------------------------------------

    def _active_names(self) -> set[str]:
        names = getattr(self._active, "names", None)
        if names is None:
            names = self._active.names = set()
        return names

    def _resolve_claimed(self, request: ImageRequest) -> ResolvedImage:
        cached = latest(self.local.list(request.name))
        if cached is not None and cached.is_newer_or_equal(request.newer_than):
            logger.info("Using cached shared image %s (%s)", cached.file_stem, cached.build_date)
            return ResolvedImage(
                image=cached, path=self.local.image_path(cached), origin=ORIGIN_LOCAL
            )

        pulled = self._pull_from_remotes(request)
        if pulled is not None:
            return pulled
        return self._build(request)

    def _pull_from_remotes(self, request: ImageRequest) -> ResolvedImage | None:
        attempts = 1 + max(0, self.pull_retries)
        for remote in self.remotes:
            for attempt in range(1, attempts + 1):
                try:
                    image = self.sync.pull(request.name, remote, newer_than=request.newer_than)
                except RepositoryTimeoutError as exc:
                    logger.warning(
                        "Pulling %s from %s timed out (attempt %d/%d): %s",
                        request.name,
                        remote.repo_id,
                        attempt,
                        attempts,
                        exc,
                    )
                    continue
                except (SharedImageNotFoundError, TransferFailedError) as exc:
                    logger.warning("Cannot pull %s from %s: %s", request.name, remote.repo_id, exc)
                    break
                return ResolvedImage(
                    image=image,
                    path=self.local.image_path(image),
                    origin=remote_origin(remote.repo_id),
                )
        return None

    def _build(self, request: ImageRequest) -> ResolvedImage:
        name = request.name
        if self.builder is None:
            raise BuildFailedError(
                "No repository has a suitable version and no builder is configured",
                image_name=name,
            )

        logger.info("Building shared image %s", name)
        try:
            built = self.builder.build(request, self.context, self)
        except BuildFailedError as exc:
            if exc.image_name == name:
                raise
            raise BuildFailedError("Build failed", image_name=name, cause=exc) from exc
        except Exception as exc:
            raise BuildFailedError("Build failed", image_name=name, cause=exc) from exc

        image = SharedImage.create(name, self.context, built.image_type, built.file_system)
        try:
            self.local.write(image, built.path, deadline=self.sync.new_deadline())
        except (OSError, SharedImageError) as exc:
            raise BuildFailedError(
                "Could not store the built image",
                image_name=name,
                repo_id=self.local.repo_id,
                cause=exc,
            ) from exc
        finally:
            if built.temporary:
                built.path.unlink(missing_ok=True)

        warnings: list[str] = []
        for repo in self.push_to:
            try:
                self.sync.push(image, repo)
            except SharedImageError as exc:
                logger.warning("Push of %s to %s failed: %s", image.file_stem, repo.repo_id, exc)
                warnings.append(str(exc))

        self.retention.prune(self.local, name, protect=image)
        return ResolvedImage(
            image=image,
            path=self.local.image_path(image),
            origin=ORIGIN_BUILT,
            warnings=tuple(warnings),
        )
