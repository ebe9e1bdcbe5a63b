"""Synchronization between the local cache and other repositories.

``push`` and ``pull`` work against the ``Repository`` protocol, so any
transport (ssh today) can sit on the other side.  Each call runs under one
``Deadline``; when it expires the call raises ``RepositoryTimeoutError``
and leaves nothing visible at the destination.  The engine never retries
on its own; retry policy belongs to the caller.
"""

from __future__ import annotations

import logging
import shutil
import uuid

from b9forge.core.deadline import Deadline
from b9forge.core.errors import SharedImageNotFoundError
from b9forge.core.repository import LocalCacheRepository, Repository
from b9forge.models.shared_image import SharedImage, latest

logger = logging.getLogger(__name__)

STAGING_DIRECTORY = ".staging"


class SyncEngine:
    """Pushes and pulls shared images between the local cache and peers.

    Parameters
    ----------
    local:
        The local cache repository.
    timeout_seconds:
        Deadline for each push or pull. ``None`` disables it.
    timeout_factor:
        Multiplier applied to ``timeout_seconds``.
    """

    def __init__(
        self,
        local: LocalCacheRepository,
        *,
        timeout_seconds: float | None = None,
        timeout_factor: float = 1.0,
    ) -> None:
        self._local = local
        self._timeout = None if timeout_seconds is None else timeout_seconds * timeout_factor

    @property
    def local(self) -> LocalCacheRepository:
        return self._local

    def new_deadline(self) -> Deadline:
        return Deadline(self._timeout)

    # ------------------------------------------------------------------
    # Push
    # ------------------------------------------------------------------

    def push(self, image: SharedImage, to_repo: Repository, *, deadline: Deadline | None = None) -> bool:
        """Copy a locally cached image to ``to_repo``.

        Returns ``False`` without transferring anything if ``to_repo``
        already holds the same ``(name, build_date, build_id)``.
        """
        deadline = deadline or self.new_deadline()
        if not self._local.contains(image):
            raise SharedImageNotFoundError(
                f"Cannot push {image.file_stem}: not in the local cache",
                image_name=image.name,
                repo_id=self._local.repo_id,
            )
        if to_repo.contains(image, deadline=deadline):
            logger.info("Shared image %s already present in %s", image.file_stem, to_repo.repo_id)
            return False
        to_repo.write(image, self._local.image_path(image), deadline=deadline)
        logger.info("Pushed shared image %s to %s", image.file_stem, to_repo.repo_id)
        return True

    # ------------------------------------------------------------------
    # Pull
    # ------------------------------------------------------------------

    def pull(
        self,
        name: str,
        from_repo: Repository,
        *,
        newer_than: str | None = None,
        deadline: Deadline | None = None,
    ) -> SharedImage:
        """Fetch the latest version of ``name`` from ``from_repo`` into the cache.

        Nothing is transferred when the cache already has an equal or newer
        version; that version is returned instead.

        Raises
        ------
        SharedImageNotFoundError
            If ``from_repo`` has no version of ``name`` satisfying ``newer_than``.
        """
        deadline = deadline or self.new_deadline()
        candidate = latest(from_repo.list(name, deadline=deadline))
        if candidate is None:
            raise SharedImageNotFoundError(
                "No version available", image_name=name, repo_id=from_repo.repo_id
            )
        if not candidate.is_newer_or_equal(newer_than):
            raise SharedImageNotFoundError(
                "No sufficiently recent version available",
                image_name=name,
                repo_id=from_repo.repo_id,
                cause=f"latest is {candidate.build_date}, required {newer_than}",
            )

        cached = latest(self._local.list(name))
        if cached is not None and cached >= candidate:
            logger.info(
                "Local cache already has %s (%s); not pulling %s from %s",
                cached.file_stem,
                cached.build_date,
                candidate.file_stem,
                from_repo.repo_id,
            )
            return cached

        staging = self._local.root / STAGING_DIRECTORY / uuid.uuid4().hex
        try:
            downloaded = from_repo.export(candidate, staging, deadline=deadline)
            self._local.write(candidate, downloaded, deadline=deadline)
        finally:
            shutil.rmtree(staging, ignore_errors=True)
        logger.info("Pulled shared image %s from %s", candidate.file_stem, from_repo.repo_id)
        return candidate
