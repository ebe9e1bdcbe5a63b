"""Retention policy: keep the newest N versions of a shared image."""

from __future__ import annotations

import logging

from b9forge.core.repository import Repository
from b9forge.models.shared_image import SharedImage

logger = logging.getLogger(__name__)


class RetentionPolicy:
    """Prunes old versions of a name from a repository.

    Only ever applied to the local cache, and only after a successful
    write; remote repositories are managed elsewhere.

    Parameters
    ----------
    keep:
        Default number of most recent versions to keep.
    """

    def __init__(self, keep: int = 2) -> None:
        if keep < 1:
            raise ValueError(f"keep must be at least 1, got {keep}")
        self.keep = keep

    def prune(
        self,
        repo: Repository,
        name: str,
        keep: int | None = None,
        *,
        protect: SharedImage | None = None,
    ) -> list[SharedImage]:
        """Delete all but the ``keep`` newest versions of ``name``; return the deleted ones.

        ``protect`` is never deleted and counts toward ``keep``, even when
        newer versions exist.
        """
        keep = self.keep if keep is None else keep
        if keep < 1:
            raise ValueError(f"keep must be at least 1, got {keep}")

        versions = sorted(set(repo.list(name)))
        if protect is not None and protect in versions:
            others = [image for image in versions if image != protect]
            doomed = others[: max(0, len(others) - (keep - 1))]
        else:
            doomed = versions[:-keep]
        for image in doomed:
            repo.delete(image)
        if doomed:
            logger.info(
                "Pruned %d old version(s) of %s from %s, kept %d",
                len(doomed),
                name,
                repo.repo_id,
                len(versions) - len(doomed),
            )
        return doomed
