"""``b9forge pull``: fetch the latest version of a shared image into the cache.

Remotes are tried in configured order (or only ``--repo``); the first one
with a suitable version wins.
"""

from __future__ import annotations

import logging

import typer
from rich.console import Console

from b9forge.cli.session import fail, load_config, local_cache, remote_repositories, sync_engine
from b9forge.core.errors import (
    RepositoryTimeoutError,
    SharedImageError,
    SharedImageNotFoundError,
    TransferFailedError,
)

console = Console()
logger = logging.getLogger(__name__)


def pull_cmd(
    name: str = typer.Argument(..., help="Shared image name."),
    repo: str = typer.Option(None, "--repo", "-r", help="Pull only from this remote repository."),
    newer_than: str = typer.Option(
        None,
        "--newer-than",
        help="Require a build date at or after this value (YYYY-MM-DD-HH:MM:SS prefix).",
    ),
) -> None:
    """Pull a shared image from the remote repositories."""
    config = load_config()
    remotes = remote_repositories(config, [repo] if repo else None)
    if not remotes:
        fail("no remote repositories configured")

    local = local_cache(config)
    sync = sync_engine(config, local)
    last_error: SharedImageError | None = None
    for remote in remotes:
        try:
            image = sync.pull(name, remote, newer_than=newer_than)
        except (SharedImageNotFoundError, TransferFailedError, RepositoryTimeoutError) as exc:
            logger.warning("Cannot pull %s from %s: %s", name, remote.repo_id, exc)
            last_error = exc
            continue
        console.print(
            f"[green]{image.file_stem}[/green] ({image.build_date}) is in the local cache: "
            f"{local.image_path(image)}"
        )
        return
    fail(last_error)
