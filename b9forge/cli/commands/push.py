"""``b9forge push``: copy the latest cached version of a shared image to a remote."""

from __future__ import annotations

import typer
from rich.console import Console

from b9forge.cli.session import fail, load_config, local_cache, remote_repositories, sync_engine
from b9forge.core.errors import SharedImageError, SharedImageNotFoundError
from b9forge.models.shared_image import latest

console = Console()


def push_cmd(
    name: str = typer.Argument(..., help="Shared image name."),
    repo: str = typer.Option(..., "--repo", "-r", help="Remote repository to push to."),
) -> None:
    """Push the newest local version of a shared image."""
    config = load_config()
    remote = remote_repositories(config, [repo])[0]
    local = local_cache(config)

    image = latest(local.list(name))
    if image is None:
        fail(SharedImageNotFoundError("No cached version", image_name=name, repo_id=local.repo_id))

    try:
        transferred = sync_engine(config, local).push(image, remote)
    except SharedImageError as exc:
        fail(exc)

    if transferred:
        console.print(f"[green]Pushed[/green] {image.file_stem} to {remote.repo_id}")
    else:
        console.print(f"[dim]{image.file_stem} already present in {remote.repo_id}[/dim]")
