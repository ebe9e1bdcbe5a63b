"""``b9forge list``: show the shared images in the local cache or a remote."""

from __future__ import annotations

import typer
from rich.console import Console

from b9forge.cli.render import shared_images_table
from b9forge.cli.session import fail, load_config, local_cache, remote_repositories
from b9forge.core.deadline import Deadline
from b9forge.core.errors import SharedImageError

console = Console()


def list_cmd(
    name: str = typer.Argument(None, help="Only show versions of this shared image."),
    repo: str = typer.Option(
        None,
        "--repo",
        "-r",
        help="List this remote repository instead of the local cache.",
    ),
) -> None:
    """List shared images, one row per version."""
    config = load_config()
    repository = remote_repositories(config, [repo])[0] if repo else local_cache(config)

    try:
        images = repository.list(name, deadline=Deadline(config.effective_timeout))
    except SharedImageError as exc:
        fail(exc)

    if not images:
        console.print(f"[dim]No shared images in {repository.repo_id}.[/dim]")
        return
    console.print(shared_images_table(images, title=f"Shared Images ({repository.repo_id})"))
