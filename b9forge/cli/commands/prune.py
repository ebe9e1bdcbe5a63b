"""``b9forge prune``: drop old cached versions of a shared image."""

from __future__ import annotations

import typer
from rich.console import Console

from b9forge.cli.render import shared_images_table
from b9forge.cli.session import load_config, local_cache
from b9forge.core.retention import RetentionPolicy

console = Console()


def prune_cmd(
    name: str = typer.Argument(..., help="Shared image name."),
    keep: int = typer.Option(
        None,
        "--keep",
        "-k",
        min=1,
        help="Versions to keep (default: B9FORGE_KEEP_VERSIONS).",
    ),
) -> None:
    """Delete all but the newest versions of a shared image from the local cache."""
    config = load_config()
    local = local_cache(config)
    deleted = RetentionPolicy(config.keep_versions).prune(local, name, keep)

    if not deleted:
        console.print(f"[dim]Nothing to prune for {name}.[/dim]")
        return
    console.print(shared_images_table(deleted, title="Deleted"))
