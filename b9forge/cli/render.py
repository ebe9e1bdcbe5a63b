"""Rich renderables for shared images and remote repositories."""

from __future__ import annotations

from collections.abc import Iterable

from rich.table import Table

from b9forge.models.repository import RemoteRepo
from b9forge.models.shared_image import SharedImage, group_by_name


def shared_images_table(images: Iterable[SharedImage], *, title: str | None = None) -> Table:
    """One row per version, grouped by name, oldest first."""
    table = Table(title=title)
    table.add_column("Name", style="cyan")
    table.add_column("Date", style="green")
    table.add_column("Build ID")
    table.add_column("Type", style="dim")

    for name, versions in group_by_name(images).items():
        for image in versions:
            table.add_row(name, image.build_date, image.build_id, image.image_type.value)
    return table


def remote_repos_table(repos: Iterable[RemoteRepo]) -> Table:
    table = Table(title="Remote Repositories")
    table.add_column("ID", style="cyan")
    table.add_column("Destination")
    table.add_column("Port", justify="right")
    table.add_column("Path")
    table.add_column("Key", style="dim")

    for repo in repos:
        table.add_row(
            repo.repo_id,
            repo.destination,
            str(repo.ssh_remote_port),
            repo.remote_path,
            repo.ssh_priv_key_file,
        )
    return table
