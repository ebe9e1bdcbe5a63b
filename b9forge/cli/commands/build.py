"""``b9forge build``: resolve a shared image, building it if no repository has it.

Runs the rule engine: local cache first, then the remotes in configured
order, then the build command.  Fresh builds are pushed to every repo in
``B9FORGE_PUSH_TO`` and old local versions are pruned.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.panel import Panel

from b9forge.cli.session import EXIT_CONFIG_ERROR, fail, load_config
from b9forge.core.builder import ShellImageBuilder
from b9forge.core.errors import RepositoryConfigError, SharedImageError
from b9forge.core.rule_engine import RuleEngine
from b9forge.models.config import ImageRequest
from b9forge.models.images import FileSystem, ImageType, SHARED_IMAGE_DEFAULT_TYPE

console = Console()


def build_cmd(
    name: str = typer.Argument(..., help="Shared image name."),
    command: str = typer.Option(
        ...,
        "--command",
        "-c",
        help="Build command; placeholders {name} {output} {build_id} {build_date} {source}.",
    ),
    source: str = typer.Option(None, "--from", help="Shared image the build starts from."),
    image_type: ImageType = typer.Option(SHARED_IMAGE_DEFAULT_TYPE, "--type", help="Image type."),
    file_system: FileSystem = typer.Option(FileSystem.EXT4, "--fs", help="File system."),
    workdir: Path = typer.Option(None, "--workdir", help="Directory for build outputs."),
    newer_than: str = typer.Option(
        None, "--newer-than", help="Ignore versions built before this date."
    ),
) -> None:
    """Resolve a shared image from cache, remotes, or a fresh build."""
    config = load_config()
    builder = ShellImageBuilder(
        command,
        workdir or config.repo_cache / "build",
        source=source,
        image_type=image_type,
        file_system=file_system,
        timeout=config.default_timeout_seconds,
        timeout_factor=config.timeout_factor,
    )
    try:
        engine = RuleEngine.from_config(config, builder)
    except RepositoryConfigError as exc:
        fail(exc, EXIT_CONFIG_ERROR)

    with engine:
        try:
            resolved = engine.resolve(ImageRequest(name=name, newer_than=newer_than))
        except SharedImageError as exc:
            fail(exc)

    lines = [
        f"[bold]Image:[/bold]    {resolved.image.file_stem}",
        f"[bold]Date:[/bold]     {resolved.image.build_date}",
        f"[bold]Origin:[/bold]   {resolved.origin}",
        f"[bold]Path:[/bold]     {resolved.path}",
    ]
    lines.extend(f"[yellow]Warning:[/yellow] {warning}" for warning in resolved.warnings)
    console.print(Panel("\n".join(lines), title=f"[bold]{name}[/bold]", border_style="green"))
