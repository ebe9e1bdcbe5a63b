"""Main Typer application: imports and registers all CLI commands.

Entry point: ``b9forge`` (configured via pyproject.toml scripts).
"""

from __future__ import annotations

import typer

from b9forge.cli.commands.build import build_cmd
from b9forge.cli.commands.list_cmd import list_cmd
from b9forge.cli.commands.prune import prune_cmd
from b9forge.cli.commands.pull import pull_cmd
from b9forge.cli.commands.push import push_cmd
from b9forge.cli.commands.repos import add_repo_cmd, repos_cmd
from b9forge.cli.session import configure_logging, load_config

app = typer.Typer(
    name="b9forge",
    help="b9forge: shared-image repository and incremental build cache.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log at DEBUG level."),
) -> None:
    """Set up logging from B9FORGE_* settings before any command runs."""
    config = load_config()
    configure_logging("DEBUG" if verbose or config.debug else config.log_level)


# Register subcommands
app.command(name="list", help="List shared images in the local cache or a remote.")(list_cmd)
app.command(name="pull", help="Pull the latest version of a shared image.")(pull_cmd)
app.command(name="push", help="Push the latest cached version to a remote.")(push_cmd)
app.command(name="prune", help="Delete old cached versions of a shared image.")(prune_cmd)
app.command(name="repos", help="Show configured remote repositories.")(repos_cmd)
app.command(name="add-repo", help="Add or replace a remote repository.")(add_repo_cmd)
app.command(name="build", help="Resolve a shared image, building it if needed.")(build_cmd)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
