"""``b9forge repos`` and ``b9forge add-repo``: manage remote repositories."""

from __future__ import annotations

import typer
from pydantic import ValidationError
from rich.console import Console

from b9forge.cli.render import remote_repos_table
from b9forge.cli.session import EXIT_CONFIG_ERROR, fail, load_config, load_repos
from b9forge.core.repo_config import save_remote_repo
from b9forge.models.repository import RemoteRepo

console = Console()


def repos_cmd() -> None:
    """Show the configured remote repositories."""
    config = load_config()
    repos = load_repos(config)
    if not repos:
        console.print(f"[dim]No remote repositories in {config.repository_config}.[/dim]")
        return
    console.print(remote_repos_table(repos))


def add_repo_cmd(
    repo_id: str = typer.Argument(..., help="Logical repository id."),
    path: str = typer.Option(..., "--path", help="Directory on the remote host."),
    key: str = typer.Option(..., "--key", help="Private ssh key file."),
    host: str = typer.Option(..., "--host", help="Remote host name."),
    port: int = typer.Option(22, "--port", help="Remote ssh port."),
    user: str = typer.Option(..., "--user", help="Remote ssh user."),
) -> None:
    """Add or replace a remote repository in the configuration file."""
    config = load_config()
    try:
        repo = RemoteRepo(
            repo_id=repo_id,
            remote_path=path,
            ssh_priv_key_file=key,
            ssh_remote_host=host,
            ssh_remote_port=port,
            ssh_remote_user=user,
        )
    except ValidationError as exc:
        fail(f"invalid repository\n{exc}", EXIT_CONFIG_ERROR)

    load_repos(config)
    save_remote_repo(config.repository_config, repo)
    console.print(f"[green]Saved[/green] {repo.repo_id} to {config.repository_config}")
