"""Helpers shared by the CLI commands: settings, logging and repository wiring.

Configuration problems end the command with exit code 2 before any
repository is touched; repository errors end it with exit code 1.
"""

from __future__ import annotations

import logging
from typing import NoReturn

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler

from b9forge.config import B9Config
from b9forge.core.errors import RepositoryConfigError, SharedImageError
from b9forge.core.remote_repository import RemoteRepository
from b9forge.core.repo_config import load_remote_repos, select_remote_repos
from b9forge.core.repository import LocalCacheRepository
from b9forge.core.sync import SyncEngine
from b9forge.models.repository import RemoteRepo

EXIT_FAILURE = 1
EXIT_CONFIG_ERROR = 2

err_console = Console(stderr=True)


def configure_logging(level: str) -> None:
    """Route all ``b9forge`` loggers through a Rich handler on stderr."""
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


def fail(exc: SharedImageError | str, code: int = EXIT_FAILURE) -> NoReturn:
    err_console.print(f"[red]Error:[/red] {exc}")
    raise typer.Exit(code=code)


def load_config() -> B9Config:
    try:
        return B9Config()
    except ValidationError as exc:
        fail(f"invalid settings\n{exc}", EXIT_CONFIG_ERROR)


def load_repos(config: B9Config) -> list[RemoteRepo]:
    try:
        return load_remote_repos(config.repository_config)
    except RepositoryConfigError as exc:
        fail(exc, EXIT_CONFIG_ERROR)


def remote_repositories(config: B9Config, repo_ids: list[str] | None = None) -> list[RemoteRepository]:
    """Remote repositories in configured order, optionally restricted to ``repo_ids``."""
    repos = load_repos(config)
    if repo_ids:
        try:
            repos = select_remote_repos(repos, repo_ids)
        except RepositoryConfigError as exc:
            fail(exc, EXIT_CONFIG_ERROR)
    return [RemoteRepository(repo) for repo in repos]


def local_cache(config: B9Config) -> LocalCacheRepository:
    return LocalCacheRepository(config.shared_images_dir)


def sync_engine(config: B9Config, local: LocalCacheRepository) -> SyncEngine:
    return SyncEngine(
        local,
        timeout_seconds=config.default_timeout_seconds,
        timeout_factor=config.timeout_factor,
    )
