"""Remote repository configuration: one INI section per repository.

Layout of a repository section::

    [build-server-repo]
    remote_path = /srv/b9
    ssh_priv_key_file = ~/.ssh/b9_id_rsa
    ssh_remote_host = build.example.org
    ssh_remote_port = 22
    ssh_remote_user = b9

The section name is ``<repo_id>-repo``; sections without that suffix belong
to other parts of the configuration and are ignored.
"""

from __future__ import annotations

import configparser
import logging
import os
import uuid
from collections.abc import Iterable
from pathlib import Path

from b9forge.core.errors import RepositoryConfigError
from b9forge.models.repository import RemoteRepo

logger = logging.getLogger(__name__)

REPO_SECTION_SUFFIX = "-repo"
REMOTE_PATH_KEY = "remote_path"
SSH_PRIV_KEY_FILE_KEY = "ssh_priv_key_file"
SSH_REMOTE_HOST_KEY = "ssh_remote_host"
SSH_REMOTE_PORT_KEY = "ssh_remote_port"
SSH_REMOTE_USER_KEY = "ssh_remote_user"


def new_config_parser() -> configparser.ConfigParser:
    # Paths may legitimately contain '%'.
    return configparser.ConfigParser(interpolation=None)


def parse_remote_repos(parser: configparser.ConfigParser) -> list[RemoteRepo]:
    """Read every ``<repo_id>-repo`` section.

    Raises
    ------
    RepositoryConfigError
        If a section lacks a key or holds an invalid value.
    """
    repos: list[RemoteRepo] = []
    for section in parser.sections():
        if not section.endswith(REPO_SECTION_SUFFIX):
            continue
        repo_id = section[: -len(REPO_SECTION_SUFFIX)]
        try:
            repos.append(
                RemoteRepo(
                    repo_id=repo_id,
                    remote_path=parser.get(section, REMOTE_PATH_KEY),
                    ssh_priv_key_file=parser.get(section, SSH_PRIV_KEY_FILE_KEY),
                    ssh_remote_host=parser.get(section, SSH_REMOTE_HOST_KEY),
                    ssh_remote_port=parser.getint(section, SSH_REMOTE_PORT_KEY),
                    ssh_remote_user=parser.get(section, SSH_REMOTE_USER_KEY),
                )
            )
        except configparser.NoOptionError as exc:
            raise RepositoryConfigError(
                f"Section [{section}] is missing key '{exc.option}'",
                repo_id=repo_id,
                cause=exc,
            ) from exc
        except ValueError as exc:
            raise RepositoryConfigError(
                f"Section [{section}] holds an invalid value",
                repo_id=repo_id,
                cause=exc,
            ) from exc
    return repos


def remote_repo_to_config(
    repo: RemoteRepo, parser: configparser.ConfigParser
) -> configparser.ConfigParser:
    """Add ``repo`` to ``parser``, replacing any section with the same repo id."""
    section = f"{repo.repo_id}{REPO_SECTION_SUFFIX}"
    if parser.has_section(section):
        parser.remove_section(section)
    parser.add_section(section)
    parser.set(section, REMOTE_PATH_KEY, repo.remote_path)
    parser.set(section, SSH_PRIV_KEY_FILE_KEY, repo.ssh_priv_key_file)
    parser.set(section, SSH_REMOTE_HOST_KEY, repo.ssh_remote_host)
    parser.set(section, SSH_REMOTE_PORT_KEY, str(repo.ssh_remote_port))
    parser.set(section, SSH_REMOTE_USER_KEY, repo.ssh_remote_user)
    return parser


def _read_parser(path: Path) -> configparser.ConfigParser:
    parser = new_config_parser()
    if not path.exists():
        return parser
    try:
        with path.open(encoding="utf-8") as fh:
            parser.read_file(fh, source=str(path))
    except configparser.Error as exc:
        raise RepositoryConfigError(
            f"Cannot parse repository configuration {path}", cause=exc
        ) from exc
    return parser


def load_remote_repos(path: Path) -> list[RemoteRepo]:
    """Load all remote repositories from ``path``; a missing file means none."""
    repos = parse_remote_repos(_read_parser(Path(path)))
    logger.debug("Loaded %d remote repositories from %s", len(repos), path)
    return repos


def save_remote_repo(path: Path, repo: RemoteRepo) -> None:
    """Persist ``repo`` into the configuration file, keeping all other sections."""
    path = Path(path)
    parser = remote_repo_to_config(repo, _read_parser(path))
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f".{path.name}.{uuid.uuid4().hex[:8]}.tmp")
    try:
        with tmp.open("w", encoding="utf-8") as fh:
            parser.write(fh)
        os.replace(tmp, path)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise
    logger.info("Saved remote repository %s to %s", repo.repo_id, path)


def select_remote_repos(repos: Iterable[RemoteRepo], repo_ids: Iterable[str]) -> list[RemoteRepo]:
    """Pick repositories by id, in the order given.

    Raises
    ------
    RepositoryConfigError
        If an id is not configured.
    """
    by_id = {repo.repo_id: repo for repo in repos}
    selected: list[RemoteRepo] = []
    for repo_id in repo_ids:
        if repo_id not in by_id:
            raise RepositoryConfigError(
                "Unknown remote repository",
                repo_id=repo_id,
                cause=f"configured: {', '.join(sorted(by_id)) or 'none'}",
            )
        selected.append(by_id[repo_id])
    return selected
