"""Runtime configuration: env-driven settings for the shared image cache.

Settings come from B9FORGE_* environment variables or a .env file.
Remote repositories themselves live in the INI file named by
``repository_config`` (see ``b9forge.core.repo_config``).
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from b9forge.models.shared_image import SHARED_IMAGES_ROOT_DIRECTORY


class B9Config(BaseSettings):
    """Settings with environment variable overrides.

    Examples
    --------
    Override via environment::

        export B9FORGE_LOG_LEVEL=DEBUG
        export B9FORGE_REPO_CACHE=/var/cache/b9
        export B9FORGE_PUSH_TO='["build-server"]'
        export B9FORGE_TIMEOUT_FACTOR=2.5
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="B9FORGE_",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Runtime environment
    environment: str = "development"
    log_level: str = "INFO"
    debug: bool = False

    # Storage paths
    repo_cache: Path = Field(default_factory=lambda: Path.home() / ".b9" / "repo-cache")
    repository_config: Path = Field(default_factory=lambda: Path.home() / ".b9" / "b9.conf")

    # Timeouts; None disables the deadline
    default_timeout_seconds: float | None = 3600.0
    timeout_factor: float = Field(default=1.0, gt=0)

    # Rule engine
    keep_versions: int = Field(default=2, ge=1)
    push_to: list[str] = Field(default_factory=list)
    pull_retries: int = Field(default=1, ge=0)
    max_parallel_builds: int = Field(default=4, ge=1)

    @field_validator("repo_cache", "repository_config")
    @classmethod
    def _expand_user(cls, value: Path) -> Path:
        return value.expanduser()

    @property
    def shared_images_dir(self) -> Path:
        """Directory of the local cache holding shared images."""
        return self.repo_cache / SHARED_IMAGES_ROOT_DIRECTORY

    @property
    def effective_timeout(self) -> float | None:
        """Per-operation timeout after applying ``timeout_factor``."""
        if self.default_timeout_seconds is None:
            return None
        return self.default_timeout_seconds * self.timeout_factor
