"""Configuration settings for cargo_local_install.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > env vars > defaults.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_cache_root() -> Path:
    """Return the default cache root directory."""
    return Path.home() / ".cargo" / "local-install"


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the
    CARGO_LOCAL_INSTALL_ prefix. CLI flags can override these at runtime.
    """

    model_config = SettingsConfigDict(
        env_prefix="CARGO_LOCAL_INSTALL_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Paths
    cache_root: Path = Field(
        default_factory=_default_cache_root,
        description="Root directory of the shared build cache",
    )
    target_dir: Path | None = Field(
        default=None,
        description="Shared cargo target directory (defaults to <cache_root>/target)",
    )

    # Locking
    lock_timeout: float = Field(
        default=3600,
        ge=0,
        description="Seconds to wait for another process's build lock",
    )
    lock_poll_interval: float = Field(
        default=0.1,
        gt=0,
        description="Initial delay between lock attempts",
    )
    lock_poll_max_interval: float = Field(
        default=2.0,
        gt=0,
        description="Upper bound for the lock polling backoff",
    )

    # Linking
    link_mode: Literal["auto", "copy"] = Field(
        default="auto",
        description="auto: symlink with copy fallback; copy: always copy",
    )

    # Toolchain
    cargo: str = Field(default="cargo", description="cargo executable")
    rustc: str = Field(default="rustc", description="rustc executable")

    # Registry
    registry_index_url: str = Field(
        default="https://index.crates.io",
        description="Sparse registry index used to resolve versions",
    )
    http_timeout: float = Field(
        default=30,
        gt=0,
        description="Timeout for registry index requests",
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    @property
    def effective_target_dir(self) -> Path:
        """Shared cargo target directory."""
        if self.target_dir is not None:
            return self.target_dir
        return self.cache_root / "target"


def get_settings() -> Settings:
    """Get the application settings.

    Returns:
        Settings instance loaded from environment.
    """
    return Settings()


def print_settings_json(settings: Settings | None = None) -> str:
    """Render effective settings as JSON.

    Args:
        settings: Optional settings instance; uses default if not provided.

    Returns:
        JSON string of effective settings.
    """
    if settings is None:
        settings = get_settings()
    return settings.model_dump_json(indent=2)


__all__ = ["Settings", "get_settings", "print_settings_json"]
