"""Configuration settings for ybuild.

Uses pydantic-settings for config parsing from environment variables
and defaults. Configuration precedence: CLI flags > env vars > defaults.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_cache_dir() -> Path:
    """Return the default shared cache directory."""
    return Path.home() / ".cache" / "ybuild"


def _default_build_root() -> Path:
    """Return the default package-scoped build root."""
    return Path.home() / ".local" / "share" / "ybuild" / "build"


class Settings(BaseSettings):
    """Application settings.

    Settings are loaded from environment variables with the YB_ prefix.
    CLI flags can override these at runtime.
    """

    model_config = SettingsConfigDict(
        env_prefix="YB_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Paths
    cache_dir: Path = Field(
        default_factory=_default_cache_dir,
        description="Shared cache root (tool installs, downloads); survives across packages",
    )
    build_root: Path = Field(
        default_factory=_default_build_root,
        description="Root for per-package working directories and logs",
    )
    manifest_file: str = Field(
        default="ybuild.yaml",
        description="Manifest file name looked up in the package directory",
    )

    # Docker
    docker_host: str | None = Field(
        default=None,
        description="Docker daemon URL (uses the docker environment if not set)",
    )
    container_workdir: str = Field(
        default="/build",
        description="Path the package directory is mounted at inside containers",
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )

    # Timeouts (in seconds)
    command_timeout: int | None = Field(
        default=None,
        ge=1,
        description="Timeout for a single build command (None = no timeout)",
    )
    download_timeout: int = Field(
        default=3600,
        ge=60,
        description="Timeout for toolchain downloads",
    )
    docker_timeout: int = Field(
        default=120,
        ge=10,
        description="Timeout for Docker API calls",
    )
    container_stop_timeout: int = Field(
        default=10,
        ge=0,
        description="Grace period before a build container is killed on stop",
    )

    @property
    def download_cache_dir(self) -> Path:
        """Directory holding cached downloads."""
        return self.cache_dir / "downloads"

    def package_build_dir(self, package_name: str) -> Path:
        """Per-package working directory under the build root."""
        return self.build_root / package_name

    def package_cache_dir(self, package_name: str) -> Path:
        """Package-scoped cache root (tool environments private to one package)."""
        return self.package_build_dir(package_name) / "cache"

    def package_log_dir(self, package_name: str) -> Path:
        """Directory for per-target build logs."""
        return self.package_build_dir(package_name) / "logs"


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
