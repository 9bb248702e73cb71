"""Tests for configuration module."""

import json
import os
from pathlib import Path
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from ybuild.config import Settings, get_settings, print_settings_json


class TestSettings:
    """Test Settings class."""

    def test_default_settings(self) -> None:
        """Settings should have sensible defaults."""
        settings = Settings()

        assert settings.cache_dir == Path.home() / ".cache" / "ybuild"
        assert settings.build_root == Path.home() / ".local" / "share" / "ybuild" / "build"
        assert settings.manifest_file == "ybuild.yaml"
        assert settings.container_workdir == "/build"
        assert settings.log_level == "INFO"
        assert settings.command_timeout is None

    def test_settings_from_env(self) -> None:
        """Settings should be loadable from environment variables."""
        with patch.dict(
            os.environ,
            {
                "YB_LOG_LEVEL": "DEBUG",
                "YB_COMMAND_TIMEOUT": "30",
                "YB_DOCKER_HOST": "tcp://127.0.0.1:2375",
            },
        ):
            settings = Settings()
            assert settings.log_level == "DEBUG"
            assert settings.command_timeout == 30
            assert settings.docker_host == "tcp://127.0.0.1:2375"

    def test_settings_cache_dir_from_env(self) -> None:
        """Cache dir should be configurable via env."""
        with patch.dict(os.environ, {"YB_CACHE_DIR": "/tmp/test-cache"}):
            settings = Settings()
            assert settings.cache_dir == Path("/tmp/test-cache")
            assert settings.download_cache_dir == Path("/tmp/test-cache/downloads")

    def test_invalid_command_timeout(self) -> None:
        """A zero command timeout should be rejected."""
        with pytest.raises(ValidationError):
            Settings(command_timeout=0)

    def test_package_paths(self, tmp_path: Path) -> None:
        """Package paths should live under the build root."""
        settings = Settings(build_root=tmp_path)

        assert settings.package_build_dir("demo") == tmp_path / "demo"
        assert settings.package_cache_dir("demo") == tmp_path / "demo" / "cache"
        assert settings.package_log_dir("demo") == tmp_path / "demo" / "logs"


class TestGetSettings:
    """Test get_settings function."""

    def test_get_settings_returns_settings(self) -> None:
        """get_settings should return a Settings instance."""
        settings = get_settings()
        assert isinstance(settings, Settings)


class TestPrintSettingsJson:
    """Test print_settings_json function."""

    def test_print_settings_json(self) -> None:
        """print_settings_json should return valid JSON."""
        settings = Settings()
        json_str = print_settings_json(settings)

        parsed = json.loads(json_str)

        assert "cache_dir" in parsed
        assert "build_root" in parsed
        assert "manifest_file" in parsed
        assert "container_workdir" in parsed

    def test_print_settings_json_default(self) -> None:
        """print_settings_json without args should use default settings."""
        json_str = print_settings_json()
        parsed = json.loads(json_str)
        assert "cache_dir" in parsed
