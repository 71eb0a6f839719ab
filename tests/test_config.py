"""Tests for configuration module."""

import json
import os
from pathlib import Path
from unittest.mock import patch

from cargo_local_install.config import Settings, get_settings, print_settings_json


class TestSettings:
    """Test Settings class."""

    def test_default_settings(self) -> None:
        """Settings should have sensible defaults."""
        with patch.dict(os.environ, {}, clear=False):
            settings = Settings()

        assert settings.cache_root == Path.home() / ".cargo" / "local-install"
        assert settings.target_dir is None
        assert settings.link_mode == "auto"
        assert settings.cargo == "cargo"
        assert settings.lock_timeout > 0
        assert settings.log_level == "INFO"

    def test_settings_from_env(self) -> None:
        """Settings should be loadable from environment variables."""
        with patch.dict(
            os.environ,
            {
                "CARGO_LOCAL_INSTALL_CACHE_ROOT": "/tmp/test-cache",
                "CARGO_LOCAL_INSTALL_LOCK_TIMEOUT": "5",
                "CARGO_LOCAL_INSTALL_LINK_MODE": "copy",
                "CARGO_LOCAL_INSTALL_LOG_LEVEL": "DEBUG",
            },
        ):
            settings = Settings()
            assert settings.cache_root == Path("/tmp/test-cache")
            assert settings.lock_timeout == 5
            assert settings.link_mode == "copy"
            assert settings.log_level == "DEBUG"

    def test_default_target_dir(self, tmp_path) -> None:
        """The shared target directory should default to the cache root."""
        settings = Settings(cache_root=tmp_path)

        assert settings.effective_target_dir == tmp_path / "target"

    def test_explicit_target_dir(self, tmp_path) -> None:
        """An explicit target directory should override the default."""
        settings = Settings(cache_root=tmp_path, target_dir=tmp_path / "shared")
        assert settings.effective_target_dir == tmp_path / "shared"


class TestGetSettings:
    """Test get_settings function."""

    def test_returns_settings(self) -> None:
        """get_settings should return a Settings instance."""
        assert isinstance(get_settings(), Settings)


class TestPrintSettingsJson:
    """Test print_settings_json function."""

    def test_renders_json(self, tmp_path) -> None:
        """Should render valid JSON with all fields."""
        output = print_settings_json(Settings(cache_root=tmp_path))
        data = json.loads(output)
        assert data["cache_root"] == str(tmp_path)
        assert "lock_timeout" in data
        assert "registry_index_url" in data
