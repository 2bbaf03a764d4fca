"""Tests for sync server configuration."""

import json
import os
from unittest.mock import patch

import pytest

from pkgsync.sync_server.config import (
    SyncServerConfig,
    get_config,
    parse_env_array,
    reset_config,
    set_config,
)


class TestParseEnvArray:
    """Test environment array parsing."""

    def test_json_array(self):
        assert parse_env_array('["/a", " /b ", ""]') == ["/a", "/b"]

    def test_comma_separated(self):
        assert parse_env_array("/a, /b,,/c") == ["/a", "/b", "/c"]

    def test_single_value(self):
        assert parse_env_array(" /only ") == ["/only"]

    def test_empty_and_non_string(self):
        assert parse_env_array("") == []
        assert parse_env_array(None) == []
        assert parse_env_array(["/a", 3, "  "]) == ["/a"]

    def test_malformed_json_falls_back_to_plain_value(self):
        assert parse_env_array("[/a") == ["[/a"]


class TestSyncServerConfig:
    """Test SyncServerConfig loading and validation."""

    def setup_method(self):
        reset_config()

    def teardown_method(self):
        reset_config()

    def test_defaults(self):
        config = SyncServerConfig()

        assert config.package_manager == "pnpm"
        assert config.build_script == "build"
        assert config.build_timeout == 600
        assert config.watch_stability_ms == 100
        assert config.watch_poll_ms == 50
        assert not config.inherit_build_output

    def test_from_environment(self):
        env = {
            "MODULE_PATHS": '["/work/ui-kit", "/work/shared"]',
            "PROJECT_PATHS": "/work/web-app,/work/admin",
            "BUILD_SCRIPT": "compile",
            "BUILD_TIMEOUT": "120",
            "INHERIT_BUILD_OUTPUT": "true",
            "LOG_LEVEL": "debug",
        }
        with patch.dict(os.environ, env, clear=True):
            config = SyncServerConfig.from_environment()

        assert config.module_paths == ["/work/ui-kit", "/work/shared"]
        assert config.project_paths == ["/work/web-app", "/work/admin"]
        assert config.build_script == "compile"
        assert config.build_timeout == 120
        assert config.inherit_build_output
        assert config.log_level == "DEBUG"

    def test_misspelt_project_paths_variable(self):
        with patch.dict(os.environ, {"MODULE_PATHS": "/ws", "PROJECT_PATCHS": "/app"}, clear=True):
            config = SyncServerConfig.from_environment()

        assert config.project_paths == ["/app"]

    def test_legacy_project_config(self):
        legacy = json.dumps({"modulePaths": ["/ws"], "projectPaths": "/app-one,/app-two"})
        with patch.dict(os.environ, {"PROJECT_CONFIG": legacy}, clear=True):
            config = SyncServerConfig.from_environment()

        assert config.module_paths == ["/ws"]
        assert config.project_paths == ["/app-one", "/app-two"]

    def test_invalid_legacy_project_config_is_ignored(self):
        with patch.dict(os.environ, {"PROJECT_CONFIG": "{oops"}, clear=True):
            config = SyncServerConfig.from_environment()

        assert config.module_paths == []
        assert config.project_paths == []

    def test_validation(self):
        with pytest.raises(ValueError, match="build_timeout must be positive"):
            SyncServerConfig(build_timeout=0)

        with pytest.raises(ValueError, match="log_level"):
            SyncServerConfig(log_level="LOUD")

        is_valid, errors = SyncServerConfig().validate()
        assert is_valid
        assert errors == []

    def test_global_config(self):
        custom = SyncServerConfig(module_paths=["/ws"])
        set_config(custom)
        assert get_config() is custom

        reset_config()
        with patch.dict(os.environ, {}, clear=True):
            assert get_config().module_paths == []
