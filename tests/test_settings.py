"""Tests for settings loading."""

from pathlib import Path

import pytest

from authtool.settings import (
    DEFAULT_REDIRECT_URI,
    find_env_file,
    load_settings,
)
from authtool.storage import DEFAULT_STORE_DIR


class TestFindEnvFile:
    """Tests for find_env_file."""

    def test_explicit_path(self, tmp_path):
        env = tmp_path / "custom.env"
        env.write_text("")
        assert find_env_file(env) == env

    def test_explicit_missing_path(self, tmp_path):
        assert find_env_file(tmp_path / "missing.env") is None

    def test_project_file_first(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        (tmp_path / ".env").write_text("")
        assert find_env_file() == Path(".env")


class TestLoadSettings:
    """Tests for load_settings."""

    def test_defaults(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setattr("authtool.settings.ENV_SEARCH_PATHS", [])

        settings = load_settings()

        assert settings.store_dir == DEFAULT_STORE_DIR
        assert settings.redirect_uri == DEFAULT_REDIRECT_URI
        assert settings.http_timeout is None
        assert settings.env_path is None

    def test_from_environment(self, tmp_path, monkeypatch):
        monkeypatch.setattr("authtool.settings.ENV_SEARCH_PATHS", [])
        monkeypatch.setenv("AUTHTOOL_STORE_DIR", str(tmp_path))
        monkeypatch.setenv("AUTHTOOL_REDIRECT_URI", "http://localhost:9000/cb")
        monkeypatch.setenv("AUTHTOOL_HTTP_TIMEOUT", "12.5")

        settings = load_settings()

        assert settings.store_dir == tmp_path
        assert settings.redirect_uri == "http://localhost:9000/cb"
        assert settings.http_timeout == 12.5

    def test_from_env_file(self, tmp_path, monkeypatch):
        # Registers the variable with monkeypatch so the value load_dotenv sets is undone
        monkeypatch.setenv("AUTHTOOL_REDIRECT_URI", "unset")
        monkeypatch.delenv("AUTHTOOL_REDIRECT_URI")
        env = tmp_path / ".env"
        env.write_text("AUTHTOOL_REDIRECT_URI=http://127.0.0.1:7000/back\n")

        settings = load_settings(env_path=env)

        assert settings.redirect_uri == "http://127.0.0.1:7000/back"
        assert settings.env_path == env

    def test_environment_wins_over_env_file(self, tmp_path, monkeypatch):
        env = tmp_path / ".env"
        env.write_text("AUTHTOOL_REDIRECT_URI=http://127.0.0.1:7000/back\n")
        monkeypatch.setenv("AUTHTOOL_REDIRECT_URI", "http://127.0.0.1:6000/set")

        assert load_settings(env_path=env).redirect_uri == "http://127.0.0.1:6000/set"

    def test_explicit_store_dir_wins(self, tmp_path, monkeypatch):
        monkeypatch.setattr("authtool.settings.ENV_SEARCH_PATHS", [])
        monkeypatch.setenv("AUTHTOOL_STORE_DIR", "/somewhere/else")

        assert load_settings(store_dir=tmp_path).store_dir == tmp_path

    @pytest.mark.parametrize("value", ["", "  ", "0", "-5"])
    def test_no_timeout(self, monkeypatch, value):
        monkeypatch.setattr("authtool.settings.ENV_SEARCH_PATHS", [])
        monkeypatch.setenv("AUTHTOOL_HTTP_TIMEOUT", value)

        assert load_settings().http_timeout is None

    def test_invalid_timeout(self, monkeypatch):
        monkeypatch.setattr("authtool.settings.ENV_SEARCH_PATHS", [])
        monkeypatch.setenv("AUTHTOOL_HTTP_TIMEOUT", "soon")

        with pytest.raises(ValueError, match="AUTHTOOL_HTTP_TIMEOUT"):
            load_settings()
