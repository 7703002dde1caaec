"""
Tests for config.py and env.py.
"""

import os
from pathlib import Path

from jobtracker.config import Settings
from jobtracker.env import load_env


class TestSettings:
    """Test reading settings from the environment."""

    def test_defaults(self):
        settings = Settings.from_env({})

        assert settings.api_url == "http://localhost:3001"
        assert settings.db_path == Path("data/jobtracker.db")
        assert settings.tokens == {}
        assert settings.http_timeout == 15.0
        assert settings.cache_path is None
        assert settings.log_level == "INFO"
        assert settings.port == 3001

    def test_overrides(self):
        settings = Settings.from_env({
            "JOBTRACKER_API_URL": "https://tracker.example.com/",
            "JOBTRACKER_TOKEN": "abc",
            "JOBTRACKER_USER_ID": "alice",
            "JOBTRACKER_CACHE_PATH": "/tmp/cache.json",
            "JOBTRACKER_HTTP_TIMEOUT": "2.5",
            "JOBTRACKER_LOG_LEVEL": "debug",
            "PORT": "8080",
        })

        assert settings.api_url == "https://tracker.example.com"
        assert settings.token == "abc"
        assert settings.user_id == "alice"
        assert settings.cache_path == Path("/tmp/cache.json")
        assert settings.http_timeout == 2.5
        assert settings.log_level == "DEBUG"
        assert settings.port == 8080

    def test_token_table(self):
        settings = Settings.from_env({"JOBTRACKER_TOKENS": "tok-a:alice, tok-b:bob,broken,:nobody"})
        assert settings.tokens == {"tok-a": "alice", "tok-b": "bob"}

    def test_empty_values_are_unset(self):
        settings = Settings.from_env({"JOBTRACKER_TOKEN": "", "JOBTRACKER_LOG_DIR": ""})

        assert settings.token is None
        assert settings.log_dir is None


class TestLoadEnv:
    """Test .env loading."""

    def test_missing_file(self, tmp_path):
        assert load_env(tmp_path / ".env") is False

    def test_existing_environment_wins(self, tmp_path, monkeypatch):
        env_file = tmp_path / ".env"
        env_file.write_text("JOBTRACKER_USER_ID=from-file\nJOBTRACKER_TOKEN=file-token\n")
        monkeypatch.setenv("JOBTRACKER_USER_ID", "from-env")
        monkeypatch.setenv("JOBTRACKER_TOKEN", "placeholder")
        monkeypatch.delenv("JOBTRACKER_TOKEN")

        assert load_env(env_file) is True

        assert os.environ["JOBTRACKER_USER_ID"] == "from-env"
        assert os.environ["JOBTRACKER_TOKEN"] == "file-token"
