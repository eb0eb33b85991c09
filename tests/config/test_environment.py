"""Tests for environment configuration lookup."""

import os
from pathlib import Path
from unittest.mock import patch

from sitebind.config.environment import Environment, load_dotenv_files


class TestEnvironmentDefaults:
    def test_defaults_apply_when_unset(self, monkeypatch):
        monkeypatch.delenv("SITEBIND_POLL_INTERVAL", raising=False)
        assert Environment.get_poll_interval() == 1.0

    def test_environment_overrides_defaults(self, monkeypatch):
        monkeypatch.setenv("SITEBIND_WATCH_INTERVAL", "0.5")
        assert Environment.get_watch_interval() == 0.5

    def test_invalid_number_falls_back_to_default(self, monkeypatch):
        monkeypatch.setenv("SITEBIND_SETTLE_DELAY", "soon")
        assert Environment.get_settle_delay() == 0.2

    def test_log_level_is_upper_case(self, monkeypatch):
        monkeypatch.setenv("SITEBIND_LOG_LEVEL", "debug")
        assert Environment.get_log_level() == "DEBUG"

    def test_stage_defaults_to_user_name(self, monkeypatch):
        monkeypatch.delenv("SITEBIND_STAGE", raising=False)
        with patch("sitebind.config.environment.getpass.getuser", return_value="alice"):
            assert Environment.get_stage() == "alice"

    def test_explicit_stage(self, monkeypatch):
        monkeypatch.setenv("SITEBIND_STAGE", "prod")
        assert Environment.get_stage() == "prod"


class TestDotenvFiles:
    def test_stage_files_take_precedence(self, tmp_path: Path, monkeypatch):
        for key in ("SITEBIND_TEST_VALUE", "SITEBIND_TEST_BASE"):
            monkeypatch.setenv(key, "")
            monkeypatch.delenv(key)
        (tmp_path / ".env").write_text("SITEBIND_TEST_VALUE=base\nSITEBIND_TEST_BASE=yes\n")
        (tmp_path / ".env.dev").write_text("SITEBIND_TEST_VALUE=dev\n")
        (tmp_path / ".env.dev.local").write_text("SITEBIND_TEST_VALUE=local\n")

        loaded = load_dotenv_files(tmp_path, "dev")

        assert len(loaded) == 3
        assert os.environ["SITEBIND_TEST_VALUE"] == "local"
        assert os.environ["SITEBIND_TEST_BASE"] == "yes"

    def test_process_environment_wins(self, tmp_path: Path, monkeypatch):
        monkeypatch.setenv("SITEBIND_TEST_VALUE", "exported")
        (tmp_path / ".env").write_text("SITEBIND_TEST_VALUE=file\n")

        load_dotenv_files(tmp_path)

        assert os.environ["SITEBIND_TEST_VALUE"] == "exported"
