import json

import pytest

from lockout_guard.config import Config, get_config_path, get_policy, load_config
from lockout_guard.security import get_pepper


class TestLoadConfig:
    def test_defaults_without_file(self, tmp_path):
        cfg = load_config(str(tmp_path / "missing.json"))
        assert cfg == Config()
        assert cfg.max_failed_attempts == 5
        assert cfg.lockout_duration_s == 900
        assert cfg.attempt_reset_window_s == 1800

    def test_file_overrides_known_keys(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"max_failed_attempts": 3, "store_backend": "memory", "bogus": 1}))
        cfg = load_config(str(path))
        assert cfg.max_failed_attempts == 3
        assert cfg.store_backend == "memory"
        assert not hasattr(cfg, "bogus")

    def test_environment_wins_over_file(self, tmp_path, monkeypatch):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"lockout_duration_s": 60}))
        monkeypatch.setenv("LOCKOUT_LOCKOUT_DURATION_S", "120")
        monkeypatch.setenv("LOCKOUT_ADMIN_KEY", "s3cret")
        cfg = load_config(str(path))
        assert cfg.lockout_duration_s == 120
        assert cfg.admin_key == "s3cret"

    def test_bad_integer_in_environment(self, monkeypatch):
        monkeypatch.setenv("LOCKOUT_MAX_FAILED_ATTEMPTS", "five")
        with pytest.raises(ValueError):
            load_config()


class TestGetPolicy:
    def test_builds_policy(self):
        policy = get_policy(Config(max_failed_attempts=3, lockout_duration_s=60, attempt_reset_window_s=120))
        assert policy.max_failed_attempts == 3
        assert policy.lockout_duration.total_seconds() == 60
        assert policy.attempt_reset_window.total_seconds() == 120

    def test_rejects_invalid_policy(self):
        with pytest.raises(ValueError):
            get_policy(Config(max_failed_attempts=0))

    def test_boolean_from_environment(self, monkeypatch):
        monkeypatch.setenv("LOCKOUT_ENABLE_LOCKOUT", "off")
        assert load_config().enable_lockout is False
        monkeypatch.setenv("LOCKOUT_ENABLE_LOCKOUT", "Yes")
        assert load_config().enable_lockout is True


class TestPepper:
    def test_pepper_comes_from_configured_file(self, tmp_path, monkeypatch):
        path = tmp_path / "lockout.json"
        path.write_text(json.dumps({"pepper": "from-file"}))
        monkeypatch.setenv("LOCKOUT_CONFIG", str(path))
        assert get_config_path() == str(path)
        assert get_pepper() == "from-file"

    def test_default_config_path(self, monkeypatch):
        monkeypatch.delenv("LOCKOUT_CONFIG", raising=False)
        assert get_config_path() == "config.json"
