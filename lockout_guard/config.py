from dataclasses import dataclass, fields
import json
import os

from lockout_guard.guard import LockoutPolicy

ENV_PREFIX = "LOCKOUT_"
CONFIG_PATH_ENV = "LOCKOUT_CONFIG"
DEFAULT_CONFIG_PATH = "config.json"


def _bool(env_val: str, default: bool) -> bool:
    if env_val is None:
        return default
    return env_val.lower() in {"1", "true", "yes", "on"}


@dataclass
class Config:
    db_url: str = "sqlite:///./lockouts.db"
    store_backend: str = "sql"
    admin_key: str = "change-me"
    events_log_file: str = "lockout_events.log"
    log_level: str = "INFO"

    pepper: str = "pepper"
    default_hash_mode: str = "argon2id"

    enable_lockout: bool = True
    max_failed_attempts: int = 5
    lockout_duration_s: int = 15 * 60
    attempt_reset_window_s: int = 30 * 60
    max_update_retries: int = 20


def _apply_env(cfg: Config) -> None:
    for f in fields(cfg):
        raw = os.environ.get(ENV_PREFIX + f.name.upper())
        if raw is None:
            continue
        current = getattr(cfg, f.name)
        if isinstance(current, bool):
            setattr(cfg, f.name, _bool(raw, current))
        elif isinstance(current, int):
            setattr(cfg, f.name, int(raw))
        else:
            setattr(cfg, f.name, raw)


def get_config_path() -> str:
    return os.environ.get(CONFIG_PATH_ENV, DEFAULT_CONFIG_PATH)


def load_config(path: str | None = None) -> Config:
    cfg = Config()
    if path and os.path.exists(path):
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        for k, v in data.items():
            if hasattr(cfg, k):
                setattr(cfg, k, v)

    _apply_env(cfg)
    return cfg


def get_policy(cfg: Config) -> LockoutPolicy:
    return LockoutPolicy(
        max_failed_attempts=cfg.max_failed_attempts,
        lockout_duration_s=cfg.lockout_duration_s,
        attempt_reset_window_s=cfg.attempt_reset_window_s,
    )
