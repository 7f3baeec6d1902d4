"""Central configuration loader for the coach engine."""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict

import yaml

DEFAULT_PATH = Path(__file__).with_name("config.yaml")

DEFAULT_CONFIG: Dict[str, Any] = {
    "database": {"path": ":memory:"},
    "capacity": {
        "work_hours_per_day": 8,
        "buffer_percentage": 20,
        "break_minutes_per_day": 60,
        "work_days_per_week": 5,
    },
    "estimates": {"simple_task_minutes": 60},
    "conversation": {"action_ttl_minutes": 5},
    "calendar": {"workday_start": "09:00"},
    "oracle": {
        "enable": False,
        "base_url": "http://127.0.0.1:11434",
        "model": "llama3.1",
        "timeout_sec": 8.0,
    },
    "logging": {
        "level": "INFO",
        "format": "%(asctime)s %(levelname)s %(name)s: %(message)s",
    },
    "learning_templates": {},
}

ENV_OVERRIDES = {
    "COACH_DB_PATH": ("database", "path"),
    "COACH_ORACLE_URL": ("oracle", "base_url"),
    "COACH_LOG_LEVEL": ("logging", "level"),
}


def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    result = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = deep_merge(result[key], value)  # type: ignore[arg-type]
        else:
            result[key] = value
    return result


def load_config(path: str | os.PathLike[str] | None = None) -> Dict[str, Any]:
    cfg_path = Path(path) if path else DEFAULT_PATH
    if not cfg_path.exists():
        return {}
    data = yaml.safe_load(cfg_path.read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ValueError("Config must be a mapping")
    return data


def apply_env_overrides(cfg: Dict[str, Any], environ: Dict[str, str] | None = None) -> Dict[str, Any]:
    environ = dict(os.environ if environ is None else environ)
    result = dict(cfg)
    for env_key, (section, key) in ENV_OVERRIDES.items():
        value = environ.get(env_key)
        if value:
            result[section] = dict(result.get(section) or {})
            result[section][key] = value
    return result


def load_settings(
    path: str | os.PathLike[str] | None = None,
    *,
    environ: Dict[str, str] | None = None,
) -> Dict[str, Any]:
    """Defaults, then the YAML file, then environment overrides."""

    merged = deep_merge(DEFAULT_CONFIG, load_config(path))
    return apply_env_overrides(merged, environ)


def setup_logging(settings: Dict[str, Any]) -> None:
    log_cfg = settings.get("logging") or {}
    level = str(log_cfg.get("level") or "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format=log_cfg.get("format") or DEFAULT_CONFIG["logging"]["format"],
    )
