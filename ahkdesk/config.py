"""Persistent runtime configuration helpers."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

from platformdirs import user_log_dir

CONFIG_PATH = Path.home() / ".ahkdesk" / "config.json"
LOG_DIR = Path(user_log_dir("ahkdesk"))
CONFIG_SCHEMA_VERSION = "config.v1"

DEFAULT_INSTALLER_URL = "https://www.autohotkey.com/download/ahk-v2.exe"

_FLOAT_KEYS = {
    "download_timeout_seconds": (1.0, 3600.0),
    "download_settle_seconds": (0.0, 60.0),
    "install_settle_seconds": (0.0, 300.0),
    "verify_delay_seconds": (0.0, 300.0),
    "stop_grace_seconds": (0.0, 300.0),
    "compile_timeout_seconds": (1.0, 3600.0),
}
_INT_KEYS = {
    "verify_retries": (1, 20),
    "required_major_version": (1, 99),
    "port": (1, 65535),
}

ENV_OVERRIDES = {
    "AHKDESK_INSTALLER_URL": "installer_url",
    "AHKDESK_AHK_PATH": "ahk_path",
    "AHKDESK_HOST": "host",
    "AHKDESK_PORT": "port",
    "AHKDESK_LOG_LEVEL": "log_level",
}


def default_config() -> dict[str, Any]:
    return {
        "schema_version": CONFIG_SCHEMA_VERSION,
        "installer_url": DEFAULT_INSTALLER_URL,
        "download_timeout_seconds": 120.0,
        "download_settle_seconds": 0.5,
        "install_settle_seconds": 3.0,
        "verify_retries": 3,
        "verify_delay_seconds": 2.0,
        "stop_grace_seconds": 5.0,
        "compile_timeout_seconds": 120.0,
        "required_major_version": 2,
        "ahk_path": "",
        "host": "127.0.0.1",
        "port": 7788,
        "log_level": "INFO",
    }


def validate_config(config: dict[str, Any]) -> dict[str, Any]:
    """Validate config values and fill unspecified keys with defaults."""
    if not isinstance(config, dict):
        raise ValueError("config must be object")
    schema_version = config.get("schema_version", CONFIG_SCHEMA_VERSION)
    if schema_version != CONFIG_SCHEMA_VERSION:
        raise ValueError("unsupported config schema_version")

    validated = default_config()
    installer_url = str(config.get("installer_url", validated["installer_url"])).strip()
    if not installer_url.startswith("https://"):
        raise ValueError("installer_url must be an https URL")
    validated["installer_url"] = installer_url

    for key, (low, high) in _FLOAT_KEYS.items():
        if key not in config:
            continue
        try:
            value = float(config[key])
        except (TypeError, ValueError):
            raise ValueError(f"{key} must be a number") from None
        if not low <= value <= high:
            raise ValueError(f"{key} must be between {low} and {high}")
        validated[key] = value

    for key, (low, high) in _INT_KEYS.items():
        if key not in config:
            continue
        try:
            value = int(config[key])
        except (TypeError, ValueError):
            raise ValueError(f"{key} must be an integer") from None
        if not low <= value <= high:
            raise ValueError(f"{key} must be between {low} and {high}")
        validated[key] = value

    validated["ahk_path"] = str(config.get("ahk_path") or "").strip()
    validated["host"] = str(config.get("host") or validated["host"]).strip()
    log_level = str(config.get("log_level") or validated["log_level"]).strip().upper()
    if log_level not in {"DEBUG", "INFO", "WARNING", "ERROR"}:
        raise ValueError(f"unsupported log_level: {log_level}")
    validated["log_level"] = log_level
    return validated


def apply_env_overrides(config: dict[str, Any], environ: dict[str, str] | None = None) -> dict[str, Any]:
    """Overlay AHKDESK_* environment variables on top of a validated config."""
    env = os.environ if environ is None else environ
    merged = dict(config)
    for env_name, key in ENV_OVERRIDES.items():
        value = env.get(env_name)
        if value:
            merged[key] = value
    return validate_config(merged)


def load_config(path: Path = CONFIG_PATH, environ: dict[str, str] | None = None) -> dict[str, Any]:
    """Load config from disk or return defaults, then apply env overrides."""
    config = default_config()
    if path.exists():
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except Exception:
            raw = None
        if isinstance(raw, dict):
            try:
                config = validate_config(raw)
            except ValueError:
                config = default_config()
    return apply_env_overrides(config, environ)


def save_config(config: dict[str, Any], path: Path = CONFIG_PATH) -> dict[str, Any]:
    """Validate and persist config to disk."""
    validated = validate_config(config)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(validated, indent=2), encoding="utf-8")
    return validated
