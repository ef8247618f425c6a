"""
Application settings for the schedule converter service.

Settings are layered: built-in defaults, then an optional JSON file named by
SCHEDULE_ICS_SETTINGS, then environment variables. Bad values never stop the
service from starting; they fall back to the default with a warning.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Dict, Optional, TypedDict

from src.logging_helper import Log


class SettingsSchema(TypedDict, total=False):
    openai_api_key: Optional[str]
    openai_model: str
    openai_timeout: float
    max_workers: int
    host: str
    port: int
    use_stub: bool


DEFAULT_SETTINGS: SettingsSchema = {
    "openai_api_key": None,
    "openai_model": "gpt-4o",
    "openai_timeout": 60.0,
    "max_workers": 4,
    "host": "127.0.0.1",
    "port": 8000,
    "use_stub": False,
}

ENV_KEYS: Dict[str, str] = {
    "OPENAI_API_KEY": "openai_api_key",
    "OPENAI_MODEL": "openai_model",
    "OPENAI_TIMEOUT": "openai_timeout",
    "SCHEDULE_ICS_MAX_WORKERS": "max_workers",
    "SCHEDULE_ICS_HOST": "host",
    "SCHEDULE_ICS_PORT": "port",
    "USE_STUB": "use_stub",
}

_TRUE_VALUES = ("1", "true", "yes", "on")


def _coerce(key: str, value):
    """Convert a raw file/env value to the type of its default."""
    if key == "openai_api_key":
        return value or None
    if key == "use_stub":
        if isinstance(value, bool):
            return value
        return str(value).strip().lower() in _TRUE_VALUES
    if key in ("max_workers", "port"):
        number = int(value)
        if number < 1:
            raise ValueError(f"{key} must be positive")
        return number
    if key == "openai_timeout":
        number = float(value)
        if number <= 0:
            raise ValueError(f"{key} must be positive")
        return number
    return str(value)


def _merge(settings: SettingsSchema, values: dict, source: str) -> None:
    for key, value in values.items():
        if key not in DEFAULT_SETTINGS:
            continue
        try:
            settings[key] = _coerce(key, value)  # type: ignore[literal-required]
        except (TypeError, ValueError) as err:
            Log.warn(f"Invalid value for {key} from {source} ({value!r}): {err}; keeping {settings[key]!r}")  # type: ignore[literal-required]


def _read_settings_file(path: Path) -> dict:
    if not path.exists():
        Log.warn(f"Settings file not found, using defaults: {path}")
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError("Settings data is not a JSON object")
    except (OSError, ValueError) as err:
        Log.warn(f"Failed to read settings file ({path}): {err}")
        return {}
    return data


def load_settings(environ: Optional[Dict[str, str]] = None) -> SettingsSchema:
    """
    Load settings from defaults, the optional settings file and the environment.
    """
    if environ is None:
        environ = dict(os.environ)

    settings: SettingsSchema = DEFAULT_SETTINGS.copy()

    settings_path = environ.get("SCHEDULE_ICS_SETTINGS")
    if settings_path:
        _merge(settings, _read_settings_file(Path(settings_path)), str(settings_path))

    env_values = {
        key: environ[env_name]
        for env_name, key in ENV_KEYS.items()
        if env_name in environ
    }
    _merge(settings, env_values, "environment")

    Log.kv({
        "stage": "settings",
        "model": settings["openai_model"],
        "api_key": "set" if settings["openai_api_key"] else "missing",
        "max_workers": settings["max_workers"],
        "use_stub": settings["use_stub"],
    })
    return settings
