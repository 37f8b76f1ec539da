from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Any, Dict

from .atomic import write_json_atomic
from .paths import get_logs_dir, get_settings_path
from .settings_schema import SETTINGS_VALIDATOR

__all__ = [
    "DEFAULT_SETTINGS",
    "SETTINGS_VERSION",
    "UI_SETTINGS_KEYS",
    "load_settings",
    "merge_defaults",
    "save_settings",
    "update_settings",
]

LOGGER = logging.getLogger("patientvault.settings")

SETTINGS_VERSION = 1

UI_SETTINGS_KEYS = ("theme", "locale", "praatPath", "defaultPatientCard")


DEFAULT_SETTINGS: Dict[str, Any] = {
    "version": SETTINGS_VERSION,
    "theme": "light",
    "locale": "en",
    "praatPath": "",
    "defaultPatientCard": None,
    "shownTabs": [
        {"name": "video_materials", "folder": "video"},
        {"name": "voice_report", "folder": "audio"},
    ],
    "storage": {
        "stats_ttl_s": 300,
        "default_root_name": "patients",
    },
    "media": {
        "page_size": 12,
        "max_page_size": 500,
        "video_dir": "video",
        "audio_dir": "audio",
        "probe_audio": True,
        "probe_timeout_s": 8,
        "ignore": ["~$*", "*.tmp", "*.part"],
        "recorded_audio_exts": [".mp3", ".wav", ".m4a", ".aac", ".ogg", ".flac", ".wma", ".webm", ".mp4"],
    },
    "api": {
        "host": "127.0.0.1",
        "port": 27183,
        "api_key": None,
        "cors_origins": ["http://localhost", "http://127.0.0.1"],
    },
}


def merge_defaults(data: Dict[str, Any]) -> Dict[str, Any]:
    def _merge(default: Dict[str, Any], payload: Dict[str, Any]) -> Dict[str, Any]:
        result: Dict[str, Any] = {}
        for key, value in default.items():
            if isinstance(value, dict):
                current = payload.get(key)
                if isinstance(current, dict):
                    result[key] = _merge(value, current)
                else:
                    result[key] = _merge(value, {})
            elif isinstance(value, list):
                current = payload.get(key)
                result[key] = list(current) if isinstance(current, list) else list(value)
            else:
                result[key] = payload.get(key, value)
        for key, value in payload.items():
            if key not in result:
                result[key] = value
        return result

    return _merge(DEFAULT_SETTINGS, data or {})


def _apply_migrations(settings: Dict[str, Any]) -> Dict[str, Any]:
    version = settings.get("version")
    try:
        version_int = int(version)
    except (TypeError, ValueError):
        version_int = 0
    if version_int < SETTINGS_VERSION:
        settings["version"] = SETTINGS_VERSION
    return settings


def _log_unknown_keys(settings: Dict[str, Any], working_dir: Path) -> None:
    unknown = list(SETTINGS_VALIDATOR.unknown_keys(settings))
    if not unknown:
        return
    LOGGER.info("Ignoring unknown settings keys: %s", ", ".join(unknown))
    logs_dir = get_logs_dir(working_dir)
    logs_dir.mkdir(parents=True, exist_ok=True)
    payload = {
        "ts": time.time(),
        "unknown": unknown,
    }
    target = logs_dir / "settings_unknown.json"
    try:
        with open(target, "w", encoding="utf-8") as handle:
            json.dump(payload, handle, ensure_ascii=False, indent=2)
    except OSError:
        return


def load_settings(working_dir: Path) -> Dict[str, Any]:
    data: Dict[str, Any] = {}
    path = get_settings_path(working_dir)
    try:
        with open(path, "r", encoding="utf-8") as handle:
            loaded = json.load(handle)
    except FileNotFoundError:
        loaded = {}
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        LOGGER.warning("settings.json is not valid JSON (%s); using defaults", exc)
        loaded = {}
    except OSError as exc:
        LOGGER.warning("Unable to read settings.json: %s", exc)
        loaded = {}
    if isinstance(loaded, dict):
        data = loaded
    for key in SETTINGS_VALIDATOR.mistyped_sections(data):
        LOGGER.warning("settings.json section %r has the wrong type; using defaults", key)
    merged = merge_defaults(data)
    merged = _apply_migrations(merged)
    _log_unknown_keys(merged, working_dir)
    return merged


def save_settings(settings: Dict[str, Any], working_dir: Path) -> None:
    merged = merge_defaults(dict(settings))
    merged = _apply_migrations(merged)
    write_json_atomic(get_settings_path(working_dir), merged)


def update_settings(working_dir: Path, **values: Any) -> Dict[str, Any]:
    current = load_settings(working_dir)
    current.update(values)
    save_settings(current, working_dir)
    return current
