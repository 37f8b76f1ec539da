"""Process-wide UI settings, session and shown-tab stores."""
from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any, Dict, List, Mapping

from core.atomic import read_json, write_json_atomic
from core.errors import InvalidArgument, classify_os_error
from core.paths import get_session_path
from core.settings import UI_SETTINGS_KEYS, load_settings, update_settings

from .resolver import validate_folder_name

LOGGER = logging.getLogger("patientvault.storage.app_config")

DEFAULT_SESSION: Dict[str, Any] = {"currentDoctor": ""}

_STRING_SETTINGS = {"theme", "locale", "praatPath"}


class AppConfig:
    """Thin views over ``settings.json`` and ``session.json``."""

    def __init__(self, working_dir: Path) -> None:
        self.working_dir = Path(working_dir)
        self._lock = threading.Lock()

    # settings --------------------------------------------------------
    def get_settings(self) -> Dict[str, Any]:
        settings = load_settings(self.working_dir)
        return {key: settings.get(key) for key in UI_SETTINGS_KEYS}

    def set_settings(self, patch: Mapping[str, Any]) -> Dict[str, Any]:
        if not isinstance(patch, Mapping):
            raise InvalidArgument("settings patch must be an object")
        values: Dict[str, Any] = {}
        for key, value in patch.items():
            if key not in UI_SETTINGS_KEYS:
                LOGGER.debug("Ignoring settings key outside the UI set: %s", key)
                continue
            if key in _STRING_SETTINGS and not isinstance(value, str):
                raise InvalidArgument(f"setting {key} must be a string")
            if key == "defaultPatientCard" and value is not None and not isinstance(value, str):
                raise InvalidArgument("setting defaultPatientCard must be a string or null")
            values[key] = value
        with self._lock:
            try:
                settings = update_settings(self.working_dir, **values)
            except OSError as exc:
                raise classify_os_error(exc, self.working_dir) from exc
        return {key: settings.get(key) for key in UI_SETTINGS_KEYS}

    # shown tabs ------------------------------------------------------
    def get_shown_tabs(self) -> List[Dict[str, str]]:
        tabs = load_settings(self.working_dir).get("shownTabs") or []
        return [dict(tab) for tab in tabs if isinstance(tab, dict)]

    def set_shown_tabs(self, tabs: Any) -> List[Dict[str, str]]:
        if not isinstance(tabs, list):
            raise InvalidArgument("shownTabs must be a list")
        cleaned: List[Dict[str, str]] = []
        for tab in tabs:
            if not isinstance(tab, Mapping):
                raise InvalidArgument("each tab must be an object with name and folder")
            name = tab.get("name")
            if not isinstance(name, str) or not name:
                raise InvalidArgument("tab name must be a non-empty string")
            folder = validate_folder_name(tab.get("folder"), label="tab folder")
            cleaned.append({"name": name, "folder": folder})
        with self._lock:
            try:
                update_settings(self.working_dir, shownTabs=cleaned)
            except OSError as exc:
                raise classify_os_error(exc, self.working_dir) from exc
        return cleaned

    # session ---------------------------------------------------------
    def _read_session(self) -> Dict[str, Any]:
        path = get_session_path(self.working_dir)
        try:
            payload = read_json(path)
        except FileNotFoundError:
            return dict(DEFAULT_SESSION)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            LOGGER.warning("session.json is not valid JSON (%s); using defaults", exc)
            return dict(DEFAULT_SESSION)
        except OSError as exc:
            raise classify_os_error(exc, path) from exc
        if not isinstance(payload, dict):
            return dict(DEFAULT_SESSION)
        merged = dict(DEFAULT_SESSION)
        merged.update(payload)
        return merged

    def get_session(self) -> Dict[str, Any]:
        with self._lock:
            return self._read_session()

    def set_session(self, patch: Mapping[str, Any]) -> Dict[str, Any]:
        if not isinstance(patch, Mapping):
            raise InvalidArgument("session patch must be an object")
        path = get_session_path(self.working_dir)
        with self._lock:
            session = self._read_session()
            session.update(patch)
            try:
                write_json_atomic(path, session)
            except OSError as exc:
                raise classify_os_error(exc, path) from exc
        return session


__all__ = ["AppConfig", "DEFAULT_SESSION"]
