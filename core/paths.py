from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Optional

__all__ = [
    "ensure_working_dir_structure",
    "get_default_root_path",
    "get_dictionaries_path",
    "get_logs_dir",
    "get_registry_path",
    "get_session_path",
    "get_settings_path",
    "resolve_working_dir",
    "safe_label",
]

APP_DIR_NAME = "PatientVault"


def _expand_path(value: str) -> Path:
    expanded = os.path.expandvars(os.path.expanduser(value))
    return Path(expanded).resolve()


def _ensure_writable_dir(path: Path) -> bool:
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError:
        return False
    test_file = path / f".write_test_{os.getpid()}"
    try:
        with open(test_file, "w", encoding="utf-8") as handle:
            handle.write("ok")
        test_file.unlink(missing_ok=True)
        return True
    except OSError:
        try:
            if test_file.exists():
                test_file.unlink()
        except OSError:  # pragma: no cover - cleanup only
            pass
        return False


def _app_data_dir() -> Optional[Path]:
    for variable in ("APPDATA", "LOCALAPPDATA", "XDG_DATA_HOME"):
        value = os.environ.get(variable)
        if not value:
            continue
        try:
            return _expand_path(value)
        except (OSError, RuntimeError):
            continue
    return None


def resolve_working_dir() -> Path:
    """Resolve the PatientVault working directory, creating it if required."""

    env_home = os.environ.get("PATIENTVAULT_HOME")
    if env_home:
        try:
            env_path: Optional[Path] = _expand_path(env_home)
        except (OSError, RuntimeError):
            env_path = None
        if env_path is not None and _ensure_writable_dir(env_path):
            return env_path

    app_data = _app_data_dir()
    if app_data is not None:
        candidate = app_data / APP_DIR_NAME
        if _ensure_writable_dir(candidate):
            return candidate

    fallback = Path.home() / APP_DIR_NAME
    fallback.mkdir(parents=True, exist_ok=True)
    return fallback


_SAFE_LABEL_PATTERN = re.compile(r"[^A-Za-z0-9_.-]+")


def safe_label(label: str) -> str:
    """Return a filesystem-safe label, e.g. for recorded audio names."""

    cleaned = _SAFE_LABEL_PATTERN.sub("_", label.strip())
    return cleaned.strip("._") or "recording"


def get_settings_path(working_dir: Path) -> Path:
    return working_dir / "settings.json"


def get_session_path(working_dir: Path) -> Path:
    return working_dir / "session.json"


def get_registry_path(working_dir: Path) -> Path:
    return working_dir / "storage_roots.json"


def get_dictionaries_path(working_dir: Path) -> Path:
    return working_dir / "dictionaries.json"


def get_logs_dir(working_dir: Path) -> Path:
    return working_dir / "logs"


def get_default_root_path(working_dir: Path, name: str = "patients") -> Path:
    return working_dir / name


def ensure_working_dir_structure(working_dir: Path) -> None:
    for directory in (working_dir, get_logs_dir(working_dir)):
        directory.mkdir(parents=True, exist_ok=True)
