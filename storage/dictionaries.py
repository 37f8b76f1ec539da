"""Append-only doctor and diagnosis dictionaries."""
from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Dict, List

from core.atomic import read_json, write_json_atomic
from core.errors import InvalidArgument, classify_os_error

LOGGER = logging.getLogger("patientvault.storage.dictionaries")

DICTIONARY_TYPES = ("doctors", "diagnosis")


class DictionaryStore:
    def __init__(self, path: Path) -> None:
        self._path = Path(path)
        self._lock = threading.Lock()

    def _load(self) -> Dict[str, List[str]]:
        result: Dict[str, List[str]] = {name: [] for name in DICTIONARY_TYPES}
        try:
            payload = read_json(self._path)
        except FileNotFoundError:
            return result
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            LOGGER.warning("dictionaries.json is not valid JSON (%s); starting empty", exc)
            return result
        except OSError as exc:
            raise classify_os_error(exc, self._path) from exc
        if not isinstance(payload, dict):
            LOGGER.warning("dictionaries.json does not hold an object; starting empty")
            return result
        for name in DICTIONARY_TYPES:
            values = payload.get(name)
            if not isinstance(values, list):
                continue
            seen: List[str] = []
            for value in values:
                if isinstance(value, str) and value not in seen:
                    seen.append(value)
            result[name] = seen
        return result

    def get(self) -> Dict[str, List[str]]:
        with self._lock:
            return self._load()

    def add(self, kind: str, value: str) -> bool:
        """Append *value* to *kind*; returns False when it was already present."""

        if kind not in DICTIONARY_TYPES:
            raise InvalidArgument(f"unknown dictionary type: {kind!r}")
        if not isinstance(value, str) or not value.strip():
            raise InvalidArgument("dictionary value must be a non-empty string")
        with self._lock:
            data = self._load()
            if value in data[kind]:
                return False
            data[kind].append(value)
            try:
                write_json_atomic(self._path, data)
            except OSError as exc:
                raise classify_os_error(exc, self._path) from exc
        LOGGER.info("Added %s entry %r", kind, value)
        return True


__all__ = ["DICTIONARY_TYPES", "DictionaryStore"]
