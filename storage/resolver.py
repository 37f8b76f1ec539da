"""Locate patient and appointment folders across all registered storage roots."""
from __future__ import annotations

import errno
import logging
import os
import re
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from core.errors import (
    DuplicatePatient,
    FolderUnavailable,
    InvalidArgument,
    NotFound,
    classify_os_error,
)

from .registry import StorageRegistry, StorageRoot

LOGGER = logging.getLogger("patientvault.storage.resolver")

DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")

_SEPARATORS = ("/", "\\")


def validate_folder_name(name: object, *, label: str = "folder") -> str:
    """Return *name* when it is a usable single path component."""

    if not isinstance(name, str) or not name.strip():
        raise InvalidArgument(f"{label} must be a non-empty string")
    if name != name.strip():
        raise InvalidArgument(f"{label} must not start or end with whitespace")
    if any(sep in name for sep in _SEPARATORS) or name in {".", ".."} or "\x00" in name:
        raise InvalidArgument(f"{label} must be a single folder name: {name!r}")
    return name


def is_appointment_name(name: str) -> bool:
    if not DATE_PATTERN.match(name):
        return False
    try:
        datetime.strptime(name, "%Y-%m-%d")
    except ValueError:
        return False
    return True


def validate_date(value: object, *, label: str = "date") -> str:
    if not isinstance(value, str) or not is_appointment_name(value):
        raise InvalidArgument(f"{label} must be a YYYY-MM-DD date")
    return value


def split_appointment_path(value: object) -> Tuple[str, str]:
    """Split ``<folder>/<date>`` (either separator) into its two parts."""

    if not isinstance(value, str) or not value.strip():
        raise InvalidArgument("appointment path must be a non-empty string")
    parts = [part for part in re.split(r"[\\/]+", value.strip()) if part]
    if len(parts) != 2:
        raise InvalidArgument(f"appointment path must be <folder>/<date>: {value!r}")
    folder = validate_folder_name(parts[0])
    date = validate_date(parts[1], label="appointment date")
    return folder, date


def _is_dir(path: Path, *, root: Optional[Path] = None) -> bool:
    try:
        return path.is_dir()
    except OSError as exc:
        if exc.errno in {errno.ENOENT, errno.ENOTDIR}:
            return False
        raise classify_os_error(exc, path, root=root) from exc


@dataclass(slots=True, frozen=True)
class Resolution:
    root: StorageRoot
    path: Path

    @property
    def folder(self) -> str:
        return self.path.name


class PathResolver:
    """Map folder identifiers onto ``(root, absolute path)`` pairs.

    Nothing is cached here; use :meth:`scope` for per-request memoisation.
    """

    def __init__(self, registry: StorageRegistry) -> None:
        self.registry = registry

    def _probe(self, folder: str) -> Tuple[List[Resolution], List[StorageRoot]]:
        hits: List[Resolution] = []
        missing: List[StorageRoot] = []
        for root in self.registry.search_order():
            root_path = Path(root.path)
            if not _is_dir(root_path):
                missing.append(root)
                continue
            candidate = root_path / folder
            if _is_dir(candidate, root=root_path):
                hits.append(Resolution(root=root, path=candidate))
        return hits, missing

    def resolve(self, folder: str) -> Resolution:
        """Find *folder*, checking the active root first.

        Raises :class:`NotFound` when no root holds it, or
        :class:`FolderUnavailable` when some registered root is currently
        missing from disk and could be the one holding it.
        """

        validate_folder_name(folder)
        for root in self.registry.search_order():
            root_path = Path(root.path)
            candidate = root_path / folder
            if _is_dir(candidate, root=root_path):
                return Resolution(root=root, path=candidate)
        _, missing = self._probe(folder)
        if missing:
            names = ", ".join(root.path for root in missing)
            raise FolderUnavailable(
                f"patient folder {folder!r} not found; storage roots unavailable: {names}",
                path=folder,
            )
        raise NotFound(f"patient folder not found: {folder}", path=folder)

    def ensure_unique(self, folder: str) -> None:
        """Raise :class:`DuplicatePatient` when *folder* exists in any root.

        Uniqueness cannot be proven while a registered root is off line, so that
        case raises :class:`FolderUnavailable` instead of guessing.
        """

        validate_folder_name(folder)
        hits, missing = self._probe(folder)
        if hits:
            where = hits[0].root
            raise DuplicatePatient(
                f"patient folder {folder!r} already exists in storage root {where.path}",
                path=str(hits[0].path),
            )
        if missing:
            names = ", ".join(root.path for root in missing)
            LOGGER.warning("Refusing to create %s while storage roots are unavailable: %s", folder, names)
            raise FolderUnavailable(
                f"cannot check that {folder!r} is unique; storage roots unavailable: {names}",
                path=folder,
            )

    def resolve_appointment(self, appointment_path: str) -> Tuple[Resolution, Path]:
        folder, date = split_appointment_path(appointment_path)
        resolution = self.resolve(folder)
        return resolution, resolution.path / date

    def scope(self) -> "ResolutionScope":
        return ResolutionScope(self)


class ResolutionScope:
    """Memoise resolutions for the lifetime of a single request."""

    def __init__(self, resolver: PathResolver) -> None:
        self._resolver = resolver
        self._cache: Dict[str, Resolution] = {}

    def resolve(self, folder: str) -> Resolution:
        cached = self._cache.get(folder)
        if cached is not None:
            return cached
        resolution = self._resolver.resolve(folder)
        self._cache[folder] = resolution
        return resolution


def list_patient_folders(root: StorageRoot) -> List[Path]:
    """Return visible patient folders under *root*, sorted by name."""

    root_path = Path(root.path)
    folders: List[Path] = []
    try:
        with os.scandir(root_path) as iterator:
            for entry in iterator:
                if entry.name.startswith("."):
                    continue
                try:
                    if entry.is_dir():
                        folders.append(Path(entry.path))
                except OSError:
                    continue
    except OSError as exc:
        raise classify_os_error(exc, root_path, root=root_path) from exc
    folders.sort(key=lambda item: item.name)
    return folders


__all__ = [
    "DATE_PATTERN",
    "PathResolver",
    "Resolution",
    "ResolutionScope",
    "is_appointment_name",
    "list_patient_folders",
    "split_appointment_path",
    "validate_date",
    "validate_folder_name",
]
