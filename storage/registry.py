"""Registry of storage roots and the single active root."""
from __future__ import annotations

import json
import logging
import os
import threading
import time
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import robust
from core.atomic import read_json, write_json_atomic
from core.errors import CorruptRecord, DuplicateRoot, InvalidPath, NotFound, classify_os_error

from .stats import RootStats, compute_root_stats

LOGGER = logging.getLogger("patientvault.storage.registry")

REGISTRY_VERSION = 1
DEFAULT_STATS_TTL = 300.0


def _utc_iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


def _parse_iso(value: Any) -> Optional[float]:
    if not isinstance(value, str) or not value:
        return None
    try:
        return datetime.fromisoformat(value).timestamp()
    except ValueError:
        return None


@dataclass(slots=True)
class StorageRoot:
    id: int
    path: str
    is_active: bool
    created_at: str
    patient_count: int = 0
    total_size: int = 0
    stats_updated_at: Optional[str] = None
    available: bool = True

    @property
    def key(self) -> str:
        return robust.key_for_path(self.path)

    def to_payload(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "path": self.path,
            "isActive": self.is_active,
            "createdAt": self.created_at,
            "patientCount": self.patient_count,
            "totalSize": self.total_size,
            "statsUpdatedAt": self.stats_updated_at,
            "available": self.available,
        }

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "StorageRoot":
        return cls(
            id=int(payload["id"]),
            path=str(payload["path"]),
            is_active=bool(payload.get("isActive", False)),
            created_at=str(payload.get("createdAt") or _utc_iso(time.time())),
            patient_count=int(payload.get("patientCount") or 0),
            total_size=int(payload.get("totalSize") or 0),
            stats_updated_at=payload.get("statsUpdatedAt") or None,
        )


class StorageRegistry:
    """Persisted set of storage roots with exactly one active when non-empty.

    Every read and mutation of the root list happens under :attr:`lock`. The
    recursive size walk used for stats runs without it.
    """

    def __init__(
        self,
        registry_path: Path,
        *,
        stats_ttl_s: float = DEFAULT_STATS_TTL,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._path = Path(registry_path)
        self._stats_ttl = max(0.0, float(stats_ttl_s))
        self._clock = clock
        self.lock = threading.RLock()
        self._roots: List[StorageRoot] = []
        self._next_id = 1
        self._load()

    # ------------------------------------------------------------------
    # persistence
    def _load(self) -> None:
        try:
            payload = read_json(self._path)
        except FileNotFoundError:
            return
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise CorruptRecord(f"storage registry is not valid JSON: {exc}", path=self._path) from exc
        except OSError as exc:
            raise classify_os_error(exc, self._path) from exc
        if not isinstance(payload, dict) or not isinstance(payload.get("roots", []), list):
            raise CorruptRecord("storage registry has an unexpected shape", path=self._path)
        roots: List[StorageRoot] = []
        for item in payload.get("roots", []):
            try:
                roots.append(StorageRoot.from_payload(item))
            except (KeyError, TypeError, ValueError) as exc:
                raise CorruptRecord(f"invalid storage root entry: {item!r}", path=self._path) from exc
        roots.sort(key=lambda root: root.id)
        self._roots = roots
        highest = max((root.id for root in roots), default=0)
        self._next_id = max(int(payload.get("nextId") or 1), highest + 1)
        if self._repair_active():
            self._save()

    def _save(self) -> None:
        payload = {
            "version": REGISTRY_VERSION,
            "nextId": self._next_id,
            "roots": [root.to_payload() for root in self._roots],
        }
        for item in payload["roots"]:
            item.pop("available", None)
        try:
            write_json_atomic(self._path, payload)
        except OSError as exc:
            raise classify_os_error(exc, self._path) from exc

    def _repair_active(self) -> bool:
        """Restore the single-active invariant after loading hand-edited files."""

        if not self._roots:
            return False
        active = [root for root in self._roots if root.is_active]
        if len(active) == 1:
            return False
        keep = active[0] if active else self._roots[0]
        LOGGER.warning("Storage registry had %d active roots; keeping id=%s", len(active), keep.id)
        for root in self._roots:
            root.is_active = root is keep
        return True

    # ------------------------------------------------------------------
    # reads
    def roots(self) -> List[StorageRoot]:
        """Snapshot of the registered roots in registration order."""

        with self.lock:
            return [replace(root) for root in self._roots]

    def search_order(self) -> List[StorageRoot]:
        """Active root first, then the others in registration order."""

        with self.lock:
            active = [replace(root) for root in self._roots if root.is_active]
            others = [replace(root) for root in self._roots if not root.is_active]
        return active + others

    def get_active(self) -> Optional[StorageRoot]:
        with self.lock:
            for root in self._roots:
                if root.is_active:
                    return replace(root)
        return None

    def _is_stale(self, root: StorageRoot, now: float) -> bool:
        updated = _parse_iso(root.stats_updated_at)
        return updated is None or (now - updated) >= self._stats_ttl

    def list_roots(self, *, refresh: bool = False) -> List[StorageRoot]:
        """Return roots with stats recomputed when stale or when *refresh* is set."""

        now = self._clock()
        with self.lock:
            snapshot = [replace(root) for root in self._roots]
        stale = [root for root in snapshot if refresh or self._is_stale(root, now)]
        computed: Dict[int, RootStats] = {}
        for root in stale:
            computed[root.id] = compute_root_stats(Path(root.path))
        availability = {root.id: Path(root.path).is_dir() for root in snapshot if root.id not in computed}

        with self.lock:
            changed = False
            stamp = _utc_iso(self._clock())
            for root in self._roots:
                stats = computed.get(root.id)
                if stats is None:
                    root.available = availability.get(root.id, root.available)
                    continue
                root.available = stats.available
                if not stats.available:
                    continue
                root.patient_count = stats.patient_count
                root.total_size = stats.total_size
                root.stats_updated_at = stamp
                changed = True
            if changed:
                self._save()
            return [replace(root) for root in self._roots]

    # ------------------------------------------------------------------
    # mutations
    def add_root(self, path: str | os.PathLike[str]) -> StorageRoot:
        """Register *path*; only the first root of an empty registry becomes active."""

        raw = str(path).strip() if path is not None else ""
        if not raw:
            raise InvalidPath("storage path is empty")
        absolute = os.path.abspath(os.path.expanduser(raw))
        if not os.path.exists(absolute):
            raise InvalidPath(f"storage path does not exist: {absolute}", path=absolute)
        if not os.path.isdir(absolute):
            raise InvalidPath(f"storage path is not a directory: {absolute}", path=absolute)
        key = robust.key_for_path(absolute)
        with self.lock:
            if any(root.key == key for root in self._roots):
                raise DuplicateRoot(f"storage path already registered: {absolute}", path=absolute)
            root = StorageRoot(
                id=self._next_id,
                path=absolute,
                is_active=not self._roots,
                created_at=_utc_iso(self._clock()),
            )
            self._roots.append(root)
            self._next_id += 1
            try:
                self._save()
            except Exception:
                self._roots.pop()
                self._next_id -= 1
                raise
            LOGGER.info("Registered storage root id=%s path=%s active=%s", root.id, absolute, root.is_active)
            return replace(root)

    def set_active(self, root_id: int) -> StorageRoot:
        with self.lock:
            target = next((root for root in self._roots if root.id == root_id), None)
            if target is None:
                raise NotFound(f"unknown storage root id: {root_id}")
            previous = {root.id: root.is_active for root in self._roots}
            for root in self._roots:
                root.is_active = root is target
            try:
                self._save()
            except Exception:
                for root in self._roots:
                    root.is_active = previous[root.id]
                raise
            LOGGER.info("Active storage root is now id=%s path=%s", target.id, target.path)
            return replace(target)

    def ensure_default(self, default_path: Path) -> Optional[StorageRoot]:
        """Register *default_path* when no root is registered yet."""

        with self.lock:
            if self._roots:
                return None
            default_path.mkdir(parents=True, exist_ok=True)
            return self.add_root(default_path)


__all__ = ["REGISTRY_VERSION", "StorageRegistry", "StorageRoot"]
