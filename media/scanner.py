"""Flat media directory listing with newest-first ordering."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Sequence

import robust

from .classify import VIDEO, file_type_for, normalize_extension
from .probe import AudioProbe

LOGGER = logging.getLogger("patientvault.media.scanner")


@dataclass(slots=True)
class ListedFile:
    """A directory entry with the stat data needed for ordering."""

    name: str
    path: str
    size: int
    mtime_ns: int
    file_type: str


@dataclass(slots=True)
class MediaAsset:
    url: str
    path: str
    file_name: str
    extension: str
    file_type: str
    has_audio: bool
    size: int
    modified: str

    def to_payload(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "path": self.path,
            "fileName": self.file_name,
            "name": self.file_name,
            "extension": self.extension,
            "fileType": self.file_type,
            "hasAudio": self.has_audio,
            "isAudio": self.file_type == "audio",
            "size": self.size,
            "modified": self.modified,
        }


def _iso_utc(mtime_ns: int) -> str:
    return datetime.fromtimestamp(mtime_ns / 1_000_000_000, tz=timezone.utc).isoformat()


def _sort_key(entry: ListedFile) -> tuple[int, str]:
    return (-entry.mtime_ns, entry.name)


def list_media(
    directory: Path,
    *,
    kinds: Optional[FrozenSet[str]] = None,
    ignore: Sequence[str] = (),
) -> List[ListedFile]:
    """Return regular files in *directory* ordered newest first.

    Ties on modification time are broken by file name. Hidden files and names
    matching *ignore* are skipped. ``OSError`` from opening the directory
    propagates; files that disappear mid-listing are skipped.
    """

    entries: List[ListedFile] = []
    with os.scandir(directory) as iterator:
        for entry in iterator:
            if robust.is_hidden(entry) or robust.should_ignore(entry.name, patterns=ignore):
                continue
            try:
                if not entry.is_file():
                    continue
                stat = entry.stat()
            except FileNotFoundError:
                continue
            file_type = file_type_for(entry.name)
            if kinds is not None and file_type not in kinds:
                continue
            entries.append(
                ListedFile(
                    name=entry.name,
                    path=entry.path,
                    size=int(stat.st_size),
                    mtime_ns=int(stat.st_mtime_ns),
                    file_type=file_type,
                )
            )
    entries.sort(key=_sort_key)
    return entries


class MediaScanner:
    """Turn listings into :class:`MediaAsset` records, probing only what is asked for."""

    def __init__(self, probe: AudioProbe, *, ignore: Iterable[str] = ()) -> None:
        self._probe = probe
        self._ignore = tuple(ignore)

    def listing(self, directory: Path, *, kinds: Optional[FrozenSet[str]] = None) -> List[ListedFile]:
        return list_media(directory, kinds=kinds, ignore=self._ignore)

    def describe(self, entries: Iterable[ListedFile], *, probe_audio: bool = True) -> List[MediaAsset]:
        assets: List[MediaAsset] = []
        for entry in entries:
            has_audio = False
            if probe_audio and entry.file_type == VIDEO:
                try:
                    has_audio = self._probe.has_audio(entry.path, size=entry.size, mtime_ns=entry.mtime_ns)
                except Exception as exc:  # pragma: no cover - probe already degrades
                    LOGGER.debug("hasAudio probe raised for %s: %s", entry.path, exc)
                    has_audio = False
            assets.append(
                MediaAsset(
                    url=Path(entry.path).absolute().as_uri(),
                    path=entry.path,
                    file_name=entry.name,
                    extension=normalize_extension(entry.name),
                    file_type=entry.file_type,
                    has_audio=has_audio,
                    size=entry.size,
                    modified=_iso_utc(entry.mtime_ns),
                )
            )
        return assets

    def scan_folder(
        self,
        directory: Path,
        *,
        kinds: Optional[FrozenSet[str]] = None,
        probe_audio: bool = True,
    ) -> List[MediaAsset]:
        return self.describe(self.listing(directory, kinds=kinds), probe_audio=probe_audio)


__all__ = ["ListedFile", "MediaAsset", "MediaScanner", "list_media"]
