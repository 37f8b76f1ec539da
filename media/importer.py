"""Copy-in of external files, recorded audio blobs and USB recorder sessions."""
from __future__ import annotations

import logging
import os
import re
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

from .classify import VIDEO, file_type_for

LOGGER = logging.getLogger("patientvault.media.importer")

# <Surname_Name_YYYY-MM-DD>_<device>_<YYYY-MM-DD>_<HHMMSS>
USB_SESSION_PATTERN = re.compile(r"^(.+?_\d{4}-\d{2}-\d{2})_(?:[^_]+)_(\d{4}-\d{2}-\d{2})_\d{6}$")

_MAX_SUFFIX_ATTEMPTS = 10_000


@dataclass(slots=True)
class ImportResult:
    copied: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.copied)


def copy_into(target_dir: Path, sources: Iterable[str | os.PathLike[str]]) -> ImportResult:
    """Copy *sources* into *target_dir*, keeping names already present.

    A per-file failure is logged and recorded; it does not stop the batch.
    """

    target_dir.mkdir(parents=True, exist_ok=True)
    result = ImportResult()
    for source in sources:
        source_path = Path(source)
        destination = target_dir / source_path.name
        if destination.exists():
            result.skipped.append(source_path.name)
            continue
        try:
            shutil.copy2(source_path, destination)
        except OSError as exc:
            LOGGER.warning("Failed to copy %s into %s: %s", source_path, target_dir, exc)
            result.failed.append(source_path.name)
            continue
        result.copied.append(source_path.name)
    return result


def ensure_extension(filename: str, allowed: Sequence[str], *, default: str = ".wav") -> str:
    lowered = filename.lower()
    if any(lowered.endswith(ext.lower()) for ext in allowed):
        return filename
    return f"{filename}{default}"


def _candidate_names(filename: str) -> Iterable[str]:
    stem, suffix = os.path.splitext(filename)
    yield filename
    for index in range(1, _MAX_SUFFIX_ATTEMPTS):
        yield f"{stem} ({index}){suffix}"


def write_new_file(directory: Path, filename: str, data: bytes) -> Path:
    """Write *data* under a name that does not exist yet in *directory*.

    Collisions get a `` (n)`` suffix; an existing file is never replaced. A
    failed write removes the partial file.
    """

    directory.mkdir(parents=True, exist_ok=True)
    for candidate in _candidate_names(filename):
        target = directory / candidate
        try:
            handle = open(target, "xb")
        except FileExistsError:
            continue
        try:
            with handle:
                handle.write(data)
                handle.flush()
                os.fsync(handle.fileno())
        except BaseException:
            try:
                target.unlink(missing_ok=True)
            except OSError:
                pass
            raise
        return target
    raise FileExistsError(f"no free file name for {filename} in {directory}")


@dataclass(slots=True)
class UsbSession:
    folder_name: str
    patient_base: str
    rec_date: str
    path: Path


def find_usb_sessions(usb_dir: Path) -> List[UsbSession]:
    sessions: List[UsbSession] = []
    with os.scandir(usb_dir) as iterator:
        for entry in iterator:
            if not entry.is_dir():
                continue
            match = USB_SESSION_PATTERN.match(entry.name)
            if not match:
                continue
            sessions.append(
                UsbSession(
                    folder_name=entry.name,
                    patient_base=match.group(1),
                    rec_date=match.group(2),
                    path=Path(entry.path),
                )
            )
    sessions.sort(key=lambda session: session.folder_name)
    return sessions


def has_clips(directory: Path) -> bool:
    try:
        with os.scandir(directory) as iterator:
            return any(entry.is_file() and file_type_for(entry.name) == VIDEO for entry in iterator)
    except FileNotFoundError:
        return False


def copy_session(session: UsbSession, video_dir: Path) -> Optional[ImportResult]:
    """Copy one recorder session into *video_dir* unless clips are already there."""

    video_dir.mkdir(parents=True, exist_ok=True)
    if has_clips(video_dir):
        LOGGER.info("Skipping USB session %s: %s already holds clips", session.folder_name, video_dir)
        return None
    result = ImportResult()
    for source in sorted(session.path.rglob("*")):
        if not source.is_file():
            continue
        destination = video_dir / source.relative_to(session.path)
        if destination.exists():
            result.skipped.append(str(destination.name))
            continue
        destination.parent.mkdir(parents=True, exist_ok=True)
        try:
            shutil.copy2(source, destination)
        except OSError as exc:
            LOGGER.warning("Failed to copy %s: %s", source, exc)
            result.failed.append(source.name)
            continue
        result.copied.append(source.name)
    return result


__all__ = [
    "ImportResult",
    "USB_SESSION_PATTERN",
    "UsbSession",
    "copy_into",
    "copy_session",
    "ensure_extension",
    "find_usb_sessions",
    "has_clips",
    "write_new_file",
]
