"""Error taxonomy shared by the storage engine and the RPC facade."""
from __future__ import annotations

import errno
import os
from pathlib import Path
from typing import Any, Dict, Optional

import robust


class StorageError(RuntimeError):
    """Base exception for classified engine failures."""

    code = "IOFailure"
    recoverable = False

    def __init__(self, message: str, *, path: Optional[str | os.PathLike[str]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.path = str(path) if path is not None else None

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "code": self.code,
            "message": self.message,
            "recoverable": self.recoverable,
        }
        if self.path:
            payload["path"] = self.path
        return payload


class NotFound(StorageError):
    """Folder, root or id is absent."""

    code = "NotFound"


class DuplicatePatient(StorageError):
    code = "DuplicatePatient"


class DuplicateRoot(StorageError):
    code = "DuplicateRoot"


class InvalidPath(StorageError):
    code = "InvalidPath"


class FolderUnavailable(StorageError):
    """Transient: the folder or its root is not reachable right now."""

    code = "FolderUnavailable"
    recoverable = True


class CorruptRecord(StorageError):
    """A metadata file is present but cannot be parsed."""

    code = "CorruptRecord"


class PermissionDenied(StorageError):
    code = "PermissionDenied"


class IOFailure(StorageError):
    code = "IOFailure"


class InvalidArgument(StorageError):
    """Raised by the RPC facade before any filesystem access."""

    code = "InvalidArgument"


def classify_os_error(
    exc: OSError,
    path: Optional[str | os.PathLike[str]] = None,
    *,
    root: Optional[Path] = None,
) -> StorageError:
    """Map *exc* onto the engine taxonomy.

    ``root`` is the storage root enclosing *path* when known; a missing file
    under a missing root is reported as ``FolderUnavailable`` because the root
    may be removable media that will come back.
    """

    target = path if path is not None else getattr(exc, "filename", None)
    detail = exc.strerror or str(exc)
    if isinstance(exc, (FileNotFoundError, NotADirectoryError)) or exc.errno in {errno.ENOENT, errno.ENOTDIR}:
        if root is not None and not Path(root).exists():
            return FolderUnavailable(f"storage root is not reachable: {root}", path=target)
        return NotFound(f"not found: {target}", path=target)
    if isinstance(exc, PermissionError) or exc.errno in {errno.EACCES, errno.EPERM}:
        return PermissionDenied(f"permission denied: {detail}", path=target)
    if robust.is_transient(exc):
        return FolderUnavailable(f"folder temporarily unavailable: {detail}", path=target)
    return IOFailure(f"filesystem error: {detail}", path=target)


__all__ = [
    "CorruptRecord",
    "DuplicatePatient",
    "DuplicateRoot",
    "FolderUnavailable",
    "IOFailure",
    "InvalidArgument",
    "InvalidPath",
    "NotFound",
    "PermissionDenied",
    "StorageError",
    "classify_os_error",
]
