"""Helpers for robust filesystem access on removable and network storage."""

from __future__ import annotations

import errno
import os
import sys
import unicodedata
from fnmatch import fnmatch
from typing import Sequence

_WINDOWS = sys.platform.startswith("win")

_TRANSIENT_ERRNOS = {
    errno.ESTALE,
    errno.ETIMEDOUT,
    errno.EIO,
    errno.ECONNRESET,
    errno.ECONNABORTED,
    errno.ENETRESET,
    errno.ENETDOWN,
    errno.ENETUNREACH,
    errno.ENODEV,
    errno.ENXIO,
}


def normalize_path(path: str) -> str:
    return unicodedata.normalize("NFC", path)


def key_for_path(path: str | os.PathLike[str], *, casefold: bool | None = None) -> str:
    """Return a comparison key for *path*.

    Case-insensitive filesystems (Windows) fold case unless told otherwise.
    """

    if casefold is None:
        casefold = _WINDOWS
    text = os.path.normpath(str(path))
    norm = normalize_path(text)
    return norm.casefold() if casefold else norm


def is_hidden(entry: os.DirEntry[str]) -> bool:
    name = entry.name
    if name.startswith("."):
        return True
    if not _WINDOWS:
        return False
    try:
        import ctypes

        GetFileAttributesW = ctypes.windll.kernel32.GetFileAttributesW
        GetFileAttributesW.restype = ctypes.c_uint32
        attrs = GetFileAttributesW(ctypes.c_wchar_p(entry.path))
        if attrs == 0xFFFFFFFF:
            return False
        FILE_ATTRIBUTE_HIDDEN = 0x2
        FILE_ATTRIBUTE_SYSTEM = 0x4
        return bool(attrs & (FILE_ATTRIBUTE_HIDDEN | FILE_ATTRIBUTE_SYSTEM))
    except Exception:
        return False


def is_transient(exc: OSError) -> bool:
    if isinstance(exc, TimeoutError):
        return True
    err_no = getattr(exc, "errno", None)
    if err_no in _TRANSIENT_ERRNOS:
        return True
    win_err = getattr(exc, "winerror", None)
    if win_err in {21, 121, 64, 65, 67, 71}:  # device not ready, network timeouts, net name deleted
        return True
    return False


def should_ignore(name: str, *, patterns: Sequence[str]) -> bool:
    if not patterns:
        return False
    for pattern in patterns:
        if fnmatch(name, pattern):
            return True
    return False


__all__ = [
    "is_hidden",
    "is_transient",
    "key_for_path",
    "normalize_path",
    "should_ignore",
]
