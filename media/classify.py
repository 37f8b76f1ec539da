"""Extension based classification of patient media files."""
from __future__ import annotations

import mimetypes
from pathlib import Path
from typing import Dict

VIDEO = "video"
AUDIO = "audio"
IMAGE = "image"
DOCUMENT = "document"
TEXT = "text"
ARCHIVE = "archive"
OTHER = "other"

_TYPE_BY_EXTENSION: Dict[str, str] = {
    # Video
    "mp4": VIDEO,
    "avi": VIDEO,
    "mov": VIDEO,
    "wmv": VIDEO,
    "flv": VIDEO,
    "webm": VIDEO,
    "mkv": VIDEO,
    "m4v": VIDEO,
    "mpg": VIDEO,
    "mpeg": VIDEO,
    "ts": VIDEO,
    "mts": VIDEO,
    "3gp": VIDEO,
    # Audio
    "mp3": AUDIO,
    "wav": AUDIO,
    "flac": AUDIO,
    "aac": AUDIO,
    "ogg": AUDIO,
    "opus": AUDIO,
    "wma": AUDIO,
    "m4a": AUDIO,
    "aiff": AUDIO,
    # Images
    "jpg": IMAGE,
    "jpeg": IMAGE,
    "png": IMAGE,
    "gif": IMAGE,
    "bmp": IMAGE,
    "svg": IMAGE,
    "webp": IMAGE,
    "tiff": IMAGE,
    "heic": IMAGE,
    # Documents
    "pdf": DOCUMENT,
    "doc": DOCUMENT,
    "docx": DOCUMENT,
    "xls": DOCUMENT,
    "xlsx": DOCUMENT,
    "ppt": DOCUMENT,
    "pptx": DOCUMENT,
    "odt": DOCUMENT,
    # Text
    "txt": TEXT,
    "md": TEXT,
    "rtf": TEXT,
    "csv": TEXT,
    # Archives
    "zip": ARCHIVE,
    "rar": ARCHIVE,
    "7z": ARCHIVE,
    "tar": ARCHIVE,
    "gz": ARCHIVE,
}

_MIME_PREFIX_TYPE: Dict[str, str] = {
    "video/": VIDEO,
    "audio/": AUDIO,
    "image/": IMAGE,
    "text/": TEXT,
    "application/pdf": DOCUMENT,
    "application/msword": DOCUMENT,
    "application/vnd.openxmlformats-officedocument": DOCUMENT,
    "application/zip": ARCHIVE,
}


def normalize_extension(name: str) -> str:
    """Return the lower-case extension of *name* including the leading dot."""

    return Path(name).suffix.lower()


def file_type_for(name: str) -> str:
    """Return the file type for *name*, falling back to a MIME guess."""

    ext = normalize_extension(name).lstrip(".")
    if ext in _TYPE_BY_EXTENSION:
        return _TYPE_BY_EXTENSION[ext]
    guess, _ = mimetypes.guess_type(name, strict=False)
    if guess:
        lower = guess.lower()
        for prefix, file_type in _MIME_PREFIX_TYPE.items():
            if lower.startswith(prefix):
                return file_type
    return OTHER


__all__ = [
    "ARCHIVE",
    "AUDIO",
    "DOCUMENT",
    "IMAGE",
    "OTHER",
    "TEXT",
    "VIDEO",
    "file_type_for",
    "normalize_extension",
]
