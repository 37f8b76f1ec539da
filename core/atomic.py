"""Crash-safe replacement of small files."""
from __future__ import annotations

import json
import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import IO, Any, Iterator

__all__ = ["atomic_write", "read_json", "write_json_atomic"]


@contextmanager
def atomic_write(target: Path, *, mode: str = "w", encoding: str | None = "utf-8") -> Iterator[IO[Any]]:
    """Yield a handle to a temp file that replaces *target* on clean exit.

    The temp file lives next to *target* so the final ``os.replace`` stays on
    one filesystem. On any exception the temp file is removed and the
    previously committed *target* is left untouched.
    """

    target = Path(target)
    target.parent.mkdir(parents=True, exist_ok=True)
    binary = "b" in mode
    handle = tempfile.NamedTemporaryFile(
        mode=mode,
        encoding=None if binary else encoding,
        dir=target.parent,
        prefix=f".{target.name}.",
        suffix=".tmp",
        delete=False,
    )
    tmp_path = Path(handle.name)
    try:
        with handle:
            yield handle
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_path, target)
    except BaseException:
        try:
            tmp_path.unlink(missing_ok=True)
        except OSError:
            pass
        raise


def write_json_atomic(target: Path, payload: Any) -> None:
    with atomic_write(target) as handle:
        json.dump(payload, handle, ensure_ascii=False, indent=2)
        handle.write("\n")


def read_json(path: Path) -> Any:
    """Load JSON from *path*; errors propagate to the caller for classification."""

    with open(path, "r", encoding="utf-8") as handle:
        return json.load(handle)
