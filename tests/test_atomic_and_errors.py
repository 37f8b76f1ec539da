from __future__ import annotations

import errno
import json
from pathlib import Path

import pytest

from core.atomic import atomic_write, read_json, write_json_atomic
from core.errors import (
    FolderUnavailable,
    IOFailure,
    NotFound,
    PermissionDenied,
    classify_os_error,
)


def test_write_json_atomic_replaces_target(tmp_path: Path) -> None:
    target = tmp_path / "record.json"
    write_json_atomic(target, {"a": 1})
    write_json_atomic(target, {"a": 2, "name": "Łukasz"})

    assert read_json(target) == {"a": 2, "name": "Łukasz"}
    assert target.read_text(encoding="utf-8").endswith("\n")
    assert sorted(p.name for p in tmp_path.iterdir()) == ["record.json"]


def test_failed_write_keeps_previous_content(tmp_path: Path) -> None:
    target = tmp_path / "record.json"
    target.write_text(json.dumps({"keep": True}), encoding="utf-8")

    with pytest.raises(RuntimeError):
        with atomic_write(target) as handle:
            handle.write('{"keep": fal')
            raise RuntimeError("disk pulled")

    assert json.loads(target.read_text(encoding="utf-8")) == {"keep": True}
    assert sorted(p.name for p in tmp_path.iterdir()) == ["record.json"]


def test_classify_missing_file(tmp_path: Path) -> None:
    exc = FileNotFoundError(errno.ENOENT, "No such file", str(tmp_path / "x"))

    error = classify_os_error(exc, root=tmp_path)

    assert isinstance(error, NotFound)
    assert error.path == str(tmp_path / "x")


def test_classify_missing_file_under_missing_root(tmp_path: Path) -> None:
    root = tmp_path / "usb"
    exc = FileNotFoundError(errno.ENOENT, "No such file", str(root / "P001"))

    error = classify_os_error(exc, root=root)

    assert isinstance(error, FolderUnavailable)
    assert error.recoverable is True
    assert error.to_payload()["code"] == "FolderUnavailable"


@pytest.mark.parametrize(
    "exc, expected",
    [
        (PermissionError(errno.EACCES, "denied"), PermissionDenied),
        (OSError(errno.ESTALE, "stale handle"), FolderUnavailable),
        (OSError(errno.EIO, "io"), FolderUnavailable),
        (OSError(errno.ENOSPC, "disk full"), IOFailure),
    ],
)
def test_classify_os_error_taxonomy(exc: OSError, expected: type) -> None:
    error = classify_os_error(exc, "/some/path")

    assert isinstance(error, expected)
    payload = error.to_payload()
    assert set(payload) >= {"code", "message", "recoverable"}
