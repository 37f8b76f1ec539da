from __future__ import annotations

import os
from pathlib import Path
from typing import List

import pytest

from api.service import PatientService
from core.settings import merge_defaults
from media.probe import AudioProbe

BASE_NS = 1_700_000_000 * 1_000_000_000


def make_clips(directory: Path, count: int, *, prefix: str = "clip", ext: str = ".mp4", start: int = 0) -> List[Path]:
    """Create *count* files whose mtimes increase with their index."""

    directory.mkdir(parents=True, exist_ok=True)
    created: List[Path] = []
    for index in range(start, start + count):
        path = directory / f"{prefix}{index:04d}{ext}"
        path.write_bytes(b"x" * (index % 7 + 1))
        stamp = BASE_NS + index * 1_000_000_000
        os.utime(path, ns=(stamp, stamp))
        created.append(path)
    return created


@pytest.fixture
def working_dir(tmp_path: Path) -> Path:
    return tmp_path / "work"


@pytest.fixture
def service(working_dir: Path) -> PatientService:
    return PatientService(working_dir, settings=merge_defaults({}), probe=AudioProbe(enabled=False))
