"""Derived per-root statistics (patient count and total size)."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import List

import robust

LOGGER = logging.getLogger("patientvault.storage.stats")


@dataclass(slots=True)
class RootStats:
    patient_count: int = 0
    total_size: int = 0
    available: bool = True


def _walk_size(start: str) -> int:
    total = 0
    stack: List[str] = [start]
    while stack:
        current = stack.pop()
        try:
            with os.scandir(current) as iterator:
                for entry in iterator:
                    try:
                        if entry.is_dir(follow_symlinks=False):
                            stack.append(entry.path)
                        elif entry.is_file(follow_symlinks=False):
                            total += int(entry.stat(follow_symlinks=False).st_size)
                    except OSError as exc:
                        LOGGER.debug("stat failed for %s: %s", entry.path, exc)
        except OSError as exc:
            if robust.is_transient(exc):
                raise
            LOGGER.debug("skipping unreadable folder %s: %s", current, exc)
    return total


def compute_root_stats(root: Path) -> RootStats:
    """Count immediate subfolders of *root* and sum file sizes below it.

    A root that is missing on disk reports ``available=False`` with zero
    counts; partial failures inside the tree are skipped.
    """

    if not root.is_dir():
        return RootStats(available=False)
    patients = 0
    total = 0
    try:
        with os.scandir(root) as iterator:
            entries = list(iterator)
    except OSError as exc:
        LOGGER.warning("Unable to list storage root %s: %s", root, exc)
        return RootStats(available=False)
    for entry in entries:
        try:
            if entry.is_dir(follow_symlinks=False):
                if not robust.is_hidden(entry):
                    patients += 1
                total += _walk_size(entry.path)
            elif entry.is_file(follow_symlinks=False):
                total += int(entry.stat(follow_symlinks=False).st_size)
        except OSError as exc:
            LOGGER.debug("stats skipped %s: %s", entry.path, exc)
    return RootStats(patient_count=patients, total_size=total, available=True)


__all__ = ["RootStats", "compute_root_stats"]
