"""Best-effort launches of the OS file manager, default apps and Praat."""
from __future__ import annotations

import logging
import os
import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

LOGGER = logging.getLogger("patientvault.integrations.launcher")


@dataclass(slots=True)
class LaunchResult:
    success: bool
    error: Optional[str] = None
    fallback_used: bool = False
    path: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"success": self.success}
        if self.error:
            payload["error"] = self.error
        if self.fallback_used:
            payload["fallbackUsed"] = True
        return payload


def _open_command(path: str) -> Optional[List[str]]:
    if sys.platform == "darwin":
        return ["open", path]
    if os.name == "nt":
        return None
    return ["xdg-open", path]


def _spawn(cmd: Sequence[str], *, cwd: Optional[str] = None) -> None:
    kwargs: Dict[str, Any] = {
        "stdin": subprocess.DEVNULL,
        "stdout": subprocess.DEVNULL,
        "stderr": subprocess.DEVNULL,
        "close_fds": True,
        "cwd": cwd,
    }
    if os.name == "nt":
        kwargs["creationflags"] = getattr(subprocess, "DETACHED_PROCESS", 0) | getattr(
            subprocess, "CREATE_NEW_PROCESS_GROUP", 0
        )
    else:
        kwargs["start_new_session"] = True
    subprocess.Popen(list(cmd), **kwargs)


def open_path(path: str | os.PathLike[str]) -> LaunchResult:
    """Hand *path* to the OS (file manager for folders, default app for files)."""

    target = str(path)
    if not os.path.exists(target):
        return LaunchResult(success=False, error=f"path does not exist: {target}")
    try:
        command = _open_command(target)
        if command is None:
            os.startfile(target)  # type: ignore[attr-defined]
        else:
            _spawn(command)
    except OSError as exc:
        LOGGER.warning("Unable to open %s: %s", target, exc)
        return LaunchResult(success=False, error=str(exc))
    return LaunchResult(success=True, path=target)


def open_file_or_folder(path: str | os.PathLike[str]) -> LaunchResult:
    """Open *path* with its default app, falling back to its folder."""

    result = open_path(path)
    if result.success:
        return result
    parent = Path(path).parent
    if not parent.is_dir():
        return result
    fallback = open_path(parent)
    if fallback.success:
        LOGGER.info("Opened containing folder %s instead of %s", parent, path)
        return LaunchResult(success=True, fallback_used=True, path=str(parent))
    return LaunchResult(success=False, error=result.error or fallback.error)


def is_executable(path: str | os.PathLike[str]) -> bool:
    candidate = Path(path)
    if not candidate.is_file():
        return False
    if os.name == "nt":
        return candidate.suffix.lower() in {".exe", ".bat", ".cmd", ".com"}
    return os.access(candidate, os.X_OK)


def praat_command(praat_path: str, audio_paths: Sequence[str]) -> List[str]:
    cmd = [praat_path]
    for audio in audio_paths:
        cmd.extend(["--open", audio])
    return cmd


def launch_praat(praat_path: str, audio_paths: Sequence[str]) -> LaunchResult:
    """Start Praat detached with every file in *audio_paths* opened."""

    if not praat_path or not is_executable(praat_path):
        return LaunchResult(success=False, error=f"Praat executable not found: {praat_path or '<unset>'}")
    missing = [audio for audio in audio_paths if not Path(audio).is_file()]
    if not audio_paths:
        return LaunchResult(success=False, error="no audio files given")
    if missing:
        return LaunchResult(success=False, error=f"audio file not found: {missing[0]}")
    try:
        _spawn(praat_command(praat_path, audio_paths), cwd=str(Path(audio_paths[0]).parent))
    except OSError as exc:
        LOGGER.warning("Unable to launch Praat %s: %s", praat_path, exc)
        return LaunchResult(success=False, error=str(exc))
    LOGGER.info("Launched Praat with %d file(s)", len(audio_paths))
    return LaunchResult(success=True)


__all__ = [
    "LaunchResult",
    "is_executable",
    "launch_praat",
    "open_file_or_folder",
    "open_path",
    "praat_command",
]
