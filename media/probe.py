"""Best-effort detection of audio tracks in video containers via ffprobe."""
from __future__ import annotations

import json
import logging
import shutil
import subprocess
import threading
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

LOGGER = logging.getLogger("patientvault.media.probe")


@dataclass(slots=True)
class AudioStream:
    codec: Optional[str]
    channels: Optional[int]


@dataclass(slots=True)
class ProbeResult:
    ok: bool
    audio_streams: List[AudioStream] = field(default_factory=list)
    has_video: bool = False
    error: Optional[str] = None
    reason: Optional[str] = None

    @property
    def has_audio(self) -> bool:
        return self.ok and bool(self.audio_streams)


def _safe_int(value: object) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(float(value))  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None


def run_ffprobe(path: str, *, timeout: float) -> ProbeResult:
    """Execute ffprobe for *path* and report its streams."""

    ffprobe_path = shutil.which("ffprobe")
    if not ffprobe_path:
        return ProbeResult(ok=False, error="ffprobe not found", reason="missing_tool")

    cmd = [
        ffprobe_path,
        "-v",
        "error",
        "-show_streams",
        "-of",
        "json",
        path,
    ]
    try:
        proc = subprocess.run(
            cmd,
            check=False,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            timeout=max(1.0, float(timeout)),
        )
    except subprocess.TimeoutExpired:
        return ProbeResult(ok=False, error="ffprobe timeout", reason="probe_timeout")
    except OSError as exc:
        return ProbeResult(ok=False, error=f"ffprobe failed: {exc}", reason="probe_error")

    if proc.returncode != 0:
        error_msg = proc.stderr.strip() or proc.stdout.strip() or "ffprobe error"
        return ProbeResult(ok=False, error=error_msg, reason="probe_error")

    try:
        parsed = json.loads(proc.stdout or "{}")
    except json.JSONDecodeError as exc:
        return ProbeResult(ok=False, error=f"invalid ffprobe output: {exc}", reason="probe_error")

    audio_streams: List[AudioStream] = []
    has_video = False
    streams = parsed.get("streams") if isinstance(parsed.get("streams"), list) else []
    for stream in streams:
        if not isinstance(stream, dict):
            continue
        codec_type = str(stream.get("codec_type") or "").lower()
        codec_name = stream.get("codec_name") or stream.get("codec_long_name")
        if codec_type == "video":
            has_video = True
        elif codec_type == "audio":
            audio_streams.append(
                AudioStream(
                    codec=str(codec_name) if codec_name else None,
                    channels=_safe_int(stream.get("channels")),
                )
            )
    return ProbeResult(ok=True, audio_streams=audio_streams, has_video=has_video)


_CacheKey = Tuple[str, int, int]


class AudioProbe:
    """Answer "does this clip carry sound" and remember the answer.

    Results are cached per (path, size, mtime) so a file rewritten in place is
    probed again. Any failure reads as ``False``.
    """

    def __init__(self, *, enabled: bool = True, timeout_s: float = 8.0, cache_size: int = 4096) -> None:
        self.enabled = bool(enabled)
        self.timeout_s = max(1.0, float(timeout_s))
        self._cache: "OrderedDict[_CacheKey, bool]" = OrderedDict()
        self._cache_size = max(16, int(cache_size))
        self._lock = threading.Lock()
        self._warned_missing = False

    def has_audio(self, path: str, *, size: int, mtime_ns: int) -> bool:
        if not self.enabled:
            return False
        key = (path, int(size), int(mtime_ns))
        with self._lock:
            cached = self._cache.get(key)
            if cached is not None:
                self._cache.move_to_end(key)
                return cached
        result = run_ffprobe(path, timeout=self.timeout_s)
        if not result.ok:
            if result.reason == "missing_tool":
                if not self._warned_missing:
                    LOGGER.warning("ffprobe not found on PATH; hasAudio will be reported as false")
                    self._warned_missing = True
                return False
            LOGGER.debug("hasAudio probe failed for %s: %s", path, result.error)
        answer = result.has_audio
        with self._lock:
            self._cache[key] = answer
            while len(self._cache) > self._cache_size:
                self._cache.popitem(last=False)
        return answer


__all__ = [
    "AudioProbe",
    "AudioStream",
    "ProbeResult",
    "run_ffprobe",
]
