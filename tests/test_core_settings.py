"""Tests for core.settings helpers."""

from __future__ import annotations

import json
from pathlib import Path

from core.settings import SETTINGS_VERSION, load_settings, merge_defaults, save_settings, update_settings


def test_merge_defaults_includes_engine_sections() -> None:
    merged = merge_defaults({})

    assert merged["version"] == SETTINGS_VERSION
    assert merged["media"]["page_size"] == 12
    assert merged["media"]["max_page_size"] == 500
    assert merged["media"]["video_dir"] == "video"
    assert merged["storage"]["stats_ttl_s"] == 300
    assert merged["api"]["host"] == "127.0.0.1"
    assert [tab["folder"] for tab in merged["shownTabs"]] == ["video", "audio"]


def test_merge_defaults_keeps_user_values_and_fills_gaps() -> None:
    merged = merge_defaults({"theme": "dark", "media": {"page_size": 24}, "storage": "broken"})

    assert merged["theme"] == "dark"
    assert merged["media"]["page_size"] == 24
    assert merged["media"]["audio_dir"] == "audio"
    assert merged["storage"]["default_root_name"] == "patients"


def test_load_settings_tolerates_invalid_json(tmp_path: Path) -> None:
    (tmp_path / "settings.json").write_text("{not json", encoding="utf-8")

    loaded = load_settings(tmp_path)

    assert loaded["locale"] == "en"
    assert loaded["media"]["probe_audio"] is True


def test_load_settings_tolerates_undecodable_bytes(tmp_path: Path) -> None:
    (tmp_path / "settings.json").write_bytes(b'{"locale": "\xff\xfe"}')

    loaded = load_settings(tmp_path)

    assert loaded["locale"] == "en"


def test_unknown_keys_are_reported(tmp_path: Path) -> None:
    payload = {"theme": "dark", "legacyFlag": True, "media": {"page_size": 6, "thumbs": 3}}
    (tmp_path / "settings.json").write_text(json.dumps(payload), encoding="utf-8")

    loaded = load_settings(tmp_path)

    assert loaded["media"]["page_size"] == 6
    report = json.loads((tmp_path / "logs" / "settings_unknown.json").read_text(encoding="utf-8"))
    assert report["unknown"] == ["legacyFlag", "media.thumbs"]


def test_update_settings_persists(tmp_path: Path) -> None:
    updated = update_settings(tmp_path, praatPath="/opt/praat")

    assert updated["praatPath"] == "/opt/praat"
    on_disk = json.loads((tmp_path / "settings.json").read_text(encoding="utf-8"))
    assert on_disk["praatPath"] == "/opt/praat"
    assert on_disk["media"]["page_size"] == 12

    save_settings({"theme": "dark"}, tmp_path)
    assert load_settings(tmp_path)["theme"] == "dark"
    assert not list(tmp_path.glob(".settings.json.*.tmp"))
