from __future__ import annotations

import asyncio
import base64
import json
from pathlib import Path

import pytest

from api.rpc import Channel, RpcDispatcher, UnknownChannel
from api.service import PatientService
from media.probe import AudioProbe

PATIENT = "Doe_John_1970-01-01"
VISIT = "2024-05-06"


@pytest.fixture
def dispatcher(service: PatientService) -> RpcDispatcher:
    return RpcDispatcher(service)


def test_success_envelope(dispatcher: RpcDispatcher) -> None:
    created = dispatcher.dispatch("patient:new", [PATIENT, VISIT, {"doctor": "Dr. A"}])
    meta = dispatcher.dispatch("patient:getMeta", [PATIENT])

    assert created == {"ok": True, "result": None}
    assert meta["ok"] is True
    assert meta["result"]["doctor"] == "Dr. A"


def test_failure_envelope_for_missing_patient(dispatcher: RpcDispatcher) -> None:
    envelope = dispatcher.dispatch("patient:counts", ["Nobody"])

    assert envelope["ok"] is False
    assert envelope["error"]["code"] == "NotFound"
    assert envelope["error"]["recoverable"] is False


@pytest.mark.parametrize(
    "channel, args",
    [
        ("patient:getMeta", []),
        ("patient:getMeta", ["a/b"]),
        ("patient:getMeta", [PATIENT, "extra"]),
        ("patient:clipsDetailed", [PATIENT, -1, 10]),
        ("patient:clipsDetailed", [PATIENT, 0, 501]),
        ("patient:clipsDetailed", [PATIENT, 0, True]),
        ("patient:new", [PATIENT, "06/05/2024"]),
        ("patient:setMeta", [PATIENT, ["not", "an", "object"]]),
        ("patient:getAppointment", [f"{PATIENT}/{VISIT}/video"]),
        ("db:storagePaths:setActive", ["1"]),
        ("dict:add", ["nurses", "N"]),
        ("patient:saveRecordedAudio", [PATIENT, VISIT, "%%%not-base64%%%", "take"]),
    ],
)
def test_invalid_arguments(dispatcher: RpcDispatcher, channel: str, args: list) -> None:
    envelope = dispatcher.dispatch(channel, args)

    assert envelope["ok"] is False
    assert envelope["error"]["code"] == "InvalidArgument"


def test_unknown_channel(dispatcher: RpcDispatcher) -> None:
    with pytest.raises(UnknownChannel):
        dispatcher.dispatch("patient:delete", [PATIENT])
    with pytest.raises(UnknownChannel):
        asyncio.run(dispatcher.call("nope"))


def test_stray_value_error_is_an_internal_failure(dispatcher: RpcDispatcher) -> None:
    def broken() -> None:
        int("not a number")

    dispatcher.channels["debug:broken"] = Channel("debug:broken", broken)
    envelope = dispatcher.dispatch("debug:broken", [])

    assert envelope["ok"] is False
    assert envelope["error"]["code"] == "IOFailure"
    assert "internal error" in envelope["error"]["message"]


def test_undecodable_settings_file_does_not_block_calls(working_dir: Path) -> None:
    working_dir.mkdir(parents=True)
    (working_dir / "settings.json").write_bytes(b'{"locale": "\xff\xfe"}')
    dispatcher = RpcDispatcher(PatientService(working_dir, probe=AudioProbe(enabled=False)))

    created = dispatcher.dispatch("patient:new", [PATIENT, VISIT])
    projects = dispatcher.dispatch("getProjects", [])

    assert created == {"ok": True, "result": None}
    assert [item["folder"] for item in projects["result"]] == [PATIENT]


def test_set_active_with_unknown_id(dispatcher: RpcDispatcher) -> None:
    envelope = dispatcher.dispatch("db:storagePaths:setActive", [999])

    assert envelope["error"]["code"] == "NotFound"


def test_dictionary_add_is_idempotent(dispatcher: RpcDispatcher) -> None:
    dispatcher.dispatch("dict:add", ["doctors", "Dr. A"])
    dispatcher.dispatch("dict:add", ["doctors", "Dr. A"])

    assert dispatcher.dispatch("dict:get")["result"]["doctors"] == ["Dr. A"]


def test_save_recorded_audio_accepts_base64(dispatcher: RpcDispatcher) -> None:
    dispatcher.dispatch("patient:new", [PATIENT, VISIT])
    encoded = base64.b64encode(b"RIFFdata").decode("ascii")

    envelope = dispatcher.dispatch("patient:saveRecordedAudio", [PATIENT, VISIT, encoded, "voice"])
    by_bytes = dispatcher.dispatch("patient:saveRecordedAudio", [PATIENT, None, list(b"RIFF"), "voice.wav"])

    assert envelope["result"]["success"] is True
    assert Path(envelope["result"]["filePath"]).read_bytes() == b"RIFFdata"
    assert Path(by_bytes["result"]["filePath"]).name == "voice (1).wav"


def test_paging_through_channels(dispatcher: RpcDispatcher) -> None:
    dispatcher.dispatch("patient:new", [PATIENT, VISIT])

    page = dispatcher.dispatch("patient:clipsDetailed", [PATIENT, 0, 100])
    more = dispatcher.dispatch("patient:loadMoreVideos", [PATIENT, VISIT, 0])

    assert page["result"] == {"clips": [], "total": 0, "hasMore": False, "offset": 0, "limit": 100}
    assert more["result"]["count"] == 0


def test_calls_are_logged_to_jsonl(dispatcher: RpcDispatcher, working_dir: Path) -> None:
    dispatcher.dispatch("getProjects")
    dispatcher.dispatch("patient:getMeta", ["Nobody"])

    lines = (working_dir / "logs" / "rpc.jsonl").read_text(encoding="utf-8").splitlines()
    events = [json.loads(line) for line in lines]

    assert [event["channel"] for event in events] == ["getProjects", "patient:getMeta"]
    assert events[0]["ok"] is True
    assert events[1]["code"] == "NotFound"
    assert all(event["event"] == "rpc" and "duration_ms" in event for event in events)


def test_async_call_runs_the_handler(dispatcher: RpcDispatcher) -> None:
    envelope = asyncio.run(dispatcher.call("db:storagePaths:getAll", [True]))

    assert envelope["ok"] is True
    assert len(envelope["result"]) == 1


def test_channel_table_lists_every_operation(dispatcher: RpcDispatcher) -> None:
    names = set(dispatcher.channel_names())

    assert {
        "scanUsb",
        "getProjects",
        "patient:clipsDetailed",
        "patient:loadMoreAudio",
        "patient:saveRecordedAudio",
        "db:storagePaths:add",
        "shownTabs:set",
        "praat:openFile",
    } <= names
