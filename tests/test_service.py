from __future__ import annotations

import os
import shutil
import stat
from pathlib import Path

import pytest

from api.service import PatientService, parse_patient_folder
from core.errors import DuplicatePatient, FolderUnavailable, InvalidArgument, NotFound
from core.settings import merge_defaults
from integrations import launcher
from integrations.chooser import StaticChooser
from media.probe import AudioProbe

from conftest import make_clips

PATIENT = "Doe_John_1970-01-01"
VISIT = "2024-05-06"


def _video_dir(service: PatientService, folder: str = PATIENT, date: str = VISIT) -> Path:
    return service.resolver.resolve(folder).path / date / "video"


def test_default_root_is_bootstrapped(service: PatientService, working_dir: Path) -> None:
    (root,) = service.storage_roots()

    assert root["path"] == str(working_dir / "patients")
    assert root["isActive"] is True
    assert service.active_storage_root()["id"] == root["id"]


def test_new_patient_layout_and_records(service: PatientService) -> None:
    service.new_patient(PATIENT, VISIT, {"doctor": "Dr. A", "diagnosis": "J38.0"})

    patient_dir = service.resolver.resolve(PATIENT).path
    assert (patient_dir / VISIT / "video").is_dir()
    assert service.get_patient_meta(PATIENT)["doctor"] == "Dr. A"
    assert service.list_appointments(PATIENT) == [
        {"date": VISIT, "doctor": "Dr. A", "doctors": ["Dr. A"], "diagnosis": "J38.0", "notes": ""}
    ]

    with pytest.raises(DuplicatePatient):
        service.new_patient(PATIENT, VISIT)
    with pytest.raises(InvalidArgument):
        service.new_patient("Roe/Jane", VISIT)
    with pytest.raises(InvalidArgument):
        service.new_patient("Roe_Jane", "2024-02-30")


def test_manual_folder_reads_default_meta_and_round_trips(service: PatientService, working_dir: Path) -> None:
    (working_dir / "patients" / "Manual_Folder").mkdir()

    assert service.get_patient_meta("Manual_Folder") == {"doctor": "", "diagnosis": "", "patientCard": ""}

    service.set_patient_meta("Manual_Folder", {"doctor": "Dr. B", "patientCard": "C-1"})
    meta = service.get_patient_meta("Manual_Folder")
    assert (meta["doctor"], meta["patientCard"]) == ("Dr. B", "C-1")


def test_appointment_records(service: PatientService) -> None:
    service.new_patient(PATIENT, VISIT)
    service.new_appointment(PATIENT, "2024-06-01", {"doctors": ["Dr. C"], "notes": "follow-up"})

    appointment = service.get_appointment(f"{PATIENT}/2024-06-01")
    assert appointment["date"] == "2024-06-01"
    assert appointment["notes"] == "follow-up"

    service.set_appointment(f"{PATIENT}\\{VISIT}", {"diagnosis": "R49.0"})
    assert service.get_appointment(f"{PATIENT}/{VISIT}")["diagnosis"] == "R49.0"
    assert [item["date"] for item in service.list_appointments(PATIENT)] == [VISIT, "2024-06-01"]

    with pytest.raises(NotFound):
        service.set_appointment(f"{PATIENT}/2020-01-01", {"notes": "x"})


def test_clips_detailed_pages_shift_by_files_removed_between_calls(service: PatientService) -> None:
    service.new_patient(PATIENT, VISIT)
    clips = make_clips(_video_dir(service), 250)
    expected = [clip.name for clip in reversed(clips)]

    names = []
    for offset in (0, 100, 200):
        page = service.clips_detailed(PATIENT, offset=offset, limit=100)
        assert page["total"] == 250
        names.extend(item["fileName"] for item in page["clips"])
    assert names == expected
    assert page["hasMore"] is False
    assert len(page["clips"]) == 50

    clips[10].unlink()
    after = service.clips_detailed(PATIENT, offset=0, limit=100)
    assert after["total"] == 249
    assert after["hasMore"] is True
    shifted = service.clips_detailed(PATIENT, offset=100, limit=100)
    assert shifted["total"] == 249
    assert len(shifted["clips"]) == 100
    assert shifted["hasMore"] is True
    assert [item["fileName"] for item in shifted["clips"]] == expected[100:200]

    # removing a file ahead of the offset moves the boundary by one entry
    clips[-1].unlink()
    shifted = service.clips_detailed(PATIENT, offset=100, limit=100)
    assert shifted["total"] == 248
    assert [item["fileName"] for item in shifted["clips"]] == expected[101:201]
    assert service.counts(PATIENT) == {"videoCount": 248}


def test_clips_detailed_defaults_to_latest_appointment(service: PatientService) -> None:
    service.new_patient(PATIENT, VISIT)
    service.new_appointment(PATIENT, "2024-07-01")
    make_clips(_video_dir(service, date="2024-07-01"), 3)
    make_clips(_video_dir(service), 5)

    assert service.clips_detailed(PATIENT)["total"] == 3
    assert service.clips_detailed(PATIENT, appointment=VISIT)["total"] == 5
    assert len(service.clips(PATIENT, VISIT)["video"]) == 5


def test_limit_above_maximum_is_rejected(service: PatientService) -> None:
    service.new_patient(PATIENT, VISIT)

    with pytest.raises(InvalidArgument):
        service.clips_detailed(PATIENT, offset=0, limit=501)


def test_load_more_after_new_file(service: PatientService) -> None:
    service.new_patient(PATIENT, VISIT)
    make_clips(_video_dir(service), 30)

    first = service.load_more_videos(PATIENT)
    second = service.load_more_videos(PATIENT, delivered=first["delivered"])
    assert (first["count"], second["count"], second["delivered"]) == (12, 12, 24)

    make_clips(_video_dir(service), 1, start=100)
    third = service.load_more_videos(PATIENT, delivered=second["delivered"])
    assert third["total"] == 31
    assert (third["count"], third["delivered"], third["hasMore"]) == (7, 31, False)


def test_missing_media_folder_lists_empty(service: PatientService, working_dir: Path) -> None:
    (working_dir / "patients" / "Bare").mkdir()

    assert service.counts("Bare") == {"videoCount": 0}
    assert service.clips_detailed("Bare")["clips"] == []
    assert service.audio_files("Bare") == []
    assert service.load_more_audio("Bare")["total"] == 0


def test_removed_root_reports_folder_unavailable(service: PatientService, tmp_path: Path) -> None:
    usb = tmp_path / "usb"
    usb.mkdir()
    added = service.add_storage_root(str(usb))
    service.set_active_storage_root(added["storagePath"]["id"])
    service.new_patient("Usb_Patient", VISIT)
    shutil.rmtree(usb)

    with pytest.raises(FolderUnavailable):
        service.counts("Usb_Patient")
    with pytest.raises(FolderUnavailable):
        service.new_patient("Another", VISIT)
    assert service.get_projects() == []


def test_duplicate_patient_across_roots(service: PatientService, tmp_path: Path) -> None:
    root_a = tmp_path / "A"
    root_b = tmp_path / "B"
    root_a.mkdir()
    root_b.mkdir()
    a = service.add_storage_root(str(root_a))["storagePath"]
    b = service.add_storage_root(str(root_b))["storagePath"]

    service.set_active_storage_root(b["id"])
    service.new_patient("P001", VISIT)
    service.set_active_storage_root(a["id"])

    with pytest.raises(DuplicatePatient):
        service.new_patient("P001", VISIT)
    (project,) = [item for item in service.get_projects() if item["folder"] == "P001"]
    assert project["storageRootId"] == b["id"]
    assert not (root_a / "P001").exists()


def test_new_patient_refused_while_a_root_is_unmounted(
    service: PatientService, working_dir: Path, tmp_path: Path
) -> None:
    default_id = service.storage_roots()[0]["id"]
    usb = tmp_path / "usb"
    usb.mkdir()
    added = service.add_storage_root(str(usb))["storagePath"]
    service.set_active_storage_root(added["id"])
    service.new_patient("P001", VISIT)
    service.set_active_storage_root(default_id)

    usb.rename(tmp_path / "usb_away")
    with pytest.raises(FolderUnavailable):
        service.new_patient("P001", VISIT)
    (tmp_path / "usb_away").rename(usb)

    assert not (working_dir / "patients" / "P001").exists()
    with pytest.raises(DuplicatePatient):
        service.new_patient("P001", VISIT)


def test_get_projects_summary(service: PatientService) -> None:
    service.new_patient(PATIENT, VISIT, {"doctor": "Dr. A", "patientCard": "K-9"})
    service.new_appointment(PATIENT, "2024-08-01")

    (project,) = service.get_projects()

    assert project["name"] == "Doe John"
    assert project["birthdate"] == "1970-01-01"
    assert project["latestAppointmentDate"] == "2024-08-01"
    assert project["patientCard"] == "K-9"
    assert parse_patient_folder("Solo") == ("Solo", "")


def test_scan_usb_imports_sessions(service: PatientService, tmp_path: Path) -> None:
    assert service.scan_usb() == []

    usb = tmp_path / "usb"
    session = usb / f"{PATIENT}_cam_{VISIT}_091500"
    session.mkdir(parents=True)
    (session / "a.mp4").write_bytes(b"a")

    projects = service.scan_usb(str(usb))

    assert [item["folder"] for item in projects] == [PATIENT]
    assert (_video_dir(service) / "a.mp4").exists()
    assert (service.resolver.resolve(PATIENT).path / VISIT / "audio").is_dir()


def test_save_recorded_audio_never_overwrites(service: PatientService) -> None:
    service.new_patient(PATIENT, VISIT)

    first = service.save_recorded_audio(PATIENT, VISIT, b"RIFF1", "take")
    second = service.save_recorded_audio(PATIENT, VISIT, b"RIFF2", "take")

    assert first["success"] is True
    assert Path(first["filePath"]).name == "take.wav"
    assert Path(second["filePath"]).name == "take (1).wav"
    assert Path(first["filePath"]).read_bytes() == b"RIFF1"
    assert sorted(item["fileName"] for item in service.audio_files(PATIENT, VISIT)) == ["take (1).wav", "take.wav"]

    missing = service.save_recorded_audio("Nobody", None, b"x", "take")
    assert missing["success"] is False
    assert missing["code"] == "NotFound"


def test_import_and_custom_tabs(working_dir: Path, tmp_path: Path) -> None:
    source = tmp_path / "incoming"
    source.mkdir()
    (source / "scan.pdf").write_bytes(b"%PDF")
    (source / "extra.mp4").write_bytes(b"v")
    chooser = StaticChooser(files=[str(source / "scan.pdf")])
    service = PatientService(working_dir, settings=merge_defaults({}), chooser=chooser, probe=AudioProbe(enabled=False))
    service.new_patient(PATIENT, VISIT)

    copied = service.select_and_copy_files(PATIENT, "documents", VISIT)
    assert copied["success"] is True
    assert copied["count"] == 1
    assert chooser.prompts == ["Select files"]
    (document,) = service.custom_tab_files(PATIENT, "documents", VISIT)
    assert document["fileType"] == "document"

    imported = service.import_videos(PATIENT, VISIT, sources=[str(source / "extra.mp4")])
    assert imported["count"] == 1
    again = service.import_videos(PATIENT, VISIT, sources=[str(source / "extra.mp4")])
    assert (again["count"], again["skipped"]) == (0, 1)

    with pytest.raises(InvalidArgument):
        service.custom_tab_files(PATIENT, "../escape")


def test_copy_in_canceled_by_chooser(service: PatientService) -> None:
    service.new_patient(PATIENT, VISIT)

    assert service.import_audio(PATIENT, VISIT) == {"success": False, "count": 0, "canceled": True}


def test_add_storage_root_failures_are_in_band(service: PatientService, tmp_path: Path) -> None:
    assert service.add_storage_root() == {"success": False, "canceled": True}

    failure = service.add_storage_root(str(tmp_path / "missing"))
    assert failure["success"] is False
    assert failure["error"] == "InvalidPath"

    duplicate = service.add_storage_root(str(service.registry.get_active().path))
    assert duplicate["error"] == "DuplicateRoot"


def test_open_file_falls_back_to_folder(service: PatientService, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    opened = []
    target = tmp_path / "clip.mp4"
    target.write_bytes(b"x")

    def _fake_open(path):
        opened.append(str(path))
        if str(path) == str(target):
            return launcher.LaunchResult(success=False, error="no handler")
        return launcher.LaunchResult(success=True, path=str(path))

    monkeypatch.setattr(launcher, "open_path", _fake_open)

    result = service.open_file_in_default_app(str(target))

    assert result == {"success": True, "fallbackUsed": True}
    assert opened == [str(target), str(tmp_path)]
    assert service.open_folder("Nobody")["error"] == "NotFound"


@pytest.mark.skipif(os.name == "nt", reason="POSIX executable bit")
def test_praat_launch(service: PatientService, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    praat = tmp_path / "praat"
    praat.write_text("#!/bin/sh\n", encoding="utf-8")
    praat.chmod(praat.stat().st_mode | stat.S_IXUSR)
    audio = tmp_path / "a.wav"
    audio.write_bytes(b"RIFF")
    spawned = []
    monkeypatch.setattr(launcher, "_spawn", lambda cmd, cwd=None: spawned.append((list(cmd), cwd)))

    assert service.praat_select_executable(str(praat)) == {"success": True, "path": str(praat)}
    assert service.praat_select_executable(str(audio))["success"] is False
    assert service.praat_open_file(str(praat), [str(audio)]) == {"success": True}
    assert spawned == [([str(praat), "--open", str(audio)], str(tmp_path))]
    assert service.praat_open_file(str(praat), [str(tmp_path / "gone.wav")])["success"] is False


def test_settings_session_and_tabs(service: PatientService) -> None:
    updated = service.set_settings({"theme": "dark", "defaultPatientCard": "CARD", "storage": {"x": 1}})
    assert updated["theme"] == "dark"
    assert "storage" not in updated
    assert service.get_settings()["theme"] == "dark"

    service.new_patient(PATIENT, VISIT)
    assert service.get_patient_meta(PATIENT)["patientCard"] == "CARD"

    assert service.get_session() == {"currentDoctor": ""}
    assert service.set_session({"currentDoctor": "Dr. A"})["currentDoctor"] == "Dr. A"

    tabs = service.set_shown_tabs([{"name": "Scans", "folder": "scans"}])
    assert service.get_shown_tabs() == tabs
    with pytest.raises(InvalidArgument):
        service.set_shown_tabs([{"name": "Bad", "folder": "a/b"}])


def test_dictionaries(service: PatientService) -> None:
    service.add_dictionary_entry("doctors", "Dr. A")
    service.add_dictionary_entry("doctors", "Dr. A")

    assert service.get_dictionaries()["doctors"] == ["Dr. A"]
