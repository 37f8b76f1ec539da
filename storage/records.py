"""Patient and appointment metadata files."""
from __future__ import annotations

import json
import logging
import os
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import robust
from core.atomic import read_json, write_json_atomic
from core.errors import CorruptRecord, FolderUnavailable, InvalidArgument, classify_os_error

from .resolver import is_appointment_name

LOGGER = logging.getLogger("patientvault.storage.records")

PATIENT_FILE = "patient.config"
APPOINTMENT_FILE = "appointment.config"


def _text(value: Any) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


def _doctor_list(value: Any) -> List[str]:
    # older files stored a single doctor string
    if isinstance(value, str):
        return [value] if value else []
    if isinstance(value, (list, tuple)):
        return [_text(item) for item in value if _text(item)]
    return []


@dataclass(slots=True)
class PatientRecord:
    doctor: str = ""
    diagnosis: str = ""
    patient_card: str = ""
    extras: Dict[str, Any] = field(default_factory=dict)

    _KNOWN = ("doctor", "diagnosis", "patientCard")

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "PatientRecord":
        return cls(
            doctor=_text(data.get("doctor")),
            diagnosis=_text(data.get("diagnosis")),
            patient_card=_text(data.get("patientCard")),
            extras={key: value for key, value in data.items() if key not in cls._KNOWN},
        )

    def to_payload(self) -> Dict[str, Any]:
        payload = dict(self.extras)
        payload.update(doctor=self.doctor, diagnosis=self.diagnosis, patientCard=self.patient_card)
        return payload


@dataclass(slots=True)
class AppointmentRecord:
    date: str
    doctors: List[str] = field(default_factory=list)
    diagnosis: str = ""
    notes: str = ""
    extras: Dict[str, Any] = field(default_factory=dict)

    _KNOWN = ("date", "doctors", "diagnosis", "notes")

    @property
    def doctor(self) -> str:
        return self.doctors[0] if self.doctors else ""

    @classmethod
    def from_mapping(cls, date: str, data: Mapping[str, Any]) -> "AppointmentRecord":
        return cls(
            date=date,
            doctors=_doctor_list(data.get("doctors", data.get("doctor"))),
            diagnosis=_text(data.get("diagnosis")),
            notes=_text(data.get("notes")),
            extras={key: value for key, value in data.items() if key not in cls._KNOWN and key != "doctor"},
        )

    def to_payload(self) -> Dict[str, Any]:
        """File contents; the date lives in the folder name."""

        payload = dict(self.extras)
        payload.update(doctors=list(self.doctors), diagnosis=self.diagnosis, notes=self.notes)
        return payload

    def to_summary(self) -> Dict[str, Any]:
        return {
            "date": self.date,
            "doctor": self.doctor,
            "doctors": list(self.doctors),
            "diagnosis": self.diagnosis,
            "notes": self.notes,
        }


class RecordStore:
    """Read and write ``patient.config`` / ``appointment.config`` files.

    A missing file reads as the default record. A file that exists but does not
    hold a JSON object raises :class:`CorruptRecord`, on reads and on writes,
    so a damaged record is never silently replaced.
    """

    def __init__(self) -> None:
        self._write_lock = threading.Lock()

    def _read_object(self, path: Path) -> Optional[Dict[str, Any]]:
        try:
            data = read_json(path)
        except (FileNotFoundError, NotADirectoryError):
            return None
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise CorruptRecord(f"{path.name} is not valid JSON: {exc}", path=path) from exc
        except OSError as exc:
            if robust.is_transient(exc):
                raise FolderUnavailable(f"unable to read {path}: {exc}", path=path) from exc
            LOGGER.warning("Unreadable record %s treated as empty: %s", path, exc)
            return None
        if not isinstance(data, dict):
            raise CorruptRecord(f"{path.name} does not hold an object", path=path)
        return data

    def _write_object(self, path: Path, payload: Dict[str, Any]) -> None:
        try:
            write_json_atomic(path, payload)
        except OSError as exc:
            raise classify_os_error(exc, path) from exc

    # ------------------------------------------------------------------
    # patient.config
    def get_patient(self, patient_dir: Path) -> PatientRecord:
        data = self._read_object(patient_dir / PATIENT_FILE)
        return PatientRecord.from_mapping(data or {})

    def set_patient(self, patient_dir: Path, patch: Mapping[str, Any]) -> PatientRecord:
        if not isinstance(patch, Mapping):
            raise InvalidArgument("patient data must be an object")
        target = patient_dir / PATIENT_FILE
        with self._write_lock:
            current = self._read_object(target) or {}
            merged = dict(current)
            merged.update(patch)
            record = PatientRecord.from_mapping(merged)
            self._write_object(target, record.to_payload())
        return record

    def create_patient(self, patient_dir: Path, initial: Optional[Mapping[str, Any]] = None) -> PatientRecord:
        """Write ``patient.config`` for a new patient unless one exists."""

        target = patient_dir / PATIENT_FILE
        with self._write_lock:
            existing = self._read_object(target)
            if existing is not None:
                return PatientRecord.from_mapping(existing)
            record = PatientRecord.from_mapping(dict(initial or {}))
            self._write_object(target, record.to_payload())
        return record

    # ------------------------------------------------------------------
    # appointment.config
    def get_appointment(self, appointment_dir: Path) -> AppointmentRecord:
        data = self._read_object(appointment_dir / APPOINTMENT_FILE)
        return AppointmentRecord.from_mapping(appointment_dir.name, data or {})

    def set_appointment(self, appointment_dir: Path, patch: Mapping[str, Any]) -> AppointmentRecord:
        if not isinstance(patch, Mapping):
            raise InvalidArgument("appointment data must be an object")
        target = appointment_dir / APPOINTMENT_FILE
        with self._write_lock:
            current = self._read_object(target) or {}
            merged = dict(current)
            merged.update(patch)
            record = AppointmentRecord.from_mapping(appointment_dir.name, merged)
            self._write_object(target, record.to_payload())
        return record

    def create_appointment(
        self, appointment_dir: Path, initial: Optional[Mapping[str, Any]] = None
    ) -> AppointmentRecord:
        target = appointment_dir / APPOINTMENT_FILE
        with self._write_lock:
            existing = self._read_object(target)
            if existing is not None:
                return AppointmentRecord.from_mapping(appointment_dir.name, existing)
            record = AppointmentRecord.from_mapping(appointment_dir.name, dict(initial or {}))
            self._write_object(target, record.to_payload())
        return record

    def appointment_dates(self, patient_dir: Path) -> List[str]:
        """Appointment folder names under *patient_dir*, oldest first."""

        try:
            with os.scandir(patient_dir) as iterator:
                names = [entry.name for entry in iterator if entry.is_dir() and is_appointment_name(entry.name)]
        except OSError as exc:
            raise classify_os_error(exc, patient_dir) from exc
        return sorted(names)

    def latest_appointment(self, patient_dir: Path) -> Optional[str]:
        dates = self.appointment_dates(patient_dir)
        return dates[-1] if dates else None

    def list_appointments(self, patient_dir: Path) -> List[AppointmentRecord]:
        """Appointments with a readable record file, sorted by date ascending."""

        records: List[AppointmentRecord] = []
        for date in self.appointment_dates(patient_dir):
            appointment_dir = patient_dir / date
            try:
                data = self._read_object(appointment_dir / APPOINTMENT_FILE)
            except CorruptRecord as exc:
                LOGGER.warning("Skipping appointment %s: %s", appointment_dir, exc.message)
                continue
            if data is None:
                continue
            records.append(AppointmentRecord.from_mapping(date, data))
        return records


__all__ = [
    "APPOINTMENT_FILE",
    "AppointmentRecord",
    "PATIENT_FILE",
    "PatientRecord",
    "RecordStore",
]
