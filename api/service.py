"""Method-per-operation service behind the RPC channels."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Sequence, Tuple

from core.errors import (
    CorruptRecord,
    DuplicatePatient,
    FolderUnavailable,
    InvalidPath,
    NotFound,
    StorageError,
    classify_os_error,
)
from core.paths import (
    ensure_working_dir_structure,
    get_default_root_path,
    get_dictionaries_path,
    get_registry_path,
    safe_label,
)
from core.settings import load_settings
from integrations import launcher
from integrations.chooser import Chooser, NullChooser
from media import importer
from media.classify import VIDEO
from media.pagination import load_more, paginate, resolve_pagination
from media.probe import AudioProbe
from media.scanner import ListedFile, MediaScanner
from storage.app_config import AppConfig
from storage.dictionaries import DictionaryStore
from storage.records import RecordStore
from storage.registry import StorageRegistry, StorageRoot
from storage.resolver import (
    PathResolver,
    Resolution,
    ResolutionScope,
    list_patient_folders,
    validate_date,
    validate_folder_name,
)

LOGGER = logging.getLogger("patientvault.api.service")

VIDEO_KINDS: FrozenSet[str] = frozenset({VIDEO})


@dataclass(slots=True)
class ServiceSettings:
    page_size: int = 12
    max_page_size: int = 500
    video_dir: str = "video"
    audio_dir: str = "audio"
    probe_audio: bool = True
    probe_timeout_s: float = 8.0
    ignore: Tuple[str, ...] = ()
    recorded_audio_exts: Tuple[str, ...] = (".wav",)
    stats_ttl_s: float = 300.0
    default_root_name: str = "patients"
    default_patient_card: Optional[str] = None

    @classmethod
    def from_settings(cls, settings: Mapping[str, Any]) -> "ServiceSettings":
        media = settings.get("media") or {}
        storage = settings.get("storage") or {}
        return cls(
            page_size=int(media.get("page_size", 12)),
            max_page_size=int(media.get("max_page_size", 500)),
            video_dir=str(media.get("video_dir") or "video"),
            audio_dir=str(media.get("audio_dir") or "audio"),
            probe_audio=bool(media.get("probe_audio", True)),
            probe_timeout_s=float(media.get("probe_timeout_s", 8.0)),
            ignore=tuple(media.get("ignore") or ()),
            recorded_audio_exts=tuple(media.get("recorded_audio_exts") or (".wav",)),
            stats_ttl_s=float(storage.get("stats_ttl_s", 300.0)),
            default_root_name=str(storage.get("default_root_name") or "patients"),
            default_patient_card=settings.get("defaultPatientCard"),
        )


def _failure(exc: StorageError) -> Dict[str, Any]:
    return {"success": False, "error": exc.code, "message": exc.message}


def parse_patient_folder(folder: str) -> Tuple[str, str]:
    """Split ``Surname_Name_YYYY-MM-DD`` into display name and birth date."""

    parts = folder.split("_")
    surname = parts[0] if parts else ""
    name = parts[1] if len(parts) > 1 else ""
    birthdate = parts[2] if len(parts) > 2 else ""
    return f"{surname} {name}".strip(), birthdate


@dataclass(slots=True)
class _MediaTarget:
    resolution: Resolution
    directory: Path

    @property
    def root_path(self) -> Path:
        return Path(self.resolution.root.path)


class PatientService:
    """Engine operations used by the RPC dispatcher.

    One instance owns the registry, so the active root is shared by every
    resolver and handler created from it.
    """

    def __init__(
        self,
        working_dir: Path,
        *,
        settings: Optional[Mapping[str, Any]] = None,
        chooser: Optional[Chooser] = None,
        probe: Optional[AudioProbe] = None,
    ) -> None:
        self.working_dir = Path(working_dir)
        ensure_working_dir_structure(self.working_dir)
        self.settings_payload = dict(settings) if settings is not None else load_settings(self.working_dir)
        self.config = ServiceSettings.from_settings(self.settings_payload)
        self.registry = StorageRegistry(get_registry_path(self.working_dir), stats_ttl_s=self.config.stats_ttl_s)
        default_root = self.registry.ensure_default(
            get_default_root_path(self.working_dir, self.config.default_root_name)
        )
        if default_root is not None:
            LOGGER.info("Registered default storage root %s", default_root.path)
        self.resolver = PathResolver(self.registry)
        self.records = RecordStore()
        self.dictionaries = DictionaryStore(get_dictionaries_path(self.working_dir))
        self.app_config = AppConfig(self.working_dir)
        self.chooser: Chooser = chooser or NullChooser()
        self.probe = probe or AudioProbe(enabled=self.config.probe_audio, timeout_s=self.config.probe_timeout_s)
        self.scanner = MediaScanner(self.probe, ignore=self.config.ignore)

    # ------------------------------------------------------------------
    # helpers
    def _appointment_base(self, resolution: Resolution, appointment: Optional[str]) -> Path:
        if appointment:
            return resolution.path / validate_date(appointment, label="appointment")
        latest = self.records.latest_appointment(resolution.path)
        return resolution.path / latest if latest else resolution.path

    def _media_target(
        self,
        folder: str,
        subdir: str,
        appointment: Optional[str] = None,
    ) -> _MediaTarget:
        resolution = self.resolver.resolve(folder)
        base = self._appointment_base(resolution, appointment)
        return _MediaTarget(resolution=resolution, directory=base / subdir)

    def _tab_target(self, folder: str, tab_folder: str, appointment: Optional[str]) -> _MediaTarget:
        validate_folder_name(tab_folder, label="tab folder")
        resolution = self.resolver.resolve(folder)
        base = resolution.path / validate_date(appointment, label="appointment") if appointment else resolution.path
        return _MediaTarget(resolution=resolution, directory=base / tab_folder)

    def _listing(self, target: _MediaTarget, *, kinds: Optional[FrozenSet[str]] = None) -> List[ListedFile]:
        try:
            return self.scanner.listing(target.directory, kinds=kinds)
        except FileNotFoundError as exc:
            if target.resolution.path.is_dir():
                return []
            raise classify_os_error(exc, target.directory, root=target.root_path) from exc
        except OSError as exc:
            raise classify_os_error(exc, target.directory, root=target.root_path) from exc

    def _ensure_dir(self, directory: Path, root: Path) -> None:
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise classify_os_error(exc, directory, root=root) from exc

    def _describe(self, entries: Sequence[ListedFile], *, probe_audio: bool) -> List[Dict[str, Any]]:
        return [asset.to_payload() for asset in self.scanner.describe(entries, probe_audio=probe_audio)]

    # ------------------------------------------------------------------
    # projects
    def _project_summary(self, root: StorageRoot, patient_dir: Path) -> Dict[str, Any]:
        name, birthdate = parse_patient_folder(patient_dir.name)
        try:
            record = self.records.get_patient(patient_dir)
        except CorruptRecord as exc:
            LOGGER.warning("Project list uses defaults for %s: %s", patient_dir, exc.message)
            record = None
        try:
            latest = self.records.latest_appointment(patient_dir) or ""
        except StorageError as exc:
            LOGGER.warning("Unable to list appointments of %s: %s", patient_dir, exc.message)
            latest = ""
        return {
            "name": name,
            "birthdate": birthdate,
            "folder": patient_dir.name,
            "latestAppointmentDate": latest,
            "doctor": record.doctor if record else "",
            "diagnosis": record.diagnosis if record else "",
            "patientCard": record.patient_card if record else "",
            "storageRootId": root.id,
        }

    def get_projects(self) -> List[Dict[str, Any]]:
        projects: List[Dict[str, Any]] = []
        for root in self.registry.roots():
            if not Path(root.path).is_dir():
                LOGGER.warning("Storage root %s is unavailable; its patients are not listed", root.path)
                continue
            try:
                folders = list_patient_folders(root)
            except StorageError as exc:
                LOGGER.warning("Unable to list storage root %s: %s", root.path, exc.message)
                continue
            for patient_dir in folders:
                projects.append(self._project_summary(root, patient_dir))
        return projects

    def scan_usb(self, usb_path: Optional[str] = None) -> List[Dict[str, Any]]:
        """Import recorder sessions from a USB folder, then return the project list."""

        chosen = usb_path or self.chooser.choose_directory("Select USB recorder folder")
        if not chosen:
            return self.get_projects()
        usb_dir = Path(chosen)
        if not usb_dir.is_dir():
            raise InvalidPath(f"USB folder does not exist: {usb_dir}", path=usb_dir)
        try:
            sessions = importer.find_usb_sessions(usb_dir)
        except OSError as exc:
            raise classify_os_error(exc, usb_dir) from exc
        imported = 0
        scope = self.resolver.scope()
        for session in sessions:
            patient_dir = self._patient_dir_for_import(session.patient_base, scope)
            appointment_dir = patient_dir / session.rec_date
            self._ensure_dir(appointment_dir / self.config.audio_dir, patient_dir.parent)
            self.records.create_patient(patient_dir)
            self.records.create_appointment(appointment_dir)
            result = importer.copy_session(session, appointment_dir / self.config.video_dir)
            if result is not None:
                imported += result.count
        LOGGER.info("USB import from %s: %d session(s), %d file(s) copied", usb_dir, len(sessions), imported)
        return self.get_projects()

    def _patient_dir_for_import(self, patient_base: str, scope: ResolutionScope) -> Path:
        validate_folder_name(patient_base)
        with self.registry.lock:
            try:
                return scope.resolve(patient_base).path
            except NotFound:
                pass
            active = self._require_active()
            patient_dir = Path(active.path) / patient_base
            self._ensure_dir(patient_dir, Path(active.path))
            return patient_dir

    def _require_active(self) -> StorageRoot:
        active = self.registry.get_active()
        if active is None:
            raise NotFound("no active storage root")
        if not Path(active.path).is_dir():
            raise FolderUnavailable(f"active storage root is not reachable: {active.path}", path=active.path)
        return active

    # ------------------------------------------------------------------
    # patient records
    def get_patient_meta(self, folder: str) -> Dict[str, Any]:
        return self.records.get_patient(self.resolver.resolve(folder).path).to_payload()

    def set_patient_meta(self, folder: str, data: Mapping[str, Any]) -> None:
        self.records.set_patient(self.resolver.resolve(folder).path, data)

    def list_appointments(self, folder: str) -> List[Dict[str, Any]]:
        patient_dir = self.resolver.resolve(folder).path
        return [record.to_summary() for record in self.records.list_appointments(patient_dir)]

    def _appointment_dir(self, appointment_path: str) -> Path:
        _, appointment_dir = self.resolver.resolve_appointment(appointment_path)
        return appointment_dir

    def get_appointment(self, appointment_path: str) -> Dict[str, Any]:
        record = self.records.get_appointment(self._appointment_dir(appointment_path))
        payload = record.to_payload()
        payload["date"] = record.date
        return payload

    def set_appointment(self, appointment_path: str, data: Mapping[str, Any]) -> None:
        appointment_dir = self._appointment_dir(appointment_path)
        if not appointment_dir.is_dir():
            raise NotFound(f"appointment not found: {appointment_path}", path=appointment_dir)
        self.records.set_appointment(appointment_dir, data)

    def new_patient(self, base: str, date: str, metadata: Optional[Mapping[str, Any]] = None) -> None:
        validate_folder_name(base, label="patient folder")
        validate_date(date)
        patient_record: Dict[str, Any] = {"patientCard": self.config.default_patient_card or ""}
        appointment_record: Dict[str, Any] = {}
        if metadata:
            patient_record.update(
                doctor=metadata.get("doctor") or "",
                diagnosis=metadata.get("diagnosis") or "",
            )
            if metadata.get("patientCard"):
                patient_record["patientCard"] = metadata["patientCard"]
            doctor = metadata.get("doctor")
            appointment_record = {
                "doctors": [doctor] if doctor else [],
                "diagnosis": metadata.get("diagnosis") or "",
                "notes": "",
            }
        with self.registry.lock:
            active = self._require_active()
            self.resolver.ensure_unique(base)
            patient_dir = Path(active.path) / base
            try:
                patient_dir.mkdir()
            except FileExistsError as exc:
                raise DuplicatePatient(f"patient folder already exists: {patient_dir}", path=patient_dir) from exc
            except OSError as exc:
                raise classify_os_error(exc, patient_dir, root=Path(active.path)) from exc
        self._ensure_dir(patient_dir / date / self.config.video_dir, patient_dir)
        self.records.create_patient(patient_dir, patient_record)
        self.records.create_appointment(patient_dir / date, appointment_record)
        LOGGER.info("Created patient %s in storage root id=%s", base, active.id)

    def new_appointment(self, folder: str, date: str, data: Optional[Mapping[str, Any]] = None) -> None:
        validate_date(date)
        resolution = self.resolver.resolve(folder)
        appointment_dir = resolution.path / date
        self._ensure_dir(appointment_dir / self.config.video_dir, Path(resolution.root.path))
        if data:
            self.records.set_appointment(appointment_dir, data)
        else:
            self.records.create_appointment(appointment_dir)

    # ------------------------------------------------------------------
    # media
    def counts(self, folder: str, appointment: Optional[str] = None) -> Dict[str, int]:
        target = self._media_target(folder, self.config.video_dir, appointment)
        return {"videoCount": len(self._listing(target, kinds=VIDEO_KINDS))}

    def clips(self, folder: str, appointment: Optional[str] = None) -> Dict[str, List[str]]:
        target = self._media_target(folder, self.config.video_dir, appointment)
        urls = [Path(entry.path).absolute().as_uri() for entry in self._listing(target, kinds=VIDEO_KINDS)]
        return {"video": urls}

    def clips_detailed(
        self,
        folder: str,
        offset: Optional[int] = None,
        limit: Optional[int] = None,
        appointment: Optional[str] = None,
    ) -> Dict[str, Any]:
        """One page of the newest-first video listing.

        The listing is re-read on every call so ``total`` follows the folder as
        it grows or shrinks.
        """

        pagination = resolve_pagination(
            offset,
            limit,
            default_limit=self.config.page_size,
            max_page_size=self.config.max_page_size,
        )
        target = self._media_target(folder, self.config.video_dir, appointment)
        page = paginate(self._listing(target, kinds=VIDEO_KINDS), pagination)
        return {
            "clips": self._describe(page.items, probe_audio=True),
            "total": page.total,
            "hasMore": page.has_more,
            "offset": page.offset,
            "limit": page.limit,
        }

    def _load_more(
        self,
        folder: str,
        subdir: str,
        kinds: Optional[FrozenSet[str]],
        appointment: Optional[str],
        delivered: Optional[int],
    ) -> Dict[str, Any]:
        target = self._media_target(folder, subdir, appointment)
        result = load_more(self._listing(target, kinds=kinds), int(delivered or 0), self.config.page_size)
        return {
            "success": True,
            "count": result.count,
            "delivered": result.delivered,
            "total": result.total,
            "hasMore": result.has_more,
        }

    def load_more_videos(self, folder: str, appointment: Optional[str] = None, delivered: Optional[int] = 0) -> Dict[str, Any]:
        return self._load_more(folder, self.config.video_dir, VIDEO_KINDS, appointment, delivered)

    def load_more_audio(self, folder: str, appointment: Optional[str] = None, delivered: Optional[int] = 0) -> Dict[str, Any]:
        return self._load_more(folder, self.config.audio_dir, None, appointment, delivered)

    def audio_files(
        self,
        folder: str,
        appointment: Optional[str] = None,
        offset: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        target = self._media_target(folder, self.config.audio_dir, appointment)
        entries = self._listing(target)
        if offset is not None or limit is not None:
            pagination = resolve_pagination(
                offset,
                limit,
                default_limit=self.config.page_size,
                max_page_size=self.config.max_page_size,
            )
            entries = paginate(entries, pagination).items
        return self._describe(entries, probe_audio=False)

    def custom_tab_files(self, folder: str, tab_folder: str, appointment: Optional[str] = None) -> List[Dict[str, Any]]:
        target = self._tab_target(folder, tab_folder, appointment)
        return self._describe(self._listing(target), probe_audio=False)

    # ------------------------------------------------------------------
    # copy-in and recording
    def _copy_in(self, target: _MediaTarget, sources: Optional[Sequence[str]], title: str) -> Dict[str, Any]:
        chosen = list(sources) if sources else self.chooser.choose_files(title)
        if not chosen:
            return {"success": False, "count": 0, "canceled": True}
        self._ensure_dir(target.directory, target.root_path)
        result = importer.copy_into(target.directory, chosen)
        LOGGER.info(
            "Copied %d file(s) into %s (skipped=%d failed=%d)",
            result.count,
            target.directory,
            len(result.skipped),
            len(result.failed),
        )
        return {"success": True, "count": result.count, "skipped": len(result.skipped), "failed": len(result.failed)}

    def import_videos(self, folder: str, appointment: Optional[str] = None, sources: Optional[Sequence[str]] = None) -> Dict[str, Any]:
        target = self._media_target(folder, self.config.video_dir, appointment)
        return self._copy_in(target, sources, "Select video files")

    def import_audio(self, folder: str, appointment: Optional[str] = None, sources: Optional[Sequence[str]] = None) -> Dict[str, Any]:
        target = self._media_target(folder, self.config.audio_dir, appointment)
        return self._copy_in(target, sources, "Select audio files")

    def select_and_copy_files(
        self,
        folder: str,
        tab_folder: str,
        appointment: Optional[str] = None,
        sources: Optional[Sequence[str]] = None,
    ) -> Dict[str, Any]:
        return self._copy_in(self._tab_target(folder, tab_folder, appointment), sources, "Select files")

    def save_recorded_audio(self, folder: str, appointment: Optional[str], buffer: bytes, filename: str) -> Dict[str, Any]:
        try:
            target = self._media_target(folder, self.config.audio_dir, appointment)
            self._ensure_dir(target.directory, target.root_path)
            name = importer.ensure_extension(safe_label(filename or ""), self.config.recorded_audio_exts)
            written = importer.write_new_file(target.directory, name, buffer)
        except StorageError as exc:
            LOGGER.warning("Saving recorded audio for %s failed: %s", folder, exc.message)
            return {"success": False, "error": exc.message, "code": exc.code}
        except OSError as exc:
            classified = classify_os_error(exc, folder)
            LOGGER.warning("Saving recorded audio for %s failed: %s", folder, classified.message)
            return {"success": False, "error": classified.message, "code": classified.code}
        LOGGER.info("Saved recorded audio %s (%d bytes)", written, len(buffer))
        return {"success": True, "filePath": str(written)}

    # ------------------------------------------------------------------
    # OS integrations
    def open_folder(self, folder: str) -> Dict[str, Any]:
        try:
            resolution = self.resolver.resolve(folder)
        except StorageError as exc:
            return _failure(exc)
        return launcher.open_path(resolution.path).to_payload()

    def open_audio_folder(self, folder: str, appointment: Optional[str] = None) -> str:
        target = self._media_target(folder, self.config.audio_dir, appointment)
        self._ensure_dir(target.directory, target.root_path)
        result = launcher.open_path(target.directory)
        if not result.success:
            LOGGER.warning("Unable to open audio folder %s: %s", target.directory, result.error)
        return str(target.directory)

    def open_file_in_default_app(self, path: str) -> Dict[str, Any]:
        return launcher.open_file_or_folder(path).to_payload()

    def praat_select_executable(self, path: Optional[str] = None) -> Dict[str, Any]:
        chosen = path or self.chooser.choose_executable("Select Praat executable")
        if not chosen:
            return {"success": False, "path": None}
        if not launcher.is_executable(chosen):
            return {"success": False, "path": None, "error": f"not an executable: {chosen}"}
        return {"success": True, "path": os.path.abspath(chosen)}

    def praat_open_file(self, praat_path: str, audio_paths: Sequence[str]) -> Dict[str, Any]:
        return launcher.launch_praat(praat_path, list(audio_paths)).to_payload()

    # ------------------------------------------------------------------
    # storage roots
    def storage_roots(self, refresh: bool = False) -> List[Dict[str, Any]]:
        return [root.to_payload() for root in self.registry.list_roots(refresh=bool(refresh))]

    def active_storage_root(self) -> Optional[Dict[str, Any]]:
        active = self.registry.get_active()
        return active.to_payload() if active else None

    def add_storage_root(self, path: Optional[str] = None) -> Dict[str, Any]:
        chosen = path or self.chooser.choose_directory("Select storage location")
        if not chosen:
            return {"success": False, "canceled": True}
        try:
            root = self.registry.add_root(chosen)
        except StorageError as exc:
            LOGGER.warning("Adding storage root %s failed: %s", chosen, exc.message)
            return _failure(exc)
        return {"success": True, "storagePath": root.to_payload()}

    def set_active_storage_root(self, root_id: int) -> None:
        self.registry.set_active(root_id)

    def open_in_explorer(self, path: str) -> None:
        result = launcher.open_path(path)
        if not result.success:
            LOGGER.warning("Unable to open %s in the file manager: %s", path, result.error)

    # ------------------------------------------------------------------
    # process-wide stores
    def get_settings(self) -> Dict[str, Any]:
        return self.app_config.get_settings()

    def set_settings(self, patch: Mapping[str, Any]) -> Dict[str, Any]:
        updated = self.app_config.set_settings(patch)
        self.config.default_patient_card = updated.get("defaultPatientCard")
        return updated

    def get_session(self) -> Dict[str, Any]:
        return self.app_config.get_session()

    def set_session(self, patch: Mapping[str, Any]) -> Dict[str, Any]:
        return self.app_config.set_session(patch)

    def get_shown_tabs(self) -> List[Dict[str, str]]:
        return self.app_config.get_shown_tabs()

    def set_shown_tabs(self, tabs: List[Dict[str, str]]) -> List[Dict[str, str]]:
        return self.app_config.set_shown_tabs(tabs)

    def get_dictionaries(self) -> Dict[str, List[str]]:
        return self.dictionaries.get()

    def add_dictionary_entry(self, kind: str, value: str) -> None:
        self.dictionaries.add(kind, value)


__all__ = ["PatientService", "ServiceSettings", "parse_patient_folder"]
