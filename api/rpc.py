"""Channel dispatcher: argument validation, routing and error envelopes."""
from __future__ import annotations

import asyncio
import base64
import binascii
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from core.errors import IOFailure, InvalidArgument, StorageError, classify_os_error
from core.logging_utils import EventLogger
from storage.resolver import validate_date, validate_folder_name

from .service import PatientService

LOGGER = logging.getLogger("patientvault.api.rpc")

Check = Callable[[Any], Any]


class UnknownChannel(LookupError):
    pass


@dataclass(frozen=True, slots=True)
class Param:
    name: str
    check: Check
    required: bool = True


@dataclass(frozen=True, slots=True)
class Channel:
    name: str
    handler: Callable[..., Any]
    params: Tuple[Param, ...] = ()


# argument checks -----------------------------------------------------------


def folder_arg(value: Any) -> str:
    return validate_folder_name(value)


def optional_date(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return validate_date(value, label="appointment")


def date_arg(value: Any) -> str:
    return validate_date(value)


def string_arg(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidArgument("expected a non-empty string")
    return value


def optional_string(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return string_arg(value)


def mapping_arg(value: Any) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        raise InvalidArgument("expected an object")
    return value


def optional_mapping(value: Any) -> Optional[Mapping[str, Any]]:
    return None if value is None else mapping_arg(value)


def list_arg(value: Any) -> List[Any]:
    if not isinstance(value, list):
        raise InvalidArgument("expected a list")
    return value


def _int(value: Any, label: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        if isinstance(value, float) and value.is_integer():
            return int(value)
        raise InvalidArgument(f"{label} must be an integer")
    return value


def id_arg(value: Any) -> int:
    return _int(value, "id")


def offset_arg(value: Any) -> Optional[int]:
    if value is None:
        return None
    offset = _int(value, "offset")
    if offset < 0:
        raise InvalidArgument("offset must be >= 0")
    return offset


def bool_arg(value: Any) -> bool:
    if value is None:
        return False
    if not isinstance(value, bool):
        raise InvalidArgument("expected a boolean")
    return value


def paths_arg(value: Any) -> List[str]:
    items = [value] if isinstance(value, str) else value
    if not isinstance(items, list) or not items:
        raise InvalidArgument("expected a path or a non-empty list of paths")
    return [string_arg(item) for item in items]


def optional_paths(value: Any) -> Optional[List[str]]:
    return None if value is None else paths_arg(value)


def buffer_arg(value: Any) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    if isinstance(value, list) and all(isinstance(item, int) and 0 <= item < 256 for item in value):
        return bytes(value)
    if isinstance(value, str):
        try:
            return base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise InvalidArgument("buffer must be base64 encoded") from exc
    raise InvalidArgument("buffer must be base64 encoded")


def filename_arg(value: Any) -> str:
    if not isinstance(value, str):
        raise InvalidArgument("filename must be a string")
    return value


def _required(name: str, check: Check) -> Param:
    return Param(name, check, True)


def _optional(name: str, check: Check) -> Param:
    return Param(name, check, False)


class RpcDispatcher:
    """Route ``(channel, args)`` calls to :class:`PatientService` methods.

    Every call returns an envelope: ``{"ok": True, "result": ...}`` or
    ``{"ok": False, "error": {"code", "message", "recoverable"}}``.
    """

    def __init__(self, service: PatientService, *, event_log: Optional[EventLogger] = None) -> None:
        self.service = service
        self.event_log = event_log or EventLogger(service.working_dir, "rpc.jsonl", logger_name="patientvault.rpc")
        self.channels: Dict[str, Channel] = {channel.name: channel for channel in self._build_channels()}

    def _limit_arg(self, value: Any) -> Optional[int]:
        if value is None:
            return None
        limit = _int(value, "limit")
        max_page = self.service.config.max_page_size
        if limit < 1 or limit > max_page:
            raise InvalidArgument(f"limit must be between 1 and {max_page}")
        return limit

    def _build_channels(self) -> List[Channel]:
        svc = self.service
        folder = _required("folder", folder_arg)
        appointment = _optional("appointment", optional_date)
        sources = _optional("sources", optional_paths)
        return [
            Channel("scanUsb", svc.scan_usb, (_optional("usbPath", optional_string),)),
            Channel("getProjects", svc.get_projects),
            Channel("patient:getMeta", svc.get_patient_meta, (folder,)),
            Channel("patient:setMeta", svc.set_patient_meta, (folder, _required("data", mapping_arg))),
            Channel("patient:appointments", svc.list_appointments, (folder,)),
            Channel("patient:getAppointment", svc.get_appointment, (_required("path", string_arg),)),
            Channel(
                "patient:setAppointment",
                svc.set_appointment,
                (_required("path", string_arg), _required("data", mapping_arg)),
            ),
            Channel("patient:counts", svc.counts, (folder, appointment)),
            Channel("patient:clips", svc.clips, (folder, appointment)),
            Channel(
                "patient:clipsDetailed",
                svc.clips_detailed,
                (folder, _optional("offset", offset_arg), _optional("limit", self._limit_arg), appointment),
            ),
            Channel(
                "patient:loadMoreVideos",
                svc.load_more_videos,
                (folder, appointment, _optional("delivered", offset_arg)),
            ),
            Channel(
                "patient:loadMoreAudio",
                svc.load_more_audio,
                (folder, appointment, _optional("delivered", offset_arg)),
            ),
            Channel("patient:importVideos", svc.import_videos, (folder, appointment, sources)),
            Channel("patient:importAudio", svc.import_audio, (folder, appointment, sources)),
            Channel(
                "patient:new",
                svc.new_patient,
                (_required("base", folder_arg), _required("date", date_arg), _optional("metadata", optional_mapping)),
            ),
            Channel(
                "patient:newAppointment",
                svc.new_appointment,
                (folder, _required("date", date_arg), _optional("data", optional_mapping)),
            ),
            Channel("patient:openFolder", svc.open_folder, (folder,)),
            Channel("db:storagePaths:getAll", svc.storage_roots, (_optional("refresh", bool_arg),)),
            Channel("db:storagePaths:getActive", svc.active_storage_root),
            Channel("db:storagePaths:add", svc.add_storage_root, (_optional("path", optional_string),)),
            Channel("db:storagePaths:setActive", svc.set_active_storage_root, (_required("id", id_arg),)),
            Channel("db:storagePaths:openInExplorer", svc.open_in_explorer, (_required("path", string_arg),)),
            Channel("settings:get", svc.get_settings),
            Channel("settings:set", svc.set_settings, (_required("patch", mapping_arg),)),
            Channel("session:get", svc.get_session),
            Channel("session:set", svc.set_session, (_required("patch", mapping_arg),)),
            Channel("shownTabs:get", svc.get_shown_tabs),
            Channel("shownTabs:set", svc.set_shown_tabs, (_required("tabs", list_arg),)),
            Channel("dict:get", svc.get_dictionaries),
            Channel(
                "dict:add",
                svc.add_dictionary_entry,
                (_required("type", string_arg), _required("value", string_arg)),
            ),
            Channel(
                "getCustomTabFiles",
                svc.custom_tab_files,
                (folder, _required("tabFolder", folder_arg), appointment),
            ),
            Channel(
                "selectAndCopyFiles",
                svc.select_and_copy_files,
                (folder, _required("tabFolder", folder_arg), appointment, sources),
            ),
            Channel("openFileInDefaultApp", svc.open_file_in_default_app, (_required("path", string_arg),)),
            Channel(
                "patient:audioFiles",
                svc.audio_files,
                (folder, appointment, _optional("offset", offset_arg), _optional("limit", self._limit_arg)),
            ),
            Channel("patient:openAudioFolder", svc.open_audio_folder, (folder, appointment)),
            Channel(
                "patient:saveRecordedAudio",
                svc.save_recorded_audio,
                (
                    folder,
                    _required("appointment", optional_date),
                    _required("buffer", buffer_arg),
                    _required("filename", filename_arg),
                ),
            ),
            Channel("praat:selectExecutable", svc.praat_select_executable, (_optional("path", optional_string),)),
            Channel(
                "praat:openFile",
                svc.praat_open_file,
                (_required("praatPath", string_arg), _required("audioPaths", paths_arg)),
            ),
        ]

    def channel_names(self) -> List[str]:
        return sorted(self.channels)

    def _bind(self, channel: Channel, args: Sequence[Any]) -> List[Any]:
        if len(args) > len(channel.params):
            raise InvalidArgument(f"{channel.name} takes at most {len(channel.params)} argument(s), got {len(args)}")
        bound: List[Any] = []
        for index, param in enumerate(channel.params):
            if index >= len(args):
                if param.required:
                    raise InvalidArgument(f"{channel.name}: missing argument {param.name!r}")
                break
            try:
                bound.append(param.check(args[index]))
            except InvalidArgument as exc:
                raise InvalidArgument(f"{channel.name}: {param.name}: {exc.message}") from exc
        return bound

    def dispatch(self, channel_name: str, args: Sequence[Any] = ()) -> Dict[str, Any]:
        """Validate and run one call synchronously."""

        channel = self.channels.get(channel_name)
        if channel is None:
            raise UnknownChannel(channel_name)
        start = time.perf_counter()
        try:
            bound = self._bind(channel, list(args or ()))
            result = channel.handler(*bound)
        except StorageError as exc:
            return self._failed(channel_name, exc, start)
        except OSError as exc:
            return self._failed(channel_name, classify_os_error(exc), start)
        except Exception as exc:
            LOGGER.exception("Unhandled error in %s", channel_name)
            return self._failed(channel_name, IOFailure(f"internal error: {exc}"), start)
        duration_ms = round((time.perf_counter() - start) * 1000, 1)
        self.event_log.event(event="rpc", ok=True, channel=channel_name, duration_ms=duration_ms)
        return {"ok": True, "result": result}

    def _failed(self, channel_name: str, error: StorageError, start: float) -> Dict[str, Any]:
        duration_ms = round((time.perf_counter() - start) * 1000, 1)
        self.event_log.event(
            event="rpc",
            ok=False,
            channel=channel_name,
            duration_ms=duration_ms,
            code=error.code,
            err_msg=error.message,
        )
        return {"ok": False, "error": error.to_payload()}

    async def call(self, channel_name: str, args: Sequence[Any] = ()) -> Dict[str, Any]:
        """Run :meth:`dispatch` on a worker thread."""

        if channel_name not in self.channels:
            raise UnknownChannel(channel_name)
        return await asyncio.to_thread(self.dispatch, channel_name, args)


__all__ = ["Channel", "Param", "RpcDispatcher", "UnknownChannel"]
