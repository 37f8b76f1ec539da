from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, Iterator, Mapping, Tuple

# ``None``: leaf value, anything goes. A set lists the keys a section may hold.
_ALLOWED_STRUCTURE: Dict[str, Any] = {
    "version": None,
    "theme": None,
    "locale": None,
    "praatPath": None,
    "defaultPatientCard": None,
    "shownTabs": None,
    "storage": {"stats_ttl_s", "default_root_name"},
    "media": {
        "page_size",
        "max_page_size",
        "video_dir",
        "audio_dir",
        "probe_audio",
        "probe_timeout_s",
        "ignore",
        "recorded_audio_exts",
    },
    "api": {"host", "port", "api_key", "cors_origins"},
}

_SECTION_TYPES: Dict[str, Tuple[type, ...]] = {
    "storage": (dict,),
    "media": (dict,),
    "api": (dict,),
    "shownTabs": (list,),
}


@dataclass(slots=True)
class SettingsValidator:
    schema: Mapping[str, Any]

    def unknown_keys(self, payload: Mapping[str, Any]) -> Iterable[str]:
        return sorted(self._iter_unknown(payload))

    def mistyped_sections(self, payload: Mapping[str, Any]) -> Iterable[str]:
        return sorted(
            key
            for key, expected in _SECTION_TYPES.items()
            if key in payload and not isinstance(payload[key], expected)
        )

    def _iter_unknown(self, payload: Mapping[str, Any]) -> Iterator[str]:
        for key, value in payload.items():
            if key not in self.schema:
                yield key
                continue
            allowed = self.schema[key]
            if not allowed or not isinstance(value, Mapping):
                continue
            yield from (f"{key}.{sub}" for sub in value if sub not in allowed)


SETTINGS_VALIDATOR = SettingsValidator(_ALLOWED_STRUCTURE)

__all__ = ["SETTINGS_VALIDATOR", "SettingsValidator"]
