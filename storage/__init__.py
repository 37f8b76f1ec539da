"""Storage roots, folder resolution and record files."""

from .dictionaries import DICTIONARY_TYPES, DictionaryStore
from .records import AppointmentRecord, PatientRecord, RecordStore
from .registry import StorageRegistry, StorageRoot
from .resolver import PathResolver, Resolution, ResolutionScope

__all__ = [
    "AppointmentRecord",
    "DICTIONARY_TYPES",
    "DictionaryStore",
    "PathResolver",
    "PatientRecord",
    "RecordStore",
    "Resolution",
    "ResolutionScope",
    "StorageRegistry",
    "StorageRoot",
]
