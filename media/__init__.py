"""Media listing, classification, probing and paging for patient folders."""

from .classify import file_type_for
from .pagination import LoadMoreResult, Page, Pagination, load_more, paginate, resolve_pagination
from .probe import AudioProbe
from .scanner import ListedFile, MediaAsset, MediaScanner, list_media

__all__ = [
    "AudioProbe",
    "ListedFile",
    "LoadMoreResult",
    "MediaAsset",
    "MediaScanner",
    "Page",
    "Pagination",
    "file_type_for",
    "list_media",
    "load_more",
    "paginate",
    "resolve_pagination",
]
