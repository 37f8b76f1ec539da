"""Pluggable file and folder pickers.

The engine runs headless; a host that owns a UI can install a chooser that
shows native dialogs. Every method returns ``None`` when the user cancels.
"""
from __future__ import annotations

from typing import List, Optional, Protocol, Sequence


class Chooser(Protocol):
    def choose_directory(self, title: str) -> Optional[str]:
        ...

    def choose_files(self, title: str, *, extensions: Sequence[str] = ()) -> Optional[List[str]]:
        ...

    def choose_executable(self, title: str) -> Optional[str]:
        ...


class NullChooser:
    """Chooser for headless hosts: every prompt reads as canceled."""

    def choose_directory(self, title: str) -> Optional[str]:
        return None

    def choose_files(self, title: str, *, extensions: Sequence[str] = ()) -> Optional[List[str]]:
        return None

    def choose_executable(self, title: str) -> Optional[str]:
        return None


class StaticChooser:
    """Answer prompts from preset values; used by scripted hosts and tests."""

    def __init__(
        self,
        *,
        directory: Optional[str] = None,
        files: Optional[Sequence[str]] = None,
        executable: Optional[str] = None,
    ) -> None:
        self.directory = directory
        self.files = list(files) if files is not None else None
        self.executable = executable
        self.prompts: List[str] = []

    def choose_directory(self, title: str) -> Optional[str]:
        self.prompts.append(title)
        return self.directory

    def choose_files(self, title: str, *, extensions: Sequence[str] = ()) -> Optional[List[str]]:
        self.prompts.append(title)
        return list(self.files) if self.files is not None else None

    def choose_executable(self, title: str) -> Optional[str]:
        self.prompts.append(title)
        return self.executable


__all__ = ["Chooser", "NullChooser", "StaticChooser"]
