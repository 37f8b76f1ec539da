"""OS integrations: file manager, default applications, Praat and pickers."""

from .chooser import Chooser, NullChooser, StaticChooser
from .launcher import LaunchResult, launch_praat, open_file_or_folder, open_path

__all__ = [
    "Chooser",
    "LaunchResult",
    "NullChooser",
    "StaticChooser",
    "launch_praat",
    "open_file_or_folder",
    "open_path",
]
