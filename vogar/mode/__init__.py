"""
Execution modes: where actions are built and run.
"""

from .archive import ArchiveMode, ArchiveModeOptions
from .base import Mode, ModeOptions
from .device import DeviceMode, DeviceModeOptions
from .host import HostMode, HostModeOptions

__all__ = [
    "Mode",
    "ModeOptions",
    "HostMode",
    "HostModeOptions",
    "DeviceMode",
    "DeviceModeOptions",
    "ArchiveMode",
    "ArchiveModeOptions",
]
