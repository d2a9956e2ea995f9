"""
Android support for DeviceMode: the adb wrapper used to stage actions on a
device and forward monitor ports back to the host.
"""

from .errors import AdbError, AndroidDeviceNotFoundError
from .sdk import AndroidSdk

__all__ = [
    "AndroidSdk",
    "AdbError",
    "AndroidDeviceNotFoundError",
]
