"""
Errors raised while talking to an Android device over adb.
"""

from typing import Optional

from vogar.executor.errors import HarnessError


class AndroidDeviceNotFoundError(HarnessError):
    """No usable device: the requested serial is absent, or nothing is online."""

    def __init__(self, serial: Optional[str] = None):
        self.serial = serial
        if serial is None:
            message = "No online Android device found by adb"
        else:
            message = f"Android device {serial} is not online"
        super().__init__(message)


class AdbError(HarnessError):
    """An adb invocation failed, timed out or could not be started."""

    def __init__(self, args: str, reason: str):
        self.args_line = args
        self.reason = reason
        super().__init__(f"adb failed: {args}\n{reason}")
