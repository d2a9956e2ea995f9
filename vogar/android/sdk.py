"""
ADB wrapper.

The device-side file system and port forwarding operations that DeviceMode
needs, each a single adb invocation.
"""

import subprocess
import time
from typing import List, Optional

from loguru import logger

from vogar.android.errors import AdbError, AndroidDeviceNotFoundError
from vogar.executor.command import Command
from vogar.executor.errors import CommandFailedError


class AndroidSdk:
    """
    Runs adb commands against one device.

    Example:
        sdk = AndroidSdk(serial=None)     # first online device
        sdk.wait_for_device()
        sdk.mkdirs("/data/local/tmp/vogar")
    """

    def __init__(
        self,
        adb_path: str = "adb",
        serial: Optional[str] = None,
        command_timeout_seconds: float = 120.0,
    ) -> None:
        """
        Initialize the adb wrapper.

        Args:
            adb_path: Path to ADB executable (default: "adb").
            serial: Device serial. The first online device is used if omitted.
            command_timeout_seconds: Upper bound for a single adb command.
        """
        self._adb_path = adb_path
        self._serial = serial
        self._timeout = command_timeout_seconds

    @property
    def serial(self) -> str:
        if self._serial is None:
            devices = self.list_devices()
            if not devices:
                raise AndroidDeviceNotFoundError()
            self._serial = devices[0]
            logger.info(f"Using Android device {self._serial}")
        return self._serial

    def list_devices(self) -> List[str]:
        """Get list of online Android device IDs via ADB."""
        lines = self._run([self._adb_path, "devices"])
        device_ids = []
        for line in lines[1:]:  # Skip header
            if "\t" in line:
                parts = line.split("\t")
                device_id = parts[0].strip()
                status = parts[1].strip() if len(parts) > 1 else ""
                if device_id and status == "device":
                    device_ids.append(device_id)
        return device_ids

    def adb_command(self, *args: str) -> List[str]:
        """Arguments of an adb invocation targeting this device."""
        return [self._adb_path, "-s", self.serial, *args]

    def _run(self, args: List[str]) -> List[str]:
        try:
            return Command(args).execute(timeout_seconds=self._timeout)
        except CommandFailedError as e:
            raise AdbError(" ".join(args), "\n".join(e.output_lines)) from e
        except subprocess.TimeoutExpired as e:
            raise AdbError(" ".join(args), f"timed out after {self._timeout}s") from e
        except FileNotFoundError as e:
            raise AdbError(" ".join(args), f"adb not found at {self._adb_path}") from e

    def shell(self, command: str) -> List[str]:
        return self._run(self.adb_command("shell", command))

    def wait_for_device(self) -> None:
        self._run(self.adb_command("wait-for-device"))

    def wait_for_non_empty_directory(self, path: str, timeout_seconds: float) -> None:
        """Wait until ``path`` exists on the device and lists something."""
        deadline = time.monotonic() + timeout_seconds
        while time.monotonic() < deadline:
            try:
                if any(line.strip() for line in self.shell(f"ls {path}")):
                    return
            except AdbError as e:
                logger.debug(f"waiting for {path}: {e}")
            time.sleep(1)
        raise AdbError(f"ls {path}", f"still empty after {timeout_seconds}s")

    def mkdirs(self, path: str) -> None:
        self.shell(f"mkdir -p {path}")

    def rm(self, path: str) -> None:
        self.shell(f"rm -rf {path}")

    def push(self, local: str, remote: str) -> None:
        logger.debug(f"push {local} to {remote}")
        self._run(self.adb_command("push", local, remote))

    def forward_tcp(self, local_port: int, device_port: int) -> None:
        self._run(self.adb_command("forward", f"tcp:{local_port}", f"tcp:{device_port}"))

    def remove_forward(self, local_port: int) -> None:
        self._run(self.adb_command("forward", "--remove", f"tcp:{local_port}"))
