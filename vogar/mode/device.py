"""
Device mode.

Stages actions on an Android device over adb and runs them with the
device's Python interpreter. Monitor ports are forwarded to the host so the
host monitor connects exactly as it does in host mode.
"""

import posixpath
import shlex
from pathlib import Path
from typing import List, Optional

import loguru
from loguru import logger

from vogar.android.sdk import AndroidSdk
from vogar.executor.command import Command
from vogar.executor.types import Action
from vogar.mode.base import Mode, ModeOptions, package_root


class DeviceModeOptions(ModeOptions):
    """Device mode configuration"""

    adb_path: str = "adb"
    device_serial: Optional[str] = None
    runner_dir: str = "/data/local/tmp/vogar"
    device_python: str = "python3"
    first_monitor_port: int = 8787
    num_runners: int = 1
    clean_before: bool = True
    storage_timeout_seconds: float = 300.0


class DeviceMode(Mode):
    """
    Executes actions on an attached Android device.

    Example:
        mode = DeviceMode(DeviceModeOptions(device_serial="emulator-5554"))
        summary = Driver(mode, DriverConfig(num_runners=2)).build_and_run(actions)
    """

    def __init__(
        self,
        options: Optional[DeviceModeOptions] = None,
        sdk: Optional[AndroidSdk] = None,
    ) -> None:
        options = options or DeviceModeOptions()
        super().__init__(options)
        self.options: DeviceModeOptions
        self.sdk = sdk or AndroidSdk(options.adb_path, options.device_serial)
        self._forwarded: List[int] = []

    @property
    def lib_dir(self) -> str:
        return posixpath.join(self.options.runner_dir, "lib")

    def device_action_dir(self, action: Action) -> str:
        return posixpath.join(self.options.runner_dir, "run", action.name)

    def monitor_ports(self) -> List[int]:
        first = self.options.first_monitor_port
        return [first + i for i in range(self.options.num_runners)]

    def _prepare(self) -> None:
        self.sdk.wait_for_device()
        # external storage mounts some time after the device comes online
        self.sdk.wait_for_non_empty_directory(
            posixpath.dirname(self.options.runner_dir),
            self.options.storage_timeout_seconds,
        )
        if self.options.clean_before:
            self.sdk.rm(self.options.runner_dir)
        self._install_runtime()
        for port in self.monitor_ports():
            self.sdk.forward_tcp(port, port)
            self._forwarded.append(port)
        logger.info(f"Device {self.sdk.serial} ready in {self.options.runner_dir}")

    def _install_runtime(self) -> None:
        """Push the packages the target side imports."""
        self.sdk.mkdirs(self.lib_dir)
        # vogar and loguru, both pure Python
        self.sdk.push(str(package_root() / "vogar"), self.lib_dir)
        self.sdk.push(str(Path(loguru.__file__).resolve().parent), self.lib_dir)
        self.search_path.append(self.lib_dir)

    def post_compile(self, action: Action) -> None:
        remote = self.device_action_dir(action)
        self.sdk.mkdirs(remote)
        # push the contents, not the directory itself
        self.sdk.push(f"{self.action_dir(action)}/.", remote)

    def create_action_command(
        self,
        action: Action,
        skip_past: Optional[str],
        monitor_port: int,
    ) -> Command:
        remote = self.device_action_dir(action)
        python_path = ":".join([remote, *action.search_path, *self.search_path])
        args = [self.options.device_python]
        args += self.target_args(action, skip_past, monitor_port)
        return self.shell_command(remote, args, python_path)

    def shell_command(
        self, cwd: str, args: List[str], python_path: Optional[str] = None
    ) -> Command:
        """An ``adb shell`` command running ``args`` in ``cwd`` on the device."""
        env = dict(self.options.env)
        if python_path:
            env["PYTHONPATH"] = python_path
        env["PYTHONUNBUFFERED"] = "1"
        assignments = " ".join(
            f"{key}={shlex.quote(value)}" for key, value in env.items()
        )
        line = " ".join(shlex.quote(arg) for arg in args)
        script = f"cd {shlex.quote(cwd)} && {assignments} {line}"
        return Command(self.sdk.adb_command("shell", script))

    def uninstall(self, action: Action) -> None:
        """Remove the action's files from the device."""
        self.sdk.rm(self.device_action_dir(action))

    def cleanup(self, action: Action) -> None:
        super().cleanup(action)
        if self.options.clean_after:
            self.uninstall(action)

    def shutdown(self) -> None:
        super().shutdown()
        while self._forwarded:
            self.sdk.remove_forward(self._forwarded.pop())
        if self.options.clean_after:
            self.sdk.rm(self.options.runner_dir)
