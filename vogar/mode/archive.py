"""
Archive mode.

Packages each action together with the target runtime into one executable
zip archive, installs the archive on an Android device and launches it
there. The device needs nothing besides a Python interpreter and the
installed archives.
"""

import posixpath
import shutil
import zipapp
from pathlib import Path
from typing import Optional

import loguru
from loguru import logger

from vogar.android.sdk import AndroidSdk
from vogar.executor.command import Command
from vogar.executor.errors import CommandFailedError
from vogar.executor.types import Action
from vogar.mode.base import package_root
from vogar.mode.device import DeviceMode, DeviceModeOptions

ARCHIVE_MAIN = "vogar.target.__main__:main"

_IGNORE = shutil.ignore_patterns("__pycache__", "*.pyc")


class ArchiveModeOptions(DeviceModeOptions):
    """Archive mode configuration"""

    compress: bool = True


class ArchiveMode(DeviceMode):
    """
    Executes each action from a self-contained ``.pyz`` on an Android device.

    Example:
        mode = ArchiveMode(ArchiveModeOptions(device_serial="emulator-5554"))
        summary = Driver(mode).build_and_run(actions)
    """

    def __init__(
        self,
        options: Optional[ArchiveModeOptions] = None,
        sdk: Optional[AndroidSdk] = None,
    ) -> None:
        super().__init__(options or ArchiveModeOptions(), sdk)
        self.options: ArchiveModeOptions

    @property
    def archive_dir(self) -> str:
        return posixpath.join(self.options.runner_dir, "archives")

    def local_archive(self, action: Action) -> Path:
        return self.work_dir / f"{action.name}.pyz"

    def device_archive(self, action: Action) -> str:
        return posixpath.join(self.archive_dir, f"{action.name}.pyz")

    def _install_runtime(self) -> None:
        # every archive carries its own copy of the runtime
        self.sdk.mkdirs(self.archive_dir)

    def post_compile(self, action: Action) -> None:
        archive = self.create_archive(action)
        self.install(action, archive)

    def create_archive(self, action: Action) -> Path:
        """
        Bundle the staged action with ``vogar`` and ``loguru``.

        Raises:
            CommandFailedError: If the archive can't be written.
        """
        staging = self.work_dir / f"{action.name}.archive"
        shutil.rmtree(staging, ignore_errors=True)
        shutil.copytree(self.action_dir(action), staging, ignore=_IGNORE)
        shutil.copytree(package_root() / "vogar", staging / "vogar", ignore=_IGNORE)
        shutil.copytree(
            Path(loguru.__file__).resolve().parent, staging / "loguru", ignore=_IGNORE
        )

        archive = self.local_archive(action)
        try:
            zipapp.create_archive(
                staging,
                archive,
                main=ARCHIVE_MAIN,
                compressed=self.options.compress,
            )
        except zipapp.ZipAppError as e:
            raise CommandFailedError(["zipapp", str(staging)], [str(e)]) from e
        finally:
            shutil.rmtree(staging, ignore_errors=True)

        logger.debug(f"packaged {action.name} into {archive}")
        return archive

    def install(self, action: Action, archive: Path) -> None:
        """Replace any previously installed archive for the action."""
        self.uninstall(action)
        self.sdk.push(str(archive), self.device_archive(action))

    def uninstall(self, action: Action) -> None:
        self.sdk.rm(self.device_archive(action))

    def create_action_command(
        self,
        action: Action,
        skip_past: Optional[str],
        monitor_port: int,
    ) -> Command:
        args = [self.options.device_python, self.device_archive(action)]
        args += self.runner_args(action, skip_past, monitor_port)
        python_path = ":".join([*action.search_path, *self.search_path])
        return self.shell_command(self.archive_dir, args, python_path or None)

    def cleanup(self, action: Action) -> None:
        super().cleanup(action)
        if self.options.clean_after:
            self.local_archive(action).unlink(missing_ok=True)
