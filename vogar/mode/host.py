"""
Host mode.

Runs every action in a local Python interpreter, one process per attempt.
"""

import os
import sys
from typing import List, Optional

from pydantic import Field

from vogar.executor.command import Command
from vogar.executor.types import Action
from vogar.mode.base import Mode, ModeOptions, package_root


class HostModeOptions(ModeOptions):
    """Host mode configuration"""

    python_executable: str = Field(default_factory=lambda: sys.executable)
    python_args: List[str] = Field(default_factory=list)


class HostMode(Mode):
    """
    Executes actions on the local machine.

    Example:
        mode = HostMode(HostModeOptions(timeout_seconds=60))
        summary = Driver(mode).build_and_run(actions)
    """

    def __init__(self, options: Optional[HostModeOptions] = None) -> None:
        super().__init__(options or HostModeOptions())
        self.options: HostModeOptions

    def _prepare(self) -> None:
        root = str(package_root())
        if root not in self.search_path:
            self.search_path.append(root)

    def python_path(self, action: Action) -> str:
        """PYTHONPATH for the action: its own directory first."""
        entries = [str(self.action_dir(action))]
        entries.extend(action.search_path)
        entries.extend(self.search_path)
        return os.pathsep.join(entries)

    def create_action_command(
        self,
        action: Action,
        skip_past: Optional[str],
        monitor_port: int,
    ) -> Command:
        env = dict(self.options.env)
        env["PYTHONPATH"] = self.python_path(action)
        env["PYTHONUNBUFFERED"] = "1"
        args = [self.options.python_executable, *self.options.python_args]
        args += self.target_args(action, skip_past, monitor_port)
        return Command(args, env=env, cwd=str(self.action_dir(action)))
