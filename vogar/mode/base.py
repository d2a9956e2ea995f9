"""
Execution modes.

A mode decides where an action's code runs: on the host, on a device, or
inside some other container. The driver and action runners only use the
operations defined here.
"""

import py_compile
import shutil
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional

from loguru import logger
from pydantic import BaseModel, Field

import vogar
from vogar.executor.command import Command
from vogar.executor.errors import CommandFailedError
from vogar.executor.types import Action, Outcome, Result


class ModeOptions(BaseModel):
    """Options shared by every mode"""

    work_dir: Optional[str] = None
    timeout_seconds: float = 0.0                  # target self-timeout, 0 disables
    use_socket_monitor: bool = True
    clean_after: bool = True
    search_path: List[str] = Field(default_factory=list)
    env: Dict[str, str] = Field(default_factory=dict)


def package_root() -> Path:
    """Directory containing the ``vogar`` package."""
    return Path(vogar.__file__).resolve().parent.parent


class Mode(ABC):
    """
    Where and how actions are built and executed.

    Subclasses provide ``create_action_command`` and may hook into
    ``_prepare``, ``post_compile``, ``cleanup`` and ``shutdown``.
    """

    def __init__(self, options: ModeOptions) -> None:
        self.options = options
        # import roots handed to every target process; filled in by prepare()
        self.search_path: List[str] = []
        self._prepared = False
        self._prepare_lock = threading.Lock()
        if options.work_dir is None:
            self.work_dir = Path(tempfile.mkdtemp(prefix="vogar-"))
        else:
            self.work_dir = Path(options.work_dir)

    def prepare(self) -> None:
        """Set up the target once. Safe to call more than once."""
        with self._prepare_lock:
            if self._prepared:
                return
            logger.info(f"Preparing {type(self).__name__} in {self.work_dir}")
            self.work_dir.mkdir(parents=True, exist_ok=True)
            self.search_path.extend(self.options.search_path)
            self._prepare()
            self._prepared = True

    def _prepare(self) -> None:
        """Hook for mode-specific setup."""

    def action_dir(self, action: Action) -> Path:
        return self.work_dir / action.name

    def build_and_install(self, action: Action) -> Optional[Outcome]:
        """
        Stage and compile the action and make it ready for execution.

        Returns:
            None if the build succeeded, or an outcome describing the failure.
        """
        logger.debug(f"build {action.name}")
        try:
            self._compile(action)
            self.post_compile(action)
        except CommandFailedError as e:
            return Outcome(
                name=action.name,
                result=Result.COMPILE_FAILED,
                output_lines=tuple(e.output_lines),
            )
        except OSError as e:
            return Outcome.from_exception(action.name, Result.ERROR, e)
        return None

    def _compile(self, action: Action) -> None:
        """
        Copy the action's source and resources into its directory.

        Raises:
            CommandFailedError: If the source doesn't compile.
        """
        action_dir = self.action_dir(action)
        action_dir.mkdir(parents=True, exist_ok=True)

        if action.resources_dir is not None:
            shutil.copytree(action.resources_dir, action_dir, dirs_exist_ok=True)

        if action.source_path is not None:
            source = Path(action.source_path)
            if source.suffix != ".py":
                raise CommandFailedError([], [f"Cannot compile: {source}"])
            staged = action_dir / source.name
            shutil.copyfile(source, staged)
            try:
                py_compile.compile(str(staged), doraise=True)
            except py_compile.PyCompileError as e:
                raise CommandFailedError(
                    ["py_compile", str(source)], e.msg.splitlines()
                ) from e

    def post_compile(self, action: Action) -> None:
        """Hook called after the action compiled."""

    def target_args(
        self,
        action: Action,
        skip_past: Optional[str],
        monitor_port: int,
    ) -> List[str]:
        """Arguments for ``-m vogar.target`` running this action."""
        return ["-m", "vogar.target", *self.runner_args(action, skip_past, monitor_port)]

    def runner_args(
        self,
        action: Action,
        skip_past: Optional[str],
        monitor_port: int,
    ) -> List[str]:
        """Arguments understood by the target entry point."""
        args = ["--runner", action.runner]
        if self.options.timeout_seconds > 0:
            args += ["--timeout", str(self.options.timeout_seconds)]
        if self.use_socket_monitor():
            args += ["--monitor-port", str(monitor_port)]
        else:
            args += ["--stream"]
        if skip_past is not None:
            args += ["--skip-past", skip_past]
        args.append(action.target)
        return args

    @abstractmethod
    def create_action_command(
        self,
        action: Action,
        skip_past: Optional[str],
        monitor_port: int,
    ) -> Command:
        """
        Create the command that executes the action.

        Args:
            action: The action to run.
            skip_past: Outcome to resume after, or None to run the whole batch.
            monitor_port: Port the target monitor listens on.
        """

    def use_socket_monitor(self) -> bool:
        """Whether the host monitor connects to a socket or follows stdout."""
        return self.options.use_socket_monitor

    def cleanup(self, action: Action) -> None:
        """Delete files and release resources used by one action."""
        if self.options.clean_after:
            shutil.rmtree(self.action_dir(action), ignore_errors=True)

    def shutdown(self) -> None:
        """Clean up after all actions have completed."""
        if self.options.clean_after:
            shutil.rmtree(self.work_dir, ignore_errors=True)
