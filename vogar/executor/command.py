"""
Process commands.

A command is an opaque argument vector plus environment map; the core only
starts it, reads its output and terminates it.
"""

import os
import subprocess
import threading
from typing import Dict, IO, List, Optional, Sequence

from loguru import logger

from vogar.executor.errors import CommandFailedError


class Command:
    """A process to launch, read from and destroy."""

    def __init__(
        self,
        args: Sequence[str],
        env: Optional[Dict[str, str]] = None,
        cwd: Optional[str] = None,
    ) -> None:
        self.args: List[str] = [str(arg) for arg in args]
        self.env: Dict[str, str] = dict(env or {})
        self.cwd = cwd
        self._process: Optional[subprocess.Popen] = None
        self._lock = threading.Lock()
        self._destroyed = False

    def _environment(self) -> Dict[str, str]:
        environment = dict(os.environ)
        environment.update(self.env)
        return environment

    def start(self) -> None:
        """Start the process with stdout piped and stderr merged into it."""
        with self._lock:
            if self._process is not None:
                raise RuntimeError(f"Command already started: {self}")
            logger.debug(f"executing {self}")
            self._process = subprocess.Popen(
                self.args,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                env=self._environment(),
                cwd=self.cwd,
            )

    @property
    def stdout(self) -> IO[bytes]:
        if self._process is None or self._process.stdout is None:
            raise RuntimeError(f"Command not started: {self}")
        return self._process.stdout

    @property
    def returncode(self) -> Optional[int]:
        return None if self._process is None else self._process.poll()

    def destroy(self) -> None:
        """Kill the process if it is running. Safe to call more than once."""
        with self._lock:
            process = self._process
            if process is None or self._destroyed:
                return
            self._destroyed = True

        if process.poll() is None:
            process.kill()
        process.wait()
        if process.stdout is not None:
            process.stdout.close()

    def execute(self, timeout_seconds: Optional[float] = None) -> List[str]:
        """
        Run the command to completion.

        Returns:
            The combined output lines of the process.

        Raises:
            CommandFailedError: If the process exits with a non-zero status.
        """
        logger.debug(f"executing {self}")
        completed = subprocess.run(
            self.args,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            env=self._environment(),
            cwd=self.cwd,
            timeout=timeout_seconds,
        )
        lines = completed.stdout.decode("utf-8", errors="replace").splitlines()
        if completed.returncode != 0:
            raise CommandFailedError(self.args, lines)
        return lines

    def __str__(self) -> str:
        return " ".join(self.args)
