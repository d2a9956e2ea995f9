"""
Target-side monitor.

Encodes outcome lifecycle events into the monitor protocol, either onto an
inherited output stream or onto a socket accepted from the host.
"""

import socket
import threading
from abc import ABC, abstractmethod
from typing import IO, Optional

from vogar.executor.errors import MonitorConnectionError
from vogar.executor.types import Result
from vogar.monitor.protocol import (
    ACCEPT_TIMEOUT_SECONDS,
    NAME_ATTRIBUTE,
    OUTCOME_TAG,
    RESULT_TAG,
    ROOT_TAG,
    RUNNER_ATTRIBUTE,
    UNSTRUCTURED_OUTPUT_TAG,
    VALUE_ATTRIBUTE,
    escape_attribute,
    escape_text,
)

XML_DECLARATION = "<?xml version='1.0' encoding='UTF-8' ?>"


class TargetMonitor(ABC):
    """Reports outcome lifecycle events to the host."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._in_outcome = False
        self._closed = False

    @abstractmethod
    def _write(self, data: str) -> None:
        """Write and flush encoded protocol text."""

    def _open(self) -> None:
        self._write(f"{XML_DECLARATION}<{ROOT_TAG}>")

    def outcome_started(self, outcome_name: str, runner_class: Optional[str] = None) -> None:
        with self._lock:
            runner = ""
            if runner_class is not None:
                runner = f' {RUNNER_ATTRIBUTE}="{escape_attribute(runner_class)}"'
            self._write(
                f'<{OUTCOME_TAG} {NAME_ATTRIBUTE}="{escape_attribute(outcome_name)}"{runner}>'
            )
            self._in_outcome = True

    def output(self, text: str) -> None:
        """Output of the current outcome, or unstructured output outside one."""
        if not text:
            return
        with self._lock:
            if self._in_outcome:
                self._write(escape_text(text))
                return
        self.unstructured_output(text)

    def unstructured_output(self, text: str) -> None:
        with self._lock:
            self._write(
                f"<{UNSTRUCTURED_OUTPUT_TAG}>{escape_text(text)}</{UNSTRUCTURED_OUTPUT_TAG}>"
            )

    def outcome_finished(self, result: Result) -> None:
        with self._lock:
            self._write(
                f'<{RESULT_TAG} {VALUE_ATTRIBUTE}="{Result(result).value}"/></{OUTCOME_TAG}>'
            )
            self._in_outcome = False

    def close(self) -> None:
        """Write the closing root tag, marking the batch complete."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._write(f"</{ROOT_TAG}>")
            self._release()

    def _release(self) -> None:
        """Release transport resources after the session closed."""


class StreamTargetMonitor(TargetMonitor):
    """Writes the protocol to an inherited output stream."""

    def __init__(self, stream: IO[bytes]) -> None:
        super().__init__()
        self._stream = stream
        self._open()

    def _write(self, data: str) -> None:
        self._stream.write(data.encode("utf-8"))
        self._stream.flush()


class SocketTargetMonitor(TargetMonitor):
    """Accepts one connection from the host and writes the protocol to it."""

    def __init__(self) -> None:
        super().__init__()
        self._server: Optional[socket.socket] = None
        self._socket: Optional[socket.socket] = None

    def await_connection(
        self, port: int, timeout_seconds: float = ACCEPT_TIMEOUT_SECONDS
    ) -> None:
        """
        Listen on ``port`` and accept the host's connection.

        Raises:
            MonitorConnectionError: If the host doesn't connect in time.
        """
        if self._socket is not None:
            raise RuntimeError("Monitor already connected")
        server = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        server.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            server.bind(("localhost", port))
            server.listen(1)
            server.settimeout(timeout_seconds)
            self._socket, _ = server.accept()
        except OSError as e:
            server.close()
            raise MonitorConnectionError(port, timeout_seconds, e) from e
        self._socket.settimeout(None)
        self._server = server
        self._open()

    def _write(self, data: str) -> None:
        if self._socket is None:
            raise RuntimeError("Monitor not connected")
        self._socket.sendall(data.encode("utf-8"))

    def _release(self) -> None:
        if self._socket is not None:
            self._socket.close()
        if self._server is not None:
            self._server.close()
        self._socket = None
        self._server = None
