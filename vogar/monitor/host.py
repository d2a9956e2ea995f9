"""
Host-side monitor.

Decodes the monitor protocol into typed events and dispatches them to a
handler. A stream that ends before the closing root tag is not an error; it
tells the caller the batch is incomplete.
"""

import socket
import time
from abc import ABC, abstractmethod
from collections import deque
from typing import Deque, IO, Iterable, Iterator, List, Optional, Tuple
from xml.parsers import expat

from loguru import logger

from vogar.executor.errors import MonitorConnectionError
from vogar.executor.types import Outcome, Result
from vogar.monitor.protocol import (
    ACCEPT_TIMEOUT_SECONDS,
    NAME_ATTRIBUTE,
    OUTCOME_TAG,
    RESULT_TAG,
    ROOT_TAG,
    RUNNER_ATTRIBUTE,
    UNSTRUCTURED_OUTPUT_TAG,
    VALUE_ATTRIBUTE,
    MonitorEvent,
    OutcomeFinished,
    OutcomeOutput,
    OutcomeStarted,
    UnstructuredOutput,
)

READ_SIZE = 8192


class MonitorHandler(ABC):
    """Receives monitor events in arrival order."""

    @abstractmethod
    def start(self, outcome_name: str, runner_class: Optional[str]) -> None:
        """An outcome started."""

    @abstractmethod
    def output(self, outcome_name: str, text: str) -> None:
        """An outcome produced output."""

    @abstractmethod
    def finish(self, outcome: Outcome) -> None:
        """An outcome finished."""

    @abstractmethod
    def print(self, text: str) -> None:
        """Output that doesn't belong to any outcome."""


class MonitorDecoder:
    """
    Lazy, finite, non-restartable sequence of monitor events.

    Iterating consumes the underlying chunks. EOF, read errors and malformed
    XML all end the sequence; ``completed`` tells whether the closing root
    tag was seen.
    """

    def __init__(self, chunks: Iterable[bytes]) -> None:
        self._chunks = chunks
        self._events: Deque[MonitorEvent] = deque()
        self._consumed = False
        self.completed = False
        self.error: Optional[str] = None

        self._outcome_name: Optional[str] = None
        self._result: Optional[Result] = None
        self._output: List[str] = []
        self._unstructured: Optional[List[str]] = None

        self._parser = expat.ParserCreate("UTF-8")
        self._parser.buffer_text = True
        self._parser.StartElementHandler = self._start_element
        self._parser.EndElementHandler = self._end_element
        self._parser.CharacterDataHandler = self._character_data

    def __iter__(self) -> Iterator[MonitorEvent]:
        if self._consumed:
            raise RuntimeError("MonitorDecoder can only be iterated once")
        self._consumed = True

        for chunk in self._chunks:
            try:
                self._parser.Parse(chunk, False)
            except expat.ExpatError as e:
                self.error = str(e)
                logger.warning(f"Malformed monitor stream: {e}")
            yield from self._drain()
            if self.completed or self.error is not None:
                return

        if self._outcome_name is not None:
            logger.debug(f"Monitor stream ended inside outcome {self._outcome_name}")

    def _drain(self) -> Iterator[MonitorEvent]:
        while self._events:
            yield self._events.popleft()

    def _start_element(self, tag: str, attributes: dict) -> None:
        if tag == OUTCOME_TAG:
            self._outcome_name = attributes.get(NAME_ATTRIBUTE, "")
            self._result = None
            self._output = []
            self._events.append(
                OutcomeStarted(self._outcome_name, attributes.get(RUNNER_ATTRIBUTE))
            )
        elif tag == RESULT_TAG:
            value = attributes.get(VALUE_ATTRIBUTE, "")
            try:
                self._result = Result(value)
            except ValueError:
                logger.warning(f"Unknown result {value!r} for {self._outcome_name}")
                self._result = Result.ERROR
        elif tag == UNSTRUCTURED_OUTPUT_TAG:
            self._unstructured = []
        elif tag != ROOT_TAG:
            logger.debug(f"Ignoring unexpected monitor tag <{tag}>")

    def _end_element(self, tag: str) -> None:
        if tag == OUTCOME_TAG and self._outcome_name is not None:
            result = self._result
            if result is None:
                self._output.append("\nOutcome finished without a result")
                result = Result.ERROR
            outcome = Outcome.from_output(
                self._outcome_name, result, "".join(self._output)
            )
            self._events.append(OutcomeFinished(outcome))
            self._outcome_name = None
            self._result = None
            self._output = []
        elif tag == UNSTRUCTURED_OUTPUT_TAG and self._unstructured is not None:
            self._events.append(UnstructuredOutput("".join(self._unstructured)))
            self._unstructured = None
        elif tag == ROOT_TAG:
            self.completed = True

    def _character_data(self, data: str) -> None:
        if self._unstructured is not None:
            self._unstructured.append(data)
        elif self._outcome_name is not None:
            self._output.append(data)
            self._events.append(OutcomeOutput(self._outcome_name, data))


def stream_chunks(stream: IO[bytes]) -> Iterator[bytes]:
    """Read a binary stream until EOF or a read error."""
    read = getattr(stream, "read1", stream.read)
    while True:
        try:
            chunk = read(READ_SIZE)
        except (OSError, ValueError) as e:
            logger.debug(f"Monitor stream read failed: {e}")
            return
        if not chunk:
            return
        yield chunk


def socket_chunks(sock: socket.socket, first: bytes = b"") -> Iterator[bytes]:
    """Read a connected socket until EOF or a socket error."""
    if first:
        yield first
    while True:
        try:
            chunk = sock.recv(READ_SIZE)
        except OSError as e:
            logger.debug(f"Monitor socket read failed: {e}")
            return
        if not chunk:
            return
        yield chunk


class HostMonitor:
    """
    Connects to a target monitor and forwards its events to a handler.

    Example:
        monitor = HostMonitor(handler)
        completed = monitor.attach(8787)
    """

    def __init__(
        self,
        handler: MonitorHandler,
        connect_timeout_seconds: float = ACCEPT_TIMEOUT_SECONDS,
        host: str = "localhost",
    ) -> None:
        self._handler = handler
        self._connect_timeout = connect_timeout_seconds
        self._host = host

    def follow_stream(self, stream: IO[bytes]) -> bool:
        """
        Follow a process's output stream until it ends.

        Returns:
            True if the session closed normally, False if it ended early.
        """
        return self.follow(stream_chunks(stream))

    def attach(self, port: int) -> bool:
        """
        Connect to a target monitor listening on ``port`` and follow it.

        Returns:
            True if the session closed normally, False if it ended early.

        Raises:
            MonitorConnectionError: If no session could be established within
                the connect timeout.
        """
        sock, first = self._connect(port)
        with sock:
            return self.follow(socket_chunks(sock, first))

    def follow(self, chunks: Iterable[bytes]) -> bool:
        decoder = MonitorDecoder(chunks)
        for event in decoder:
            self._dispatch(event)
        return decoder.completed

    def _dispatch(self, event: MonitorEvent) -> None:
        if isinstance(event, OutcomeStarted):
            self._handler.start(event.name, event.runner)
        elif isinstance(event, OutcomeOutput):
            self._handler.output(event.name, event.text)
        elif isinstance(event, UnstructuredOutput):
            self._handler.print(event.text)
        elif isinstance(event, OutcomeFinished):
            self._handler.finish(event.outcome)

    def _connect(self, port: int) -> Tuple[socket.socket, bytes]:
        """
        Connect, retrying until the target is listening.

        A connection that closes before sending anything is treated as "not
        listening yet" (port forwarders accept before the target does).
        """
        deadline = time.monotonic() + self._connect_timeout
        last_error: Optional[Exception] = None
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise MonitorConnectionError(port, self._connect_timeout, last_error)
            sock = None
            try:
                sock = socket.create_connection(
                    (self._host, port), timeout=min(remaining, 1.0)
                )
                sock.settimeout(remaining)
                first = sock.recv(READ_SIZE)
                if first:
                    sock.settimeout(None)
                    logger.debug(f"Monitor attached on {self._host}:{port}")
                    return sock, first
                last_error = ConnectionResetError("closed before sending data")
            except OSError as e:
                last_error = e
            if sock is not None:
                sock.close()
            time.sleep(0.1)
