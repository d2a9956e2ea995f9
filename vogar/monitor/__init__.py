"""
Monitor protocol between target processes and the host.
"""

from .host import HostMonitor, MonitorDecoder, MonitorHandler
from .protocol import (
    BENCHMARK_RUNNER,
    OutcomeFinished,
    OutcomeOutput,
    OutcomeStarted,
    UnstructuredOutput,
    escape_text,
    xml_sanitize,
)
from .target import SocketTargetMonitor, StreamTargetMonitor, TargetMonitor

__all__ = [
    "HostMonitor",
    "MonitorDecoder",
    "MonitorHandler",
    "TargetMonitor",
    "StreamTargetMonitor",
    "SocketTargetMonitor",
    "OutcomeStarted",
    "OutcomeOutput",
    "UnstructuredOutput",
    "OutcomeFinished",
    "BENCHMARK_RUNNER",
    "escape_text",
    "xml_sanitize",
]
