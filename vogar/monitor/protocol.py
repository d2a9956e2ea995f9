"""
Outcome monitor wire protocol.

A session is one XML document streamed over a socket or a process's output:

    <vogar-monitor>
      <outcome name="..." runner="...">
        free text
        <result value="SUCCESS"/>
      </outcome>
      <unstructured-output>...</unstructured-output>
    </vogar-monitor>
"""

import re
from dataclasses import dataclass
from typing import Optional, Union

from vogar.executor.types import Outcome

ROOT_TAG = "vogar-monitor"
OUTCOME_TAG = "outcome"
RESULT_TAG = "result"
UNSTRUCTURED_OUTPUT_TAG = "unstructured-output"
NAME_ATTRIBUTE = "name"
RUNNER_ATTRIBUTE = "runner"
VALUE_ATTRIBUTE = "value"

ACCEPT_TIMEOUT_SECONDS = 10.0
BENCHMARK_RUNNER = "vogar.target.runner.BenchmarkRunner"
REPLACEMENT_CHARACTER = "\ufffd"

_INVALID_XML_CHARS = re.compile(
    r"[^\t\n\r\x20-\uD7FF\uE000-\uFFFD\U00010000-\U0010FFFF]"
)


def xml_sanitize(text: str) -> str:
    """Replace characters that XML 1.0 cannot carry with U+FFFD."""
    return _INVALID_XML_CHARS.sub(REPLACEMENT_CHARACTER, text)


def escape_text(text: str) -> str:
    """Sanitize and escape text content. Carriage returns survive as ``&#13;``."""
    text = xml_sanitize(text)
    return (
        text.replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace("\r", "&#13;")
    )


def escape_attribute(value: str) -> str:
    return (
        escape_text(value)
        .replace('"', "&quot;")
        .replace("\n", "&#10;")
        .replace("\t", "&#9;")
    )


@dataclass(frozen=True)
class OutcomeStarted:
    name: str
    runner: Optional[str] = None


@dataclass(frozen=True)
class OutcomeOutput:
    name: str
    text: str


@dataclass(frozen=True)
class UnstructuredOutput:
    text: str


@dataclass(frozen=True)
class OutcomeFinished:
    outcome: Outcome


MonitorEvent = Union[OutcomeStarted, OutcomeOutput, UnstructuredOutput, OutcomeFinished]
