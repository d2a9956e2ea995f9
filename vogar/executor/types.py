"""
Type definitions for the execution core.

Contains enums, dataclasses, and configuration types used throughout the
executor module.
"""

import os
import re
import traceback
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import FrozenSet, List, Optional, Tuple


HARNESS_OUTCOME_NAME = "vogar.Vogar"

# \r\n, \r and \n only, never the Unicode line separators
LINE_BREAK = re.compile(r"\r\n|\r|\n")


class Result(str, Enum):
    """Result of a single outcome."""
    SUCCESS = "SUCCESS"
    EXEC_FAILED = "EXEC_FAILED"
    COMPILE_FAILED = "COMPILE_FAILED"
    TIMEOUT = "TIMEOUT"
    ERROR = "ERROR"
    UNSUPPORTED = "UNSUPPORTED"


class ResultValue(str, Enum):
    """Classification of an outcome against its expectation."""
    OK = "ok"
    FAIL = "fail"
    IGNORE = "ignore"


class RunnerState(str, Enum):
    """Action runner state enumeration."""
    WAITING_FOR_SLOT = "waiting_for_slot"
    RUNNING = "running"
    COMPLETED = "completed"
    TIMED_OUT = "timed_out"
    PROCESS_DIED = "process_died"
    RETRY = "retry"
    FINISHED = "finished"


@dataclass(frozen=True)
class Action:
    """A named unit of requested execution."""
    name: str
    target: str                                      # module, class or package
    source_path: Optional[str] = None
    resources_dir: Optional[str] = None
    search_path: Tuple[str, ...] = ()
    runner: str = "unittest"                         # "unittest" | "benchmark"

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("Action name must not be empty")
        if self.runner not in ("unittest", "benchmark"):
            raise ValueError(f"Unknown runner: {self.runner}")

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class Expectation:
    """Expected result, output pattern and tags for a name."""
    result: Result = Result.SUCCESS
    pattern: Optional[str] = None
    tags: FrozenSet[str] = frozenset()
    description: str = ""

    def matches(self, outcome: "Outcome") -> bool:
        """Check if the outcome has the expected result and output."""
        if outcome.result != self.result:
            return False
        if self.pattern is None:
            return True
        return re.search(self.pattern, outcome.output, re.DOTALL) is not None


Expectation.SUCCESS = Expectation()


@dataclass(frozen=True)
class Outcome:
    """An outcome of an action. Some actions have multiple outcomes."""
    name: str
    result: Result
    output_lines: Tuple[str, ...] = ()
    date: datetime = field(default_factory=datetime.now, compare=False)

    @classmethod
    def from_output(cls, name: str, result: Result, output: str) -> "Outcome":
        """Create an outcome whose output is split into lines."""
        if not output:
            return cls(name=name, result=result)
        pieces = LINE_BREAK.split(output)
        if pieces[-1] == "":
            pieces.pop()
        lines = tuple(pieces)
        return cls(name=name, result=result, output_lines=lines)

    @classmethod
    def from_exception(
        cls, name: str, result: Result, error: BaseException
    ) -> "Outcome":
        """Create an outcome carrying the formatted traceback of an error."""
        text = "".join(
            traceback.format_exception(type(error), error, error.__traceback__)
        )
        return cls.from_output(name, result, text)

    @property
    def output(self) -> str:
        return "\n".join(self.output_lines)

    def get_result_value(self, expectation: Expectation) -> ResultValue:
        """
        Classify this outcome against an expectation.

        Args:
            expectation: The expectation registered for this outcome's name.

        Returns:
            OK if the expectation matches, IGNORE if it matches an
            UNSUPPORTED expectation, FAIL otherwise.
        """
        if expectation.matches(self):
            if expectation.result == Result.UNSUPPORTED:
                return ResultValue.IGNORE
            return ResultValue.OK
        return ResultValue.FAIL


@dataclass
class AnnotatedOutcome:
    """Outcome together with the results previously stored for its name."""
    outcome: Outcome
    previous_results: List[Result] = field(default_factory=list)

    def most_recent_result(self) -> Optional[Result]:
        return self.previous_results[-1] if self.previous_results else None

    def outcome_changed(self) -> bool:
        """Check if this outcome differs from the most recent stored one."""
        return self.most_recent_result() != self.outcome.result


@dataclass
class DriverConfig:
    """Driver and pipeline configuration."""
    num_runners: int = 1
    num_builders: int = field(default_factory=lambda: os.cpu_count() or 1)
    ready_queue_capacity: int = 4
    ready_timeout_seconds: float = 300.0     # 5 minutes without a built action
    first_monitor_port: int = 8787
    small_timeout_seconds: float = 60.0
    large_timeout_seconds: float = 600.0
    benchmark: bool = False
    record_results: bool = True

    def __post_init__(self) -> None:
        """Validate driver configuration."""
        if self.num_runners <= 0:
            raise ValueError(
                f"num_runners must be positive, got {self.num_runners}"
            )
        if self.num_builders <= 0:
            raise ValueError(
                f"num_builders must be positive, got {self.num_builders}"
            )
        if self.ready_queue_capacity <= 0:
            raise ValueError(
                f"ready_queue_capacity must be positive, got {self.ready_queue_capacity}"
            )
        if self.ready_timeout_seconds <= 0:
            raise ValueError(
                f"ready_timeout_seconds must be positive, got {self.ready_timeout_seconds}"
            )
        if not 0 < self.first_monitor_port < 65536:
            raise ValueError(
                f"first_monitor_port out of range, got {self.first_monitor_port}"
            )
        if self.small_timeout_seconds < 0 or self.large_timeout_seconds < 0:
            raise ValueError("timeouts must not be negative")

    def timeout_for(self, expectation: Expectation) -> float:
        """Timeout in seconds for an action with the given expectation."""
        if "large" in expectation.tags:
            return self.large_timeout_seconds
        return self.small_timeout_seconds

    def monitor_port(self, runner_index: int) -> int:
        """Monitor port used by the runner with the given index."""
        if self.num_runners == 1:
            return self.first_monitor_port
        return self.first_monitor_port + (runner_index % self.num_runners)
