"""
Execution core for Vogar.

This module provides the build and run pipeline: the driver, the builder and
runner pools joined by a bounded ready queue, the action runner with its
kill timer and resume loop, and outcome aggregation.
"""

from vogar.executor.command import Command
from vogar.executor.errors import (
    BenchmarkTimeoutError,
    CommandFailedError,
    DriverReuseError,
    HarnessError,
    MonitorConnectionError,
    MonitorError,
)
from vogar.executor.executor import Driver, run_actions
from vogar.executor.expectations import (
    ExpectationStore,
    InMemoryOutcomeStore,
    OutcomeStore,
)
from vogar.executor.pool import BuilderPool, ReadyQueue, RunnerPool
from vogar.executor.report import OutcomeAggregator, RunSummary
from vogar.executor.types import (
    HARNESS_OUTCOME_NAME,
    Action,
    AnnotatedOutcome,
    DriverConfig,
    Expectation,
    Outcome,
    Result,
    ResultValue,
    RunnerState,
)
from vogar.executor.worker import ActionRunner, KillTimer

__all__ = [
    # Driver
    "Driver",
    "run_actions",
    # Pipeline
    "ReadyQueue",
    "BuilderPool",
    "RunnerPool",
    "ActionRunner",
    "KillTimer",
    "Command",
    # Aggregation
    "OutcomeAggregator",
    "RunSummary",
    "ExpectationStore",
    "OutcomeStore",
    "InMemoryOutcomeStore",
    # Types
    "HARNESS_OUTCOME_NAME",
    "Action",
    "AnnotatedOutcome",
    "DriverConfig",
    "Expectation",
    "Outcome",
    "Result",
    "ResultValue",
    "RunnerState",
    # Errors
    "HarnessError",
    "DriverReuseError",
    "CommandFailedError",
    "MonitorError",
    "MonitorConnectionError",
    "BenchmarkTimeoutError",
]
