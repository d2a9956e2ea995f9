"""
Vogar - parallel test and benchmark harness

Builds actions, runs them in separate processes on the host or on an
attached device, and aggregates the outcomes each process reports over the
monitor protocol.
"""

from .executor import (
    Action,
    Driver,
    DriverConfig,
    Expectation,
    ExpectationStore,
    Outcome,
    Result,
    RunSummary,
    run_actions,
)

__version__ = "0.1.0"

__all__ = [
    "Action",
    "Driver",
    "DriverConfig",
    "Expectation",
    "ExpectationStore",
    "Outcome",
    "Result",
    "RunSummary",
    "run_actions",
]
