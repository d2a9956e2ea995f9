"""
Error definitions for the execution core.

Contains custom exception classes for pipeline, command and monitor errors.
"""

from typing import List, Sequence


class HarnessError(Exception):
    """Base exception for harness errors."""
    pass


class DriverReuseError(HarnessError):
    """Raised when a driver is asked to run a second time."""

    def __init__(self) -> None:
        super().__init__("Drivers are not reusable")


class CommandFailedError(HarnessError):
    """Raised when a command exits with a non-zero status."""

    def __init__(self, args: Sequence[str], output_lines: List[str]):
        self.args_list = list(args)
        self.output_lines = output_lines
        super().__init__(
            f"Command failed: {' '.join(self.args_list)}"
            + ("\n" + "\n".join(output_lines) if output_lines else "")
        )


class MonitorError(HarnessError):
    """Base exception for monitor protocol errors."""
    pass


class MonitorConnectionError(MonitorError):
    """Raised when a monitor connection cannot be made within its bounded wait."""

    def __init__(self, port: int, timeout_seconds: float, cause: Exception = None):
        self.port = port
        self.timeout_seconds = timeout_seconds
        self.cause = cause
        msg = f"Failed to connect a monitor on localhost:{port} within {timeout_seconds}s"
        if cause is not None:
            msg += f": {cause}"
        super().__init__(msg)


class BenchmarkTimeoutError(HarnessError):
    """Raised when a benchmark requests an unlimited timeout without opting in."""

    def __init__(self, outcome_name: str):
        self.outcome_name = outcome_name
        super().__init__(
            f"{outcome_name} is a benchmark; benchmarks run with an unlimited "
            f"timeout and must be run with --benchmark"
        )
