"""
Target-side runners.

A runner turns a target name into a sequence of outcomes and reports each
one through a TargetMonitor. Outcomes up to and including ``skip_past`` are
not run again; that is how the host resumes a batch whose process died.
"""

import importlib
import io
import os
import sys
import threading
import time
import traceback
import unittest
from abc import ABC, abstractmethod
from typing import Callable, Iterator, List, Optional, Tuple

from vogar.executor.types import Result
from vogar.monitor.protocol import BENCHMARK_RUNNER
from vogar.monitor.target import TargetMonitor

UNITTEST_RUNNER = "vogar.target.runner.UnitTestRunner"

# exit status when a test outlives --timeout; the stream is left open
TIMEOUT_EXIT_STATUS = 3


class MonitorWriter(io.TextIOBase):
    """Text stream that forwards writes to the monitor as output."""

    def __init__(self, monitor: TargetMonitor) -> None:
        self._monitor = monitor

    def writable(self) -> bool:
        return True

    def write(self, text: str) -> int:
        self._monitor.output(text)
        return len(text)


class TargetRunner(ABC):
    """Runs the outcomes of one target and reports them."""

    runner_class = UNITTEST_RUNNER

    def __init__(
        self,
        monitor: TargetMonitor,
        skip_past: Optional[str] = None,
        timeout_seconds: float = 0.0,
    ) -> None:
        self.monitor = monitor
        self.skip_past = skip_past
        self.timeout_seconds = timeout_seconds

    @abstractmethod
    def outcomes(self, target: str) -> Iterator[Tuple[str, Callable[[], Result]]]:
        """Yield (outcome name, callable returning its result) pairs."""

    def run(self, target: str) -> None:
        skipping = self.skip_past is not None
        for name, body in self.outcomes(target):
            if skipping:
                if name == self.skip_past:
                    skipping = False
                continue
            self.run_outcome(name, body)

    def run_outcome(self, name: str, body: Callable[[], Result]) -> None:
        """
        Report one outcome, enforcing the timeout.

        A body that outlives the timeout is reported as TIMEOUT and the
        process exits immediately, leaving the session unclosed so the host
        resumes after this outcome.
        """
        self.monitor.outcome_started(name, self.runner_class)
        results: List[Result] = []

        def invoke() -> None:
            try:
                results.append(body())
            except BaseException:
                self.monitor.output(traceback.format_exc())
                results.append(Result.EXEC_FAILED)

        if self.timeout_seconds <= 0:
            invoke()
        else:
            worker = threading.Thread(target=invoke, name=name, daemon=True)
            worker.start()
            worker.join(self.timeout_seconds)
            if worker.is_alive():
                self.monitor.output(
                    f"\n{name} timed out after {self.timeout_seconds} seconds\n"
                )
                self.monitor.outcome_finished(Result.TIMEOUT)
                os._exit(TIMEOUT_EXIT_STATUS)

        self.monitor.outcome_finished(results[0] if results else Result.ERROR)

    def load_failure(self, target: str) -> Tuple[str, Callable[[], Result]]:
        """An ERROR outcome for a target that couldn't be loaded."""
        message = traceback.format_exc()

        def load_failed() -> Result:
            self.monitor.output(message)
            return Result.ERROR

        return target, load_failed


def flatten(suite: unittest.TestSuite) -> Iterator[unittest.TestCase]:
    for test in suite:
        if isinstance(test, unittest.TestSuite):
            yield from flatten(test)
        else:
            yield test


class UnitTestRunner(TargetRunner):
    """Runs a unittest module, class or package; one outcome per test."""

    def outcomes(self, target: str) -> Iterator[Tuple[str, Callable[[], Result]]]:
        loader = unittest.TestLoader()
        try:
            suite = loader.loadTestsFromName(target)
        except Exception:
            yield self.load_failure(target)
            return

        for test in flatten(suite):
            yield test.id(), self._body(test)

    def _body(self, test: unittest.TestCase) -> Callable[[], Result]:
        def body() -> Result:
            result = unittest.TestResult()
            test(result)
            for _, text in result.errors:
                self.monitor.output(text)
            for _, text in result.failures:
                self.monitor.output(text)
            for _, reason in result.skipped:
                self.monitor.output(f"skipped: {reason}\n")

            if result.errors:
                return Result.ERROR
            if result.failures or result.unexpectedSuccesses:
                return Result.EXEC_FAILED
            return Result.SUCCESS

        return body


class BenchmarkRunner(TargetRunner):
    """
    Times the ``time_*`` functions of a module.

    Each function takes a repetition count, like ``def time_sort(reps)``,
    and is run with doubling counts until one run takes at least
    ``min_seconds``. The output is the time per repetition.
    """

    runner_class = BENCHMARK_RUNNER
    min_seconds = 0.1
    max_reps = 1 << 30

    def outcomes(self, target: str) -> Iterator[Tuple[str, Callable[[], Result]]]:
        try:
            module = importlib.import_module(target)
        except Exception:
            yield self.load_failure(target)
            return
        for attribute in sorted(dir(module)):
            function = getattr(module, attribute)
            if attribute.startswith("time_") and callable(function):
                yield f"{target}.{attribute}", self._body(function)

    def _body(self, function: Callable[[int], object]) -> Callable[[], Result]:
        def body() -> Result:
            reps = 1
            while True:
                t0 = time.perf_counter()
                function(reps)
                elapsed = time.perf_counter() - t0
                if elapsed >= self.min_seconds or reps >= self.max_reps:
                    break
                reps *= 2
            self.monitor.output(f"{elapsed / reps * 1e9:.1f} ns per rep ({reps} reps)\n")
            return Result.SUCCESS

        return body


RUNNERS = {
    "unittest": UnitTestRunner,
    "benchmark": BenchmarkRunner,
}


def redirect_output(monitor: TargetMonitor) -> None:
    """Send everything printed by the target through the monitor."""
    writer = MonitorWriter(monitor)
    sys.stdout = writer
    sys.stderr = writer
