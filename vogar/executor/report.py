"""
Outcome Aggregation.

Single owner of the outcome map and the pass/fail/skip counters for a run.
All writers go through one lock so concurrent runners never interleave
updates to the run's aggregate state.
"""

import threading
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from loguru import logger

from vogar.executor.expectations import ExpectationStore, OutcomeStore
from vogar.executor.types import (
    AnnotatedOutcome,
    Outcome,
    Result,
    ResultValue,
)


def format_elapsed(elapsed_ms: int) -> str:
    """Format milliseconds like ``850ms``, ``12.3s`` or ``4m 5s``."""
    if elapsed_ms < 1000:
        return f"{elapsed_ms}ms"
    seconds = elapsed_ms / 1000.0
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes, seconds = divmod(int(seconds), 60)
    return f"{minutes}m {seconds}s"


@dataclass
class RunSummary:
    """
    Result of a driver run.

    Attributes:
        passed: Outcomes classified OK.
        failed: Outcomes classified FAIL.
        skipped: Outcomes classified IGNORE or never attempted.
        elapsed_ms: Wall-clock time of the run.
        failure_names: Names of failed outcomes, in recording order.
        outcomes: Every recorded outcome keyed by name.
    """
    passed: int = 0
    failed: int = 0
    skipped: int = 0
    elapsed_ms: int = 0
    failure_names: List[str] = field(default_factory=list)
    outcomes: Dict[str, Outcome] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return self.passed + self.failed + self.skipped

    @property
    def success(self) -> bool:
        """Check if no outcome failed."""
        return self.failed == 0

    def summary(self) -> str:
        """Get a summary string of the results."""
        took = format_elapsed(self.elapsed_ms)
        if self.failed > 0 or self.skipped > 0:
            return (
                f"Outcomes: {self.total}. Passed: {self.passed}, "
                f"Failed: {self.failed}, Skipped: {self.skipped}. Took {took}."
            )
        return f"Outcomes: {self.passed}. All successful. Took {took}."


class OutcomeAggregator:
    """
    Thread-safe outcome map and counters.

    An outcome is recorded at most once per name; later outcomes for a name
    that has already been recorded are ignored.
    """

    def __init__(
        self,
        expectation_store: ExpectationStore,
        outcome_store: Optional[OutcomeStore] = None,
    ) -> None:
        self._expectations = expectation_store
        self._outcome_store = outcome_store
        self._outcomes: Dict[str, Outcome] = {}
        self._values: Dict[str, ResultValue] = {}
        self._annotated: List[AnnotatedOutcome] = []
        self._lock = threading.Lock()
        self.successes = 0
        self.failures = 0
        self.skipped = 0

    def has(self, name: str) -> bool:
        with self._lock:
            return name in self._outcomes

    def get(self, name: str) -> Optional[Outcome]:
        with self._lock:
            return self._outcomes.get(name)

    def outcomes(self) -> Dict[str, Outcome]:
        """Snapshot of the recorded outcomes in recording order."""
        with self._lock:
            return dict(self._outcomes)

    def result_value(self, name: str) -> Optional[ResultValue]:
        with self._lock:
            return self._values.get(name)

    def add_early(self, outcome: Outcome) -> bool:
        """
        Record an outcome known before (or instead of) running an action.

        UNSUPPORTED outcomes count as skipped; everything else is recorded
        and classified like a regular outcome.
        """
        if outcome.result != Result.UNSUPPORTED:
            for line in outcome.output_lines:
                logger.bind(outcome=outcome.name).info(line)
            return self.record(outcome)

        with self._lock:
            if outcome.name in self._outcomes:
                return False
            self._outcomes[outcome.name] = outcome
            self._values[outcome.name] = ResultValue.IGNORE
            self.skipped += 1
        logger.debug(f"skipped {outcome.name}")
        return True

    def record(self, outcome: Outcome, record_results: bool = True) -> bool:
        """
        Record and classify an outcome.

        Args:
            outcome: The finished outcome.
            record_results: Whether to persist it to the outcome store.

        Returns:
            True if the outcome was recorded, False if one was already
            recorded under the same name.
        """
        expectation = self._expectations.get(outcome.name)
        result_value = outcome.get_result_value(expectation)

        with self._lock:
            if outcome.name in self._outcomes:
                existing = self._outcomes[outcome.name]
                logger.warning(
                    f"Ignoring {outcome.result.value} for {outcome.name}; "
                    f"already recorded as {existing.result.value}"
                )
                return False

            self._outcomes[outcome.name] = outcome
            self._values[outcome.name] = result_value
            if result_value == ResultValue.OK:
                self.successes += 1
            elif result_value == ResultValue.FAIL:
                self.failures += 1
            else:
                self.skipped += 1

            if self._outcome_store is not None:
                annotated = self._outcome_store.read(outcome)
                if record_results:
                    self._outcome_store.write(outcome, annotated.outcome_changed())
                self._annotated.append(annotated)

        if result_value == ResultValue.FAIL:
            for line in outcome.output_lines:
                logger.bind(outcome=outcome.name).info(line)
            logger.error(f"{outcome.name} FAIL ({outcome.result.value})")
        else:
            logger.info(
                f"{outcome.name} {result_value.name} ({outcome.result.value})"
            )
        return True

    def annotated_outcomes(self) -> List[AnnotatedOutcome]:
        with self._lock:
            return list(self._annotated)

    def summarize(self, elapsed_ms: int) -> RunSummary:
        """Build the run summary. Call only after all workers have joined."""
        with self._lock:
            failure_names = [
                name for name, value in self._values.items()
                if value == ResultValue.FAIL
            ]
            return RunSummary(
                passed=self.successes,
                failed=self.failures,
                skipped=self.skipped,
                elapsed_ms=elapsed_ms,
                failure_names=failure_names,
                outcomes=dict(self._outcomes),
            )
