"""
Expectation and outcome stores.

The core consults these read-only (expectations) or after an outcome has been
recorded (outcome history). Parsing expectation files is left to callers.
"""

import threading
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Mapping, Optional

from loguru import logger

from vogar.executor.types import (
    AnnotatedOutcome,
    Expectation,
    Outcome,
    Result,
)


class ExpectationStore:
    """Expected results keyed by action or outcome name."""

    def __init__(self, expectations: Optional[Mapping[str, Expectation]] = None) -> None:
        self._expectations: Dict[str, Expectation] = dict(expectations or {})

    @classmethod
    def unsupported(cls, names: Iterable[str]) -> "ExpectationStore":
        """Create a store that marks each of the given names unsupported."""
        return cls({name: Expectation(result=Result.UNSUPPORTED) for name in names})

    def get(self, name: str) -> Expectation:
        """Expectation for a name, SUCCESS if none was registered."""
        return self._expectations.get(name, Expectation.SUCCESS)

    def put(self, name: str, expectation: Expectation) -> None:
        self._expectations[name] = expectation

    def __len__(self) -> int:
        return len(self._expectations)


class OutcomeStore(ABC):
    """Persistence of outcomes for comparison with earlier runs."""

    @abstractmethod
    def read(self, outcome: Outcome) -> AnnotatedOutcome:
        """Annotate an outcome with the results stored for its name."""

    @abstractmethod
    def write(self, outcome: Outcome, changed: bool) -> None:
        """Store an outcome. ``changed`` tells whether it differs from history."""


class InMemoryOutcomeStore(OutcomeStore):
    """Outcome history kept for the lifetime of the process."""

    def __init__(self) -> None:
        self._history: Dict[str, List[Result]] = {}
        self._lock = threading.Lock()

    def read(self, outcome: Outcome) -> AnnotatedOutcome:
        with self._lock:
            previous = list(self._history.get(outcome.name, []))
        return AnnotatedOutcome(outcome=outcome, previous_results=previous)

    def write(self, outcome: Outcome, changed: bool) -> None:
        with self._lock:
            self._history.setdefault(outcome.name, []).append(outcome.result)
        if changed:
            logger.debug(f"outcome {outcome.name} changed to {outcome.result.value}")

    def history(self, name: str) -> List[Result]:
        with self._lock:
            return list(self._history.get(name, []))
