"""
Pipeline Pools.

Provides the bounded ready queue that connects builders to runners, and the
two fixed-size worker pools on either side of it.
"""

import queue
import threading
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Deque, List, Optional, TYPE_CHECKING

from loguru import logger

from vogar.executor.report import OutcomeAggregator
from vogar.executor.types import Action, Outcome, Result

if TYPE_CHECKING:
    from vogar.mode.base import Mode


class ReadyQueue:
    """
    Bounded multi-producer/multi-consumer queue of built actions.

    Knows how many actions are expected so consumers can tell "nothing more
    will arrive" apart from "nothing has arrived yet".
    """

    def __init__(self, capacity: int, expected: int) -> None:
        """
        Initialize the ready queue.

        Args:
            capacity: Maximum number of built-but-unrun actions.
            expected: Number of actions builders will account for, either
                by putting them or by skipping them.
        """
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self._capacity = capacity
        self._items: Deque[Action] = deque()
        self._remaining = expected
        self._condition = threading.Condition()
        self._max_depth = 0
        self._closed = False

    def put(self, action: Action) -> None:
        """Add a built action, blocking while the queue is full."""
        with self._condition:
            while len(self._items) >= self._capacity and not self._closed:
                self._condition.wait()
            self._items.append(action)
            self._remaining -= 1
            if not self._closed:
                self._max_depth = max(self._max_depth, len(self._items))
            self._condition.notify_all()

    def close(self) -> None:
        """Stop blocking producers; anything put from now on is left for drain()."""
        with self._condition:
            self._closed = True
            self._condition.notify_all()

    def skip(self) -> None:
        """Account for an expected action that will never be put."""
        with self._condition:
            self._remaining -= 1
            self._condition.notify_all()

    def take(self, timeout_seconds: float) -> Optional[Action]:
        """
        Remove the next built action.

        Returns:
            The action, or None once every expected action has been taken
            or skipped, or the queue was closed.

        Raises:
            queue.Empty: If nothing arrived within the timeout.
        """
        with self._condition:
            arrived = self._condition.wait_for(
                lambda: self._items or self._remaining <= 0 or self._closed,
                timeout=timeout_seconds,
            )
            if not arrived:
                raise queue.Empty()
            if not self._items:
                return None
            action = self._items.popleft()
            self._condition.notify_all()
            return action

    def drain(self) -> List[Action]:
        """Remove and return everything still queued."""
        with self._condition:
            leftovers = list(self._items)
            self._items.clear()
            self._condition.notify_all()
            return leftovers

    def __len__(self) -> int:
        with self._condition:
            return len(self._items)

    @property
    def max_depth(self) -> int:
        """Largest number of actions ever queued at once."""
        with self._condition:
            return self._max_depth


class BuilderPool:
    """
    Fixed-size pool that builds and installs actions.

    Successful builds go into the ready queue; failed builds are recorded
    immediately and skipped.
    """

    def __init__(
        self,
        mode: "Mode",
        aggregator: OutcomeAggregator,
        ready: ReadyQueue,
        size: int,
    ) -> None:
        self._mode = mode
        self._aggregator = aggregator
        self._ready = ready
        self._executor = ThreadPoolExecutor(
            max_workers=size, thread_name_prefix="builder"
        )
        self._futures: List[Future] = []

    def submit(self, index: int, action: Action) -> None:
        self._futures.append(self._executor.submit(self._build, index, action))

    def _build(self, index: int, action: Action) -> None:
        try:
            logger.debug(
                f"installing action {index}; {len(self._ready)} are runnable"
            )
            outcome = self._mode.build_and_install(action)
            if outcome is not None:
                self._aggregator.add_early(outcome)
                self._ready.skip()
                return

            self._ready.put(action)
            logger.debug(
                f"installed action {index}; {len(self._ready)} are runnable"
            )
        except Exception as e:
            # attributed to the action itself, not to vogar.Vogar
            logger.exception(f"unexpected failure building {action.name}")
            self._aggregator.add_early(
                Outcome.from_exception(action.name, Result.ERROR, e)
            )
            self._ready.skip()

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


class RunnerPool:
    """
    Fixed-size pool of runner loops, each with an explicit index.

    The index is assigned at startup and used to pick a monitor port that
    doesn't collide with other concurrently active runners.
    """

    def __init__(self, size: int, worker: Callable[[int], None]) -> None:
        self._size = size
        self._worker = worker
        self._executor = ThreadPoolExecutor(
            max_workers=size, thread_name_prefix="runner"
        )
        self._futures: List[Future] = []

    def start(self) -> None:
        for index in range(self._size):
            self._futures.append(self._executor.submit(self._worker, index))

    def join(self) -> List[BaseException]:
        """Wait for every runner loop and return the errors they raised."""
        errors = []
        for future in self._futures:
            error = future.exception()
            if error is not None:
                errors.append(error)
        self._executor.shutdown(wait=True)
        return errors
