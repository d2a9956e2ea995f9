"""
Driver.

Compiles, installs, runs and reports on actions. Built actions flow from a
pool of builders through a bounded ready queue into a pool of runners; every
outcome is recorded through a single aggregator.
"""

import queue
import threading
import time
from typing import Dict, Iterable, List, Optional, TYPE_CHECKING

from loguru import logger

from vogar.executor.errors import BenchmarkTimeoutError, DriverReuseError
from vogar.executor.expectations import ExpectationStore, OutcomeStore
from vogar.executor.pool import BuilderPool, ReadyQueue, RunnerPool
from vogar.executor.report import OutcomeAggregator, RunSummary
from vogar.executor.types import (
    HARNESS_OUTCOME_NAME,
    Action,
    DriverConfig,
    Outcome,
    Result,
)
from vogar.executor.worker import ActionRunner

if TYPE_CHECKING:
    from vogar.mode.base import Mode


class Driver:
    """
    Orchestrates the build and run pipeline for a set of actions.

    Drivers are single use.

    Example:
        driver = Driver(HostMode(HostModeOptions()), DriverConfig(num_runners=4))
        summary = driver.build_and_run([Action("tests.test_math", "tests.test_math")])
        print(summary.summary())
    """

    def __init__(
        self,
        mode: "Mode",
        config: Optional[DriverConfig] = None,
        expectation_store: Optional[ExpectationStore] = None,
        outcome_store: Optional[OutcomeStore] = None,
    ) -> None:
        """
        Initialize the driver.

        Args:
            mode: Where actions are built and executed.
            config: Driver configuration. Uses defaults if not provided.
            expectation_store: Expected results. Everything is expected to
                succeed if not provided.
            outcome_store: Optional outcome history.
        """
        self.mode = mode
        self.config = config or DriverConfig()
        self.expectation_store = expectation_store or ExpectationStore()
        self.aggregator = OutcomeAggregator(self.expectation_store, outcome_store)
        self.actions: Dict[str, Action] = {}
        self.prematurely_exhausted_input = threading.Event()
        self.interrupted = threading.Event()
        self.ready: Optional[ReadyQueue] = None
        self.runners: List[ActionRunner] = []
        self._runners_lock = threading.Lock()
        self._fatal: Optional[BaseException] = None
        self._used = False

    def build_and_run(
        self,
        actions: Iterable[Action],
        known_outcomes: Optional[Iterable[Outcome]] = None,
    ) -> RunSummary:
        """
        Build and execute the given actions.

        Args:
            actions: Actions to run. Names must be unique.
            known_outcomes: Outcomes already known for some actions (for
                example from source discovery); those actions aren't built.

        Returns:
            RunSummary of every recorded outcome.

        Raises:
            DriverReuseError: If the driver has already run.
            BenchmarkTimeoutError: If a benchmark ran without opting in.
        """
        if self._used:
            raise DriverReuseError()
        self._used = True

        for action in actions:
            if action.name in self.actions:
                raise ValueError(f"Duplicate action name: {action.name}")
            self.actions[action.name] = action
        early: Dict[str, Outcome] = {
            outcome.name: outcome for outcome in (known_outcomes or [])
        }

        if not self.actions:
            logger.info("Nothing to do.")
            return self.aggregator.summarize(0)

        logger.info(f"Actions: {len(self.actions)}")
        t0 = time.monotonic()

        # prepare before building; builds rely on the prepared target
        self.mode.prepare()

        to_run: List[Action] = []
        for name, action in self.actions.items():
            if name in early:
                self.aggregator.add_early(early[name])
            elif self.expectation_store.get(name).result == Result.UNSUPPORTED:
                self.aggregator.add_early(Outcome.from_output(
                    name, Result.UNSUPPORTED, "Unsupported according to expectations file"
                ))
            else:
                to_run.append(action)

        self.ready = ReadyQueue(self.config.ready_queue_capacity, len(to_run))
        builders = BuilderPool(
            self.mode, self.aggregator, self.ready, self.config.num_builders
        )
        for index, action in enumerate(to_run):
            builders.submit(index, action)

        if self.config.num_runners > 1:
            logger.debug(f"running actions in parallel ({self.config.num_runners} threads)")
        else:
            logger.debug("running actions in serial")

        runners = RunnerPool(self.config.num_runners, self._runner_loop)
        if to_run:
            runners.start()
        try:
            errors = runners.join()
        except KeyboardInterrupt as e:
            self.interrupted.set()
            self.ready.close()
            self.aggregator.record(
                Outcome.from_exception(HARNESS_OUTCOME_NAME, Result.ERROR, e)
            )
            errors = runners.join()
        for error in errors:
            logger.opt(exception=error).error("runner loop failed")

        # runners are gone; builders must not block on a full queue
        self.ready.close()
        builders.shutdown(wait=True)

        for action in self.ready.drain():
            self.aggregator.add_early(Outcome.from_output(
                action.name, Result.ERROR, "Action was built but never run"
            ))

        if self.prematurely_exhausted_input.is_set():
            self.aggregator.record(Outcome.from_output(
                HARNESS_OUTCOME_NAME,
                Result.ERROR,
                f"Expected {len(self.actions)} actions but found fewer.",
            ))

        try:
            self.mode.shutdown()
        except Exception as e:
            logger.exception("mode shutdown failed")
            self.aggregator.record(
                Outcome.from_exception(HARNESS_OUTCOME_NAME, Result.ERROR, e)
            )

        if self._fatal is not None:
            raise self._fatal

        elapsed_ms = int((time.monotonic() - t0) * 1000)
        summary = self.aggregator.summarize(elapsed_ms)
        if summary.failure_names:
            logger.info("Failure summary:")
            for name in summary.failure_names:
                logger.error(name)
        logger.info(summary.summary())
        return summary

    def _should_stop(self) -> bool:
        return (
            self.prematurely_exhausted_input.is_set()
            or self.interrupted.is_set()
            or self._fatal is not None
        )

    def _runner_loop(self, runner_index: int) -> None:
        """
        Take built actions from the ready queue and run them.

        A runner that waits ``ready_timeout_seconds`` without receiving an
        action sets the shared exhausted-input flag so that every other
        runner stops waiting too.
        """
        assert self.ready is not None
        thread = threading.current_thread()
        thread_name = thread.name

        while not self._should_stop():
            logger.debug(
                f"runner {runner_index} waiting; {len(self.ready)} are ready to run"
            )
            try:
                action = self.ready.take(self.config.ready_timeout_seconds)
            except queue.Empty:
                # if build and install takes this long, something is broken
                logger.error(
                    f"runner {runner_index} waited {self.config.ready_timeout_seconds}s "
                    f"without a runnable action"
                )
                self.prematurely_exhausted_input.set()  # short-circuit the other runners
                self.ready.close()
                return

            if action is None:
                return

            runner = ActionRunner(
                action,
                self.mode,
                self.aggregator,
                self.expectation_store,
                self.config,
                runner_index=runner_index,
            )
            with self._runners_lock:
                self.runners.append(runner)

            thread.name = f"runner-{action.name}"
            try:
                runner.run()
            except BenchmarkTimeoutError as e:
                logger.error(str(e))
                self._fatal = e
                self.ready.close()
                return
            except Exception as e:
                # attributed to the action itself, not to vogar.Vogar
                logger.exception(f"unexpected failure running {action.name}")
                self.aggregator.add_early(
                    Outcome.from_exception(action.name, Result.ERROR, e)
                )
            finally:
                thread.name = thread_name


def run_actions(
    mode: "Mode",
    actions: Iterable[Action],
    config: Optional[DriverConfig] = None,
    expectation_store: Optional[ExpectationStore] = None,
) -> RunSummary:
    """
    Convenience function to build and run actions with a fresh driver.

    Example:
        summary = run_actions(HostMode(HostModeOptions()), actions)
        sys.exit(0 if summary.success else 1)
    """
    driver = Driver(mode, config, expectation_store)
    return driver.build_and_run(actions)
