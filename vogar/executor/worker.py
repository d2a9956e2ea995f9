"""
Action Runner.

Executes a single action against an execution mode: launches the target
process, follows its monitor, enforces the kill timer and resumes batches
that died part way through.
"""

import itertools
import threading
import time
from typing import Callable, List, Optional, TYPE_CHECKING

from loguru import logger

from vogar.executor.command import Command
from vogar.executor.errors import BenchmarkTimeoutError, MonitorConnectionError
from vogar.executor.expectations import ExpectationStore
from vogar.executor.report import OutcomeAggregator
from vogar.executor.types import (
    Action,
    DriverConfig,
    Outcome,
    Result,
    RunnerState,
)
from vogar.monitor.host import HostMonitor, MonitorHandler, stream_chunks
from vogar.monitor.protocol import BENCHMARK_RUNNER

if TYPE_CHECKING:
    from vogar.mode.base import Mode


class KillTimer:
    """
    Cancellable deadline that kills a process when it passes.

    The deadline lives behind a condition; a single watchdog thread sleeps
    until it passes and re-checks whenever it is moved.

    Example:
        timer = KillTimer(command.destroy)
        timer.reset(60)        # kill in 120s unless reset again
        ...
        timer.cancel()
    """

    def __init__(self, on_expire: Callable[[], None], name: str = "kill-timer") -> None:
        self._on_expire = on_expire
        self._name = name
        self._condition = threading.Condition()
        self._deadline: Optional[float] = None
        self._cancelled = False
        self._fired = False
        self._thread: Optional[threading.Thread] = None

    def reset(self, timeout_seconds: float) -> None:
        """Move the deadline to twice the timeout from now."""
        self._set_deadline(time.monotonic() + 2 * timeout_seconds)

    def reset_unlimited(self) -> None:
        """Remove the deadline until the next reset."""
        self._set_deadline(None)

    def _set_deadline(self, deadline: Optional[float]) -> None:
        with self._condition:
            if self._cancelled or self._fired:
                return
            self._deadline = deadline
            if self._thread is None:
                self._thread = threading.Thread(
                    target=self._watch, name=self._name, daemon=True
                )
                self._thread.start()
            self._condition.notify_all()

    def cancel(self) -> None:
        with self._condition:
            self._cancelled = True
            self._condition.notify_all()

    @property
    def fired(self) -> bool:
        with self._condition:
            return self._fired

    @property
    def deadline(self) -> Optional[float]:
        with self._condition:
            return self._deadline

    def _watch(self) -> None:
        with self._condition:
            while not self._cancelled:
                if self._deadline is None:
                    self._condition.wait()
                    continue
                remaining = self._deadline - time.monotonic()
                if remaining <= 0:
                    self._fired = True
                    break
                self._condition.wait(remaining)
        if self._fired:
            self._on_expire()


class ActionRunner(MonitorHandler):
    """
    Runs one action to completion, resuming its batch after crashes.

    Each attempt launches the target with ``skip_past`` set to the last
    outcome the previous attempt started, so completed outcomes of a batch
    are not run again. Attempts stop once the batch completes normally, no
    progress was made, or the resume point is the action itself.
    """

    def __init__(
        self,
        action: Action,
        mode: "Mode",
        aggregator: OutcomeAggregator,
        expectation_store: ExpectationStore,
        config: DriverConfig,
        runner_index: int = 0,
    ) -> None:
        """
        Initialize the action runner.

        Args:
            action: The action to run.
            mode: Execution mode that launches and cleans up the action.
            aggregator: Where outcomes are recorded.
            expectation_store: Expectations, consulted for the timeout tag.
            config: Driver configuration.
            runner_index: Index of the runner loop, selects the monitor port.
        """
        self.action = action
        self._mode = mode
        self._aggregator = aggregator
        self._config = config
        self.monitor_port = config.monitor_port(runner_index)
        self.timeout_seconds = config.timeout_for(expectation_store.get(action.name))

        self.state = RunnerState.WAITING_FOR_SLOT
        self.attempts = 0
        self.skip_pasts: List[Optional[str]] = []
        self._last_started: Optional[str] = None
        self._last_finished: Optional[str] = None
        self._record_results = config.record_results
        self._kill_timer: Optional[KillTimer] = None

    def run(self) -> None:
        """Execute the action, then run the mode's cleanup hook regardless."""
        try:
            self._execute()
        finally:
            try:
                self._mode.cleanup(self.action)
            except Exception:
                logger.exception(f"cleanup failed for {self.action.name}")
            self.state = RunnerState.FINISHED

    def _execute(self) -> None:
        action_name = self.action.name
        logger.info(f"Action {action_name}")

        for attempt in itertools.count():
            # Resume right after the last outcome the previous attempt started.
            skip_past = self._last_started
            self._last_started = None

            if (skip_past is None and attempt != 0) or action_name == skip_past:
                break

            self.skip_pasts.append(skip_past)
            if not self._attempt(skip_past):
                return

    def _attempt(self, skip_past: Optional[str]) -> bool:
        """
        Launch the target once and follow its monitor.

        Returns:
            True if the batch ended early and another attempt may resume it.
        """
        action_name = self.action.name
        command = self._mode.create_action_command(
            self.action, skip_past, self.monitor_port
        )
        kill_timer = KillTimer(
            lambda: self._kill(command), name=f"kill-timer-{action_name}"
        )
        self._kill_timer = kill_timer
        self.attempts += 1
        self.state = RunnerState.RUNNING
        if skip_past is not None:
            logger.info(f"Resuming {action_name} after {skip_past}")

        try:
            command.start()
            if self.timeout_seconds != 0:
                kill_timer.reset(self.timeout_seconds)

            monitor = HostMonitor(self)
            if self._mode.use_socket_monitor():
                self._log_process_output(command)
                completed = monitor.attach(self.monitor_port)
            else:
                completed = monitor.follow_stream(command.stdout)

            if completed:
                self.state = RunnerState.COMPLETED
                return False

            self.state = RunnerState.TIMED_OUT if kill_timer.fired else RunnerState.PROCESS_DIED
            message = f"Target process did not complete normally: {command}"
            if kill_timer.fired:
                message += f" (killed after {self.timeout_seconds}s without progress)"
            logger.warning(
                f"{action_name}: {message}; last started outcome is {self._last_started}"
            )

            if self._last_started is None:
                self._aggregator.add_early(
                    Outcome.from_output(action_name, Result.ERROR, message)
                )
            elif self._last_started != self._last_finished:
                self._aggregator.add_early(
                    Outcome.from_output(self._last_started, Result.ERROR, message)
                )
            self.state = RunnerState.RETRY
            return True

        except (MonitorConnectionError, OSError) as e:
            # no retry after a monitor failure
            logger.error(f"Monitor failed for {action_name}: {e}")
            self._aggregator.add_early(
                Outcome.from_exception(action_name, Result.ERROR, e)
            )
            return False

        finally:
            kill_timer.cancel()
            command.destroy()

    def _kill(self, command: Command) -> None:
        logger.warning(
            f"killing {self.action.name} because it timed out after "
            f"{self.timeout_seconds} seconds. Last started outcome is "
            f"{self._last_started}"
        )
        command.destroy()

    def _log_process_output(self, command: Command) -> None:
        """Keep reading the process's own output while the monitor uses a socket."""
        stream = command.stdout

        def pump() -> None:
            for chunk in stream_chunks(stream):
                text = chunk.decode("utf-8", errors="replace").rstrip()
                if text:
                    logger.debug(f"{self.action.name} process: {text}")

        threading.Thread(
            target=pump, name=f"output-{self.action.name}", daemon=True
        ).start()

    def start(self, outcome_name: str, runner_class: Optional[str]) -> None:
        self._last_started = outcome_name
        if runner_class == BENCHMARK_RUNNER:
            if not self._config.benchmark:
                raise BenchmarkTimeoutError(outcome_name)
            logger.debug(f"running {outcome_name} with unlimited timeout")
            if self._kill_timer is not None:
                self._kill_timer.reset_unlimited()
            self._record_results = False
            return

        self._record_results = self._config.record_results
        self._rearm()

    def output(self, outcome_name: str, text: str) -> None:
        for line in text.splitlines():
            logger.bind(outcome=outcome_name).debug(line)

    def finish(self, outcome: Outcome) -> None:
        self._last_finished = outcome.name
        self._rearm()
        self._aggregator.record(outcome, record_results=self._record_results)

    def print(self, text: str) -> None:
        for line in text.splitlines():
            logger.info(line)

    def _rearm(self) -> None:
        if self._kill_timer is not None and self.timeout_seconds != 0:
            self._kill_timer.reset(self.timeout_seconds)
