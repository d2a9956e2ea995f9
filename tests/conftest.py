"""
Shared fixtures for the vogar test suite.

ScriptMode launches ``sys.executable -c <script>`` for each action, so the
driver, runners and host monitor are exercised against real processes
without staging anything.
"""

import socket
import sys
import threading
import time
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pytest

from vogar.executor.command import Command
from vogar.executor.expectations import ExpectationStore
from vogar.executor.report import OutcomeAggregator
from vogar.executor.types import Action, Outcome
from vogar.mode.base import Mode, ModeOptions, package_root
from vogar.monitor.host import MonitorHandler


# Reports each name as a SUCCESS outcome on stdout, honouring the skip-past
# argument. With die_after set, the first attempt exits after that outcome
# without closing the session.
BATCH_SCRIPT = """
import sys
from vogar.monitor.target import StreamTargetMonitor
names = {names!r}
die_after = {die_after!r}
runner = {runner!r}
skip_past = sys.argv[1] or None
monitor = StreamTargetMonitor(sys.stdout.buffer)
skipping = skip_past is not None
for name in names:
    if skipping:
        skipping = name != skip_past
        continue
    monitor.outcome_started(name, runner)
    monitor.output("running " + name + "\\n")
    monitor.outcome_finished("SUCCESS")
    if name == die_after and skip_past is None:
        sys.exit(1)
monitor.close()
"""

# Starts an outcome and never finishes it. When resumed, reports nothing
# and closes the session.
HANG_SCRIPT = """
import sys, time
from vogar.monitor.target import StreamTargetMonitor
monitor = StreamTargetMonitor(sys.stdout.buffer)
if not sys.argv[1]:
    monitor.outcome_started({name!r})
    time.sleep(60)
monitor.close()
"""


# Reports each name as a SUCCESS outcome, pausing between its start and
# finish.
SLOW_SCRIPT = """
import sys, time
from vogar.monitor.target import StreamTargetMonitor
monitor = StreamTargetMonitor(sys.stdout.buffer)
for name in {names!r}:
    monitor.outcome_started(name)
    time.sleep({pause!r})
    monitor.outcome_finished("SUCCESS")
monitor.close()
"""


def batch_script(
    names: List[str],
    die_after: Optional[str] = None,
    runner: Optional[str] = None,
) -> str:
    return BATCH_SCRIPT.format(names=names, die_after=die_after, runner=runner)


def hang_script(name: str) -> str:
    return HANG_SCRIPT.format(name=name)


def slow_script(names: List[str], pause: float) -> str:
    return SLOW_SCRIPT.format(names=names, pause=pause)


class ScriptMode(Mode):
    """Mode whose actions are inline Python scripts."""

    def __init__(
        self,
        work_dir: Path,
        scripts: Dict[str, str],
        build_delays: Optional[Dict[str, float]] = None,
        build_outcomes: Optional[Dict[str, Outcome]] = None,
    ) -> None:
        super().__init__(ModeOptions(work_dir=str(work_dir), use_socket_monitor=False))
        self.scripts = scripts
        self.build_delays = build_delays or {}
        self.build_outcomes = build_outcomes or {}
        self.built: List[str] = []
        self.commands: List[Tuple[str, Optional[str], int]] = []
        self.cleaned: List[str] = []
        self.shut_down = False
        self._lock = threading.Lock()

    def build_and_install(self, action: Action) -> Optional[Outcome]:
        with self._lock:
            self.built.append(action.name)
        time.sleep(self.build_delays.get(action.name, 0))
        return self.build_outcomes.get(action.name)

    def create_action_command(
        self,
        action: Action,
        skip_past: Optional[str],
        monitor_port: int,
    ) -> Command:
        with self._lock:
            self.commands.append((action.name, skip_past, monitor_port))
        return Command(
            [sys.executable, "-c", self.scripts[action.name], skip_past or ""],
            env={"PYTHONPATH": str(package_root())},
        )

    def cleanup(self, action: Action) -> None:
        with self._lock:
            self.cleaned.append(action.name)

    def shutdown(self) -> None:
        self.shut_down = True

    def skip_pasts(self, name: str) -> List[Optional[str]]:
        return [skip for action, skip, _ in self.commands if action == name]


class RecordingHandler(MonitorHandler):
    """Collects monitor events in arrival order."""

    def __init__(self) -> None:
        self.started: List[Tuple[str, Optional[str]]] = []
        self.outputs: List[Tuple[str, str]] = []
        self.finished: List[Outcome] = []
        self.printed: List[str] = []

    def start(self, outcome_name: str, runner_class: Optional[str]) -> None:
        self.started.append((outcome_name, runner_class))

    def output(self, outcome_name: str, text: str) -> None:
        self.outputs.append((outcome_name, text))

    def finish(self, outcome: Outcome) -> None:
        self.finished.append(outcome)

    def print(self, text: str) -> None:
        self.printed.append(text)


@pytest.fixture
def handler() -> RecordingHandler:
    return RecordingHandler()


@pytest.fixture
def aggregator() -> OutcomeAggregator:
    return OutcomeAggregator(ExpectationStore())


@pytest.fixture
def free_port() -> int:
    """A localhost port that was free a moment ago."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("localhost", 0))
        return sock.getsockname()[1]


@pytest.fixture
def script_mode_factory(tmp_path):
    def create(scripts: Dict[str, str], **kwargs) -> ScriptMode:
        return ScriptMode(tmp_path / "work", scripts, **kwargs)

    return create
