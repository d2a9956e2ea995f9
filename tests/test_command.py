"""
Tests for process commands.
"""

import sys
import time

import pytest

from vogar.executor.command import Command
from vogar.executor.errors import CommandFailedError


class TestCommand:
    """Test starting, executing and destroying processes."""

    def test_execute_returns_output_lines(self):
        command = Command([sys.executable, "-c", "print('one'); print('two')"])

        assert command.execute(timeout_seconds=30) == ["one", "two"]

    def test_execute_merges_stderr(self):
        command = Command([sys.executable, "-c", "import sys; sys.stderr.write('err\\n')"])

        assert command.execute(timeout_seconds=30) == ["err"]

    def test_execute_failure(self):
        command = Command([sys.executable, "-c", "print('bad'); raise SystemExit(2)"])

        with pytest.raises(CommandFailedError) as info:
            command.execute(timeout_seconds=30)

        assert info.value.output_lines == ["bad"]
        assert info.value.args_list[0] == sys.executable

    def test_env_is_added(self):
        command = Command(
            [sys.executable, "-c", "import os; print(os.environ['VOGAR_TEST'])"],
            env={"VOGAR_TEST": "yes"},
        )

        assert command.execute(timeout_seconds=30) == ["yes"]

    def test_start_and_read(self):
        command = Command([sys.executable, "-c", "print('hello')"])
        command.start()

        assert command.stdout.read().strip() == b"hello"
        command.destroy()
        assert command.returncode == 0

    def test_start_twice(self):
        command = Command([sys.executable, "-c", "pass"])
        command.start()
        try:
            with pytest.raises(RuntimeError):
                command.start()
        finally:
            command.destroy()

    def test_destroy_kills_and_is_idempotent(self):
        command = Command([sys.executable, "-c", "import time; time.sleep(60)"])
        command.start()
        t0 = time.monotonic()

        command.destroy()
        command.destroy()

        assert time.monotonic() - t0 < 10
        assert command.returncode is not None

    def test_destroy_before_start(self):
        Command(["true"]).destroy()

    def test_stdout_before_start(self):
        with pytest.raises(RuntimeError):
            Command(["true"]).stdout

    def test_str(self):
        assert str(Command(["adb", "-s", "serial", "shell"])) == "adb -s serial shell"
