"""
Tests for the target-side runners, in process and through HostMode.
"""

import io
import textwrap

import pytest

from vogar.executor.executor import Driver
from vogar.executor.types import Action, DriverConfig, Result
from vogar.mode.host import HostMode, HostModeOptions
from vogar.monitor.host import MonitorDecoder
from vogar.monitor.protocol import BENCHMARK_RUNNER, OutcomeFinished, OutcomeStarted
from vogar.monitor.target import StreamTargetMonitor
from vogar.target.__main__ import parse_args
from vogar.target.runner import BenchmarkRunner, UnitTestRunner, UNITTEST_RUNNER

SAMPLE_TESTS = '''
import unittest


class SampleTest(unittest.TestCase):
    def test_a_pass(self):
        print("printed by test_a_pass")

    def test_b_fail(self):
        self.assertEqual(1, 2)

    def test_c_error(self):
        raise RuntimeError("exploded")

    @unittest.skip("not today")
    def test_d_skipped(self):
        pass
'''

SLOW_TESTS = '''
import time
import unittest


class SlowTest(unittest.TestCase):
    def test_a_slow(self):
        time.sleep(30)

    def test_b_fast(self):
        pass
'''

BENCHMARKS = '''
def time_sum(reps):
    for _ in range(reps):
        sum(range(100))


def time_broken(reps):
    raise ValueError("no")


def helper():
    pass
'''


def write_module(directory, name, source):
    path = directory / f"{name}.py"
    path.write_text(textwrap.dedent(source))
    return path


def run_in_process(runner_class, target, skip_past=None):
    buffer = io.BytesIO()
    monitor = StreamTargetMonitor(buffer)
    runner_class(monitor, skip_past=skip_past).run(target)
    monitor.close()
    decoder = MonitorDecoder([buffer.getvalue()])
    events = list(decoder)
    assert decoder.completed
    return events


def finished(events):
    return {e.outcome.name: e.outcome for e in events if isinstance(e, OutcomeFinished)}


class TestUnitTestRunner:
    """Test the unittest runner in process."""

    @pytest.fixture
    def sample(self, tmp_path, monkeypatch):
        write_module(tmp_path, "vogar_sample_tests", SAMPLE_TESTS)
        monkeypatch.syspath_prepend(str(tmp_path))
        return "vogar_sample_tests"

    def test_results(self, sample):
        outcomes = finished(run_in_process(UnitTestRunner, sample))
        prefix = "vogar_sample_tests.SampleTest."

        assert outcomes[prefix + "test_a_pass"].result == Result.SUCCESS
        assert outcomes[prefix + "test_b_fail"].result == Result.EXEC_FAILED
        assert "AssertionError" in outcomes[prefix + "test_b_fail"].output
        assert outcomes[prefix + "test_c_error"].result == Result.ERROR
        assert "exploded" in outcomes[prefix + "test_c_error"].output
        assert outcomes[prefix + "test_d_skipped"].result == Result.SUCCESS
        assert "not today" in outcomes[prefix + "test_d_skipped"].output

    def test_runner_class_reported(self, sample):
        events = run_in_process(UnitTestRunner, sample)
        started = [e for e in events if isinstance(e, OutcomeStarted)]

        assert {e.runner for e in started} == {UNITTEST_RUNNER}

    def test_skip_past(self, sample):
        outcomes = finished(run_in_process(
            UnitTestRunner, sample, skip_past="vogar_sample_tests.SampleTest.test_b_fail"
        ))

        assert sorted(outcomes) == [
            "vogar_sample_tests.SampleTest.test_c_error",
            "vogar_sample_tests.SampleTest.test_d_skipped",
        ]

    def test_missing_module(self):
        outcomes = finished(run_in_process(UnitTestRunner, "vogar_no_such_module"))

        assert len(outcomes) == 1
        assert all(o.result == Result.ERROR for o in outcomes.values())


class TestBenchmarkRunner:
    """Test the benchmark runner in process."""

    def test_times_benchmarks(self, tmp_path, monkeypatch):
        write_module(tmp_path, "vogar_sample_benchmarks", BENCHMARKS)
        monkeypatch.syspath_prepend(str(tmp_path))
        monkeypatch.setattr(BenchmarkRunner, "min_seconds", 0.01)

        events = run_in_process(BenchmarkRunner, "vogar_sample_benchmarks")
        outcomes = finished(events)

        assert sorted(outcomes) == [
            "vogar_sample_benchmarks.time_broken",
            "vogar_sample_benchmarks.time_sum",
        ]
        assert outcomes["vogar_sample_benchmarks.time_sum"].result == Result.SUCCESS
        assert "ns per rep" in outcomes["vogar_sample_benchmarks.time_sum"].output
        assert outcomes["vogar_sample_benchmarks.time_broken"].result == Result.EXEC_FAILED
        started = [e for e in events if isinstance(e, OutcomeStarted)]
        assert {e.runner for e in started} == {BENCHMARK_RUNNER}

    def test_missing_module(self):
        outcomes = finished(run_in_process(BenchmarkRunner, "vogar_no_such_benchmarks"))

        assert list(outcomes) == ["vogar_no_such_benchmarks"]
        outcome = outcomes["vogar_no_such_benchmarks"]
        assert outcome.result == Result.ERROR
        assert "ModuleNotFoundError" in outcome.output

    def test_import_error_is_reported(self, tmp_path, monkeypatch):
        write_module(tmp_path, "vogar_broken_benchmarks", "raise RuntimeError('boom')\n")
        monkeypatch.syspath_prepend(str(tmp_path))

        outcomes = finished(run_in_process(BenchmarkRunner, "vogar_broken_benchmarks"))

        assert outcomes["vogar_broken_benchmarks"].result == Result.ERROR
        assert "boom" in outcomes["vogar_broken_benchmarks"].output


class TestArguments:
    """Test target command line parsing."""

    def test_socket(self):
        args = parse_args(["--monitor-port", "9000", "pkg.tests"])

        assert args.monitor_port == 9000
        assert not args.stream
        assert args.runner == "unittest"
        assert args.skip_past is None

    def test_stream_with_options(self):
        args = parse_args([
            "--stream", "--skip-past", "a.b", "--timeout", "2.5",
            "--runner", "benchmark", "pkg.bench",
        ])

        assert args.stream
        assert args.skip_past == "a.b"
        assert args.timeout == 2.5
        assert args.target == "pkg.bench"

    def test_transport_required(self):
        with pytest.raises(SystemExit):
            parse_args(["pkg.tests"])


class TestHostModeEndToEnd:
    """Run real target processes through the driver."""

    def run(self, tmp_path, source, port, **options):
        path = write_module(tmp_path, "e2e_tests", source)
        mode = HostMode(HostModeOptions(work_dir=str(tmp_path / "work"), **options))
        config = DriverConfig(first_monitor_port=port, small_timeout_seconds=30)
        action = Action(name="e2e_tests", target="e2e_tests", source_path=str(path))
        return Driver(mode, config).build_and_run([action])

    def test_socket_monitor(self, tmp_path, free_port):
        summary = self.run(tmp_path, SAMPLE_TESTS, free_port)
        prefix = "e2e_tests.SampleTest."

        assert summary.outcomes[prefix + "test_a_pass"].result == Result.SUCCESS
        assert "printed by test_a_pass" in summary.outcomes[prefix + "test_a_pass"].output
        assert summary.outcomes[prefix + "test_b_fail"].result == Result.EXEC_FAILED
        assert summary.failed == 2
        assert summary.passed == 2

    def test_stream_monitor(self, tmp_path, free_port):
        summary = self.run(tmp_path, SAMPLE_TESTS, free_port, use_socket_monitor=False)

        assert summary.passed == 2
        assert summary.failed == 2

    def test_target_timeout_resumes_after_slow_test(self, tmp_path, free_port):
        summary = self.run(tmp_path, SLOW_TESTS, free_port, timeout_seconds=1)

        slow = summary.outcomes["e2e_tests.SlowTest.test_a_slow"]
        assert slow.result == Result.TIMEOUT
        assert "timed out" in slow.output
        assert summary.outcomes["e2e_tests.SlowTest.test_b_fast"].result == Result.SUCCESS
