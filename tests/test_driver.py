"""
End-to-end tests of the driver pipeline using script actions.
"""

import pytest

from tests.conftest import batch_script
from vogar.executor.errors import BenchmarkTimeoutError, DriverReuseError
from vogar.executor.executor import Driver, run_actions
from vogar.executor.expectations import ExpectationStore
from vogar.executor.pool import RunnerPool
from vogar.executor.types import (
    HARNESS_OUTCOME_NAME,
    Action,
    DriverConfig,
    Outcome,
    Result,
)
from vogar.monitor.protocol import BENCHMARK_RUNNER


def action(name):
    return Action(name=name, target=name)


def scripts_for(*names):
    return {name: batch_script([name]) for name in names}


class TestDriver:
    """Test the build and run pipeline."""

    def test_runs_every_action(self, script_mode_factory):
        mode = script_mode_factory(scripts_for("a", "b", "c"))
        driver = Driver(mode, DriverConfig(num_runners=2, small_timeout_seconds=30))

        summary = driver.build_and_run([action("a"), action("b"), action("c")])

        assert summary.success
        assert summary.passed == 3
        assert set(summary.outcomes) == {"a", "b", "c"}
        assert sorted(mode.cleaned) == ["a", "b", "c"]
        assert mode.shut_down
        assert driver.ready.max_depth <= driver.config.ready_queue_capacity

    def test_unsupported_action_is_never_built(self, script_mode_factory):
        mode = script_mode_factory(scripts_for("a", "b", "c"))
        driver = Driver(
            mode,
            DriverConfig(num_runners=2),
            ExpectationStore.unsupported(["b"]),
        )

        summary = driver.build_and_run([action("a"), action("b"), action("c")])

        assert summary.skipped == 1
        assert summary.passed == 2
        assert "b" not in mode.built
        assert summary.outcomes["b"].result == Result.UNSUPPORTED
        assert summary.success

    def test_known_outcomes_are_not_built(self, script_mode_factory):
        mode = script_mode_factory(scripts_for("a"))
        driver = Driver(mode)

        summary = driver.build_and_run(
            [action("a"), action("b")],
            known_outcomes=[Outcome.from_output("b", Result.COMPILE_FAILED, "no source")],
        )

        assert mode.built == ["a"]
        assert summary.outcomes["b"].result == Result.COMPILE_FAILED
        assert summary.failure_names == ["b"]

    def test_build_failure_is_recorded(self, script_mode_factory):
        mode = script_mode_factory(
            scripts_for("a", "b"),
            build_outcomes={"b": Outcome.from_output("b", Result.COMPILE_FAILED, "bad")},
        )

        summary = Driver(mode).build_and_run([action("a"), action("b")])

        assert summary.outcomes["b"].result == Result.COMPILE_FAILED
        assert summary.passed == 1
        assert summary.failed == 1
        assert [name for name, _, _ in mode.commands] == ["a"]

    def test_prematurely_exhausted_input(self, script_mode_factory):
        mode = script_mode_factory(
            scripts_for("a", "b", "c"),
            build_delays={"c": 2.0},
        )
        config = DriverConfig(num_runners=3, num_builders=3, ready_timeout_seconds=0.3)
        driver = Driver(mode, config)

        summary = driver.build_and_run([action("a"), action("b"), action("c")])

        assert driver.prematurely_exhausted_input.is_set()
        harness = summary.outcomes[HARNESS_OUTCOME_NAME]
        assert harness.result == Result.ERROR
        assert "found fewer" in harness.output
        assert not summary.success

    def test_runner_failure_is_recorded_and_others_run(self, script_mode_factory):
        # no script for "a", so creating its command raises
        mode = script_mode_factory(scripts_for("b"))

        summary = Driver(mode, DriverConfig(num_runners=1)).build_and_run(
            [action("a"), action("b")]
        )

        assert summary.outcomes["a"].result == Result.ERROR
        assert "KeyError" in summary.outcomes["a"].output
        assert summary.outcomes["b"].result == Result.SUCCESS
        assert HARNESS_OUTCOME_NAME not in summary.outcomes
        assert sorted(mode.cleaned) == ["a", "b"]

    def test_interrupt_records_harness_error(self, script_mode_factory, monkeypatch):
        join = RunnerPool.join
        calls = []

        def interrupted_join(pool):
            calls.append(pool)
            if len(calls) == 1:
                raise KeyboardInterrupt()
            return join(pool)

        monkeypatch.setattr(RunnerPool, "join", interrupted_join)
        mode = script_mode_factory(scripts_for("a", "b", "c"))
        driver = Driver(mode, DriverConfig(num_runners=1))

        summary = driver.build_and_run([action("a"), action("b"), action("c")])

        assert driver.interrupted.is_set()
        assert len(calls) == 2
        harness = summary.outcomes[HARNESS_OUTCOME_NAME]
        assert harness.result == Result.ERROR
        assert "KeyboardInterrupt" in harness.output
        assert {"a", "b", "c"} <= set(summary.outcomes)
        assert not summary.success
        assert mode.shut_down

    def test_benchmark_without_opt_in_fails_the_run(self, script_mode_factory):
        mode = script_mode_factory({"bench": batch_script(["B1"], runner=BENCHMARK_RUNNER)})
        driver = Driver(mode)

        with pytest.raises(BenchmarkTimeoutError):
            driver.build_and_run([action("bench")])
        assert mode.shut_down

    def test_driver_is_single_use(self, script_mode_factory):
        mode = script_mode_factory(scripts_for("a"))
        driver = Driver(mode)
        driver.build_and_run([action("a")])

        with pytest.raises(DriverReuseError):
            driver.build_and_run([action("a")])

    def test_duplicate_names_rejected(self, script_mode_factory):
        mode = script_mode_factory(scripts_for("a"))

        with pytest.raises(ValueError, match="Duplicate"):
            Driver(mode).build_and_run([action("a"), action("a")])

    def test_nothing_to_do(self, script_mode_factory):
        mode = script_mode_factory({})

        summary = Driver(mode).build_and_run([])

        assert summary.total == 0
        assert summary.success

    def test_run_actions(self, script_mode_factory):
        mode = script_mode_factory(scripts_for("a"))

        summary = run_actions(mode, [action("a")])

        assert summary.passed == 1
