"""
Command line interface.

    vogar run tests.test_math benchmarks/bench_sort.py --parallel 4
"""

import os
import sys
from pathlib import Path
from typing import List, Optional

import typer
from loguru import logger

from vogar.executor.errors import HarnessError
from vogar.executor.executor import Driver
from vogar.executor.expectations import ExpectationStore
from vogar.executor.types import Action, DriverConfig
from vogar.mode.archive import ArchiveMode, ArchiveModeOptions
from vogar.mode.base import Mode
from vogar.mode.device import DeviceMode, DeviceModeOptions
from vogar.mode.host import HostMode, HostModeOptions

app = typer.Typer(name="vogar", help="Parallel test and benchmark harness.")

LOG_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
    "<cyan>{thread.name}</cyan> | {message}"
)


def configure_logging(verbose: bool) -> None:
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else "INFO", format=LOG_FORMAT)


def action_for(target: str, runner: str) -> Action:
    """
    Turn a command line target into an action.

    A path to a ``.py`` file is staged and compiled before it runs; anything
    else is a dotted name resolved on the search path.
    """
    path = Path(target)
    if path.suffix == ".py":
        return Action(
            name=path.stem,
            target=path.stem,
            source_path=str(path.resolve()),
            runner=runner,
        )
    return Action(name=target, target=target, runner=runner)


@app.callback()
def main() -> None:
    """Parallel test and benchmark harness."""


@app.command()
def run(
    targets: List[str] = typer.Argument(..., help="Modules, classes or .py files to run"),
    mode: str = typer.Option("host", help="Where to run actions (host, device, archive)"),
    parallel: int = typer.Option(1, help="Number of actions to run at once"),
    timeout: float = typer.Option(60.0, help="Seconds allowed per outcome"),
    large_timeout: float = typer.Option(600.0, help="Seconds allowed per outcome tagged large"),
    first_monitor_port: int = typer.Option(8787, help="First monitor port"),
    benchmark: bool = typer.Option(False, help="Run targets as benchmarks with no timeout"),
    unsupported: List[str] = typer.Option([], help="Names expected to be unsupported"),
    stream_monitor: bool = typer.Option(False, help="Read outcomes from process output instead of a socket"),
    device: Optional[str] = typer.Option(None, help="Device serial (device and archive modes)"),
    path: List[str] = typer.Option([], help="Extra import roots for targets"),
    keep: bool = typer.Option(False, help="Keep staged files after the run"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log debug output"),
) -> None:
    """Build and run TARGETS, then print a summary."""
    configure_logging(verbose)

    try:
        config = DriverConfig(
            num_runners=parallel,
            first_monitor_port=first_monitor_port,
            small_timeout_seconds=timeout,
            large_timeout_seconds=large_timeout,
            benchmark=benchmark,
        )
        runner = "benchmark" if benchmark else "unittest"
        actions = [action_for(target, runner) for target in targets]
    except ValueError as e:
        logger.error(str(e))
        raise typer.Exit(code=2)

    search_path = [os.getcwd(), *path]
    execution_mode: Mode
    if mode == "host":
        execution_mode = HostMode(HostModeOptions(
            timeout_seconds=0 if benchmark else timeout,
            use_socket_monitor=not stream_monitor,
            clean_after=not keep,
            search_path=search_path,
        ))
    elif mode in ("device", "archive"):
        options_class, mode_class = (
            (DeviceModeOptions, DeviceMode) if mode == "device"
            else (ArchiveModeOptions, ArchiveMode)
        )
        execution_mode = mode_class(options_class(
            timeout_seconds=0 if benchmark else timeout,
            use_socket_monitor=not stream_monitor,
            clean_after=not keep,
            # the working directory is a host path; only --path reaches the device
            search_path=list(path),
            device_serial=device,
            first_monitor_port=first_monitor_port,
            num_runners=parallel,
        ))
    else:
        logger.error(f"Unknown mode: {mode}")
        raise typer.Exit(code=2)

    driver = Driver(execution_mode, config, ExpectationStore.unsupported(unsupported))
    try:
        summary = driver.build_and_run(actions)
    except HarnessError as e:
        logger.error(str(e))
        raise typer.Exit(code=1)

    raise typer.Exit(code=0 if summary.success else 1)


if __name__ == "__main__":
    app()
