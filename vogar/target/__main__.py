"""
Entry point of a target process: ``python -m vogar.target``.
"""

import argparse
import sys
from typing import List, Optional

from vogar.monitor.target import SocketTargetMonitor, StreamTargetMonitor, TargetMonitor
from vogar.target.runner import RUNNERS, redirect_output


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="python -m vogar.target")
    transport = parser.add_mutually_exclusive_group(required=True)
    transport.add_argument("--monitor-port", type=int)
    transport.add_argument("--stream", action="store_true")
    parser.add_argument("--skip-past")
    parser.add_argument("--timeout", type=float, default=0.0)
    parser.add_argument("--runner", choices=sorted(RUNNERS), default="unittest")
    parser.add_argument("target")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)

    monitor: TargetMonitor
    if args.stream:
        # keep the real stdout before it is redirected
        monitor = StreamTargetMonitor(sys.stdout.buffer)
    else:
        socket_monitor = SocketTargetMonitor()
        socket_monitor.await_connection(args.monitor_port)
        monitor = socket_monitor

    stdout, stderr = sys.stdout, sys.stderr
    redirect_output(monitor)
    try:
        runner = RUNNERS[args.runner](monitor, args.skip_past, args.timeout)
        runner.run(args.target)
    finally:
        sys.stdout, sys.stderr = stdout, stderr
    monitor.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
