# Background tail and heartbeat tasks.
# Copyright (C) 2025  The ciharness developers

# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published
# by the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU Affero General Public License for more details.

# You should have received a copy of the GNU Affero General Public License
# along with this program.  If not, see <http://www.gnu.org/licenses/>.

"""
This module contains the long-running loops a build keeps going next to its main work:
following log files, printing a heartbeat, and streaming container output.

Each loop runs in its own child process, started with ``python -m
ciharness.background``.  Being separate processes, they are torn down the same way as
anything else the build starts, by killing their process tree from an exit action.
"""

import argparse
import contextlib
import dataclasses
import logging
import os.path as path
import subprocess
import sys
import time
import typing as T

from ciharness.utils.argparse import create_root_parser
from ciharness.utils.process_tree import kill_tree

if T.TYPE_CHECKING:
    from ciharness.context import BuildContext

logger = logging.getLogger(__name__)

Sleep: T.TypeAlias = T.Callable[[float], None]

FOLLOW_INTERVAL = 1.0
"""Seconds between checks for new lines once a file is being followed."""

MAGENTA = "\x1b[35m"
RESET = "\x1b[0m"

STOP_TIMEOUT = 10
"""Seconds to wait for a killed background task to exit."""


def heartbeat(
    pattern: str,
    iterations: int,
    interval: float,
    out: T.TextIO,
    sleep: Sleep = time.sleep,
) -> None:
    """
    Prints ``pattern`` every ``interval`` seconds, at most ``iterations`` times, so that
    a task that outlives its build does not do so forever.
    """
    for _ in range(iterations):
        sleep(interval)
        out.write(pattern)
        out.flush()


def tail(
    fpath: str,
    poll_interval: float,
    out: T.TextIO,
    sleep: Sleep = time.sleep,
    follow_interval: float = FOLLOW_INTERVAL,
    should_stop: T.Callable[[], bool] = lambda: False,
) -> None:
    """
    Waits for ``fpath`` to exist, checking every ``poll_interval`` seconds, then copies
    lines appended to it from then on into ``out``.  Content already in the file is
    skipped.  Runs until killed, or until ``should_stop`` returns true.
    """
    while not path.exists(fpath):
        if should_stop():
            return
        sleep(poll_interval)

    with open(fpath, "r", errors="backslashreplace") as f:
        f.seek(0, 2)
        partial = ""
        while not should_stop():
            chunk = f.readline()
            if not chunk:
                sleep(follow_interval)
                continue
            partial += chunk
            if partial.endswith("\n"):
                out.write(partial)
                out.flush()
                partial = ""


def prefix_line(name: str, line: str) -> str:
    """Marks ``line`` as output of the container ``name``."""
    return f"{MAGENTA}{name}{RESET} {line}"


def docker_logs(name: str, out: T.TextIO) -> int:
    """
    Copies the combined output of container ``name`` into ``out``, line by line, until
    the container is gone.
    """
    with subprocess.Popen(
        ("docker", "logs", "--follow", name),
        stdin=subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        text=True,
        errors="backslashreplace",
    ) as proc:
        assert proc.stdout is not None
        for line in proc.stdout:
            out.write(prefix_line(name, line))
            out.flush()
    return proc.returncode


@dataclasses.dataclass
class BackgroundTask:
    """A running background loop."""

    kind: str
    process: subprocess.Popen[bytes]

    @property
    def pid(self) -> int:
        return self.process.pid

    def stop(self) -> None:
        """Kills the task and everything it started."""
        kill_tree(self.pid)
        try:
            self.process.wait(timeout=STOP_TIMEOUT)
        except subprocess.TimeoutExpired:
            logger.warning("background %s task %d did not exit", self.kind, self.pid)


def spawn_background(kind: str, *args: str, stdout: T.IO[T.Any] | None = None) -> BackgroundTask:
    """
    Starts a background loop in a child process.

    Args:
      kind: Which loop to run: ``heartbeat``, ``tail`` or ``docker-logs``.
      args: Arguments of the loop, as understood by :py:func:`main`.
      stdout: Where the loop writes.  Defaults to our own standard output.
    """
    proc = subprocess.Popen(
        (sys.executable, "-m", "ciharness.background", kind, *args),
        stdin=subprocess.DEVNULL,
        stdout=stdout,
    )
    logger.debug("started background %s task %d", kind, proc.pid)
    return BackgroundTask(kind, proc)


def _start(ctx: "BuildContext", kind: str, *args: str) -> BackgroundTask:
    task = spawn_background(kind, *args, stdout=ctx.build_log.out_stream)
    ctx.registry.add_exit_function(task.stop)
    return task


def start_build_heartbeat(ctx: "BuildContext") -> BackgroundTask:
    return _start(
        ctx,
        "heartbeat",
        f"--pattern={ctx.variables.heartbeat_pattern}",
        f"--iterations={ctx.variables.heartbeat_minutes}",
        f"--interval={ctx.config.heartbeat_interval}",
    )


def start_log_tail(ctx: "BuildContext", fpath: str) -> BackgroundTask:
    return _start(ctx, "tail", f"--poll-interval={ctx.config.log_poll_interval}", fpath)


def start_docker_log_stream(ctx: "BuildContext", name: str) -> BackgroundTask:
    """
    Follows the output of container ``name``.  The stream normally ends once the
    container is removed, so register this after the container removal.
    """
    return _start(ctx, "docker-logs", name)


def main(argv: list[str] | None = None) -> int:
    parser = create_root_parser("Runs a background loop of a CI build.")
    subparsers = parser.add_subparsers(dest="kind", required=True)

    heartbeat_parser = subparsers.add_parser("heartbeat")
    heartbeat_parser.add_argument("--pattern", default="…")
    heartbeat_parser.add_argument("--iterations", type=int, required=True)
    heartbeat_parser.add_argument("--interval", type=float, default=60)

    tail_parser = subparsers.add_parser("tail")
    tail_parser.add_argument("--poll-interval", type=float, default=2)
    tail_parser.add_argument("file")

    docker_parser = subparsers.add_parser("docker-logs")
    docker_parser.add_argument("name")

    args: argparse.Namespace = parser.parse_args(argv)
    with contextlib.suppress(KeyboardInterrupt, BrokenPipeError):
        match args.kind:
            case "heartbeat":
                heartbeat(args.pattern, args.iterations, args.interval, sys.stdout)
            case "tail":
                tail(args.file, args.poll_interval, sys.stdout)
            case "docker-logs":
                return docker_logs(args.name, sys.stdout)
    return 0


if __name__ == "__main__":
    sys.exit(main())
