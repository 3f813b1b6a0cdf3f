# Teardown actions run when the process exits.
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
This module contains the exit-action registry, the one place that knows how to tear
down everything a build started: background tailers, heartbeats, ephemeral database
containers and their id files.

Components register a teardown action right after acquiring a resource.  When the
process exits, normally or because of ``SIGTERM``, every registered action runs once,
in registration order.  A failing action is logged and the rest still run.

Command actions are additionally written to a journal file named after the process
id.  A process image that replaces this one through :py:func:`os.execv` keeps the
same id, so a registry created over the same journal picks those actions up and
runs them at its own exit.
"""

import atexit
import contextlib
import functools
import logging
import os
import os.path as path
import shlex
import signal
import subprocess
import sys
import typing as T
from dataclasses import dataclass, field

from ciharness.errors import fatal
from ciharness.utils.fs import AnyPath, read_lines

logger = logging.getLogger(__name__)

JOURNAL_PREFIX = "ciharness_exit_functions"


def journal_path_for(directory: AnyPath, pid: int | None = None) -> str:
    """Journal location for process ``pid`` (default: this process) in ``directory``."""
    return path.join(directory, f"{JOURNAL_PREFIX}.{os.getpid() if pid is None else pid}")


@dataclass(frozen=True)
class ExitAction:
    """
    A single teardown step.  Exactly one of ``command`` and ``callback`` is set.
    """

    command: tuple[str, ...] = ()
    """Program and arguments to execute."""
    callback: T.Callable[[], object] | None = field(default=None, compare=False)
    """In-process function to call.  Not journaled."""
    description: str = ""

    @classmethod
    def from_command(cls, *argv: "str | os.PathLike[str] | int") -> "ExitAction":
        command = tuple(os.fspath(arg) if isinstance(arg, os.PathLike) else str(arg) for arg in argv)
        return cls(command=command, description=shlex.join(command))

    @classmethod
    def from_callable(cls, function: T.Callable[..., object], *args: T.Any) -> "ExitAction":
        name = getattr(function, "__qualname__", repr(function))
        return cls(
            callback=functools.partial(function, *args),
            description=f"{name}({', '.join(map(repr, args))})",
        )

    @property
    def journal_line(self) -> str | None:
        """
        How this action is written to the journal, if it can be.  Callbacks cannot,
        and neither can commands with a line break in an argument.
        """
        if self.callback is not None or any("\n" in arg or "\r" in arg for arg in self.command):
            return None
        return shlex.join(self.command)

    def run(self) -> None:
        """Runs the action, raising if it fails."""
        if self.callback is not None:
            self.callback()
            return
        subprocess.run(self.command, check=True, stdin=subprocess.DEVNULL)


class ExitActionRegistry:
    """
    Ordered, append-only list of teardown actions for one process.

    The registry starts out unarmed.  Registering the first action arms it, which
    installs an :py:mod:`atexit` hook and a ``SIGTERM`` handler that both lead to
    :py:meth:`run_exit_functions`.
    """

    def __init__(self, journal_path: AnyPath | None = None, install_trap: bool = True) -> None:
        """
        Args:
          journal_path: Where to journal command actions.  ``None`` disables the journal.
          install_trap: Whether arming installs the exit and signal hooks.  Callers that
                        run teardown themselves pass ``False``.
        """
        self.journal_path = journal_path
        self.install_trap = install_trap
        self._actions: list[ExitAction] = []
        self._armed = False
        self._running = False

        if journal_path is not None and path.exists(journal_path):
            for line in read_lines(journal_path):
                try:
                    argv = shlex.split(line)
                except ValueError as e:
                    logger.error(
                        "skipping unreadable exit action %r in %s: %s", line, journal_path, e
                    )
                    continue
                self._actions.append(ExitAction.from_command(*argv))
            logger.info(
                "adopted %d exit actions from %s", len(self._actions), journal_path
            )
            self._arm()

    @property
    def armed(self) -> bool:
        return self._armed

    @property
    def actions(self) -> tuple[ExitAction, ...]:
        """Actions that will run at exit, in order."""
        return tuple(self._actions)

    def add_exit_function(self, *action: T.Any) -> ExitAction:
        """
        Registers a teardown action.

        ``action`` is either a callable followed by its arguments, or a program followed
        by its arguments.  Calling this without any arguments is a usage error and ends
        the process.
        """
        if not action:
            fatal("add_exit_function called without a function")

        if callable(action[0]):
            exit_action = ExitAction.from_callable(*action)
        else:
            exit_action = ExitAction.from_command(*action)

        self._actions.append(exit_action)
        line = exit_action.journal_line
        if self.journal_path is not None:
            if line is not None:
                with open(self.journal_path, "a") as journal:
                    print(line, file=journal)
            elif exit_action.callback is None:
                logger.warning("not journaling %s, it spans lines", exit_action.description)
        logger.debug("registered exit action %s", exit_action.description)

        self._arm()
        return exit_action

    def _arm(self) -> None:
        if self._armed:
            return
        self._armed = True
        if not self.install_trap:
            return
        atexit.register(self.run_exit_functions)
        try:
            signal.signal(signal.SIGTERM, self._on_signal)
        except ValueError:
            # Not the main thread.  Normal exits are still covered.
            logger.debug("cannot install SIGTERM handler outside the main thread")

    def _on_signal(self, signum: int, frame: T.Any) -> None:
        if self._running:
            return
        logger.info("received signal %d, exiting", signum)
        sys.exit(128 + signum)

    def run_exit_functions(self) -> None:
        """
        Runs every registered action once, in the order they were registered, then
        removes the journal.  Failures are logged and otherwise ignored.  Does nothing
        if there is nothing to run, including on a second call.
        """
        if self._running:
            return
        actions, self._actions = self._actions, []
        if not actions and not self._journal_exists():
            return

        self._running = True
        try:
            for action in actions:
                logger.debug("running exit action %s", action.description)
                try:
                    action.run()
                except Exception:
                    logger.exception("exit action %s failed", action.description)
        finally:
            if self.journal_path is not None:
                with contextlib.suppress(FileNotFoundError):
                    os.remove(self.journal_path)
            self._running = False

    def _journal_exists(self) -> bool:
        return self.journal_path is not None and path.exists(self.journal_path)
