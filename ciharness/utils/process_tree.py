# Process tree supervision.
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
This module contains utilities for terminating a background process together with
everything it started.

Children are always looked up in the process table at the time of the call, since a
process may have spawned more of them since anyone last looked.
"""

import logging
import os
import signal

import psutil

logger = logging.getLogger(__name__)


def _direct_children(pid: int) -> list[int]:
    try:
        return [child.pid for child in psutil.Process(pid).children(recursive=False)]
    except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
        return []


def descendants(pid: int) -> list[int]:
    """
    Lists the descendants of ``pid``, deepest first: each child appears after all of its
    own descendants.  ``pid`` itself is not included.
    """
    result = []
    for child in _direct_children(pid):
        result.extend(descendants(child))
        result.append(child)
    return result


def _signal_one(pid: int, sig: int) -> None:
    try:
        os.kill(pid, sig)
    except (ProcessLookupError, PermissionError):
        logger.debug("could not signal %d, ignoring", pid)


def kill_tree(pid: int, sig: int = signal.SIGTERM) -> None:
    """
    Sends ``sig`` to every descendant of ``pid`` and then to ``pid``.  Each child's
    subtree is terminated completely before the child itself, and the child before its
    parent.

    This is best effort.  Processes that already exited or that we may not signal are
    skipped silently.
    """
    for child in _direct_children(pid):
        kill_tree(child, sig)
    _signal_one(pid, sig)
