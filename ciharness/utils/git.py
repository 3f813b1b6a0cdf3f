# Version control queries.
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
This module contains the handful of ``git`` queries build variables are derived from.

These run once, before anything else, and never fail: a query that cannot be answered
(no repository, unknown revision) yields ``None`` or ``False``.
"""

import logging
import subprocess
import typing as T

from .fs import AnyPath

logger = logging.getLogger(__name__)


class GitQueries(T.Protocol):
    def last_commit_message(self, commit_range: str | None) -> str: ...

    def short_hash(self) -> str | None: ...

    def is_ancestor_of_head(self, revision: str) -> bool: ...


class Git:
    """:py:class:`GitQueries` answered by running ``git`` in ``repository``."""

    def __init__(self, repository: AnyPath) -> None:
        self.repository = repository

    def _run(self, *args: str) -> subprocess.CompletedProcess[str]:
        try:
            return subprocess.run(
                ("git", *args),
                cwd=self.repository,
                stdin=subprocess.DEVNULL,
                capture_output=True,
                text=True,
            )
        except OSError:
            logger.debug("could not run git", exc_info=True)
            return subprocess.CompletedProcess(("git", *args), 127, "", "")

    def last_commit_message(self, commit_range: str | None) -> str:
        """
        The commit message that decides how a CI build behaves.

        If ``commit_range`` is given, the last line of the range's log, oldest commit
        first.  This is correct for both push and pull request builds, where ``HEAD``
        may be a merge commit.  Otherwise, or if that yields nothing, the message of
        ``HEAD``.
        """
        if commit_range:
            log = self._run("log", "--reverse", commit_range)
            lines = log.stdout.splitlines() if log.returncode == 0 else []
            if lines and lines[-1].strip():
                return lines[-1]
        head = self._run("log", "--format=%B", "--max-count=1", "HEAD")
        return head.stdout.strip() if head.returncode == 0 else ""

    def short_hash(self) -> str | None:
        result = self._run("rev-parse", "--short=7", "HEAD")
        if result.returncode != 0:
            return None
        return result.stdout.strip() or None

    def is_ancestor_of_head(self, revision: str) -> bool:
        result = self._run("merge-base", "--is-ancestor", revision, "HEAD")
        return result.returncode == 0
