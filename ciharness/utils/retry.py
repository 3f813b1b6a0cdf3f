# Fixed-delay retries.
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
This module contains a helper for retrying flaky external operations, such as
publishing artifacts over the network.

Retries happen a fixed number of times with a fixed delay in between.  There is no
backoff and no per-attempt timeout.
"""

import asyncio
import logging
import typing as T
from dataclasses import dataclass
from subprocess import CalledProcessError

logger = logging.getLogger(__name__)

Operation: T.TypeAlias = T.Callable[[], T.Awaitable[int | None]]
"""
An operation to retry.  It succeeds when it returns ``0`` or ``None``, and fails when
it returns another exit status or raises :py:class:`subprocess.CalledProcessError`.
"""

DEFAULT_RETRY_COUNT = 3
DEFAULT_RETRY_DELAY = 15


@dataclass(frozen=True)
class RetryPlan:
    """How to retry a single operation."""

    operation: Operation
    """The operation to attempt."""
    retry_count: int = DEFAULT_RETRY_COUNT
    """
    Number of retries after the first attempt.  ``0`` means the operation runs once.
    """
    delay: float = DEFAULT_RETRY_DELAY
    """Seconds to wait between attempts."""

    def __post_init__(self) -> None:
        if self.retry_count < 0:
            raise ValueError(f"retry_count must not be negative, got {self.retry_count}")
        if self.delay < 0:
            raise ValueError(f"delay must not be negative, got {self.delay}")

    @property
    def name(self) -> str:
        return getattr(self.operation, "__qualname__", repr(self.operation))

    async def _attempt(self) -> int:
        try:
            status = await self.operation()
        except CalledProcessError as e:
            return e.returncode
        return 0 if status is None else status

    async def execute(self) -> int:
        """
        Runs the plan.

        Returns:
          ``0`` as soon as an attempt succeeds, otherwise the exit status of the last
          attempt.
        """
        status = 0
        for attempt in range(self.retry_count + 1):
            if attempt > 0:
                logger.info(
                    "retrying %s in %ss (attempt %d of %d, last status %d)",
                    self.name,
                    self.delay,
                    attempt + 1,
                    self.retry_count + 1,
                    status,
                )
                await asyncio.sleep(self.delay)
            status = await self._attempt()
            if status == 0:
                return 0
        logger.error("%s failed after %d attempts", self.name, self.retry_count + 1)
        return status


async def exec_retry_function(
    operation: Operation,
    retry_count: int = DEFAULT_RETRY_COUNT,
    delay: float = DEFAULT_RETRY_DELAY,
) -> int:
    """
    Attempts ``operation`` up to ``retry_count + 1`` times, waiting ``delay`` seconds
    between attempts.  See :py:meth:`RetryPlan.execute`.
    """
    return await RetryPlan(operation, retry_count, delay).execute()
