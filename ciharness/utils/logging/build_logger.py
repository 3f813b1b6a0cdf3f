# Logger for build-related output, printed alongside build tool output.
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
This module contains a convenient logger used for logging build-specific output.
"""

import sys
import traceback
import typing as T
from datetime import datetime, timezone

from . import LOG_TS_FORMAT


class BuildLogger:
    """
    A logger for formatting and printing data into the CI job log.  The CI job log is
    where the build tool, the container runtime and the test harness write, so this
    output is interleaved with theirs rather than sent through :py:mod:`logging`.

    API is inspired by stdlib logging, but far less flexible.
    """

    def __init__(self, out_stream: T.TextIO | None = None) -> None:
        """
        Args:
          out_stream: Where to write the formatted output.  Defaults to
                      :py:data:`sys.stdout`.
        """
        self.out_stream = out_stream if out_stream is not None else sys.stdout
        """
        Where to write the formatted output.

        Subprocesses whose output is not captured inherit this stream.
        """

    def _log(self, level: T.Literal["INFO", "WARN", "ERROR"], message: str) -> None:
        now_ts = datetime.now(timezone.utc)
        print(
            f"[ciharness @ {now_ts.strftime(LOG_TS_FORMAT)} {level:>5}] {message}",
            file=self.out_stream,
            flush=True,
        )

    def info(self, message: str) -> None:
        """Logs an informative message."""
        self._log("INFO", message)

    def warning(self, message: str) -> None:
        """Logs a warning."""
        self._log("WARN", message)

    def error(self, message: str) -> None:
        """Logs an error message."""
        self._log("ERROR", message)

    def exception(self, message: str) -> None:
        """Logs ``message`` as an error, accompanied by the current exception."""
        self._log("ERROR", message)
        traceback.print_exc(file=self.out_stream)

    def banner(self, *lines: str) -> None:
        """Prints a boxed, impossible to miss, warning."""
        width = max(len(line) for line in lines) + 8
        print("*" * width, file=self.out_stream)
        print("*" * width, file=self.out_stream)
        print(f"**{' ' * (width - 4)}**", file=self.out_stream)
        for line in lines:
            print(f"**  {line.center(width - 8)}  **", file=self.out_stream)
        print(f"**{' ' * (width - 4)}**", file=self.out_stream)
        print("*" * width, file=self.out_stream)
        print("*" * width, file=self.out_stream, flush=True)
