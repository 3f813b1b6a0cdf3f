# Fatal error reporting.
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
Fatal errors: a missing required argument to a helper, or a runtime choice that
cannot be made.  These end the process right away.  Registered exit actions still
run, as :py:func:`sys.exit` goes through :py:mod:`atexit`.
"""

import sys
import typing as T


def fatal(message: str, *details: str) -> T.NoReturn:
    """
    Prints ``message`` (and optionally a few lines of ``details``) to standard error and
    exits with status 1.
    """
    print(f"Error: {message}", file=sys.stderr)
    for detail in details:
        print(detail, file=sys.stderr)
    sys.exit(1)
