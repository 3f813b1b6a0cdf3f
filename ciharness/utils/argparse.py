# Common argument parsing code.
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
This module contains the pieces of :py:mod:`argparse` configuration shared by the
``ciharness`` command and the background loop runner.
"""

import argparse

DEBUG_TOGGLES_EPILOG = """\
Developer toggles, set to any non-empty value in the environment: crmdbg enables
debug logging, crmcit simulates an integration test build, crmddm reaches database
containers through the Docker Desktop host name.
"""


def create_root_parser(description: str, epilog: str | None = None) -> argparse.ArgumentParser:
    """
    Creates a root :py:class:`argparse.ArgumentParser` with ``--version`` and, if
    given, an ``epilog`` kept as written.
    """
    from ciharness import __version__

    parser = argparse.ArgumentParser(
        description=description,
        epilog=epilog,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"""\
ciharness v{__version__}

Copyright (C) 2025  The ciharness developers
License AGPLv3+: GNU AGPL version 3 or later <https://gnu.org/licenses/agpl.html>.
This is free software: you are free to change and redistribute it.
There is NO WARRANTY, to the extent permitted by law.
""",
    )

    return parser


def add_build_type_argument(parser: argparse.ArgumentParser) -> None:
    """
    Adds ``--build-type``, used where the CI provider does not say which build this
    is.  Test scripts pass their own build type.
    """
    parser.add_argument(
        "--build-type",
        metavar="BUILD_TYPE",
        help="build type, such as sbt or centaurLocal, if the CI provider does not set one",
    )
