# Helpers shared between CI providers.
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

import logging

from ciharness.errors import fatal

from . import Environment

logger = logging.getLogger(__name__)

FORCE_CI_MARKER = "[force ci]"
MINIMAL_CI_MARKER = "[minimal ci]"


def require(env: Environment, name: str) -> str:
    """Gets ``name`` from ``env``, ending the process if it is not set."""
    try:
        return env[name]
    except KeyError:
        fatal(f"{name} is not set")


def decide_run_tests(commit_message: str, event: str, build_type: str) -> bool:
    """
    Decides whether a hosted CI build should run tests.

    ``[force ci]`` in the commit message always runs them.  ``[minimal ci]`` skips them,
    except on pushes.  Pushes otherwise only run the ``sbt`` build, which is enough for
    a sanity check and for publishing.
    """
    force = FORCE_CI_MARKER in commit_message
    minimal = not force and MINIMAL_CI_MARKER in commit_message
    logger.info(
        "building for commit message=%r with force=%s and minimal=%s",
        commit_message,
        force,
        minimal,
    )

    if force:
        return True
    if minimal and event != "push":
        return False
    if event == "push" and build_type != "sbt":
        return False
    return True
