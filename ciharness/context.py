# Build context.
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
import typing as T
from dataclasses import dataclass, field

from ciharness.data.build import (
    BuildVariables,
    CentaurVariables,
    ConformanceVariables,
    DatabaseVariables,
)
from ciharness.data.config import HarnessConfig
from ciharness.exit_actions import ExitActionRegistry
from ciharness.utils.logging.build_logger import BuildLogger

logger = logging.getLogger(__name__)


@dataclass
class BuildContext:
    """
    Everything a build step needs.  Created once per process by the CLI.

    The variable models are immutable.  The optional ones are filled in by the setup
    steps that compute them.
    """

    variables: BuildVariables
    databases: DatabaseVariables
    config: HarnessConfig
    registry: ExitActionRegistry
    build_log: BuildLogger = field(default_factory=BuildLogger)
    centaur: CentaurVariables | None = None
    conformance: ConformanceVariables | None = None
    cromwell_jar: str | None = None
    """Server jar under test, once located."""
    extra_environment: dict[str, str] = field(default_factory=dict)
    """Variables computed by steps rather than at startup, such as the prior jar."""

    def __post_init__(self) -> None:
        self.log = logging.LoggerAdapter(
            logger,
            dict(
                provider=self.variables.provider.value,
                build_type=self.variables.build_type,
            ),
        )

    def environment(self) -> dict[str, str]:
        """
        Variables passed to every subprocess of the build: the ``CROMWELL_BUILD_*``
        rendering of everything known so far.
        """
        environ = self.variables.as_environment()
        environ.update(self.databases.as_environment())
        if self.centaur is not None:
            environ.update(self.centaur.as_environment())
        if self.conformance is not None:
            environ.update(self.conformance.as_environment())
        if self.cromwell_jar is not None:
            environ[BuildVariables.env_name("cromwell_jar")] = self.cromwell_jar
        environ.update(self.extra_environment)
        return environ

    def require_centaur(self) -> CentaurVariables:
        if self.centaur is None:
            raise RuntimeError("Centaur environment was not set up")
        return self.centaur

    def require_conformance(self) -> ConformanceVariables:
        if self.conformance is None:
            raise RuntimeError("conformance environment was not set up")
        return self.conformance

    def service_logger(self, service: str) -> "logging.LoggerAdapter[T.Any]":
        """A logger tagging records with an ephemeral container's name."""
        return logging.LoggerAdapter(
            logger,
            dict(
                provider=self.variables.provider.value,
                build_type=self.variables.build_type,
                service=service,
            ),
        )
