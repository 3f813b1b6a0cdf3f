# Builds outside of CI.
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
This module contains the handler used when no CI provider is detected, usually on a
developer's machine.  Most values can be overridden with the ``CROMWELL_BUILD_*``
variable of the same name.
"""

import typing as T

from ciharness.data.build import ENV_PREFIX, DatabaseEndpoint, DatabaseVariables, ProviderFacts
from ciharness.errors import fatal

from . import (
    MYSQL_DRIVER,
    MYSQL_PROFILE,
    CentaurDatabase,
    CIProvider,
    Environment,
    ProviderHandler,
)

if T.TYPE_CHECKING:
    from ciharness.utils.git import GitQueries

_DEFAULT_PORTS = {
    "mariadb": 13306,
    "mariadb_latest": 13306,
    "mysql": 3306,
    "mysql_latest": 13306,
    "postgresql": 5432,
    "postgresql_latest": 13306,
}


class LocalHandler(ProviderHandler):
    provider = CIProvider.UNKNOWN

    def describe_build(
        self, env: Environment, git: "GitQueries", build_type_hint: str | None
    ) -> ProviderFacts:
        return ProviderFacts(
            is_ci=False,
            is_secure=True,
            build_type=env.get("BUILD_TYPE") or build_type_hint or "unknown",
            branch="unknown",
            event="unknown",
            tag="",
            number="",
            url="",
            git_user_email="unknown.git.user@example.org",
            git_user_name="Unknown Git User",
            heartbeat_pattern="…",
            generate_coverage=env.get(f"{ENV_PREFIX}GENERATE_COVERAGE", "true") == "true",
            run_tests=True,
        )

    def database_variables(self, env: Environment, docker_localhost: str) -> DatabaseVariables:
        def endpoint(name: str) -> DatabaseEndpoint:
            prefix = f"{ENV_PREFIX}{name.upper()}"
            port = env.get(f"{prefix}_PORT", str(_DEFAULT_PORTS[name]))
            if not port.isdigit():
                fatal(f"{prefix}_PORT is not a port number: {port!r}")
            return DatabaseEndpoint(
                hostname=env.get(f"{prefix}_HOSTNAME", docker_localhost),
                port=int(port),
                docker_tag="",
            )

        return DatabaseVariables(**{name: endpoint(name) for name in _DEFAULT_PORTS})

    def centaur_database(
        self, env: Environment, databases: DatabaseVariables, jdbc_urls: dict[str, str]
    ) -> CentaurDatabase:
        prefix = f"{ENV_PREFIX}CENTAUR_"
        return CentaurDatabase(
            env.get(f"{prefix}SLICK_PROFILE", MYSQL_PROFILE),
            env.get(f"{prefix}JDBC_DRIVER", MYSQL_DRIVER),
            env.get(f"{prefix}JDBC_URL", jdbc_urls["mysql"]),
            "",
        )
