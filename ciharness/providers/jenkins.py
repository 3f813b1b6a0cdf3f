# Jenkins CI provider.
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

import typing as T

from ciharness.data.build import DatabaseEndpoint, DatabaseVariables, ProviderFacts

from . import (
    MYSQL_DRIVER,
    MYSQL_PROFILE,
    CentaurDatabase,
    CIProvider,
    Environment,
    ProviderHandler,
)
from .common import require

if T.TYPE_CHECKING:
    from ciharness.utils.git import GitQueries


class JenkinsHandler(ProviderHandler):
    """
    Jenkins builds run inside docker-compose, where the databases are sibling services
    reachable by name.  The build never starts database containers itself.
    """

    provider = CIProvider.JENKINS

    def describe_build(
        self, env: Environment, git: "GitQueries", build_type_hint: str | None
    ) -> ProviderFacts:
        return ProviderFacts(
            is_ci=True,
            is_secure=True,
            build_type=require(env, "JENKINS_BUILD_TYPE"),
            branch=require(env, "GIT_BRANCH").removeprefix("origin/"),
            event="",
            tag="",
            number=require(env, "BUILD_NUMBER"),
            url=require(env, "BUILD_URL"),
            git_user_email="jenkins@jenkins.io",
            git_user_name="Jenkins CI",
            # Jenkins buffers output until a newline.
            heartbeat_pattern="…\n",
            generate_coverage=False,
            run_tests=True,
        )

    def database_variables(self, env: Environment, docker_localhost: str) -> DatabaseVariables:
        return DatabaseVariables(
            mariadb=DatabaseEndpoint(hostname="mariadb-db", port=3306, docker_tag=""),
            mariadb_latest=DatabaseEndpoint(
                hostname="mariadb-db-latest", port=3306, docker_tag=""
            ),
            mysql=DatabaseEndpoint(hostname="mysql-db", port=3306, docker_tag=""),
            mysql_latest=DatabaseEndpoint(hostname="mysql-db-latest", port=3306, docker_tag=""),
            postgresql=DatabaseEndpoint(hostname="postgresql-db", port=5432, docker_tag=""),
            # Matches the compose file, which maps it as such.
            postgresql_latest=DatabaseEndpoint(
                hostname="postgresql-db-latest", port=3306, docker_tag=""
            ),
        )

    def centaur_database(
        self, env: Environment, databases: DatabaseVariables, jdbc_urls: dict[str, str]
    ) -> CentaurDatabase:
        return CentaurDatabase(
            MYSQL_PROFILE,
            MYSQL_DRIVER,
            jdbc_urls["mysql"],
            env.get("CENTAUR_TEST_ADDITIONAL_PARAMETERS", ""),
        )
