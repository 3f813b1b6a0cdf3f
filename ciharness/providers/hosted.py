# Hosted CI providers.
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
This module contains the handlers for hosted CI providers: Travis, CircleCI and
GitHub Actions.

On hosted providers the build starts its own database containers on ``localhost``.
Which ones is selected by ``BUILD_<ENGINE>`` variables holding image tags.
"""

import typing as T

from ciharness.data.build import DatabaseEndpoint, DatabaseVariables, ProviderFacts
from ciharness.errors import fatal

from . import (
    MARIADB_DRIVER,
    MYSQL_DRIVER,
    MYSQL_PROFILE,
    POSTGRES_DRIVER,
    POSTGRES_PROFILE,
    CentaurDatabase,
    CIProvider,
    Environment,
    ProviderHandler,
)
from .common import decide_run_tests, require

if T.TYPE_CHECKING:
    from ciharness.utils.git import GitQueries


class HostedProviderHandler(ProviderHandler):
    def database_variables(self, env: Environment, docker_localhost: str) -> DatabaseVariables:
        def endpoint(port: int, tag_variable: str) -> DatabaseEndpoint:
            return DatabaseEndpoint(
                hostname="localhost", port=port, docker_tag=env.get(tag_variable, "")
            )

        return DatabaseVariables(
            mariadb=endpoint(23306, "BUILD_MARIADB"),
            mariadb_latest=endpoint(33306, "BUILD_MARIADB_LATEST"),
            mysql=endpoint(3306, "BUILD_MYSQL"),
            mysql_latest=endpoint(13306, "BUILD_MYSQL_LATEST"),
            postgresql=endpoint(5432, "BUILD_POSTGRESQL"),
            postgresql_latest=endpoint(15432, "BUILD_POSTGRESQL_LATEST"),
        )

    def centaur_database(
        self, env: Environment, databases: DatabaseVariables, jdbc_urls: dict[str, str]
    ) -> CentaurDatabase:
        if databases.mysql.wanted:
            return CentaurDatabase(MYSQL_PROFILE, MYSQL_DRIVER, jdbc_urls["mysql"], "")
        if databases.mariadb.wanted:
            return CentaurDatabase(MYSQL_PROFILE, MARIADB_DRIVER, jdbc_urls["mariadb"], "")
        if databases.postgresql.wanted:
            return CentaurDatabase(
                POSTGRES_PROFILE, POSTGRES_DRIVER, jdbc_urls["postgresql"], ""
            )
        fatal("Unable to determine which RDBMS to use for Centaur.")


class TravisHandler(HostedProviderHandler):
    provider = CIProvider.TRAVIS

    def describe_build(
        self, env: Environment, git: "GitQueries", build_type_hint: str | None
    ) -> ProviderFacts:
        build_type = require(env, "BUILD_TYPE")
        event = require(env, "TRAVIS_EVENT_TYPE")
        commit_message = git.last_commit_message(env.get("TRAVIS_COMMIT_RANGE"))
        return ProviderFacts(
            is_ci=True,
            is_secure=require(env, "TRAVIS_SECURE_ENV_VARS") == "true",
            build_type=build_type,
            branch=env.get("TRAVIS_PULL_REQUEST_BRANCH") or require(env, "TRAVIS_BRANCH"),
            event=event,
            tag=require(env, "TRAVIS_TAG"),
            number=require(env, "TRAVIS_JOB_NUMBER"),
            url=(
                f"https://travis-ci.com/{require(env, 'TRAVIS_REPO_SLUG')}"
                f"/jobs/{require(env, 'TRAVIS_JOB_ID')}"
            ),
            git_user_email="travis@travis-ci.com",
            git_user_name="Travis CI",
            heartbeat_pattern="…",
            generate_coverage=True,
            run_tests=decide_run_tests(commit_message, event, build_type),
        )


class CircleHandler(HostedProviderHandler):
    provider = CIProvider.CIRCLE

    SECURE_REPOSITORY = "broadinstitute/cromwell"
    """Only builds of this repository (and not of forks) get secrets."""

    def describe_build(
        self, env: Environment, git: "GitQueries", build_type_hint: str | None
    ) -> ProviderFacts:
        build_type = require(env, "BUILD_TYPE")
        repository = (
            f"{require(env, 'CIRCLE_PROJECT_USERNAME')}/{require(env, 'CIRCLE_PROJECT_REPONAME')}"
        )
        # CircleCI does not tell us, and all our CircleCI builds are PR builds.
        event = "pull_request"
        commit_message = git.last_commit_message(env.get("CIRCLE_COMMIT_RANGE"))
        return ProviderFacts(
            is_ci=True,
            is_secure=repository == self.SECURE_REPOSITORY,
            build_type=build_type,
            branch=env.get("CIRCLE_BRANCH") or require(env, "CIRCLE_TAG"),
            event=event,
            tag=env.get("CIRCLE_TAG", ""),
            number=require(env, "CIRCLE_BUILD_NUM"),
            url=require(env, "CIRCLE_BUILD_URL"),
            git_user_email="builds@circleci.com",
            git_user_name="CircleCI",
            heartbeat_pattern="…",
            generate_coverage=True,
            run_tests=decide_run_tests(commit_message, event, build_type),
        )


class GithubHandler(HostedProviderHandler):
    provider = CIProvider.GITHUB

    def describe_build(
        self, env: Environment, git: "GitQueries", build_type_hint: str | None
    ) -> ProviderFacts:
        run_id = require(env, "GITHUB_RUN_ID")
        return ProviderFacts(
            is_ci=True,
            is_secure=True,
            build_type=require(env, "BUILD_TYPE"),
            branch=require(env, "GITHUB_REF_NAME"),
            event=require(env, "GITHUB_EVENT_NAME"),
            tag="",
            number=run_id,
            url=(
                f"{require(env, 'GITHUB_SERVER_URL')}/{require(env, 'GITHUB_REPOSITORY')}"
                f"/actions/runs/{run_id}"
            ),
            git_user_email="",
            git_user_name=require(env, "GITHUB_ACTOR"),
            heartbeat_pattern="…",
            generate_coverage=True,
            run_tests=True,
        )
