# CI provider abstraction.
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
This module contains the base class for CI providers.

A CI provider is the system running the build.  Providers differ in how they describe
the build (which environment variables hold the branch, the build number, and so on),
in where databases are reachable, and in which database the integration tests run
against.  Everything else is provider-agnostic.
"""

import enum
import typing as T
from abc import ABC, abstractmethod

if T.TYPE_CHECKING:
    from ciharness.data.build import DatabaseVariables, ProviderFacts
    from ciharness.utils.git import GitQueries


Environment: T.TypeAlias = T.Mapping[str, str]


class CIProvider(enum.Enum):
    """
    Enum of known CI providers.
    """

    TRAVIS = "travis"
    JENKINS = "jenkins"
    CIRCLE = "circle"
    GITHUB = "github"
    UNKNOWN = "unknown"
    """Not running on CI.  Usually a developer's machine."""


_DETECTION_VARIABLES = (
    ("TRAVIS", CIProvider.TRAVIS),
    ("JENKINS", CIProvider.JENKINS),
    ("CIRCLECI", CIProvider.CIRCLE),
    ("GITHUB_ACTIONS", CIProvider.GITHUB),
)


def detect_provider(env: Environment) -> CIProvider:
    """
    Detects the CI provider based on the variables each sets to ``true``.  The first
    match wins.
    """
    for variable, provider in _DETECTION_VARIABLES:
        if env.get(variable) == "true":
            return provider
    return CIProvider.UNKNOWN


class CentaurDatabase(T.NamedTuple):
    """Which database the integration tests use, and how to reach it."""

    slick_profile: str
    jdbc_driver: str
    jdbc_url: str
    additional_parameters: str


MYSQL_PROFILE = "slick.jdbc.MySQLProfile$"
POSTGRES_PROFILE = "slick.jdbc.PostgresProfile$"
MYSQL_DRIVER = "com.mysql.cj.jdbc.Driver"
MARIADB_DRIVER = "org.mariadb.jdbc.Driver"
POSTGRES_DRIVER = "org.postgresql.Driver"


class ProviderHandler(ABC):
    """
    Provider-specific parts of computing build variables.
    """

    provider: T.ClassVar[CIProvider]

    @abstractmethod
    def describe_build(
        self, env: Environment, git: "GitQueries", build_type_hint: str | None
    ) -> "ProviderFacts":
        """
        Collects the facts this provider knows about the build.

        Args:
          env: Environment of the build.
          git: Version control queries on the source tree.
          build_type_hint: Build type to use when the provider does not say, usually
                           derived from the name of the test script being run.
        """

    @abstractmethod
    def database_variables(self, env: Environment, docker_localhost: str) -> "DatabaseVariables":
        """
        Where the test databases are reachable on this provider, and which of them the
        build should start containers for.
        """

    @abstractmethod
    def centaur_database(
        self, env: Environment, databases: "DatabaseVariables", jdbc_urls: dict[str, str]
    ) -> CentaurDatabase:
        """
        Picks **one** of the databases for the integration tests.

        Args:
          jdbc_urls: JDBC URLs for the ``mysql``, ``mariadb`` and ``postgresql``
                     databases.
        """


def create_provider_handler(provider: CIProvider) -> ProviderHandler:
    match provider:
        case CIProvider.TRAVIS:
            from .hosted import TravisHandler

            return TravisHandler()
        case CIProvider.CIRCLE:
            from .hosted import CircleHandler

            return CircleHandler()
        case CIProvider.GITHUB:
            from .hosted import GithubHandler

            return GithubHandler()
        case CIProvider.JENKINS:
            from .jenkins import JenkinsHandler

            return JenkinsHandler()
        case CIProvider.UNKNOWN:
            from .local import LocalHandler

            return LocalHandler()

    # Missed a case?
    T.assert_never(provider)
