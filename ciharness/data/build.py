# Build variable models
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
Immutable models of everything a build knows about itself.  They are computed once at
startup (see :py:mod:`ciharness.variables`) and handed to every step, which never
consults the environment on its own.

Each model can render itself as ``CROMWELL_BUILD_*`` environment variables, which is
how the build tool, the test harness and the per-build-type test scripts learn about
them.
"""

import enum
import typing as T

from pydantic import BaseModel, ConfigDict

from ciharness.providers import CIProvider

ENV_PREFIX = "CROMWELL_BUILD_"


def _env_value(value: T.Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return ""
    if isinstance(value, enum.Enum):
        return str(value.value)
    if isinstance(value, tuple):
        return " ".join(value)
    return str(value)


class _BuildModel(BaseModel):
    model_config = ConfigDict(frozen=True)

    _ENV_PREFIX: T.ClassVar[str] = ""
    _ENV_NAMES: T.ClassVar[dict[str, str]] = {}
    """Variable names that do not follow from the field name."""

    @classmethod
    def env_name(cls, field: str) -> str:
        return f"{ENV_PREFIX}{cls._ENV_PREFIX}{cls._ENV_NAMES.get(field, field.upper())}"

    def as_environment(self) -> dict[str, str]:
        """Renders the scalar fields of this model as ``CROMWELL_BUILD_*`` variables."""
        environ = {}
        for name, value in self:
            if isinstance(value, BaseModel):
                continue
            environ[self.env_name(name)] = _env_value(value)
        return environ


class BuildOS(enum.Enum):
    DARWIN = "darwin"
    LINUX = "linux"
    UNKNOWN = "unknown_os"


class ProviderFacts(_BuildModel):
    """
    The part of the build variables that each CI provider determines in its own way.
    """

    _ENV_NAMES: T.ClassVar[dict[str, str]] = {"build_type": "TYPE"}

    is_ci: bool
    """Whether this is a CI build, as opposed to a developer running a build locally."""
    is_secure: bool
    """Whether secrets are available to this build."""
    build_type: str
    """
    Build type, such as ``sbt``, ``centaurLocal`` or ``conformanceTesk``.  Selects the
    test script to run and a good deal of configuration.
    """
    branch: str
    event: str
    """Event that triggered the build, such as ``push`` or ``pull_request``."""
    tag: str
    """Git tag being built, if any."""
    number: str
    """Provider-specific build number."""
    url: str
    """Link to the build on the provider."""
    git_user_email: str
    git_user_name: str
    heartbeat_pattern: str
    """Printed periodically so that quiet builds are not killed as hung."""
    generate_coverage: bool
    run_tests: bool
    """
    Whether to run tests at all.  Pushes only run ``sbt`` builds unless the commit
    message asks for ``[force ci]``.
    """


class BuildVariables(ProviderFacts):
    """
    Everything known about the build.  See :py:func:`ciharness.variables.create_build_variables`.
    """

    provider: CIProvider
    os: BuildOS

    home_directory: str
    root_directory: str
    """Root of the source tree being built."""
    log_directory: str
    cromwell_log: str
    """Log file the workflow engine server writes while under test."""
    docker_directory: str
    """Directory with container configuration snippets for the database services."""
    scripts_directory: str
    """Directory with the per-build-type ``test<BuildType>.sh`` scripts."""
    resources_sources: str
    resources_directory: str
    """Rendered resources, cid files and other per-build state live here."""
    exit_functions: str
    """Journal of the exit-action registry for this process."""
    wait_for_it_script: str
    vault_zip: str
    vault_executable: str
    is_virtual_env: bool

    current_version_number: int | None
    prior_version_number: int | None
    is_hotfix: bool
    git_hash_suffix: str

    backend_type: str
    """Build type without its test-suite prefix, in ``snake_case``: ``papi_v2beta``."""
    sbt_assembly_command: tuple[str, ...]
    sbt_coverage_command: tuple[str, ...]
    sbt_include: str
    """Regular expression of sbt projects to test exclusively."""
    sbt_exclude: str
    """Regular expression of sbt projects not to test."""
    unit_span_scale_factor: str
    cromwell_config: str
    """Workflow engine configuration file for this build type."""
    docker_tag: str
    """Tag for images built during this build.  Already sanitized."""
    requires_secure: bool
    requires_prior_version: bool
    heartbeat_minutes: int
    """Upper bound on heartbeat printouts, one per minute."""
    docker_localhost: str
    """Host name under which containers started by the build are reachable."""


class DatabaseEndpoint(_BuildModel):
    hostname: str
    port: int
    docker_tag: str
    """
    Image tag of the container to start for this database.  Empty if this build does
    not start one.
    """

    @property
    def wanted(self) -> bool:
        return bool(self.docker_tag)


class DatabaseVariables(_BuildModel):
    """Where the databases used by tests live."""

    username: str = "cromwell"
    password: str = "test"
    schema_name: str = "cromwell_test"

    mysql: DatabaseEndpoint
    mariadb: DatabaseEndpoint
    postgresql: DatabaseEndpoint
    mysql_latest: DatabaseEndpoint
    mariadb_latest: DatabaseEndpoint
    postgresql_latest: DatabaseEndpoint

    def as_environment(self) -> dict[str, str]:
        environ = {
            f"{ENV_PREFIX}DATABASE_USERNAME": self.username,
            f"{ENV_PREFIX}DATABASE_PASSWORD": self.password,
            f"{ENV_PREFIX}DATABASE_SCHEMA": self.schema_name,
        }
        for name, endpoint in self.endpoints():
            upper = name.upper()
            tag_suffix = "TAG" if name.endswith("_latest") else "DOCKER_TAG"
            environ[f"{ENV_PREFIX}{upper}_HOSTNAME"] = endpoint.hostname
            environ[f"{ENV_PREFIX}{upper}_PORT"] = str(endpoint.port)
            environ[f"{ENV_PREFIX}{upper}_{tag_suffix}"] = endpoint.docker_tag
        return environ

    def endpoints(self) -> list[tuple[str, DatabaseEndpoint]]:
        """Endpoints in the order their containers are started."""
        return [
            ("mysql", self.mysql),
            ("mariadb", self.mariadb),
            ("postgresql", self.postgresql),
            ("mysql_latest", self.mysql_latest),
            ("mariadb_latest", self.mariadb_latest),
            ("postgresql_latest", self.postgresql_latest),
        ]


class CentaurType(enum.Enum):
    """Flavours of integration test runs."""

    STANDARD = "standard"
    INTEGRATION = "integration"
    ENGINE_UPGRADE = "engineUpgrade"
    PAPI_UPGRADE = "papiUpgrade"
    PAPI_UPGRADE_NEW_WORKFLOWS = "papiUpgradeNewWorkflows"
    HORICROMTAL_ENGINE_UPGRADE = "horicromtalEngineUpgrade"
    HORICROMTAL = "horicromtal"


class CentaurVariables(_BuildModel):
    """Configuration of the integration test harness."""

    _ENV_PREFIX: T.ClassVar[str] = "CENTAUR_"
    _ENV_NAMES: T.ClassVar[dict[str, str]] = {"key_256_bits": "256_BITS_KEY"}

    type: CentaurType
    resources: str
    test_directory: str
    config: str
    log: str
    slick_profile: str
    jdbc_driver: str
    jdbc_url: str
    test_additional_parameters: str
    read_lines_limit: int
    max_workflow_length: str
    prior_slick_profile: str
    prior_jdbc_driver: str
    prior_jdbc_url: str
    key_256_bits: str


class ConformanceVariables(_BuildModel):
    """Configuration of the CWL conformance test run."""

    _ENV_PREFIX: T.ClassVar[str] = "CWL_"

    runner_mode: str
    tool_version: str = "3.0.20200724003302"
    test_version: str = "1.0.20190228134645"
    test_commit: str = "1f501e38ff692a408e16b246ac7d64d32f0822c2"
    """Pinned so upstream changes to the test suite do not break builds."""
    test_runner: str
    test_directory: str
    test_resources: str
    test_wdl: str
    test_inputs: str
    test_output: str
    runner_config: str
    test_parallelism: int
    """Going much higher leads to spurious server timeouts."""
