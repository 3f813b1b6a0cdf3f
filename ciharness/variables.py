# Build variable computation.
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
This module computes the build variables, once, from the environment, version control
and the source tree.  The result is a set of immutable models from
:py:mod:`ciharness.data.build`.

The environment consulted here is the one the build started with.  Nothing later in the
build reads provider variables directly.
"""

import base64
import logging
import os.path as path
import re
import secrets
import sys
import typing as T

from ciharness.data.build import (
    ENV_PREFIX,
    BuildOS,
    BuildVariables,
    CentaurType,
    CentaurVariables,
    ConformanceVariables,
    DatabaseVariables,
)
from ciharness.errors import fatal
from ciharness.exit_actions import journal_path_for
from ciharness.providers import (
    MYSQL_DRIVER,
    MYSQL_PROFILE,
    CIProvider,
    Environment,
    ProviderHandler,
    create_provider_handler,
    detect_provider,
)
from ciharness.utils.str import (
    camel_to_snake,
    lower_first,
    remove_prefixes,
    sanitize_docker_tag,
)

if T.TYPE_CHECKING:
    from ciharness.utils.fs import AnyPath
    from ciharness.utils.git import GitQueries

logger = logging.getLogger(__name__)

DOCKER_DESKTOP_LOCALHOST = "host.docker.internal"
HEARTBEAT_HOURS = 20

_VERSION_RE = re.compile(r'val\s+cromwellVersion\s*=\s*"([^"]*)"')

_BACKEND_PREFIXES = (
    "centaurEngineUpgrade",
    "centaurPapiUpgrade",
    "centaurWdlUpgrade",
    "centaurHoricromtal",
    "centaur",
    "conformance",
)

# First matching prefix wins.
_CROMWELL_CONFIG_BY_PREFIX = (
    ("centaurPapiUpgradePapiV2alpha1", "papi_v2alpha1_v2beta_upgrade_application.conf"),
    (
        "centaurPapiUpgradeNewWorkflowsPapiV2alpha1",
        "papi_v2alpha1_v2beta_upgrade_application.conf",
    ),
    ("centaurHoricromtalPapiV2alpha1", "papi_v2alpha1_horicromtal_application.conf"),
    ("centaurHoricromtalPapiV2beta", "papi_v2beta_horicromtal_application.conf"),
    ("centaurHoricromtalEngineUpgrade", "papi_v2alpha1_horicromtal_application.conf"),
)

_CENTAUR_TYPE_BY_PREFIX = (
    ("centaurEngineUpgrade", CentaurType.ENGINE_UPGRADE),
    ("centaurPapiUpgradeNewWorkflows", CentaurType.PAPI_UPGRADE_NEW_WORKFLOWS),
    ("centaurPapiUpgrade", CentaurType.PAPI_UPGRADE),
    ("centaurHoricromtalEngineUpgrade", CentaurType.HORICROMTAL_ENGINE_UPGRADE),
    ("centaurHoricromtal", CentaurType.HORICROMTAL),
)


class DebugToggles(T.NamedTuple):
    """
    Quick switches for developers, set as short environment variables, for instance
    ``crmdbg=y ciharness exec-test``.
    """

    debug: bool
    """``crmdbg``: log at the debug level."""
    centaur_integration: bool
    """``crmcit``: simulate an integration test build."""
    docker_desktop: bool
    """``crmddm``: reach containers through the Docker Desktop host name."""


def check_debug(env: Environment) -> DebugToggles:
    return DebugToggles(
        debug=bool(env.get("crmdbg")),
        centaur_integration=bool(env.get("crmcit")),
        docker_desktop=bool(env.get("crmddm")),
    )


def detect_os(platform: str = sys.platform) -> BuildOS:
    if platform.startswith("darwin"):
        return BuildOS.DARWIN
    if platform.startswith("linux"):
        return BuildOS.LINUX
    return BuildOS.UNKNOWN


def read_version_number(root_directory: "AnyPath") -> int | None:
    """
    Reads the current version number from ``project/Version.scala``.  Returns ``None``
    if the file is missing or holds no numeric version.
    """
    version_file = path.join(root_directory, "project", "Version.scala")
    try:
        with open(version_file, "r") as f:
            match = _VERSION_RE.search(f.read())
    except FileNotFoundError:
        logger.warning("%s not found, version unknown", version_file)
        return None
    if match is None or not match.group(1).isdigit():
        logger.warning("no numeric cromwellVersion in %s", version_file)
        return None
    return int(match.group(1))


def build_type_from_script_name(script: str) -> str:
    """``src/ci/bin/testCentaurLocal.sh`` is the ``centaurLocal`` build."""
    name = path.basename(script).removeprefix("test").removesuffix(".sh")
    return lower_first(name)


def test_script_name(build_type: str) -> str:
    """Inverse of :py:func:`build_type_from_script_name`, without the directory."""
    return f"test{build_type[:1].upper()}{build_type[1:]}.sh"


def backend_type_for(build_type: str) -> str:
    """``centaurPapiV2beta`` runs on the ``papi_v2beta`` backend."""
    return camel_to_snake(remove_prefixes(build_type, *_BACKEND_PREFIXES))


def cromwell_config_for(build_type: str, backend_type: str, resources_directory: str) -> str:
    for prefix, config in _CROMWELL_CONFIG_BY_PREFIX:
        if build_type.startswith(prefix):
            return path.join(resources_directory, config)
    return path.join(resources_directory, f"{backend_type}_application.conf")


def _env_flag(env: Environment, name: str, default: bool = False) -> bool:
    value = env.get(name)
    if value is None:
        return default
    return value == "true"


def create_build_variables(
    env: Environment,
    git: "GitQueries",
    root_directory: "AnyPath",
    build_type_hint: str | None = None,
    handler: ProviderHandler | None = None,
    pid: int | None = None,
) -> BuildVariables:
    """
    Computes the variables describing this build.

    Args:
      env: Environment the build started with.
      git: Version control queries on ``root_directory``.
      root_directory: Root of the source tree.
      build_type_hint: Build type to use if the provider does not specify one.
      handler: Provider handler to use.  Detected from ``env`` by default.
      pid: Process id to scope per-build state files to.  Defaults to this process.
    """
    if handler is None:
        handler = create_provider_handler(detect_provider(env))
    facts = handler.describe_build(env, git, build_type_hint)
    toggles = check_debug(env)

    root_directory = path.abspath(root_directory)
    log_directory = path.join(root_directory, "target", "ci", "logs")
    resources_directory = path.join(root_directory, "target", "ci", "resources")

    current_version = read_version_number(root_directory)
    is_hotfix = current_version is not None and git.is_ancestor_of_head(str(current_version))
    if current_version is None:
        prior_version = None
    elif is_hotfix:
        prior_version = current_version
    else:
        prior_version = current_version - 1

    short_hash = git.short_hash()
    git_hash_suffix = f"g{short_hash}" if short_hash else "gUNKNOWN"

    backend_type = backend_type_for(facts.build_type)
    if facts.build_type.startswith("conformance"):
        assembly_command: tuple[str, ...] = ("server/assembly", "centaurCwlRunner/assembly")
    else:
        assembly_command = ("assembly",)

    if facts.is_ci:
        docker_tag = f"{handler.provider.value}-{facts.number}"
    else:
        docker_tag = f"{handler.provider.value}-{facts.build_type}-{git_hash_suffix}"

    if toggles.docker_desktop:
        docker_localhost = DOCKER_DESKTOP_LOCALHOST
    else:
        docker_localhost = env.get(f"{ENV_PREFIX}DOCKER_LOCALHOST") or "localhost"

    return BuildVariables(
        **facts.model_dump(),
        provider=handler.provider,
        os=detect_os(),
        home_directory=env.get("HOME", path.expanduser("~")),
        root_directory=root_directory,
        log_directory=log_directory,
        cromwell_log=path.join(log_directory, "cromwell.log"),
        docker_directory=path.join(root_directory, "src", "ci", "docker-compose"),
        scripts_directory=path.join(root_directory, "src", "ci", "bin"),
        resources_sources=path.join(root_directory, "src", "ci", "resources"),
        resources_directory=resources_directory,
        exit_functions=journal_path_for(resources_directory, pid),
        wait_for_it_script=path.join(resources_directory, "wait-for-it.sh"),
        vault_zip=path.join(resources_directory, "vault.zip"),
        vault_executable=path.join(resources_directory, "vault"),
        is_virtual_env=bool(env.get("VIRTUAL_ENV")),
        current_version_number=current_version,
        prior_version_number=prior_version,
        is_hotfix=is_hotfix,
        git_hash_suffix=git_hash_suffix,
        backend_type=backend_type,
        sbt_assembly_command=assembly_command,
        sbt_coverage_command=("coverage",) if facts.generate_coverage else (),
        sbt_include=env.get("BUILD_SBT_INCLUDE", ""),
        sbt_exclude=env.get("BUILD_SBT_EXCLUDE", ""),
        unit_span_scale_factor=env.get(f"{ENV_PREFIX}UNIT_SPAN_SCALE_FACTOR", "1"),
        cromwell_config=cromwell_config_for(facts.build_type, backend_type, resources_directory),
        docker_tag=sanitize_docker_tag(docker_tag),
        requires_secure=_env_flag(env, f"{ENV_PREFIX}REQUIRES_SECURE"),
        requires_prior_version=_env_flag(env, f"{ENV_PREFIX}REQUIRES_PRIOR_VERSION"),
        heartbeat_minutes=HEARTBEAT_HOURS * 60,
        docker_localhost=docker_localhost,
    )


def echo_build_variables(variables: BuildVariables, out: T.TextIO | None = None) -> None:
    """Prints the variables most useful for diagnosing a build."""
    environ = variables.as_environment()
    for field in (
        "is_ci",
        "is_secure",
        "requires_secure",
        "build_type",
        "branch",
        "is_hotfix",
        "current_version_number",
        "prior_version_number",
        "event",
        "tag",
        "number",
        "provider",
        "os",
        "url",
    ):
        name = BuildVariables.env_name(field)
        print(f"{name}='{environ[name]}'", file=out if out is not None else sys.stdout)


def create_database_variables(
    env: Environment, variables: BuildVariables, handler: ProviderHandler
) -> DatabaseVariables:
    return handler.database_variables(env, variables.docker_localhost)


def jdbc_urls(databases: DatabaseVariables) -> dict[str, str]:
    """JDBC URLs for the non-``latest`` databases."""
    schema = databases.schema_name
    mariadb = databases.mariadb
    mysql = databases.mysql
    postgresql = databases.postgresql
    return {
        "mariadb": (
            f"jdbc:mariadb://{mariadb.hostname}:{mariadb.port}/{schema}"
            "?rewriteBatchedStatements=true"
        ),
        "mysql": _mysql_jdbc_url(mysql.hostname, mysql.port, schema),
        "postgresql": (
            f"jdbc:postgresql://{postgresql.hostname}:{postgresql.port}/{schema}"
            "?reWriteBatchedInserts=true"
        ),
    }


def _mysql_jdbc_url(hostname: str, port: int, schema: str) -> str:
    return (
        f"jdbc:mysql://{hostname}:{port}/{schema}"
        "?allowPublicKeyRetrieval=true&useSSL=false&rewriteBatchedStatements=true"
        "&serverTimezone=UTC&useInformationSchema=true"
    )


def centaur_type_for(build_type: str, env: Environment, toggles: DebugToggles) -> CentaurType:
    for prefix, centaur_type in _CENTAUR_TYPE_BY_PREFIX:
        if build_type.startswith(prefix):
            return centaur_type
    if toggles.centaur_integration:
        return CentaurType.INTEGRATION
    requested = env.get(f"{ENV_PREFIX}CENTAUR_TYPE")
    if requested:
        try:
            return CentaurType(requested)
        except ValueError:
            fatal(f"Unknown Centaur type {requested!r}")
    return CentaurType.STANDARD


def generate_256_bit_key() -> str:
    return base64.b64encode(secrets.token_bytes(32)).decode("ascii")


def create_centaur_variables(
    env: Environment,
    variables: BuildVariables,
    databases: DatabaseVariables,
    handler: ProviderHandler,
) -> CentaurVariables:
    centaur_type = centaur_type_for(variables.build_type, env, check_debug(env))
    resources = path.join(variables.root_directory, "centaur", "src", "main", "resources")

    match centaur_type:
        case CentaurType.HORICROMTAL:
            # Standard test cases despite the horicromtal type.
            test_directory = path.join(resources, "standardTestCases")
            config = "centaur_application_horicromtal.conf"
        case CentaurType.HORICROMTAL_ENGINE_UPGRADE:
            test_directory = path.join(resources, "engineUpgradeTestCases")
            # Horicromtal assertions do not hold across an upgrade.
            config = "centaur_application_horicromtal_no_assert.conf"
        case _:
            test_directory = path.join(resources, f"{centaur_type.value}TestCases")
            config = "centaur_application.conf"

    urls = jdbc_urls(databases)
    database = handler.centaur_database(env, databases, urls)

    if centaur_type == CentaurType.INTEGRATION:
        read_lines_limit = 512000
        max_workflow_length = "10 hours"
    else:
        read_lines_limit = 128000
        max_workflow_length = "90 minutes"

    # Upgrading to the MariaDB driver starts out with the MySQL one.
    if variables.provider == CIProvider.TRAVIS and databases.mariadb.wanted:
        prior_slick_profile = MYSQL_PROFILE
        prior_jdbc_driver = MYSQL_DRIVER
        prior_jdbc_url = _mysql_jdbc_url(
            databases.mariadb.hostname, databases.mariadb.port, databases.schema_name
        )
    else:
        prefix = f"{ENV_PREFIX}CENTAUR_PRIOR_"
        prior_slick_profile = env.get(f"{prefix}SLICK_PROFILE", database.slick_profile)
        prior_jdbc_driver = env.get(f"{prefix}JDBC_DRIVER", database.jdbc_driver)
        prior_jdbc_url = env.get(f"{prefix}JDBC_URL", database.jdbc_url)

    return CentaurVariables(
        type=centaur_type,
        resources=resources,
        test_directory=test_directory,
        config=path.join(variables.resources_directory, config),
        log=path.join(variables.log_directory, "centaur.log"),
        slick_profile=database.slick_profile,
        jdbc_driver=database.jdbc_driver,
        jdbc_url=database.jdbc_url,
        test_additional_parameters=database.additional_parameters,
        read_lines_limit=read_lines_limit,
        max_workflow_length=max_workflow_length,
        prior_slick_profile=prior_slick_profile,
        prior_jdbc_driver=prior_jdbc_driver,
        prior_jdbc_url=prior_jdbc_url,
        key_256_bits=generate_256_bit_key(),
    )


def create_conformance_variables(variables: BuildVariables) -> ConformanceVariables:
    resources = variables.resources_directory
    test_directory = path.join(variables.root_directory, "common-workflow-language")

    # Much higher parallelism leads to spurious server timeouts.
    if variables.build_type == "conformanceTesk":
        runner_config = path.join(resources, "ftp_centaur_cwl_runner.conf")
        parallelism = 8
    else:
        runner_config = path.join(resources, "centaur_cwl_runner_application.conf")
        parallelism = 10

    return ConformanceVariables(
        runner_mode=variables.backend_type,
        test_runner=path.join(
            variables.root_directory, "centaurCwlRunner", "src", "bin", "centaur-cwl-runner.bash"
        ),
        test_directory=test_directory,
        test_resources=path.join(test_directory, "v1.0", "v1.0"),
        test_wdl=path.join(resources, "cwl_conformance_test.wdl"),
        test_inputs=path.join(resources, "cwl_conformance_test.inputs.json"),
        test_output=path.join(variables.log_directory, "cwl_conformance_test.out.txt"),
        runner_config=runner_config,
        test_parallelism=parallelism,
    )


def conformance_test_inputs(
    variables: BuildVariables, conformance: ConformanceVariables
) -> dict[str, T.Any]:
    """Inputs of the workflow that drives the conformance suite."""
    return {
        "cwl_conformance_test.cwl_dir": conformance.test_directory,
        "cwl_conformance_test.test_result_output": conformance.test_output,
        "cwl_conformance_test.centaur_cwl_runner": conformance.test_runner,
        "cwl_conformance_test.conformance_expected_failures": path.join(
            variables.resources_directory,
            f"{variables.backend_type}_conformance_expected_failures.txt",
        ),
        "cwl_conformance_test.timeout": 2400,
    }
