import base64
import io
import os.path as path

import pytest

from ciharness.data.build import CentaurType
from ciharness.providers.hosted import TravisHandler
from ciharness.providers.local import LocalHandler
from ciharness.variables import (
    DebugToggles,
    backend_type_for,
    build_type_from_script_name,
    centaur_type_for,
    check_debug,
    conformance_test_inputs,
    create_build_variables,
    create_centaur_variables,
    create_conformance_variables,
    create_database_variables,
    echo_build_variables,
    read_version_number,
    test_script_name as script_name_for,
)

from .conftest import FakeGit
from .test_providers import TRAVIS_ENV

NO_TOGGLES = DebugToggles(False, False, False)


def test_local_variables(local_variables, source_tree):
    variables = local_variables
    assert not variables.is_ci
    assert variables.build_type == "centaurLocal"
    assert variables.backend_type == "local"
    assert variables.root_directory == str(source_tree)
    assert variables.resources_directory == path.join(str(source_tree), "target", "ci", "resources")
    assert variables.exit_functions == path.join(
        variables.resources_directory, "ciharness_exit_functions.4242"
    )
    assert variables.git_hash_suffix == "gabcdef1"
    assert variables.docker_tag == "unknown-centaurLocal-gabcdef1"
    assert variables.heartbeat_minutes == 20 * 60
    assert variables.docker_localhost == "localhost"
    assert variables.cromwell_config == path.join(
        variables.resources_directory, "local_application.conf"
    )


def test_ci_docker_tag_uses_build_number(source_tree):
    variables = create_build_variables(
        TRAVIS_ENV, FakeGit(), source_tree, handler=TravisHandler(), pid=1
    )
    assert variables.docker_tag == "travis-1234.5"
    assert variables.provider.value == "travis"


def test_version_numbers(source_tree, fake_git, local_variables):
    assert local_variables.current_version_number == 86
    assert local_variables.prior_version_number == 85
    assert not local_variables.is_hotfix

    hotfix = create_build_variables(
        {}, FakeGit(ancestors={"86"}), source_tree, handler=LocalHandler()
    )
    assert hotfix.is_hotfix
    assert hotfix.prior_version_number == 86


def test_missing_version(tmp_path):
    assert read_version_number(tmp_path) is None
    variables = create_build_variables(
        {}, FakeGit(short_hash=None), tmp_path, handler=LocalHandler()
    )
    assert variables.current_version_number is None
    assert variables.prior_version_number is None
    assert variables.git_hash_suffix == "gUNKNOWN"


def test_docker_desktop_toggle(source_tree):
    variables = create_build_variables(
        {"crmddm": "y"}, FakeGit(), source_tree, handler=LocalHandler()
    )
    assert variables.docker_localhost == "host.docker.internal"
    databases = create_database_variables({}, variables, LocalHandler())
    assert databases.mysql.hostname == "host.docker.internal"


def test_check_debug():
    assert check_debug({}) == NO_TOGGLES
    assert check_debug({"crmdbg": "1", "crmcit": "1"}) == DebugToggles(True, True, False)


@pytest.mark.parametrize(
    "build_type, backend_type",
    [
        ("sbt", "sbt"),
        ("centaurLocal", "local"),
        ("centaurPapiV2beta", "papi_v2beta"),
        ("centaurEngineUpgradeLocal", "local"),
        ("centaurHoricromtalPapiV2alpha1", "papi_v2alpha1"),
        ("conformanceTesk", "tesk"),
    ],
)
def test_backend_type(build_type, backend_type):
    assert backend_type_for(build_type) == backend_type


def test_test_script_names():
    assert script_name_for("centaurLocal") == "testCentaurLocal.sh"
    assert build_type_from_script_name("src/ci/bin/testCentaurLocal.sh") == "centaurLocal"
    assert build_type_from_script_name(script_name_for("sbt")) == "sbt"


def test_environment_rendering(local_variables):
    environ = local_variables.as_environment()
    assert environ["CROMWELL_BUILD_TYPE"] == "centaurLocal"
    assert environ["CROMWELL_BUILD_IS_CI"] == "false"
    assert environ["CROMWELL_BUILD_PROVIDER"] == "unknown"
    assert environ["CROMWELL_BUILD_PRIOR_VERSION_NUMBER"] == "85"
    assert environ["CROMWELL_BUILD_SBT_ASSEMBLY_COMMAND"] == "assembly"


def test_echo_build_variables(local_variables):
    out = io.StringIO()
    echo_build_variables(local_variables, out)
    lines = out.getvalue().splitlines()
    assert "CROMWELL_BUILD_TYPE='centaurLocal'" in lines
    assert "CROMWELL_BUILD_IS_CI='false'" in lines


@pytest.mark.parametrize(
    "build_type, env, toggles, expected",
    [
        ("centaurLocal", {}, NO_TOGGLES, CentaurType.STANDARD),
        ("centaurEngineUpgradeLocal", {}, NO_TOGGLES, CentaurType.ENGINE_UPGRADE),
        ("centaurPapiUpgradeNewWorkflowsPapiV2alpha1", {}, NO_TOGGLES,
         CentaurType.PAPI_UPGRADE_NEW_WORKFLOWS),
        ("centaurHoricromtalEngineUpgradePapiV2alpha1", {}, NO_TOGGLES,
         CentaurType.HORICROMTAL_ENGINE_UPGRADE),
        ("centaurLocal", {}, DebugToggles(False, True, False), CentaurType.INTEGRATION),
        ("centaurLocal", {"CROMWELL_BUILD_CENTAUR_TYPE": "horicromtal"}, NO_TOGGLES,
         CentaurType.HORICROMTAL),
    ],
)
def test_centaur_type(build_type, env, toggles, expected):
    assert centaur_type_for(build_type, env, toggles) == expected


def test_unknown_centaur_type_is_fatal():
    with pytest.raises(SystemExit):
        centaur_type_for("centaurLocal", {"CROMWELL_BUILD_CENTAUR_TYPE": "bogus"}, NO_TOGGLES)


def test_local_centaur_variables(local_variables):
    handler = LocalHandler()
    databases = create_database_variables({}, local_variables, handler)
    centaur = create_centaur_variables({}, local_variables, databases, handler)

    assert centaur.type == CentaurType.STANDARD
    assert centaur.test_directory.endswith(path.join("resources", "standardTestCases"))
    assert centaur.jdbc_url.startswith("jdbc:mysql://localhost:3306/cromwell_test?")
    assert centaur.prior_jdbc_url == centaur.jdbc_url
    assert centaur.read_lines_limit == 128000
    assert len(base64.b64decode(centaur.key_256_bits)) == 32

    environ = centaur.as_environment()
    assert environ["CROMWELL_BUILD_CENTAUR_256_BITS_KEY"] == centaur.key_256_bits
    assert environ["CROMWELL_BUILD_CENTAUR_TYPE"] == "standard"


def test_travis_mariadb_upgrades_from_mysql_driver(source_tree):
    env = dict(TRAVIS_ENV, BUILD_MARIADB="10.3")
    handler = TravisHandler()
    variables = create_build_variables(env, FakeGit(), source_tree, handler=handler)
    databases = create_database_variables(env, variables, handler)
    centaur = create_centaur_variables(env, variables, databases, handler)

    assert centaur.jdbc_url.startswith("jdbc:mariadb://localhost:23306/")
    assert centaur.prior_jdbc_url.startswith("jdbc:mysql://localhost:23306/")


def test_conformance_inputs(local_variables):
    conformance = create_conformance_variables(local_variables)
    inputs = conformance_test_inputs(local_variables, conformance)
    assert inputs["cwl_conformance_test.timeout"] == 2400
    assert inputs["cwl_conformance_test.cwl_dir"] == conformance.test_directory
    assert conformance.test_parallelism == 10
    assert conformance.as_environment()["CROMWELL_BUILD_CWL_TEST_PARALLELISM"] == "10"


def test_sbt_build_runs_on_the_sbt_backend():
    # Only known test-suite prefixes are stripped, never a bare first character.
    assert backend_type_for("sbt") == "sbt"
    assert backend_type_for("_sbt") == "sbt"
