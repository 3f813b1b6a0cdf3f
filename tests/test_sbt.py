import asyncio
import os

import pytest

import ciharness.steps.sbt as chs_sbt
from ciharness.steps.sbt import parse_sbt_projects, prior_version_config, select_sbt_tests

PROJECTS_OUTPUT = """\
[info] welcome to sbt 1.9.7 (Eclipse Adoptium Java 11.0.21)
[info] loading settings for project cromwell-build from plugins.sbt ...
[info] In file:/home/travis/build/broadinstitute/cromwell/
[info] \t   backend
[info] \t * root
[info] \t   engine
[info] \t   womtool
"""


def test_parse_sbt_projects():
    assert parse_sbt_projects(PROJECTS_OUTPUT) == ["backend", "engine", "womtool"]
    assert parse_sbt_projects("") == []


@pytest.mark.parametrize(
    "include, exclude, expected",
    [
        ("", "", ["test"]),
        ("engine|womtool", "", ["engine/test", "womtool/test"]),
        ("eng", "", []),
        ("", "engine", ["backend/test", "womtool/test"]),
        ("backend", "backend", ["backend/test"]),
    ],
)
def test_select_sbt_tests(include, exclude, expected):
    projects = ["backend", "engine", "womtool"]
    assert select_sbt_tests(projects, include, exclude) == expected


def test_prior_version_config():
    assert prior_version_config("/r/papi_application.conf", 85) == "/r/papi_85_application.conf"
    assert prior_version_config("/r/custom.conf", 85) == "/r/custom.conf"


def test_empty_test_selection_is_fatal(make_context, local_variables, monkeypatch, capsys):
    async def fake_sbt(ctx, *args):
        pass

    async def fake_sbt_output(ctx, *args):
        return PROJECTS_OUTPUT

    monkeypatch.setattr(chs_sbt, "sbt", fake_sbt)
    monkeypatch.setattr(chs_sbt, "sbt_output", fake_sbt_output)
    ctx = make_context(variables=local_variables.model_copy(update={"sbt_include": "nope"}))

    with pytest.raises(SystemExit) as excinfo:
        asyncio.run(chs_sbt.run_sbt_test(ctx))
    assert excinfo.value.code == 1
    assert "CROMWELL_BUILD_SBT_INCLUDE='nope'" in capsys.readouterr().err


def test_selected_tests_are_run(make_context, local_variables, monkeypatch):
    sbt_calls = []

    async def fake_sbt(ctx, *args):
        sbt_calls.append(args)

    async def fake_sbt_output(ctx, *args):
        return PROJECTS_OUTPUT

    monkeypatch.setattr(chs_sbt, "sbt", fake_sbt)
    monkeypatch.setattr(chs_sbt, "sbt_output", fake_sbt_output)
    ctx = make_context(variables=local_variables.model_copy(update={"sbt_exclude": "backend"}))

    asyncio.run(chs_sbt.run_sbt_test(ctx))
    compile_args, test_args = sbt_calls
    assert compile_args[-1] == "Test/compile"
    assert test_args[-2:] == ("engine/test", "womtool/test")
    assert "-Dakka.test.timefactor=1" in test_args


def test_existing_jar_is_reused_locally(make_context, local_variables, monkeypatch):
    assert chs_sbt.find_cromwell_jar(local_variables) is None

    target = os.path.join(local_variables.root_directory, "server", "target", "scala-2.13")
    os.makedirs(target)
    jar = os.path.join(target, "cromwell-86-abcdef1.jar")
    with open(jar, "w") as f:
        f.write("jar")

    async def no_assembly(ctx):
        raise AssertionError("must not assemble")

    monkeypatch.setattr(chs_sbt, "assemble_jars", no_assembly)
    ctx = make_context()
    assert asyncio.run(chs_sbt.find_or_assemble_cromwell_jar(ctx)) == jar
    assert ctx.environment()["CROMWELL_BUILD_CROMWELL_JAR"] == jar


def test_missing_jar_after_assembly_is_fatal(make_context, monkeypatch):
    async def assembles_nothing(ctx):
        pass

    monkeypatch.setattr(chs_sbt, "assemble_jars", assembles_nothing)
    with pytest.raises(SystemExit):
        asyncio.run(chs_sbt.find_or_assemble_cromwell_jar(make_context()))
