import logging

import pytest

import ciharness.cli as ch_cli
from ciharness.cli import main

_CI_VARIABLES = ("TRAVIS", "JENKINS", "CIRCLECI", "GITHUB_ACTIONS", "BUILD_TYPE")


@pytest.fixture
def local_environment(tmp_path, monkeypatch):
    for name in _CI_VARIABLES:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("CIHARNESS_CFG_DIR", str(tmp_path / "config"))
    # Logging configuration is global; leave it as it was.
    root = logging.getLogger()
    monkeypatch.setattr(root, "handlers", list(root.handlers))
    monkeypatch.setattr(root, "level", root.level)


def test_no_command_prints_help(capsys):
    with pytest.raises(SystemExit) as excinfo:
        main([])
    assert excinfo.value.code == 1
    assert "COMMAND" in capsys.readouterr().out


def test_variables(local_environment, source_tree, capsys):
    with pytest.raises(SystemExit) as excinfo:
        main(["--root", str(source_tree), "variables"])
    assert excinfo.value.code == 0
    out = capsys.readouterr().out
    assert "CROMWELL_BUILD_PROVIDER='unknown'" in out
    assert "CROMWELL_BUILD_CURRENT_VERSION_NUMBER='86'" in out


def test_kill_tree(local_environment, monkeypatch):
    killed = []
    monkeypatch.setattr(ch_cli, "kill_tree", killed.append)
    with pytest.raises(SystemExit) as excinfo:
        main(["kill-tree", "1234"])
    assert excinfo.value.code == 0
    assert killed == [1234]


def test_failed_step_exits_with_its_status(local_environment, source_tree, monkeypatch):
    from subprocess import CalledProcessError

    async def failing_flow(ctx, flow, env, extra):
        raise CalledProcessError(3, ("sbt", "test"))

    monkeypatch.setattr(ch_cli.ch_flows, "run_flow", failing_flow)
    with pytest.raises(SystemExit) as excinfo:
        main(["--root", str(source_tree), "run", "sbt"])
    assert excinfo.value.code == 3


def test_run_passes_extra_arguments(local_environment, source_tree, monkeypatch):
    runs = []

    async def fake_flow(ctx, flow, env, extra):
        runs.append((flow, list(extra)))

    monkeypatch.setattr(ch_cli.ch_flows, "run_flow", fake_flow)
    with pytest.raises(SystemExit) as excinfo:
        main(["--root", str(source_tree), "run", "--build-type", "centaurLocal", "centaur",
              "-i", "hello"])
    assert excinfo.value.code == 0
    assert runs == [(ch_cli.ch_flows.Flow.CENTAUR, ["-i", "hello"])]
