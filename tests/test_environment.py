import json
import os

import pytest

import ciharness.background as ch_background
import ciharness.steps.environment as chs_environment
from ciharness.providers import CIProvider
from ciharness.variables import create_conformance_variables


def test_travis_without_secrets_stops_early(make_context, local_variables):
    variables = local_variables.model_copy(
        update=dict(provider=CIProvider.TRAVIS, is_secure=False, requires_secure=True)
    )
    ctx = make_context(variables=variables)
    with pytest.raises(SystemExit) as excinfo:
        chs_environment.verify_secure_build(ctx)
    assert excinfo.value.code == 0
    assert "Encrypted keys are unavailable" in ctx.build_log.out_stream.getvalue()


def test_secure_build_continues(make_context, local_variables):
    variables = local_variables.model_copy(update=dict(requires_secure=True))
    chs_environment.verify_secure_build(make_context(variables=variables))


def test_centaur_environment_follows_logs(make_context, local_variables, monkeypatch):
    tailed = []
    monkeypatch.setattr(
        ch_background, "start_log_tail", lambda ctx, fpath: tailed.append(fpath)
    )
    variables = local_variables.model_copy(update=dict(is_ci=True))
    ctx = make_context(variables=variables)

    chs_environment.setup_centaur_environment(ctx, {})
    centaur = ctx.require_centaur()
    assert tailed == [variables.cromwell_log, centaur.log]
    assert "CROMWELL_BUILD_CENTAUR_JDBC_URL" in ctx.environment()

    (cat,) = ctx.registry.actions
    assert cat.description.startswith("cat_log")


def test_cat_log(make_context, tmp_path):
    ctx = make_context()
    log = tmp_path / "centaur.log"
    log.write_text("line one\nline two\n")
    chs_environment.cat_log(ctx, "CENTAUR LOG", str(log))
    chs_environment.cat_log(ctx, "MISSING LOG", str(tmp_path / "missing.log"))
    out = ctx.build_log.out_stream.getvalue()
    assert "CENTAUR LOG\nline one\nline two\n" in out
    assert "missing.log does not exist" in out


def test_write_cwl_test_inputs(make_context, local_variables):
    os.makedirs(local_variables.resources_directory)
    ctx = make_context()
    ctx.conformance = create_conformance_variables(local_variables)

    chs_environment.write_cwl_test_inputs(ctx)
    with open(ctx.conformance.test_inputs) as f:
        inputs = json.load(f)
    assert inputs["cwl_conformance_test.timeout"] == 2400
    assert inputs["cwl_conformance_test.cwl_dir"] == ctx.conformance.test_directory
