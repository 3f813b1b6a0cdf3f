import asyncio
from subprocess import CalledProcessError

import pytest

import ciharness.steps.publish as chs_publish
from ciharness.data.config import HarnessConfig
from ciharness.providers import CIProvider
from ciharness.steps.publish import Publication, plan_publication


@pytest.fixture
def travis_sbt(local_variables):
    return local_variables.model_copy(
        update=dict(
            provider=CIProvider.TRAVIS,
            build_type="sbt",
            event="push",
            branch="feature",
            tag="",
            is_secure=True,
        )
    )


@pytest.mark.parametrize(
    "update, expected",
    [
        ({"branch": "develop"}, Publication.DEVELOP),
        ({"branch": "85_hotfix"}, Publication.HOTFIX),
        ({"branch": "85.1_hotfix"}, Publication.HOTFIX),
        ({"branch": "85", "tag": "85"}, Publication.TAG),
        ({}, Publication.CHECK_CREDENTIALS),
        ({"is_secure": False}, Publication.NOTHING),
        ({"branch": "develop", "event": "pull_request"}, Publication.NOTHING),
        ({"branch": "develop", "build_type": "centaurLocal"}, Publication.NOTHING),
        ({"branch": "develop", "sbt_include": "engine"}, Publication.NOTHING),
        ({"branch": "develop", "provider": CIProvider.GITHUB}, Publication.NOTHING),
    ],
)
def test_plan_publication(travis_sbt, update, expected):
    assert plan_publication(travis_sbt.model_copy(update=update)) == expected


def test_only_releases_publish():
    assert {p for p in Publication if p.publishes} == {
        Publication.DEVELOP,
        Publication.HOTFIX,
        Publication.TAG,
    }


def test_publication_is_retried(make_context, monkeypatch):
    attempts = []

    async def failing_publish(ctx):
        attempts.append(ctx)
        raise CalledProcessError(2, "sbt")

    monkeypatch.setattr(chs_publish, "publish_artifacts", failing_publish)
    config = HarnessConfig.model_validate({"publish_retry": {"retry_count": 2, "delay": 0}})
    ctx = make_context(config=config)

    with pytest.raises(CalledProcessError) as excinfo:
        asyncio.run(chs_publish.publish_artifacts_with_retry(ctx))
    assert excinfo.value.returncode == 2
    assert len(attempts) == 3


def test_nothing_to_publish_runs_nothing(make_context, monkeypatch):
    async def no_sbt(ctx, *args):
        raise AssertionError("sbt must not run")

    monkeypatch.setattr(chs_publish, "sbt", no_sbt)
    ctx = make_context()
    assert asyncio.run(chs_publish.publish_artifacts(ctx)) == Publication.NOTHING
    asyncio.run(chs_publish.check_published_artifacts(ctx))


def test_develop_publishes_snapshots(make_context, travis_sbt, monkeypatch):
    sbt_calls = []
    git_pushes = []

    async def fake_sbt(ctx, *args):
        sbt_calls.append(args)

    async def fake_push(ctx):
        git_pushes.append(ctx)

    monkeypatch.setattr(chs_publish, "sbt", fake_sbt)
    monkeypatch.setattr(chs_publish, "push_publish_complete", fake_push)
    ctx = make_context(variables=travis_sbt.model_copy(update={"branch": "develop"}))

    assert asyncio.run(chs_publish.publish_artifacts(ctx)) == Publication.DEVELOP
    (args,) = sbt_calls
    assert "-Dproject.isSnapshot=true" in args
    assert args[-2:] == ("publish", "dockerBuildAndPush")
    assert ctx.environment()["CROMWELL_SBT_DOCKER_TAGS"] == "develop,dev"
    assert len(git_pushes) == 1
