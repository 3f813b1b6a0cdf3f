# Artifact publication.
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
This module decides whether and what a build publishes, and publishes it.

Only push builds of the complete ``sbt`` build on Travis publish.  What they publish
depends on what was pushed:

- ``develop`` publishes snapshot artifacts and floating ``develop`` and ``dev`` images,
  then signals that by pushing a branch,
- hotfix branches (``85_hotfix``) publish release artifacts and images,
- tags publish release artifacts only, versioned as the tag,
- other secure builds only check that publishing credentials exist.
"""

import enum
import os.path as path
import re
import tempfile
import typing as T
from subprocess import CalledProcessError

import ciharness.utils.proc as chu_proc
from ciharness.providers import CIProvider
from ciharness.utils.retry import exec_retry_function

from .sbt import NO_SUPERSHELL, sbt

if T.TYPE_CHECKING:
    from ciharness.context import BuildContext
    from ciharness.data.build import BuildVariables

_HOTFIX_BRANCH_RE = re.compile(r"^[0-9.]+_hotfix$")

PUBLISH_COMPLETE_REPOSITORY = "git@github.com:broadinstitute/cromwell.git"
PUBLISH_COMPLETE_MESSAGE = "publish complete [skip ci]"


class Publication(enum.Enum):
    NOTHING = "nothing"
    DEVELOP = "develop"
    HOTFIX = "hotfix"
    TAG = "tag"
    CHECK_CREDENTIALS = "check_credentials"

    @property
    def publishes(self) -> bool:
        return self in (Publication.DEVELOP, Publication.HOTFIX, Publication.TAG)


def is_publishing_build(variables: "BuildVariables") -> bool:
    return (
        variables.provider == CIProvider.TRAVIS
        and variables.build_type == "sbt"
        and variables.sbt_include == ""
        and variables.event == "push"
    )


def plan_publication(variables: "BuildVariables") -> Publication:
    if not is_publishing_build(variables):
        return Publication.NOTHING
    if variables.branch == "develop":
        return Publication.DEVELOP
    if _HOTFIX_BRANCH_RE.match(variables.branch):
        return Publication.HOTFIX
    if variables.tag:
        return Publication.TAG
    if variables.is_secure:
        return Publication.CHECK_CREDENTIALS
    return Publication.NOTHING


async def check_published_artifacts(ctx: "BuildContext") -> None:
    """Fails early if publishing later would fail because the version already exists."""
    if plan_publication(ctx.variables).publishes:
        await sbt(ctx, NO_SUPERSHELL, "--error", "errorIfAlreadyPublished")


async def _publish(ctx: "BuildContext", *args: str, docker: bool) -> None:
    await sbt(
        ctx,
        "set ThisBuild / assembly / logLevel := Level.Warn",
        NO_SUPERSHELL,
        "--warn",
        *args,
        "publish",
        *(("dockerBuildAndPush",) if docker else ()),
    )


async def push_publish_complete(ctx: "BuildContext") -> None:
    """
    Some environments poll GitHub, not the image registry, for new images.  Tell them
    about a new set of images by force-pushing an empty commit to a well-known branch.
    """
    variables = ctx.variables
    deploy_key = path.join(variables.resources_directory, "github_private_deploy_key")
    branch = f"{variables.branch}_publish_complete"
    remote = "publish_complete"

    with tempfile.TemporaryDirectory(prefix="publish_complete") as work_dir:

        async def _git(*args: str) -> None:
            await chu_proc.do_command(ctx.build_log, "git", *args, cwd=work_dir)

        await _git("init")
        await _git("config", "core.sshCommand", f"ssh -i {deploy_key} -F /dev/null")
        await _git("config", "user.email", variables.git_user_email)
        await _git("config", "user.name", variables.git_user_name)
        await _git("remote", "add", remote, PUBLISH_COMPLETE_REPOSITORY)
        await _git("checkout", "-b", branch)
        await _git("commit", "--allow-empty", "-m", PUBLISH_COMPLETE_MESSAGE)
        await _git("push", "-f", remote, branch)


async def publish_artifacts(ctx: "BuildContext") -> Publication:
    """Publishes whatever :py:func:`plan_publication` decides on, once."""
    plan = plan_publication(ctx.variables)
    match plan:
        case Publication.DEVELOP:
            # For both the develop branch and the dev environment.
            ctx.extra_environment["CROMWELL_SBT_DOCKER_TAGS"] = "develop,dev"
            await _publish(ctx, "-Dproject.isSnapshot=true", docker=True)
            await push_publish_complete(ctx)
        case Publication.HOTFIX:
            # Image tags float: "85" is the latest hotfix of 85.
            await _publish(ctx, "-Dproject.isSnapshot=false", docker=True)
        case Publication.TAG:
            # Artifact versions do not.
            await _publish(
                ctx,
                f"-Dproject.version={ctx.variables.tag}",
                "-Dproject.isSnapshot=false",
                docker=False,
            )
        case Publication.CHECK_CREDENTIALS:
            await sbt(ctx, NO_SUPERSHELL, "--warn", "verifyArtifactoryCredentialsExist")
        case Publication.NOTHING:
            pass
    return plan


async def publish_artifacts_with_retry(ctx: "BuildContext") -> None:
    """
    Publishes with the configured retry policy.  Raises
    :py:class:`subprocess.CalledProcessError` with the status of the last attempt if
    every attempt fails.
    """
    retry = ctx.config.publish_retry

    async def attempt() -> None:
        await publish_artifacts(ctx)

    rc = await exec_retry_function(attempt, retry.retry_count, retry.delay)
    if rc != 0:
        raise CalledProcessError(rc, "publish_artifacts")
