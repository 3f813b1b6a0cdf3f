# Build environment setup.
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
This module contains the steps that prepare a build: directories, helper scripts,
secrets, databases and the background tasks that accompany the rest of the build.
"""

import json
import os
import os.path as path
import shutil
import sys
import typing as T

import ciharness.background as ch_background
import ciharness.services as ch_services
import ciharness.utils.fs as chu_fs
import ciharness.utils.proc as chu_proc
import ciharness.variables as ch_variables
import ciharness.vault as ch_vault
from ciharness.providers import CIProvider, Environment, create_provider_handler
from ciharness.utils.http import download_file

from .sbt import NO_SUPERSHELL, sbt

if T.TYPE_CHECKING:
    from ciharness.context import BuildContext

CWL_REPOSITORY = "https://github.com/common-workflow-language/common-workflow-language.git"
TOOLBOX_IMAGE = "broadinstitute/dsde-toolbox:dev"


def verify_secure_build(ctx: "BuildContext") -> None:
    """
    Ends a build that needs secrets, successfully, if they are unavailable.  Travis does
    not hand secrets to builds of pull requests from forks.
    """
    variables = ctx.variables
    if (
        variables.provider == CIProvider.TRAVIS
        and not variables.is_secure
        and variables.requires_secure
    ):
        ctx.build_log.banner("WARNING: Encrypted keys are unavailable. Exiting.")
        sys.exit(0)


async def make_build_directories(ctx: "BuildContext") -> None:
    variables = ctx.variables
    if variables.provider == CIProvider.JENKINS:
        # The checkout belongs to another user outside of the compose container.
        await chu_proc.do_command(
            ctx.build_log, "sudo", "chmod", "-R", "a+w", ".", cwd=variables.root_directory
        )
    os.makedirs(variables.log_directory, exist_ok=True)
    os.makedirs(variables.resources_directory, exist_ok=True)


async def install_wait_for_it(ctx: "BuildContext") -> None:
    await download_file(
        ctx.build_log,
        ctx.config.wait_for_it_url,
        ctx.variables.wait_for_it_script,
        executable=True,
    )


async def stop_travis_defaults(ctx: "BuildContext") -> None:
    """Stops the databases Travis runs by default, which hold the ports we need."""
    for service in ("mysql", "postgresql"):
        await chu_proc.run_command(ctx.build_log, "sudo", f"/etc/init.d/{service}", "stop")


async def delete_boto_config(ctx: "BuildContext") -> None:
    # The preinstalled one breaks gsutil.
    await chu_proc.run_command(ctx.build_log, "sudo", "rm", "-f", "/etc/boto.cfg")
    ctx.extra_environment["BOTO_CONFIG"] = "/dev/null"


def delete_sbt_boot(ctx: "BuildContext") -> None:
    # A stale boot directory fails sub-builds almost immediately.
    shutil.rmtree(
        path.join(ctx.variables.home_directory, ".sbt", "boot"), ignore_errors=True
    )


async def render_secure_resources(ctx: "BuildContext") -> None:
    """
    Copies the CI resources and renders the secure ones from vault.  Not being able to
    render them is not fatal, but outside of CI the developer has to fill them in.
    """
    # Pulled here so that the pull output does not end up on sbt's stderr.
    await chu_proc.run_command(ctx.build_log, "docker", "pull", TOOLBOX_IMAGE)
    rc = await chu_proc.run_command(
        ctx.build_log,
        "sbt",
        NO_SUPERSHELL,
        "--warn",
        "renderCiResources",
        env=ctx.environment(),
        cwd=ctx.variables.root_directory,
    )
    if rc == 0:
        return
    if ctx.variables.is_ci:
        ctx.build_log.info("Continuing without rendering secure resources.")
    else:
        ctx.build_log.banner(
            "WARNING: Unable to render vault resources.",
            "'*.ctmpl' files should be copied and updated manually.",
        )


async def copy_all_resources(ctx: "BuildContext") -> None:
    """Copies the CI resources without rendering the secure ones."""
    await sbt(ctx, NO_SUPERSHELL, "--warn", "copyCiResources")


async def setup_secure_resources(ctx: "BuildContext") -> None:
    if ctx.variables.provider == CIProvider.JENKINS:
        # Rendered outside of the compose container already.
        await copy_all_resources(ctx)
    else:
        await render_secure_resources(ctx)


async def _login(ctx: "BuildContext", env: Environment) -> None:
    await ch_vault.install_vault(ctx)
    if await ch_vault.login_vault(ctx, env) is not None:
        await ch_vault.login_docker(ctx)


async def setup_common_environment(ctx: "BuildContext", env: Environment) -> None:
    """
    Prepares any build: checks it may run, creates directories, logs in where possible,
    starts the databases this provider expects the build to start, renders resources
    and starts the heartbeat.
    """
    ch_variables.echo_build_variables(ctx.variables, ctx.build_log.out_stream)
    verify_secure_build(ctx)
    await make_build_directories(ctx)
    await install_wait_for_it(ctx)

    match ctx.variables.provider:
        case CIProvider.TRAVIS:
            await stop_travis_defaults(ctx)
            await _login(ctx, env)
            await delete_boto_config(ctx)
            delete_sbt_boot(ctx)
            await ch_services.start_docker_databases(ctx)
        case CIProvider.CIRCLE:
            await _login(ctx, env)
            await ch_services.start_docker_databases(ctx)
        case CIProvider.GITHUB:
            await _login(ctx, env)
            await delete_boto_config(ctx)
            delete_sbt_boot(ctx)
            await ch_services.start_docker_databases(ctx)
        case CIProvider.JENKINS | CIProvider.UNKNOWN:
            pass

    await setup_secure_resources(ctx)
    ch_background.start_build_heartbeat(ctx)


def cat_log(ctx: "BuildContext", title: str, fpath: str) -> None:
    out = ctx.build_log.out_stream
    print(title, file=out)
    try:
        with open(fpath, "r", errors="backslashreplace") as f:
            shutil.copyfileobj(f, out)
    except FileNotFoundError:
        ctx.build_log.warning(f"{fpath} does not exist")
    out.flush()


def _compute_centaur(ctx: "BuildContext", env: Environment) -> None:
    handler = create_provider_handler(ctx.variables.provider)
    ctx.centaur = ch_variables.create_centaur_variables(
        env, ctx.variables, ctx.databases, handler
    )


def setup_centaur_environment(ctx: "BuildContext", env: Environment) -> None:
    """Computes the integration test variables and follows the server and test logs."""
    _compute_centaur(ctx, env)
    centaur = ctx.require_centaur()
    ch_background.start_log_tail(ctx, ctx.variables.cromwell_log)
    ch_background.start_log_tail(ctx, centaur.log)
    if ctx.variables.is_ci:
        ctx.registry.add_exit_function(cat_log, ctx, "CENTAUR LOG", centaur.log)


async def checkout_pinned_cwl(ctx: "BuildContext") -> None:
    conformance = ctx.require_conformance()
    if path.isdir(conformance.test_directory):
        return
    await chu_proc.do_command(
        ctx.build_log, "git", "clone", CWL_REPOSITORY, conformance.test_directory
    )
    await chu_proc.do_command(
        ctx.build_log, "git", "checkout", conformance.test_commit, cwd=conformance.test_directory
    )


def write_cwl_test_inputs(ctx: "BuildContext") -> None:
    conformance = ctx.require_conformance()
    inputs = ch_variables.conformance_test_inputs(ctx.variables, conformance)
    with chu_fs.atomic_write_open(conformance.test_inputs, "w") as f:
        json.dump(inputs, f, indent=4)
        f.write("\n")


async def setup_conformance_environment(ctx: "BuildContext", env: Environment) -> None:
    _compute_centaur(ctx, env)
    ctx.conformance = ch_variables.create_conformance_variables(ctx.variables)
    await checkout_pinned_cwl(ctx)
    write_cwl_test_inputs(ctx)
    ctx.registry.add_exit_function(
        cat_log, ctx, "CONFORMANCE LOG", ctx.require_conformance().test_output
    )
