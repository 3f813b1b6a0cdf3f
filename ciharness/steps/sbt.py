# Build tool steps.
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
This module contains the steps that drive ``sbt``: assembling the server jar, running
unit tests and generating coverage reports.
"""

import os.path as path
import re
import tempfile
import typing as T
from subprocess import CalledProcessError

import aiohttp

import ciharness.utils.fs as chu_fs
import ciharness.utils.proc as chu_proc
from ciharness.errors import fatal
from ciharness.utils.http import download_file

if T.TYPE_CHECKING:
    from ciharness.context import BuildContext
    from ciharness.data.build import BuildVariables

NO_SUPERSHELL = "-Dsbt.supershell=false"
CODECOV_UPLOADER_URL = "https://codecov.io/bash"

# sbt lists projects other than the current one as "[info] \t   name".
_PROJECT_LINE_MARKER = "[info] \t   "


async def sbt(ctx: "BuildContext", *args: str) -> None:
    """Runs ``sbt`` in the source tree with the build variables in its environment."""
    await chu_proc.do_command(
        ctx.build_log, "sbt", *args, env=ctx.environment(), cwd=ctx.variables.root_directory
    )


async def sbt_output(ctx: "BuildContext", *args: str) -> str:
    output = await chu_proc.get_command_output(
        ctx.build_log, "sbt", *args, env=ctx.environment(), cwd=ctx.variables.root_directory
    )
    return output.decode(errors="replace")


def find_cromwell_jar(variables: "BuildVariables") -> str | None:
    """The most recently built server jar, if any."""
    return chu_fs.newest_matching(
        path.join(variables.root_directory, "server", "target", "scala-2.13"), "cromwell-*.jar"
    )


async def assemble_jars(ctx: "BuildContext") -> None:
    await sbt(
        ctx,
        NO_SUPERSHELL,
        "set ThisBuild / assembly / logLevel := Level.Error",
        "--warn",
        *ctx.variables.sbt_coverage_command,
        "--error",
        *ctx.variables.sbt_assembly_command,
    )


async def find_or_assemble_cromwell_jar(ctx: "BuildContext") -> str:
    """
    Locates the server jar, assembling it first on CI or if there is none yet.  Ends
    the process if there is still no jar afterwards.
    """
    jar = find_cromwell_jar(ctx.variables)
    if ctx.variables.is_ci or not chu_fs.is_nonempty_file(jar):
        ctx.build_log.info("Please wait, building jars…")
        await assemble_jars(ctx)
        jar = find_cromwell_jar(ctx.variables)
    if jar is None or not chu_fs.is_nonempty_file(jar):
        fatal("find_or_assemble_cromwell_jar did not locate a cromwell jar even after assembly")
    ctx.cromwell_jar = jar
    return jar


def prior_version_config(cromwell_config: str, prior_version: int) -> str:
    """``papi_application.conf`` for version 85 is ``papi_85_application.conf``."""
    suffix = "_application.conf"
    if not cromwell_config.endswith(suffix):
        return cromwell_config
    return f"{cromwell_config.removesuffix(suffix)}_{prior_version}{suffix}"


async def setup_prior_version_resources(ctx: "BuildContext") -> None:
    """
    Provides the configuration, image tag and jar of the version a build upgrades from.
    Builds that do not test upgrades use the current ones instead.
    """
    variables = ctx.variables
    if variables.requires_prior_version:
        prior = variables.prior_version_number
        if prior is None:
            fatal("Unable to determine the prior version number")
        prior_config = prior_version_config(variables.cromwell_config, prior)
        config = prior_config if path.isfile(prior_config) else variables.cromwell_config
        docker_tag = str(prior)
        jar = path.join(variables.resources_directory, f"cromwell_{prior}.jar")

        # Copy the prior jar out of its published image.
        await chu_proc.do_command(
            ctx.build_log,
            "docker",
            "run",
            "--rm",
            "--entrypoint=",
            "--volume",
            f"{variables.resources_directory}:{variables.resources_directory}",
            f"broadinstitute/cromwell:{docker_tag}",
            "cp",
            "/app/cromwell.jar",
            jar,
        )
    else:
        config = variables.cromwell_config
        docker_tag = variables.docker_tag
        jar = ctx.cromwell_jar or ""

    ctx.extra_environment.update(
        {
            "CROMWELL_BUILD_PRE_RESTART_CROMWELL_CONFIG": config,
            "CROMWELL_BUILD_PRE_RESTART_DOCKER_TAG": docker_tag,
            "CROMWELL_BUILD_PRE_RESTART_CROMWELL_JAR": jar,
        }
    )


async def assemble(ctx: "BuildContext") -> None:
    """Prepares the current and, if needed, the prior server jars."""
    await find_or_assemble_cromwell_jar(ctx)
    await setup_prior_version_resources(ctx)


def parse_sbt_projects(output: str) -> list[str]:
    """Extracts project names from the output of ``sbt projects``."""
    projects = []
    for line in output.splitlines():
        if _PROJECT_LINE_MARKER not in line:
            continue
        fields = line.split()
        if len(fields) >= 2:
            projects.append(fields[1])
    return projects


def select_sbt_tests(projects: list[str], include: str, exclude: str) -> list[str]:
    """
    Picks the ``sbt`` test commands to run.  ``include`` and ``exclude`` are regular
    expressions matched against whole project names.  ``include`` takes precedence.
    Without either, every project is tested with a plain ``test``.
    """
    if include:
        include_re = re.compile(f"(?:{include})")
        return [f"{p}/test" for p in projects if include_re.fullmatch(p)]
    if exclude:
        exclude_re = re.compile(f"(?:{exclude})")
        return [f"{p}/test" for p in projects if not exclude_re.fullmatch(p)]
    return ["test"]


async def run_sbt_test(ctx: "BuildContext") -> None:
    """
    Runs unit tests.  Compiling and testing happen in separate JVMs to reduce memory
    pressure.
    """
    variables = ctx.variables
    await sbt(ctx, NO_SUPERSHELL, *variables.sbt_coverage_command, "Test/compile")

    if variables.sbt_include or variables.sbt_exclude:
        try:
            listing = await sbt_output(ctx, "-Dsbt.log.noformat=true", "projects")
        except CalledProcessError:
            ctx.log.exception("could not list sbt projects")
            listing = ""
        sbt_tests = select_sbt_tests(
            parse_sbt_projects(listing), variables.sbt_include, variables.sbt_exclude
        )
    else:
        sbt_tests = ["test"]

    if not sbt_tests:
        fatal(
            "Unable to retrieve list of sbt projects.",
            f"CROMWELL_BUILD_SBT_INCLUDE='{variables.sbt_include}'",
            f"CROMWELL_BUILD_SBT_EXCLUDE='{variables.sbt_exclude}'",
        )

    ctx.build_log.info(f"Starting sbt {' '.join(sbt_tests)}")
    await sbt(
        ctx,
        NO_SUPERSHELL,
        f"-Dakka.test.timefactor={variables.unit_span_scale_factor}",
        "-Dbackend.providers.Local.config.filesystems.local.localization.0=copy",
        *variables.sbt_coverage_command,
        *sbt_tests,
    )


async def _upload_coverage(ctx: "BuildContext") -> None:
    with tempfile.TemporaryDirectory() as work_dir:
        uploader = path.join(work_dir, "codecov.sh")
        try:
            await download_file(ctx.build_log, CODECOV_UPLOADER_URL, uploader)
        except aiohttp.ClientError:
            ctx.log.warning("could not download the coverage uploader")
            return
        rc = await chu_proc.run_command(
            ctx.build_log, "bash", uploader, env=ctx.environment(), cwd=ctx.variables.root_directory
        )
        if rc != 0:
            ctx.log.warning("coverage upload failed with status %d", rc)


async def generate_code_coverage(ctx: "BuildContext") -> None:
    if not ctx.variables.generate_coverage:
        return
    await sbt(ctx, NO_SUPERSHELL, "--warn", "coverageReport")
    await sbt(ctx, NO_SUPERSHELL, "--warn", "coverageAggregate")
    await _upload_coverage(ctx)
