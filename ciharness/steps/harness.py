# Integration and conformance test steps.
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

import asyncio
import os.path as path
import shlex
import subprocess
import typing as T
from datetime import timedelta

import humanize

import ciharness.utils.proc as chu_proc
from ciharness.background import BackgroundTask

if T.TYPE_CHECKING:
    from ciharness.context import BuildContext


def centaur_arguments(ctx: "BuildContext", *extra: str) -> list[str]:
    centaur = ctx.require_centaur()
    args = [
        path.join(ctx.variables.root_directory, "centaur", "test_cromwell.sh"),
        "-n",
        centaur.config,
        "-l",
        ctx.variables.log_directory,
    ]
    # Additional parameters are exported as one space-separated string.
    args.extend(shlex.split(centaur.test_additional_parameters))
    if ctx.variables.generate_coverage:
        args.append("-g")
    args.extend(extra)
    return args


async def run_centaur(ctx: "BuildContext", *extra: str) -> None:
    """Runs the integration test harness, with ``extra`` arguments."""
    await chu_proc.do_command(
        ctx.build_log,
        *centaur_arguments(ctx, *extra),
        env=ctx.environment(),
        cwd=ctx.variables.root_directory,
    )


def _require_jar(ctx: "BuildContext") -> str:
    if ctx.cromwell_jar is None:
        raise RuntimeError("the server jar was not assembled")
    return ctx.cromwell_jar


def start_conformance_cromwell(ctx: "BuildContext") -> BackgroundTask:
    """
    Starts the workflow engine server for conformance tests, in the directory holding
    the test inputs so it can access them by relative path.  The server is killed at
    exit.
    """
    conformance = ctx.require_conformance()
    # Hashing for call caching sees local paths, not cloud ones.  The test images are
    # alpine based and lack bash.
    proc = subprocess.Popen(
        (
            "java",
            "-Xmx2g",
            f"-Dconfig.file={ctx.variables.cromwell_config}",
            "-Dcall-caching.enabled=false",
            "-Dsystem.job-shell=/bin/sh",
            "-jar",
            _require_jar(ctx),
            "server",
        ),
        cwd=conformance.test_resources,
        env=chu_proc.merge_env(ctx.environment()),
        stdin=subprocess.DEVNULL,
        stdout=ctx.build_log.out_stream,
        stderr=subprocess.STDOUT,
    )
    task = BackgroundTask("conformance server", proc)
    ctx.registry.add_exit_function(task.stop)
    return task


async def run_conformance_wdl(ctx: "BuildContext") -> None:
    conformance = ctx.require_conformance()
    await chu_proc.do_command(
        ctx.build_log,
        "java",
        "-Xmx6g",
        f"-Dbackend.providers.Local.config.concurrent-job-limit={conformance.test_parallelism}",
        "-jar",
        _require_jar(ctx),
        "run",
        conformance.test_wdl,
        "-i",
        conformance.test_inputs,
        env={
            **ctx.environment(),
            "CENTAUR_CWL_JAVA_ARGS": f"-Dconfig.file={conformance.runner_config}",
        },
        cwd=conformance.test_resources,
    )


async def run_conformance(ctx: "BuildContext") -> None:
    start_conformance_cromwell(ctx)
    delay = ctx.config.conformance_startup_delay
    ctx.build_log.info(
        f"Giving the server {humanize.naturaldelta(timedelta(seconds=delay))} to start"
    )
    await asyncio.sleep(delay)
    await run_conformance_wdl(ctx)
