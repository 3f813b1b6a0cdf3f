# Build flows.
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
This module wires build steps together into complete builds, and dispatches a build to
the test script for its build type.
"""

import enum
import os
import os.path as path
import sys
import time
import typing as T
from datetime import timedelta

import humanize

import ciharness.steps.environment as chs_environment
import ciharness.steps.harness as chs_harness
import ciharness.steps.publish as chs_publish
import ciharness.steps.sbt as chs_sbt
from ciharness.errors import fatal
from ciharness.providers import Environment
from ciharness.utils.proc import merge_env
from ciharness.variables import test_script_name

if T.TYPE_CHECKING:
    from ciharness.context import BuildContext
    from ciharness.data.build import BuildVariables

SKIPPED_TESTS_HINT = "Use '[force ci]' in commit message to run tests on 'push'"


class Flow(enum.Enum):
    SBT = "sbt"
    CENTAUR = "centaur"
    CONFORMANCE = "conformance"


FlowFunction: T.TypeAlias = T.Callable[
    ["BuildContext", Environment, T.Sequence[str]], T.Awaitable[None]
]


async def sbt_flow(ctx: "BuildContext", env: Environment, extra: T.Sequence[str]) -> None:
    """Unit tests, coverage, and publication if this build publishes."""
    await chs_environment.setup_common_environment(ctx, env)
    await chs_publish.check_published_artifacts(ctx)
    await chs_sbt.run_sbt_test(ctx)
    await chs_sbt.generate_code_coverage(ctx)
    await chs_publish.publish_artifacts_with_retry(ctx)


async def centaur_flow(ctx: "BuildContext", env: Environment, extra: T.Sequence[str]) -> None:
    """Integration tests.  ``extra`` is passed on to the test harness."""
    await chs_environment.setup_common_environment(ctx, env)
    chs_environment.setup_centaur_environment(ctx, env)
    await chs_sbt.assemble(ctx)
    await chs_harness.run_centaur(ctx, *extra)
    await chs_sbt.generate_code_coverage(ctx)


async def conformance_flow(
    ctx: "BuildContext", env: Environment, extra: T.Sequence[str]
) -> None:
    """CWL conformance tests against a locally started server."""
    await chs_environment.setup_common_environment(ctx, env)
    await chs_environment.setup_conformance_environment(ctx, env)
    await chs_sbt.assemble(ctx)
    await chs_harness.run_conformance(ctx)
    await chs_sbt.generate_code_coverage(ctx)


FLOWS: dict[Flow, FlowFunction] = {
    Flow.SBT: sbt_flow,
    Flow.CENTAUR: centaur_flow,
    Flow.CONFORMANCE: conformance_flow,
}


async def run_flow(
    ctx: "BuildContext", flow: Flow, env: Environment, extra: T.Sequence[str] = ()
) -> None:
    start_time = time.monotonic()
    ctx.log.info("starting %s flow", flow.value)
    try:
        await FLOWS[flow](ctx, env, extra)
    finally:
        elapsed = timedelta(seconds=time.monotonic() - start_time)
        ctx.build_log.info(f"{flow.value} flow ended after {humanize.naturaldelta(elapsed)}")


def test_script_path(variables: "BuildVariables") -> str:
    return path.join(variables.scripts_directory, test_script_name(variables.build_type))


def exec_test_script(variables: "BuildVariables", out: T.TextIO | None = None) -> T.NoReturn:
    """
    Replaces this process with the test script of the build type, with the build
    variables in its environment.  Exits successfully instead if tests are skipped.
    """
    out = out if out is not None else sys.stdout
    if not variables.run_tests:
        print(SKIPPED_TESTS_HINT, file=out, flush=True)
        sys.exit(0)

    script = test_script_path(variables)
    if not path.isfile(script):
        fatal(f"No test script for build type {variables.build_type!r}", script)
    out.flush()
    os.execve(script, [script], merge_env(variables.as_environment()))
