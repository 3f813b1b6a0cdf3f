# ciharness command line interface.
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
Entry point of the ``ciharness`` command.  Every subcommand computes the build
variables first, so that they are the same no matter which step runs.
"""

import argparse
import asyncio
import logging
import os
import os.path as path
import subprocess
import sys
import typing as T

import ciharness.data.config as config
import ciharness.flows as ch_flows
import ciharness.steps.docker as chs_docker
import ciharness.utils.logging as chu_logging
import ciharness.variables as ch_variables
from ciharness.context import BuildContext
from ciharness.exit_actions import ExitActionRegistry
from ciharness.providers import Environment, create_provider_handler, detect_provider
from ciharness.utils.argparse import (
    DEBUG_TOGGLES_EPILOG,
    add_build_type_argument,
    create_root_parser,
)
from ciharness.utils.git import Git
from ciharness.utils.logging.build_logger import BuildLogger
from ciharness.utils.process_tree import kill_tree

logger = logging.getLogger(__name__)


def _create_parser() -> argparse.ArgumentParser:
    argparser = create_root_parser(
        "Continuous integration harness for Cromwell builds.", DEBUG_TOGGLES_EPILOG
    )
    argparser.add_argument(
        "--root",
        help="root of the source tree (default: current directory)",
        default=os.getcwd(),
    )
    subcommands = argparser.add_subparsers(dest="command", metavar="COMMAND")

    subcommands.add_parser("variables", help="print the main build variables")

    exec_test = subcommands.add_parser(
        "exec-test", help="replace this process with the test script of the build type"
    )
    add_build_type_argument(exec_test)

    run = subcommands.add_parser("run", help="run a complete build flow")
    run.add_argument("flow", choices=[flow.value for flow in ch_flows.Flow])
    add_build_type_argument(run)
    run.add_argument(
        "extra",
        nargs=argparse.REMAINDER,
        help="arguments passed on to the test harness",
    )

    docker_image = subcommands.add_parser(
        "docker-image", help="build the server image tagged for this build"
    )
    add_build_type_argument(docker_image)

    kill = subcommands.add_parser(
        "kill-tree", help="terminate a process and all of its descendants"
    )
    kill.add_argument("pid", type=int)

    delete_images = subcommands.add_parser(
        "delete-docker-images",
        help="delete the images listed, one per line, in a file, then the file",
    )
    delete_images.add_argument("image_file", metavar="FILE")

    return argparser


def _create_context(
    env: Environment,
    harness_config: config.HarnessConfig,
    root: str,
    build_type: str | None,
) -> BuildContext:
    handler = create_provider_handler(detect_provider(env))
    variables = ch_variables.create_build_variables(
        env, Git(root), root, build_type_hint=build_type, handler=handler
    )
    databases = ch_variables.create_database_variables(env, variables, handler)
    os.makedirs(path.dirname(variables.exit_functions), exist_ok=True)
    registry = ExitActionRegistry(journal_path=variables.exit_functions)
    ctx = BuildContext(
        variables=variables,
        databases=databases,
        config=harness_config,
        registry=registry,
    )
    logger.debug("build variables: %r", variables)
    return ctx


async def _docker_image(ctx: BuildContext) -> None:
    image = await chs_docker.build_cromwell_docker(ctx)
    print(image)


def _run(parsed: argparse.Namespace, env: Environment, harness_config: config.HarnessConfig) -> int:
    match parsed.command:
        case "kill-tree":
            kill_tree(parsed.pid)
            return 0
        case "delete-docker-images":
            remover = chs_docker.docker_image_remover(BuildLogger())
            asyncio.run(chs_docker.delete_docker_images(remover, parsed.image_file))
            return 0
        case "variables":
            ctx = _create_context(env, harness_config, parsed.root, None)
            ch_variables.echo_build_variables(ctx.variables)
            return 0
        case "exec-test":
            handler = create_provider_handler(detect_provider(env))
            variables = ch_variables.create_build_variables(
                env, Git(parsed.root), parsed.root, parsed.build_type, handler
            )
            ch_flows.exec_test_script(variables)
        case "docker-image":
            ctx = _create_context(env, harness_config, parsed.root, parsed.build_type)
            asyncio.run(_docker_image(ctx))
            return 0
        case "run":
            ctx = _create_context(env, harness_config, parsed.root, parsed.build_type)
            flow = ch_flows.Flow(parsed.flow)
            asyncio.run(ch_flows.run_flow(ctx, flow, env, parsed.extra))
            return 0
        case _:
            raise ValueError(f"unexpected command {parsed.command}")


def main(argv: T.Sequence[str] | None = None) -> None:
    argparser = _create_parser()
    parsed = argparser.parse_args(argv)
    if not parsed.command:
        argparser.print_help()
        sys.exit(1)

    env = dict(os.environ)
    harness_config = config.load_and_validate_config(
        config.CONFIG_FILE_NAME, config.HarnessConfig
    )
    chu_logging.apply_logging_config(
        harness_config.log, force_debug=ch_variables.check_debug(env).debug
    )
    logger.debug("config loaded: %r", harness_config)

    try:
        sys.exit(_run(parsed, env, harness_config))
    except subprocess.CalledProcessError as e:
        logger.error("%s failed with status %d", e.cmd, e.returncode)
        sys.exit(e.returncode or 1)
