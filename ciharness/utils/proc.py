# Utilities for dealing with processes.
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
This module contains utilities for executing subprocesses.
"""

import asyncio
import os
import shlex
import typing as T
from subprocess import CalledProcessError

if T.TYPE_CHECKING:
    from .fs import AnyPath
    from .logging.build_logger import BuildLogger


def merge_env(env: dict[str, str]) -> dict[str, str]:
    """Gets the current :py:data:`os.environ`, modified with ``env``."""
    environ = os.environ.copy()
    environ.update(env)
    return environ


async def run_command(
    log_stream: "BuildLogger",
    *args: str,
    env: dict[str, str] | None = None,
    cwd: T.Optional["AnyPath"] = None,
    input: bytes | None = None,
) -> int:
    """
    Runs a subprocess with its output going into the build log, and returns its exit
    code.  Never raises for a non-zero exit code.
    """
    log_stream.info(f"Running command {shlex.join(args)} (cwd={cwd!r})")
    proc = await asyncio.create_subprocess_exec(
        *args,
        stdin=asyncio.subprocess.DEVNULL if input is None else asyncio.subprocess.PIPE,
        env=merge_env(env) if env else None,
        cwd=cwd,
        stdout=log_stream.out_stream,
        stderr=asyncio.subprocess.STDOUT,
    )
    if input is not None:
        await proc.communicate(input)
    rc = await proc.wait()
    log_stream.info(f"Exit code: {rc}")
    return rc


async def do_command(
    log_stream: "BuildLogger",
    *args: str,
    env: dict[str, str] | None = None,
    cwd: T.Optional["AnyPath"] = None,
    input: bytes | None = None,
) -> None:
    """
    Runs a subprocess, sending its output into the build log, and throwing an exception
    if it fails.
    """
    rc = await run_command(log_stream, *args, env=env, cwd=cwd, input=input)
    if rc != 0:
        raise CalledProcessError(rc, args)


async def get_command_output(
    log_stream: "BuildLogger",
    *args: str,
    env: dict[str, str] | None = None,
    cwd: T.Optional["AnyPath"] = None,
    input: bytes | None = None,
    quiet: bool = False,
) -> bytes:
    """
    Runs a subprocess, collecting its output, and throwing an exception if it fails.

    Args:
      quiet: Do not mention the command line in the build log.  Used for commands whose
             arguments or output carry secrets.
    """
    if not quiet:
        log_stream.info(f"Capturing command {shlex.join(args)} (cwd={cwd!r})")
    proc = await asyncio.create_subprocess_exec(
        *args,
        stdin=asyncio.subprocess.DEVNULL if input is None else asyncio.subprocess.PIPE,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.DEVNULL if quiet else log_stream.out_stream,
        env=merge_env(env) if env else None,
        cwd=cwd,
    )
    (stdout, _) = await proc.communicate(input=input)
    rc = proc.returncode
    assert rc is not None
    if not quiet:
        log_stream.info(f"Exit code: {rc}")
    if rc != 0:
        raise CalledProcessError(rc, args)
    return stdout
