# Secret store access through vault.
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
This module wraps the ``vault`` client.  Logging in is optional: committers with vault
access use it to pull images with credentials, which avoids anonymous pull rate limits.
Failing to log in is logged and otherwise ignored.
"""

import logging
import os
import os.path as path
import typing as T
import zipfile
from subprocess import CalledProcessError

from ciharness.providers import Environment
from ciharness.utils.http import download_file
from ciharness.utils.proc import get_command_output, run_command

if T.TYPE_CHECKING:
    from ciharness.context import BuildContext

logger = logging.getLogger(__name__)

DOCKERHUB_SECRET = "secret/dsde/cromwell/common/cromwell-dockerhub"


async def vault_run(ctx: "BuildContext", *args: str, input: bytes | None = None) -> bytes:
    """
    Runs the build's own ``vault`` executable, returning its output.  Neither the
    command line nor the output is logged.
    """
    return await get_command_output(
        ctx.build_log,
        ctx.variables.vault_executable,
        *args,
        env={"VAULT_ADDR": ctx.config.vault_addr},
        input=input,
        quiet=True,
    )


async def _vault_token(ctx: "BuildContext", env: Environment) -> str | None:
    role_id = env.get("VAULT_ROLE_ID")
    secret_id = env.get("VAULT_SECRET_ID")
    if role_id and secret_id:
        try:
            token = await vault_run(
                ctx,
                "write",
                "-field=token",
                "auth/approle/login",
                f"role_id={role_id}",
                f"secret_id={secret_id}",
            )
        except (CalledProcessError, OSError):
            ctx.log.warning("vault approle login failed")
            return None
        return token.decode().strip() or None
    return env.get("VAULT_TOKEN") or None


async def login_vault(ctx: "BuildContext", env: Environment) -> str | None:
    """
    Logs the vault client in, with an approle (``VAULT_ROLE_ID`` and
    ``VAULT_SECRET_ID``) or a token (``VAULT_TOKEN``).

    Returns:
      The token, if login succeeded.
    """
    token = await _vault_token(ctx, env)
    if token is None:
        return None
    try:
        await vault_run(ctx, "login", token)
    except (CalledProcessError, OSError):
        ctx.log.warning("vault login failed")
        return None
    ctx.build_log.info("vault login success")
    return token


async def _read_dockerhub_field(ctx: "BuildContext", field: str) -> str:
    try:
        return (await vault_run(ctx, "read", f"-field={field}", DOCKERHUB_SECRET)).decode()
    except (CalledProcessError, OSError):
        ctx.log.debug("could not read %s from vault", field)
        return ""


async def login_docker(ctx: "BuildContext") -> bool:
    """
    Logs the container runtime in with credentials held in vault.  On failure, images
    are pulled anonymously.
    """
    username = (await _read_dockerhub_field(ctx, "username")).strip()
    password = await _read_dockerhub_field(ctx, "password")
    try:
        rc = await run_command(
            ctx.build_log,
            "docker",
            "login",
            "--username",
            username,
            "--password-stdin",
            input=password.encode(),
        )
    except OSError:
        ctx.log.warning("could not run docker login")
        return False
    return rc == 0


VAULT_VERSION = "1.6.3"


def vault_download_url(os_name: str) -> str:
    return (
        f"https://releases.hashicorp.com/vault/{VAULT_VERSION}/"
        f"vault_{VAULT_VERSION}_{os_name}_amd64.zip"
    )


async def install_vault(ctx: "BuildContext") -> None:
    """Downloads the ``vault`` client into the resources directory."""
    variables = ctx.variables
    await download_file(ctx.build_log, vault_download_url(variables.os.value), variables.vault_zip)
    with zipfile.ZipFile(variables.vault_zip) as archive:
        archive.extract("vault", path.dirname(variables.vault_executable))
    os.chmod(variables.vault_executable, 0o755)
