# Ephemeral service containers.
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
This module starts the short-lived containers a build depends on, mostly databases,
and makes sure they are removed when the build ends.

Container names are derived from the image and the id of the process starting them, so
that concurrent builds on one host do not clash.  The runtime writes the container id
into a side-channel file.  Teardown is registered before the container is started and
reads that file only when it runs.
"""

import contextlib
import os
import os.path as path
import subprocess
import typing as T
from dataclasses import dataclass

from ciharness.background import start_docker_log_stream
from ciharness.utils.proc import do_command
from ciharness.utils.str import sanitize_image_name

if T.TYPE_CHECKING:
    from ciharness.context import BuildContext


def container_name(image: str, pid: int | None = None) -> str:
    """``mysql:5.7`` started by process 1234 is named ``mysql-5.7_1234``."""
    return f"{sanitize_image_name(image)}_{os.getpid() if pid is None else pid}"


def cid_file_path(resources_directory: str, name: str) -> str:
    return path.join(resources_directory, f"{name}.cid")


@dataclass(frozen=True)
class ServiceHandle:
    """One ephemeral container."""

    name: str
    image: str
    cid_file: str

    @classmethod
    def for_image(
        cls, image: str, resources_directory: str, pid: int | None = None
    ) -> "ServiceHandle":
        name = container_name(image, pid)
        return cls(name=name, image=image, cid_file=cid_file_path(resources_directory, name))

    def container_id(self) -> str:
        """The id the runtime recorded, or the container name if it recorded none."""
        try:
            with open(self.cid_file, "r") as f:
                cid = f.read().strip()
        except FileNotFoundError:
            cid = ""
        return cid or self.name

    def remove_container(self) -> None:
        subprocess.run(
            ("docker", "rm", "--force", "--volumes", self.container_id()),
            check=True,
            stdin=subprocess.DEVNULL,
        )

    def remove_cid_file(self) -> None:
        with contextlib.suppress(FileNotFoundError):
            os.remove(self.cid_file)


async def start_docker(ctx: "BuildContext", image: str, *flags: str) -> ServiceHandle:
    """
    Starts ``image`` detached, with extra ``docker run`` ``flags``, and streams its
    output into the build log.  The container and its id file are removed at exit.
    """
    service = ServiceHandle.for_image(image, ctx.variables.resources_directory)
    ctx.registry.add_exit_function(service.remove_container)
    ctx.registry.add_exit_function(service.remove_cid_file)

    ctx.service_logger(service.name).info("starting %s", image)
    await do_command(
        ctx.build_log,
        "docker",
        "run",
        f"--name={service.name}",
        f"--cidfile={service.cid_file}",
        "--detach",
        *flags,
        image,
    )
    start_docker_log_stream(ctx, service.name)
    return service


def _mysql_flags(ctx: "BuildContext", port: int, conf_directory: str) -> tuple[str, ...]:
    databases = ctx.databases
    return (
        "--publish",
        f"{port}:3306",
        "--env",
        "MYSQL_ROOT_PASSWORD=private",
        "--env",
        f"MYSQL_USER={databases.username}",
        "--env",
        f"MYSQL_PASSWORD={databases.password}",
        "--env",
        f"MYSQL_DATABASE={databases.schema_name}",
        "--volume",
        f"{path.join(ctx.variables.docker_directory, conf_directory)}:/etc/mysql/conf.d",
    )


async def start_docker_mysql(ctx: "BuildContext", docker_tag: str, port: int) -> ServiceHandle:
    return await start_docker(ctx, f"mysql:{docker_tag}", *_mysql_flags(ctx, port, "mysql-conf.d"))


async def start_docker_mariadb(ctx: "BuildContext", docker_tag: str, port: int) -> ServiceHandle:
    return await start_docker(
        ctx, f"mariadb:{docker_tag}", *_mysql_flags(ctx, port, "mariadb-conf.d")
    )


async def start_docker_postgresql(
    ctx: "BuildContext", docker_tag: str, port: int
) -> ServiceHandle:
    databases = ctx.databases
    initdb = path.join(ctx.variables.docker_directory, "postgresql-initdb.d")
    return await start_docker(
        ctx,
        f"postgres:{docker_tag}",
        "--publish",
        f"{port}:5432",
        "--env",
        f"POSTGRES_USER={databases.username}",
        "--env",
        f"POSTGRES_PASSWORD={databases.password}",
        "--env",
        f"POSTGRES_DB={databases.schema_name}",
        "--volume",
        f"{initdb}:/docker-entrypoint-initdb.d",
    )


_STARTERS = {
    "mysql": start_docker_mysql,
    "mariadb": start_docker_mariadb,
    "postgresql": start_docker_postgresql,
}


async def start_docker_databases(ctx: "BuildContext") -> list[ServiceHandle]:
    """Starts a container for every database this build has an image tag for."""
    services = []
    for name, endpoint in ctx.databases.endpoints():
        if not endpoint.wanted:
            continue
        starter = _STARTERS[name.removesuffix("_latest")]
        services.append(await starter(ctx, endpoint.docker_tag, endpoint.port))
    return services
