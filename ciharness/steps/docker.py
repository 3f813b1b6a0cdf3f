# Container image steps.
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

import contextlib
import logging
import os
import typing as T
from subprocess import CalledProcessError

import ciharness.utils.fs as chu_fs
import ciharness.utils.proc as chu_proc

from .sbt import sbt

if T.TYPE_CHECKING:
    from ciharness.context import BuildContext
    from ciharness.utils.logging.build_logger import BuildLogger

logger = logging.getLogger(__name__)

ImageDeleter: T.TypeAlias = T.Callable[[str], T.Awaitable[object]]


async def image_exists(ctx: "BuildContext", image: str) -> bool:
    output = await chu_proc.get_command_output(
        ctx.build_log, "docker", "image", "ls", "--quiet", image
    )
    return bool(output.strip())


async def build_docker_image(ctx: "BuildContext", executable: str, image: str) -> None:
    """
    Builds the sbt project ``executable`` into ``image``.  Outside of CI, an existing
    image is reused.
    """
    if not ctx.variables.is_ci and await image_exists(ctx, image):
        return
    ctx.build_log.info(f"Please wait, building {executable} into {image}…")
    await sbt(
        ctx,
        "--error",
        f'set `{executable}`/docker/imageNames := List(ImageName("{image}"))',
        f"{executable}/docker",
    )


async def build_cromwell_docker(ctx: "BuildContext") -> str:
    image = f"broadinstitute/cromwell:{ctx.variables.docker_tag}"
    await build_docker_image(ctx, "server", image)
    return image


def docker_image_remover(log_io: "BuildLogger") -> ImageDeleter:
    async def remove(image: str) -> None:
        await chu_proc.do_command(log_io, "docker", "image", "rm", "--force", image)

    return remove


async def delete_docker_images(delete: ImageDeleter, image_file: str) -> int:
    """
    Deletes every image listed, one per line, in ``image_file``, then the file itself.
    Best effort: failures are logged and skipped.

    Returns:
      How many images failed to delete.
    """
    if not os.path.isfile(image_file):
        return 0
    failures = 0
    for image in chu_fs.read_lines(image_file):
        try:
            await delete(image)
        except (CalledProcessError, OSError):
            logger.warning("could not delete image %s", image, exc_info=True)
            failures += 1
    with contextlib.suppress(OSError):
        os.remove(image_file)
    return failures
