# HTTP helpers.
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

import os
import stat
import typing as T

import aiohttp

from .fs import atomic_write_open

if T.TYPE_CHECKING:
    from .fs import AnyPath
    from .logging.build_logger import BuildLogger


async def download_file(
    log_io: "BuildLogger", url: str, local_path: "AnyPath", executable: bool = False
) -> None:
    """
    Downloads ``url`` into ``local_path``, which only appears once complete.  Raises
    :py:class:`aiohttp.ClientError` if the download fails.
    """
    log_io.info(f"Downloading {url} into {local_path}")
    async with aiohttp.ClientSession() as client, client.get(url) as resp:
        resp.raise_for_status()
        with atomic_write_open(local_path, "wb") as local:
            while data := await resp.content.read(128 * 1024):
                local.write(data)
    if executable:
        mode = os.stat(local_path).st_mode
        os.chmod(local_path, mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
