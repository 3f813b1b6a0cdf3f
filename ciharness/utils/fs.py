# Filesystem utilities.
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
This package contains utilities used for dealing with the filesystem.
"""

import contextlib
import glob
import os
import os.path as path
import tempfile
import typing as T

AnyPath: T.TypeAlias = os.PathLike[str] | str


@contextlib.contextmanager
def atomic_write_open(fpath: AnyPath, mode: str) -> T.Generator[T.IO[T.Any], None, None]:
    path_dir = path.dirname(fpath)
    with tempfile.NamedTemporaryFile(prefix=".", dir=path_dir, delete=False, mode=mode) as f:
        try:
            yield f
        except BaseException:
            os.unlink(f.name)
            raise
    os.rename(f.name, fpath)


def newest_matching(directory: AnyPath, pattern: str) -> str | None:
    """
    Returns the most recently modified file in ``directory`` whose name matches the glob
    ``pattern``, or ``None`` if there is none.
    """
    candidates = glob.glob(path.join(glob.escape(os.fspath(directory)), pattern))
    if not candidates:
        return None
    return max(candidates, key=path.getmtime)


def is_nonempty_file(fpath: AnyPath | None) -> bool:
    """Equivalent of ``test -s``."""
    if not fpath:
        return False
    try:
        return path.getsize(fpath) > 0
    except OSError:
        return False


def read_lines(fpath: AnyPath) -> list[str]:
    """Reads non-blank lines of ``fpath``, without their line terminators."""
    with open(fpath, "r") as f:
        return [line.rstrip("\n") for line in f if line.strip()]
