# String utilities.
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
This module contains various utility functions for dealing with strings.
"""

import re

_DOCKER_TAG_INVALID_RE = re.compile(r"[^a-zA-Z0-9.-]")
_UPPER_RE = re.compile(r"([A-Z])")

DOCKER_TAG_MAX_LENGTH = 128
"""Longest tag the container runtime accepts."""


def sanitize_docker_tag(tag: str) -> str:
    """
    Trims ``tag`` to :py:data:`DOCKER_TAG_MAX_LENGTH` and replaces characters not valid
    in image tags with underscores.
    """
    return _DOCKER_TAG_INVALID_RE.sub("_", tag[:DOCKER_TAG_MAX_LENGTH])


def sanitize_image_name(image: str) -> str:
    """
    Turns an image reference such as ``mysql:5.7`` or ``library/postgres:14`` into a
    string usable in container and file names.
    """
    return image.replace("/", "_").replace(":", "-")


def camel_to_snake(name: str) -> str:
    """
    Converts ``papiV2beta`` or ``PapiV2beta`` to ``papi_v2beta``.  Digits do not start
    a new word.
    """
    return _UPPER_RE.sub(r"_\1", name).lower().removeprefix("_")


def remove_prefixes(value: str, *prefixes: str) -> str:
    """Removes each of ``prefixes``, in order, from the start of ``value``."""
    for prefix in prefixes:
        value = value.removeprefix(prefix)
    return value


def lower_first(value: str) -> str:
    return value[:1].lower() + value[1:]
