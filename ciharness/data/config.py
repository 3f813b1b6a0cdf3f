# Configuration file models
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
Data models and validation schemas for configuration files.
"""

import logging
import os
import os.path as path
import sys
import typing as T

import toml
from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)

M = T.TypeVar("M", bound=BaseModel)

CONFIG_FILE_NAME = "ciharness.toml"


class LoggingConfig(BaseModel):
    """
    Common logging configuration.
    """

    debug: bool = Field(default=False)
    """
    If ``true``, enables logging the debug level.  This can be extremely verbose.
    """


class RetryConfig(BaseModel):
    """
    Retry policy for flaky network operations, such as publishing artifacts.
    """

    retry_count: int = Field(default=3, ge=0)
    """
    How many times to retry after the first attempt fails.
    """

    delay: float = Field(default=15, ge=0)
    """
    Seconds between attempts.  The delay is fixed; there is no backoff.
    """


class HarnessConfig(BaseModel):
    """
    Configuration model for the CI harness.  Every field has a default, so the
    configuration file is optional.
    """

    log: LoggingConfig = Field(default_factory=LoggingConfig)
    """
    Logger configuration.  See :py:class:`LoggingConfig`.
    """

    publish_retry: RetryConfig = Field(default_factory=RetryConfig)
    """
    Retry policy for artifact publication.  See :py:class:`RetryConfig`.
    """

    log_poll_interval: float = Field(default=2, gt=0)
    """
    Seconds between checks for a log file to appear before it is tailed.
    """

    heartbeat_interval: float = Field(default=60, gt=0)
    """
    Seconds between heartbeat printouts.
    """

    vault_addr: str = Field(default="https://clotho.broadinstitute.org:8200")
    """
    Address of the secret store.  The ``vault`` client is invoked with ``VAULT_ADDR``
    set to this value.
    """

    wait_for_it_url: str = Field(
        default=(
            "https://raw.githubusercontent.com/vishnubob/wait-for-it/"
            "db049716e42767d39961e95dd9696103dca813f1/wait-for-it.sh"
        )
    )
    """
    Where to download the ``wait-for-it.sh`` script from.  Pinned to a commit.
    """

    conformance_startup_delay: float = Field(default=30, ge=0)
    """
    Seconds to give the workflow engine server to start before running conformance
    tests against it.
    """


def load_and_validate_config(config_file: str, model: type[M]) -> M:
    """
    Validate and load a config file as the given model.  A missing config file results
    in the default configuration.

    Args:
      config_file: Filename to open in the config directory
      model: A Pydantic model by which to validate the loaded config

    Returns:
      A parsed config.

    Raises:
      SystemExit: if configuration parsing fails.  Exit code 1.
    """

    config_dir = os.getenv("CIHARNESS_CFG_DIR") or "/etc/ciharness"
    config_path = path.join(config_dir, config_file)

    try:
        with open(config_path, "r") as config:
            return model.model_validate(toml.load(config))
    except FileNotFoundError:
        logger.debug("no config at %s, using defaults", config_path)
        return model.model_validate({})
    except (ValidationError, toml.TomlDecodeError):
        logger.exception("failed to parse config")
        sys.exit(1)
    except Exception:
        logger.exception("failed to load config")
        sys.exit(1)
