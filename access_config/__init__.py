"""
access_config -- single public entrypoint for access configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  Returns a frozen ``AccessConfig``; bridges in
    ``access_config.bridges`` turn it into kernel inputs.

Architecture position:
    Configuration -- YAML-driven.  Sits above ``access_kernel``.  The kernel
    MUST NEVER import from ``access_config``.

Failure modes:
    - ``FileNotFoundError`` -- the configuration file does not exist.
    - ``ConfigurationError`` -- missing keys or unusable values.

Audit relevance:
    Every successful ``get_active_config()`` call emits an
    ``ACCESS_CONFIG_TRACE`` log entry with the config id, version and
    checksum, tying verification behaviour to an exact configuration.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from access_config.loader import load_yaml_file, parse_config
from access_config.schema import AccessConfig
from access_config.validator import validate_config
from access_kernel.exceptions import ConfigurationError

_logger = logging.getLogger("access_kernel.config")

CONFIG_PATH_ENV = "ACCESS_CONFIG_PATH"

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default.yaml"


def get_active_config(config_path: Path | str | None = None) -> AccessConfig:
    """The ONLY public configuration entrypoint.

    Args:
        config_path: Override path to a configuration set.  Defaults to
            ``$ACCESS_CONFIG_PATH`` and then ``access_config/sets/default.yaml``.

    Raises:
        FileNotFoundError: If the configuration file does not exist.
        ConfigurationError: If parsing or validation fails.
    """
    path = Path(config_path or os.environ.get(CONFIG_PATH_ENV) or _DEFAULT_CONFIG_PATH)

    config = parse_config(load_yaml_file(path), source=str(path))
    problems = validate_config(config)
    if problems:
        raise ConfigurationError(str(path), problems)

    _logger.info(
        "ACCESS_CONFIG_TRACE",
        extra={
            "trace_type": "ACCESS_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "source": str(path),
        },
    )
    return config


__all__ = [
    "AccessConfig",
    "CONFIG_PATH_ENV",
    "get_active_config",
]
