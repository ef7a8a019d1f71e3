"""
payments_config -- single public entrypoint for engine configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  No other component reads configuration files
    or environment variables directly.

Failure modes:
    - ``FileNotFoundError`` -- the requested configuration file is missing.
    - ``ValueError`` -- schema validation failures.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``PAYMENTS_CONFIG_TRACE`` log entry containing the config_id, version
    and checksum, tying each run to the exact configuration that governed
    it.
"""

from __future__ import annotations

import os
from pathlib import Path

from payments_config.loader import load_config_file
from payments_config.schema import (
    AuthoritySettings,
    DatabaseSettings,
    DeductionDefaults,
    LoggingSettings,
    NumberingSettings,
    PaymentsConfig,
)
from payments_kernel.logging_config import get_logger

_logger = get_logger("config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"
CONFIG_ENV_VAR = "PAYMENTS_CONFIG_FILE"


def get_active_config(path: Path | str | None = None) -> PaymentsConfig:
    """The ONLY public configuration entrypoint.

    Resolution order: explicit ``path``, then ``$PAYMENTS_CONFIG_FILE``,
    then the bundled ``defaults.yaml``.  Any file is layered over the
    bundled defaults, so partial files are valid.
    """
    chosen = path or os.environ.get(CONFIG_ENV_VAR) or DEFAULT_CONFIG_PATH
    config = load_config_file(Path(chosen), defaults_path=DEFAULT_CONFIG_PATH)

    _logger.info(
        "PAYMENTS_CONFIG_TRACE",
        extra={
            "config_id": config.config_id,
            "version": config.version,
            "checksum": config.checksum,
            "source": str(chosen),
        },
    )
    return config


__all__ = [
    "AuthoritySettings",
    "DatabaseSettings",
    "DeductionDefaults",
    "LoggingSettings",
    "NumberingSettings",
    "PaymentsConfig",
    "get_active_config",
    "DEFAULT_CONFIG_PATH",
    "CONFIG_ENV_VAR",
]
