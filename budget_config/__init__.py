"""
budget_config -- single public entrypoint for budget service configuration.

Responsibility:
    ``get_active_config()`` is the only way services obtain configuration.
    Resolution order: an explicit path, then the ``BUDGET_CONFIG_PATH``
    environment variable, then the bundled ``sets/default.yaml``.

Failure modes:
    - ``FileNotFoundError`` when an explicit or environment path is missing.
    - ``ConfigurationError`` (a ValueError) on invalid values.

Audit relevance:
    Every call emits a ``BUDGET_CONFIG_TRACE`` log entry naming the
    config_id and source file.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from budget_config.loader import load_config, parse_config
from budget_config.schema import BudgetConfig, ConfigurationError

_logger = logging.getLogger("budget_kernel.config")

CONFIG_PATH_ENV = "BUDGET_CONFIG_PATH"

_DEFAULT_CONFIG_FILE = Path(__file__).parent / "sets" / "default.yaml"


def get_active_config(path: Path | str | None = None) -> BudgetConfig:
    """The ONLY public configuration entrypoint."""
    if path is None:
        env_path = os.environ.get(CONFIG_PATH_ENV)
        path = Path(env_path) if env_path else _DEFAULT_CONFIG_FILE
    source = Path(path)
    config = load_config(source)
    _logger.info(
        "BUDGET_CONFIG_TRACE",
        extra={
            "trace_type": "BUDGET_CONFIG_TRACE",
            "config_id": config.config_id,
            "source": str(source),
        },
    )
    return config


__all__ = [
    "BudgetConfig",
    "CONFIG_PATH_ENV",
    "ConfigurationError",
    "get_active_config",
    "load_config",
    "parse_config",
]
