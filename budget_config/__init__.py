"""
budget_config -- single runtime entrypoint for configuration.

``get_active_config()`` is the only function that reads configuration files
or environment variables.  The kernel never imports this package; services
receive the resulting ``BudgetConfig`` (or its sections) by injection.

Environment:
    PROJECT_BUDGET_CONFIG        path to a YAML file; defaults apply when unset
    PROJECT_BUDGET_DATABASE_URL  overrides ``database.url``
"""

from __future__ import annotations

import dataclasses
import logging
import os
from pathlib import Path

from budget_config.loader import load_budget_config, parse_budget_config
from budget_config.schema import (
    BudgetConfig,
    CoordinatorConfig,
    CostTrackingConfig,
    DatabaseConfig,
    ProjectDefaults,
)

__all__ = [
    "BudgetConfig",
    "CoordinatorConfig",
    "CostTrackingConfig",
    "DatabaseConfig",
    "ProjectDefaults",
    "get_active_config",
]

CONFIG_ENV_VAR = "PROJECT_BUDGET_CONFIG"
DATABASE_URL_ENV_VAR = "PROJECT_BUDGET_DATABASE_URL"

_logger = logging.getLogger("budget_kernel.config")


def get_active_config(config_path: Path | None = None) -> BudgetConfig:
    """Load the active configuration.

    Args:
        config_path: Explicit YAML path.  Falls back to $PROJECT_BUDGET_CONFIG,
            then to built-in defaults.

    Raises:
        FileNotFoundError: The named file does not exist.
        ValueError: The file fails validation.
    """
    path = config_path or (
        Path(os.environ[CONFIG_ENV_VAR]) if os.environ.get(CONFIG_ENV_VAR) else None
    )
    config = load_budget_config(path) if path is not None else parse_budget_config({})

    db_url = os.environ.get(DATABASE_URL_ENV_VAR)
    if db_url:
        config = dataclasses.replace(
            config, database=dataclasses.replace(config.database, url=db_url)
        )

    _logger.info(
        "budget_config_loaded",
        extra={
            "config_path": str(path) if path else None,
            "checksum": config.checksum,
            "budget_write_retries": config.coordinator.budget_write_retries,
            "store_timeout_seconds": config.coordinator.store_timeout_seconds,
        },
    )
    return config
