"""
Configuration schema (``budget_config.schema``).

Frozen dataclasses only; parsing lives in ``budget_config.loader``.  Every
field has a default so an empty YAML document yields a usable config.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal


@dataclass(frozen=True)
class DatabaseConfig:
    url: str = "sqlite:///project_budget.db"
    echo: bool = False
    pool_size: int = 10
    max_overflow: int = 5
    pool_timeout: int = 30


@dataclass(frozen=True)
class CoordinatorConfig:
    """Change-order approval coordination.

    budget_write_retries: extra attempts at the project budget write after
        the change order status has been committed.
    retry_backoff_seconds: first backoff delay; doubled per attempt.
    store_timeout_seconds: default deadline for every store call.
    """

    budget_write_retries: int = 2
    retry_backoff_seconds: float = 0.05
    store_timeout_seconds: float = 5.0


@dataclass(frozen=True)
class CostTrackingConfig:
    """overspend_tolerance_pct is a fraction: 0.05 allows 5% over committed."""

    overspend_tolerance_pct: Decimal = Decimal("0")


@dataclass(frozen=True)
class ProjectDefaults:
    """Values applied when create_project omits them."""

    contingency_percent: Decimal = Decimal("10")
    requires_approval: bool = True
    approval_threshold: Decimal = Decimal("10000")
    currency: str = "USD"


@dataclass(frozen=True)
class BudgetConfig:
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    coordinator: CoordinatorConfig = field(default_factory=CoordinatorConfig)
    cost_tracking: CostTrackingConfig = field(default_factory=CostTrackingConfig)
    project_defaults: ProjectDefaults = field(default_factory=ProjectDefaults)
    log_level: str = "INFO"
    checksum: str = ""
