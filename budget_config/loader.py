"""
Configuration loader (``budget_config.loader``).

Responsibility
--------------
Reads a YAML document and parses it into ``budget_config.schema``
dataclasses.  Runtime callers go through ``budget_config.get_active_config``.

Failure modes
-------------
* Missing file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown section or key, or an out-of-range value  -> ``ValueError``
  naming the offending key.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from budget_config.schema import (
    BudgetConfig,
    CoordinatorConfig,
    CostTrackingConfig,
    DatabaseConfig,
    ProjectDefaults,
)

_SECTIONS = {"database", "coordinator", "cost_tracking", "project_defaults", "log_level"}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load one YAML file; an empty document yields ``{}``."""
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping")
    return data


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON form of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def _section(data: dict[str, Any], name: str, allowed: set[str]) -> dict[str, Any]:
    section = data.get(name) or {}
    if not isinstance(section, dict):
        raise ValueError(f"{name}: must be a mapping")
    unknown = set(section) - allowed
    if unknown:
        raise ValueError(f"{name}: unknown key(s) {sorted(unknown)}")
    return section


def _decimal(value: Any, key: str) -> Decimal:
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"{key}: not a number: {value!r}") from exc


def parse_database(data: dict[str, Any]) -> DatabaseConfig:
    s = _section(data, "database", {"url", "echo", "pool_size", "max_overflow", "pool_timeout"})
    default = DatabaseConfig()
    return DatabaseConfig(
        url=str(s.get("url", default.url)),
        echo=bool(s.get("echo", default.echo)),
        pool_size=int(s.get("pool_size", default.pool_size)),
        max_overflow=int(s.get("max_overflow", default.max_overflow)),
        pool_timeout=int(s.get("pool_timeout", default.pool_timeout)),
    )


def parse_coordinator(data: dict[str, Any]) -> CoordinatorConfig:
    s = _section(
        data,
        "coordinator",
        {"budget_write_retries", "retry_backoff_seconds", "store_timeout_seconds"},
    )
    default = CoordinatorConfig()
    cfg = CoordinatorConfig(
        budget_write_retries=int(s.get("budget_write_retries", default.budget_write_retries)),
        retry_backoff_seconds=float(s.get("retry_backoff_seconds", default.retry_backoff_seconds)),
        store_timeout_seconds=float(s.get("store_timeout_seconds", default.store_timeout_seconds)),
    )
    if cfg.budget_write_retries < 0:
        raise ValueError("coordinator.budget_write_retries: must be >= 0")
    if cfg.retry_backoff_seconds < 0:
        raise ValueError("coordinator.retry_backoff_seconds: must be >= 0")
    if cfg.store_timeout_seconds <= 0:
        raise ValueError("coordinator.store_timeout_seconds: must be > 0")
    return cfg


def parse_cost_tracking(data: dict[str, Any]) -> CostTrackingConfig:
    s = _section(data, "cost_tracking", {"overspend_tolerance_pct"})
    tolerance = _decimal(
        s.get("overspend_tolerance_pct", "0"), "cost_tracking.overspend_tolerance_pct"
    )
    if tolerance < 0:
        raise ValueError("cost_tracking.overspend_tolerance_pct: must be >= 0")
    return CostTrackingConfig(overspend_tolerance_pct=tolerance)


def parse_project_defaults(data: dict[str, Any]) -> ProjectDefaults:
    s = _section(
        data,
        "project_defaults",
        {"contingency_percent", "requires_approval", "approval_threshold", "currency"},
    )
    default = ProjectDefaults()
    contingency = _decimal(
        s.get("contingency_percent", default.contingency_percent),
        "project_defaults.contingency_percent",
    )
    if not Decimal("0") <= contingency <= Decimal("100"):
        raise ValueError("project_defaults.contingency_percent: must be within 0..100")
    threshold = _decimal(
        s.get("approval_threshold", default.approval_threshold),
        "project_defaults.approval_threshold",
    )
    if threshold < 0:
        raise ValueError("project_defaults.approval_threshold: must be >= 0")
    return ProjectDefaults(
        contingency_percent=contingency,
        requires_approval=bool(s.get("requires_approval", default.requires_approval)),
        approval_threshold=threshold,
        currency=str(s.get("currency", default.currency)).upper(),
    )


def parse_budget_config(data: dict[str, Any]) -> BudgetConfig:
    """Parse a full configuration mapping."""
    unknown = set(data) - _SECTIONS
    if unknown:
        raise ValueError(f"unknown configuration section(s) {sorted(unknown)}")
    log_level = str(data.get("log_level", "INFO")).upper()
    if log_level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
        raise ValueError(f"log_level: unsupported level {log_level!r}")
    return BudgetConfig(
        database=parse_database(data),
        coordinator=parse_coordinator(data),
        cost_tracking=parse_cost_tracking(data),
        project_defaults=parse_project_defaults(data),
        log_level=log_level,
        checksum=compute_checksum(data),
    )


def load_budget_config(path: Path) -> BudgetConfig:
    return parse_budget_config(load_yaml_file(path))
