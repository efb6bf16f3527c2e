"""Tests for YAML configuration loading and environment overrides."""

from __future__ import annotations

from decimal import Decimal
from pathlib import Path

import pytest
import yaml

from budget_config import get_active_config
from budget_config.loader import (
    compute_checksum,
    load_budget_config,
    load_yaml_file,
    parse_budget_config,
)
from budget_config.schema import BudgetConfig

EXAMPLE_CONFIG = Path(__file__).resolve().parents[2] / "config" / "budget.example.yaml"


def _write(tmp_path: Path, data) -> Path:
    path = tmp_path / "budget.yaml"
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return path


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    monkeypatch.delenv("PROJECT_BUDGET_CONFIG", raising=False)
    monkeypatch.delenv("PROJECT_BUDGET_DATABASE_URL", raising=False)


class TestDefaults:

    def test_empty_mapping_gives_defaults(self):
        config = parse_budget_config({})
        assert config.coordinator.budget_write_retries == 2
        assert config.cost_tracking.overspend_tolerance_pct == Decimal("0")
        assert config.project_defaults.contingency_percent == Decimal("10")
        assert config.log_level == "INFO"

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("", encoding="utf-8")
        assert load_yaml_file(path) == {}
        assert load_budget_config(path).project_defaults.currency == "USD"

    def test_no_path_and_no_env(self):
        config = get_active_config()
        assert isinstance(config, BudgetConfig)
        assert config.database.url == BudgetConfig().database.url


class TestLoading:

    def test_example_file_parses(self):
        config = load_budget_config(EXAMPLE_CONFIG)
        assert config.database.url.startswith("postgresql")
        assert config.cost_tracking.overspend_tolerance_pct == Decimal("0.05")
        assert config.project_defaults.approval_threshold == Decimal("10000")

    def test_sections_parsed(self, tmp_path):
        path = _write(
            tmp_path,
            {
                "log_level": "debug",
                "database": {"url": "sqlite:///x.db", "pool_size": 3},
                "coordinator": {"budget_write_retries": 5, "retry_backoff_seconds": 0.5},
                "cost_tracking": {"overspend_tolerance_pct": "0.1"},
                "project_defaults": {"currency": "gbp", "requires_approval": False},
            },
        )
        config = load_budget_config(path)
        assert config.log_level == "DEBUG"
        assert config.database.pool_size == 3
        assert config.coordinator.budget_write_retries == 5
        assert config.coordinator.retry_backoff_seconds == 0.5
        assert config.cost_tracking.overspend_tolerance_pct == Decimal("0.1")
        assert config.project_defaults.currency == "GBP"
        assert config.project_defaults.requires_approval is False

    def test_checksum_is_stable_and_content_sensitive(self):
        a = {"coordinator": {"budget_write_retries": 1}, "log_level": "INFO"}
        b = {"log_level": "INFO", "coordinator": {"budget_write_retries": 1}}
        assert compute_checksum(a) == compute_checksum(b)
        assert compute_checksum(a) != compute_checksum({"log_level": "INFO"})
        assert parse_budget_config(a).checksum == compute_checksum(a)


class TestValidation:

    @pytest.mark.parametrize(
        "data",
        [
            {"metrics": {}},
            {"database": {"host": "x"}},
            {"coordinator": {"budget_write_retries": -1}},
            {"coordinator": {"retry_backoff_seconds": -0.1}},
            {"coordinator": {"store_timeout_seconds": 0}},
            {"cost_tracking": {"overspend_tolerance_pct": "-0.01"}},
            {"cost_tracking": {"overspend_tolerance_pct": "lots"}},
            {"project_defaults": {"contingency_percent": 150}},
            {"project_defaults": {"approval_threshold": -5}},
            {"log_level": "chatty"},
            {"database": ["not", "a", "mapping"]},
        ],
    )
    def test_invalid_values_rejected(self, data):
        with pytest.raises(ValueError):
            parse_budget_config(data)

    def test_top_level_must_be_mapping(self, tmp_path):
        path = _write(tmp_path, ["a", "b"])
        with pytest.raises(ValueError):
            load_yaml_file(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_budget_config(tmp_path / "absent.yaml")


class TestEnvironment:

    def test_config_path_from_env(self, tmp_path, monkeypatch):
        path = _write(tmp_path, {"coordinator": {"budget_write_retries": 7}})
        monkeypatch.setenv("PROJECT_BUDGET_CONFIG", str(path))
        assert get_active_config().coordinator.budget_write_retries == 7

    def test_explicit_path_wins_over_env(self, tmp_path, monkeypatch):
        env_path = _write(tmp_path, {"coordinator": {"budget_write_retries": 7}})
        explicit = tmp_path / "explicit.yaml"
        explicit.write_text(
            yaml.safe_dump({"coordinator": {"budget_write_retries": 1}}), encoding="utf-8"
        )
        monkeypatch.setenv("PROJECT_BUDGET_CONFIG", str(env_path))
        assert get_active_config(explicit).coordinator.budget_write_retries == 1

    def test_database_url_override(self, tmp_path, monkeypatch):
        path = _write(tmp_path, {"database": {"url": "sqlite:///file.db", "pool_size": 4}})
        monkeypatch.setenv("PROJECT_BUDGET_DATABASE_URL", "sqlite://")
        config = get_active_config(path)
        assert config.database.url == "sqlite://"
        assert config.database.pool_size == 4
