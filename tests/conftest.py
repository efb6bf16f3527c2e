"""
Pytest fixtures for the project budget test suite.

Provides:
- Structured log capture (JSON lines parsed back into dicts)
- A fresh file-backed SQLite database per test, schema created
- SqlEntityStore / ProjectBudgetService wired to a deterministic clock
- Actor contexts for two tenants
- FaultInjectingStore: wraps a real store to fail or interleave writes

Environment Variables:
- PROJECT_BUDGET_TEST_DATABASE_URL: run the store against this URL instead
  of SQLite (tests marked ``postgres`` are skipped without it).
"""

import json
import logging
import os
from collections.abc import Callable
from io import StringIO
from typing import Any
from uuid import UUID, uuid4

import pytest

from budget_config.schema import BudgetConfig, CoordinatorConfig, CostTrackingConfig
from budget_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from budget_kernel.domain.clock import DeterministicClock
from budget_kernel.domain.context import ActorContext
from budget_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from budget_kernel.store.sql_store import SqlEntityStore
from budget_modules.project.service import ProjectBudgetService

TEST_TENANT_ID = UUID("00000000-0000-4000-8000-000000000001")
OTHER_TENANT_ID = UUID("00000000-0000-4000-8000-000000000002")
TEST_ACTOR_ID = uuid4()
TEST_APPROVER_ID = uuid4()


def pytest_collection_modifyitems(config, items):
    """Skip ``postgres`` tests unless the test database URL points at PostgreSQL."""
    url = os.environ.get("PROJECT_BUDGET_TEST_DATABASE_URL", "")
    if url.startswith("postgresql"):
        return
    skip = pytest.mark.skip(reason="set PROJECT_BUDGET_TEST_DATABASE_URL to a PostgreSQL URL")
    for item in items:
        if "postgres" in item.keywords:
            item.add_marker(skip)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture budget_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, service, actor_ctx):
            service.create_project(actor_ctx, Decimal("10"), "P")
            assert any(r["message"] == "project_created" for r in captured_logs())
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("budget_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def database_url(tmp_path) -> str:
    return os.environ.get(
        "PROJECT_BUDGET_TEST_DATABASE_URL",
        f"sqlite:///{tmp_path / 'budget_test.db'}",
    )


@pytest.fixture
def session_factory(database_url):
    """Engine with a freshly created schema; torn down after the test."""
    init_engine_from_url(database_url)
    drop_tables()
    create_tables()
    yield get_session_factory()
    drop_tables()
    reset_engine()


@pytest.fixture
def deterministic_clock() -> DeterministicClock:
    # One millisecond per read keeps created_at strictly increasing
    return DeterministicClock(auto_advance=1000)


@pytest.fixture
def budget_config() -> BudgetConfig:
    return BudgetConfig(
        coordinator=CoordinatorConfig(
            budget_write_retries=2,
            retry_backoff_seconds=0,
            store_timeout_seconds=5.0,
        ),
        cost_tracking=CostTrackingConfig(),
    )


@pytest.fixture
def store(session_factory, deterministic_clock) -> SqlEntityStore:
    return SqlEntityStore(session_factory, deterministic_clock, default_timeout=5.0)


@pytest.fixture
def sleeps() -> list[float]:
    """Backoff delays requested by the coordinator."""
    return []


@pytest.fixture
def make_service(deterministic_clock, budget_config, sleeps):
    """Build a ProjectBudgetService over any store (e.g. a fault-injecting wrapper)."""

    def _make(store, config: BudgetConfig | None = None) -> ProjectBudgetService:
        return ProjectBudgetService(
            store,
            clock=deterministic_clock,
            config=config or budget_config,
            sleep=sleeps.append,
        )

    return _make


@pytest.fixture
def service(store, make_service) -> ProjectBudgetService:
    return make_service(store)


# =============================================================================
# Actor fixtures
# =============================================================================


@pytest.fixture
def actor_ctx() -> ActorContext:
    return ActorContext(TEST_TENANT_ID, TEST_ACTOR_ID, correlation_id="test-correlation")


@pytest.fixture
def approver_ctx() -> ActorContext:
    return ActorContext(TEST_TENANT_ID, TEST_APPROVER_ID)


@pytest.fixture
def other_tenant_ctx() -> ActorContext:
    return ActorContext(OTHER_TENANT_ID, uuid4())


# =============================================================================
# Fault injection
# =============================================================================


class FaultInjectingStore:
    """
    EntityStore wrapper that can fail or interleave updates.

    ``fail_next_updates(model, *errors)`` raises the given errors, in order,
    from the next updates on ``model`` without touching the real store.
    ``before_next_update(model, hook)`` runs ``hook()`` right before the next
    update on ``model`` reaches the real store, simulating a concurrent
    writer landing between a read and a conditional write.
    ``fail_after_next_updates(model, *errors)`` lets the next updates on
    ``model`` commit and then raises, as when a commit succeeds but its
    acknowledgement is lost.
    """

    def __init__(self, inner):
        self.inner = inner
        self.update_calls: list[tuple[type, Any, dict, dict]] = []
        self._faults: dict[type, list[BaseException]] = {}
        self._hooks: dict[type, list[Callable[[], None]]] = {}
        self._late_faults: dict[type, list[BaseException]] = {}

    def fail_next_updates(self, model: type, *errors: BaseException) -> None:
        self._faults.setdefault(model, []).extend(errors)

    def before_next_update(self, model: type, hook: Callable[[], None]) -> None:
        self._hooks.setdefault(model, []).append(hook)

    def fail_after_next_updates(self, model: type, *errors: BaseException) -> None:
        self._late_faults.setdefault(model, []).extend(errors)

    def updates_of(self, model: type) -> list[tuple[type, Any, dict, dict]]:
        return [call for call in self.update_calls if call[0] is model]

    def get(self, model, entity_id, tenant_id, *, timeout=None):
        return self.inner.get(model, entity_id, tenant_id, timeout=timeout)

    def find(self, model, tenant_id, filters=None, **kwargs):
        return self.inner.find(model, tenant_id, filters, **kwargs)

    def insert(self, model, fields, tenant_id, actor_id, *, timeout=None):
        return self.inner.insert(model, fields, tenant_id, actor_id, timeout=timeout)

    def delete(self, model, entity_id, tenant_id, *, timeout=None):
        return self.inner.delete(model, entity_id, tenant_id, timeout=timeout)

    def update(self, model, entity_id, fields, tenant_id, actor_id, *, expected=None, timeout=None):
        self.update_calls.append((model, entity_id, dict(fields), dict(expected or {})))
        hooks = self._hooks.get(model)
        if hooks:
            hooks.pop(0)()
        faults = self._faults.get(model)
        if faults:
            raise faults.pop(0)
        result = self.inner.update(
            model, entity_id, fields, tenant_id, actor_id, expected=expected, timeout=timeout
        )
        late = self._late_faults.get(model)
        if late:
            raise late.pop(0)
        return result


@pytest.fixture
def fault_store(store) -> FaultInjectingStore:
    return FaultInjectingStore(store)
