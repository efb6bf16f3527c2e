"""
Change-order approval under injected store failures.

The approval writes two records with no shared transaction.  These tests
drive each failure window through FaultInjectingStore and check that the
outcome is always one of: nothing changed, both changed, or a
PartialApplyError that reconciliation repairs.
"""

from __future__ import annotations

import threading
from decimal import Decimal

import pytest

from budget_config.schema import BudgetConfig, CoordinatorConfig
from budget_kernel.exceptions import (
    ConcurrentModificationError,
    InvalidTransitionError,
    OperationCancelledError,
    PartialApplyError,
    StoreError,
    StoreTimeoutError,
)
from budget_modules.project.models import ChangeOrderStatus
from budget_modules.project.orm import ChangeOrderModel, ProjectModel


def _conflict(model_name: str = "Project") -> ConcurrentModificationError:
    return ConcurrentModificationError(model_name, "injected", {"version": 0})


@pytest.fixture
def project(service, actor_ctx):
    return service.create_project(actor_ctx, Decimal("100000"), "Depot fit-out")


@pytest.fixture
def change_order(service, actor_ctx, project):
    return service.propose_change_order(actor_ctx, project.id, "Extra racking", Decimal("5000"))


@pytest.fixture
def faulty_service(fault_store, make_service):
    return make_service(fault_store)


# =============================================================================
# W2 exhausted: partial apply and reconciliation
# =============================================================================


class TestPartialApply:

    def test_budget_write_exhausted_raises_partial_apply(
        self, fault_store, make_service, service, actor_ctx, project, change_order, sleeps,
        captured_logs,
    ):
        config = BudgetConfig(
            coordinator=CoordinatorConfig(budget_write_retries=2, retry_backoff_seconds=0.1)
        )
        faulty = make_service(fault_store, config)
        fault_store.fail_next_updates(ProjectModel, _conflict(), _conflict(), _conflict())

        with pytest.raises(PartialApplyError) as exc_info:
            faulty.approve_change_order(actor_ctx, change_order.id)

        err = exc_info.value
        assert err.attempts == 3
        assert err.change_order_id == str(change_order.id)
        assert err.project_id == str(project.id)
        assert err.target_budget == Decimal("105000")
        assert isinstance(err.cause, ConcurrentModificationError)
        assert err.retryable is True
        assert sleeps == [0.1, 0.2]

        # W1 stays committed; W2 never landed
        assert service.get_change_order(actor_ctx, change_order.id).status == (
            ChangeOrderStatus.APPROVED
        )
        assert service.get_project(actor_ctx, project.id).current_budget == Decimal("100000")
        assert len(fault_store.updates_of(ProjectModel)) == 3

        records = captured_logs()
        assert sum(1 for r in records if r["message"] == "budget_write_failed") == 3
        partial = [r for r in records if r["message"] == "partial_apply_detected"]
        assert len(partial) == 1
        assert partial[0]["level"] == "ERROR"

    def test_reconcile_repairs_partial_apply(
        self, faulty_service, fault_store, service, actor_ctx, project, change_order,
    ):
        fault_store.fail_next_updates(ProjectModel, _conflict(), _conflict(), _conflict())
        with pytest.raises(PartialApplyError):
            faulty_service.approve_change_order(actor_ctx, change_order.id)

        summary = service.get_budget_summary(actor_ctx, project.id)
        assert not summary.is_consistent
        assert summary.expected_current_budget == Decimal("105000")

        repaired = service.reconcile_project_budget(actor_ctx, project.id)
        assert repaired.current_budget == Decimal("105000")
        assert service.get_budget_summary(actor_ctx, project.id).is_consistent

    def test_reconcile_on_consistent_project_writes_nothing(
        self, faulty_service, fault_store, service, actor_ctx, project, change_order,
    ):
        service.approve_change_order(actor_ctx, change_order.id)
        before = service.get_project(actor_ctx, project.id)

        after = faulty_service.reconcile_project_budget(actor_ctx, project.id)

        assert after.version == before.version
        assert fault_store.updates_of(ProjectModel) == []

    def test_partial_apply_cannot_be_reapproved(
        self, faulty_service, fault_store, actor_ctx, change_order,
    ):
        fault_store.fail_next_updates(ProjectModel, _conflict(), _conflict(), _conflict())
        with pytest.raises(PartialApplyError):
            faulty_service.approve_change_order(actor_ctx, change_order.id)

        with pytest.raises(InvalidTransitionError):
            faulty_service.approve_change_order(actor_ctx, change_order.id)


# =============================================================================
# W2 transient failures
# =============================================================================


class TestBudgetWriteRetry:

    def test_timeout_then_success(
        self, faulty_service, fault_store, service, actor_ctx, project, change_order, sleeps,
    ):
        fault_store.fail_next_updates(
            ProjectModel, StoreTimeoutError("update", "Project", 5.0)
        )

        updated = faulty_service.approve_change_order(actor_ctx, change_order.id)

        assert updated.current_budget == Decimal("105000")
        assert len(sleeps) == 1
        assert len(fault_store.updates_of(ProjectModel)) == 2

    def test_store_error_then_success(
        self, faulty_service, fault_store, actor_ctx, change_order,
    ):
        fault_store.fail_next_updates(ProjectModel, StoreError("connection reset"))
        updated = faulty_service.approve_change_order(actor_ctx, change_order.id)
        assert updated.current_budget == Decimal("105000")

    def test_retry_uses_version_of_fresh_read(
        self, faulty_service, fault_store, actor_ctx, change_order,
    ):
        fault_store.fail_next_updates(ProjectModel, _conflict())
        faulty_service.approve_change_order(actor_ctx, change_order.id)

        (_, _, _, first_guard), (_, _, fields, second_guard) = fault_store.updates_of(
            ProjectModel
        )
        assert first_guard == second_guard == {"version": 1}
        assert fields == {"current_budget": Decimal("105000")}

    def test_reconcile_between_writes_is_not_applied_twice(
        self, faulty_service, fault_store, service, actor_ctx, project, change_order,
        captured_logs,
    ):
        # reconcile sees the committed W1 and moves the budget before W2 runs
        fault_store.before_next_update(
            ProjectModel, lambda: service.reconcile_project_budget(actor_ctx, project.id)
        )

        updated = faulty_service.approve_change_order(actor_ctx, change_order.id)

        assert updated.current_budget == Decimal("105000")
        assert service.get_project(actor_ctx, project.id).current_budget == Decimal("105000")
        assert service.get_budget_summary(actor_ctx, project.id).is_consistent
        assert len(fault_store.updates_of(ProjectModel)) == 1
        assert any(
            r["message"] == "budget_write_already_applied" for r in captured_logs()
        )

    def test_lost_acknowledgement_is_not_applied_twice(
        self, faulty_service, fault_store, service, actor_ctx, project, change_order,
    ):
        fault_store.fail_after_next_updates(
            ProjectModel, StoreTimeoutError("update", "Project", 5.0)
        )

        updated = faulty_service.approve_change_order(actor_ctx, change_order.id)

        assert updated.current_budget == Decimal("105000")
        assert service.get_project(actor_ctx, project.id).current_budget == Decimal("105000")
        assert len(fault_store.updates_of(ProjectModel)) == 1

    def test_retry_after_concurrent_approval_still_applies(
        self, faulty_service, fault_store, service, actor_ctx, approver_ctx, project,
        change_order,
    ):
        other = service.propose_change_order(actor_ctx, project.id, "Signage", Decimal("1200"))
        fault_store.before_next_update(
            ProjectModel, lambda: service.approve_change_order(approver_ctx, other.id)
        )

        updated = faulty_service.approve_change_order(actor_ctx, change_order.id)

        assert updated.current_budget == Decimal("106200")
        assert len(fault_store.updates_of(ProjectModel)) == 2


# =============================================================================
# W1 failures leave nothing changed
# =============================================================================


class TestStatusWriteFailure:

    def test_timeout_propagates_untouched(
        self, faulty_service, fault_store, service, actor_ctx, project, change_order,
    ):
        fault_store.fail_next_updates(
            ChangeOrderModel, StoreTimeoutError("update", "ChangeOrder", 5.0)
        )

        with pytest.raises(StoreTimeoutError):
            faulty_service.approve_change_order(actor_ctx, change_order.id)

        assert service.get_change_order(actor_ctx, change_order.id).status == (
            ChangeOrderStatus.PENDING
        )
        assert service.get_project(actor_ctx, project.id).current_budget == Decimal("100000")
        assert fault_store.updates_of(ProjectModel) == []

    def test_conflict_on_still_pending_order_is_retryable(
        self, faulty_service, fault_store, service, actor_ctx, change_order,
    ):
        fault_store.fail_next_updates(ChangeOrderModel, _conflict("ChangeOrder"))

        with pytest.raises(ConcurrentModificationError) as exc_info:
            faulty_service.approve_change_order(actor_ctx, change_order.id)
        assert exc_info.value.retryable is True

        # a plain retry succeeds
        updated = faulty_service.approve_change_order(actor_ctx, change_order.id)
        assert updated.current_budget == Decimal("105000")

    def test_concurrent_rejection_wins_the_race(
        self, faulty_service, fault_store, service, actor_ctx, approver_ctx, project,
        change_order,
    ):
        fault_store.before_next_update(
            ChangeOrderModel,
            lambda: service.reject_change_order(approver_ctx, change_order.id, "over budget"),
        )

        with pytest.raises(InvalidTransitionError) as exc_info:
            faulty_service.approve_change_order(actor_ctx, change_order.id)
        assert exc_info.value.current_state == "rejected"

        stored = service.get_change_order(actor_ctx, change_order.id)
        assert stored.status == ChangeOrderStatus.REJECTED
        assert stored.rejection_reason == "over budget"
        assert service.get_project(actor_ctx, project.id).current_budget == Decimal("100000")


# =============================================================================
# Cancellation
# =============================================================================


class TestCancellation:

    def test_cancel_before_any_write(
        self, faulty_service, fault_store, service, actor_ctx, project, change_order,
    ):
        cancel = threading.Event()
        cancel.set()

        with pytest.raises(OperationCancelledError) as exc_info:
            faulty_service.approve_change_order(actor_ctx, change_order.id, cancel=cancel)

        assert exc_info.value.entity_id == str(change_order.id)
        assert fault_store.update_calls == []
        assert service.get_change_order(actor_ctx, change_order.id).status == (
            ChangeOrderStatus.PENDING
        )

    def test_unset_signal_does_not_interfere(self, faulty_service, actor_ctx, change_order):
        updated = faulty_service.approve_change_order(
            actor_ctx, change_order.id, cancel=threading.Event()
        )
        assert updated.current_budget == Decimal("105000")
