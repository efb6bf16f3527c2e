"""
ChangeOrderCoordinator -- applies a change-order approval to two records.

Responsibility:
    Approving a change order writes the change order (W1: status) and then
    the project (W2: current_budget).  The store offers no transaction
    spanning both, so this class sequences them, makes each one
    conditional, and reports precisely which of them landed.

Architecture position:
    Modules > Project -- imperative shell over the EntityStore protocol.
    Pure rules come from ``change_orders``; this class only orders writes.

Sequence:
    1. Read the change order; it must be pending.
    2. Read the live project; target = current_budget + amount_change.
    3. Cancellation point.  Nothing has been written yet.
    4. W1: status=approved, conditioned on {status: pending, version}.
    5. W2: current_budget=target, conditioned on the project version.  On a
       conflict, timeout or store failure, W2 alone is retried a bounded
       number of times, re-reading the live budget each time so that a
       concurrently approved delta is never overwritten.  A retry whose
       re-read already matches original_budget plus the approved deltas
       returns without writing, so the delta is never applied twice.
    6. W2 exhausted: PartialApplyError.  W1 is never rolled back.

Invariants enforced:
    - After success: current_budget moved by exactly amount_change.
    - The stored proposal snapshot (original_budget/new_budget) is never
      rewritten; the delta is applied to the live budget.
    - W1 failures propagate untouched; nothing was changed.

Failure modes:
    - NotFoundError: change order (or its project) absent for the tenant.
    - InvalidTransitionError: change order not pending, including when a
      concurrent decision won the W1 race.
    - ConcurrentModificationError: W1 lost a race to a non-deciding write.
    - OperationCancelledError: cancel signal set before W1.
    - PartialApplyError: W1 committed, W2 failed after all retries.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from decimal import Decimal
from typing import Protocol
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError

from budget_config.schema import CoordinatorConfig
from budget_engines.aggregation import expected_current_budget
from budget_kernel.domain.clock import Clock
from budget_kernel.domain.context import ActorContext
from budget_kernel.exceptions import (
    ConcurrencyError,
    ConcurrentModificationError,
    InvalidTransitionError,
    OperationCancelledError,
    PartialApplyError,
    StoreError,
)
from budget_kernel.logging_config import get_logger
from budget_kernel.store.base import EntityStore
from budget_modules.project.change_orders import (
    approval_fields,
    pending_guard,
    require_transition,
)
from budget_modules.project.models import ChangeOrder, ChangeOrderStatus, Project
from budget_modules.project.orm import ChangeOrderModel, ProjectModel

logger = get_logger("modules.project.coordinator")

# Failures after which W2 may be retried.
_RETRYABLE_W2 = (ConcurrencyError, StoreError, SQLAlchemyError)


class CancelSignal(Protocol):
    def is_set(self) -> bool:
        ...


class ChangeOrderCoordinator:
    """Sequences the two writes of a change-order approval.

    Contract:
        ``approve`` either returns the project with the delta applied, or
        raises.  The only raise that leaves state changed is
        PartialApplyError, and it carries everything needed to reconcile.

    Non-goals:
        - Does not roll back W1.
        - Does not retry W1; the caller decides on ConcurrentModificationError.
    """

    def __init__(
        self,
        store: EntityStore,
        clock: Clock,
        config: CoordinatorConfig | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._store = store
        self._clock = clock
        self._config = config or CoordinatorConfig()
        self._sleep = sleep

    def approve(
        self,
        ctx: ActorContext,
        change_order_id: UUID,
        *,
        timeout: float | None = None,
        cancel: CancelSignal | None = None,
    ) -> tuple[Project, ChangeOrder]:
        timeout = timeout if timeout is not None else self._config.store_timeout_seconds

        change_order: ChangeOrder = self._store.get(
            ChangeOrderModel, change_order_id, ctx.tenant_id, timeout=timeout
        )
        require_transition(change_order, "approve")

        project: Project = self._store.get(
            ProjectModel, change_order.project_id, ctx.tenant_id, timeout=timeout
        )

        if cancel is not None and cancel.is_set():
            logger.info(
                "change_order_approval_cancelled",
                extra={"change_order_id": str(change_order_id)},
            )
            raise OperationCancelledError("approve_change_order", change_order_id)

        approved = self._write_status(ctx, change_order, timeout)
        updated_project = self._write_budget(ctx, approved, project, timeout)

        logger.info(
            "change_order_approved",
            extra={
                "change_order_id": str(approved.id),
                "project_id": str(updated_project.id),
                "amount_change": approved.amount_change,
                "current_budget": updated_project.current_budget,
                "snapshot_new_budget": approved.new_budget,
            },
        )
        return updated_project, approved

    # ------------------------------------------------------------------
    # W1
    # ------------------------------------------------------------------

    def _write_status(
        self,
        ctx: ActorContext,
        change_order: ChangeOrder,
        timeout: float,
    ) -> ChangeOrder:
        fields = approval_fields(change_order, ctx.actor_id, self._clock.now())
        try:
            return self._store.update(
                ChangeOrderModel,
                change_order.id,
                fields,
                ctx.tenant_id,
                ctx.actor_id,
                expected=pending_guard(change_order),
                timeout=timeout,
            )
        except ConcurrentModificationError:
            current: ChangeOrder = self._store.get(
                ChangeOrderModel, change_order.id, ctx.tenant_id, timeout=timeout
            )
            if current.status != ChangeOrderStatus.PENDING:
                logger.info(
                    "change_order_decided_concurrently",
                    extra={
                        "change_order_id": str(change_order.id),
                        "status": current.status,
                    },
                )
                raise InvalidTransitionError(
                    "ChangeOrder", change_order.id, current.status, "approve"
                )
            raise

    # ------------------------------------------------------------------
    # W2
    # ------------------------------------------------------------------

    def _write_budget(
        self,
        ctx: ActorContext,
        change_order: ChangeOrder,
        project: Project,
        timeout: float,
    ) -> Project:
        delta = change_order.amount_change
        max_attempts = 1 + self._config.budget_write_retries
        target: Decimal = project.current_budget + delta
        last_error: BaseException | None = None

        for attempt in range(1, max_attempts + 1):
            try:
                if attempt > 1:
                    self._sleep(self._backoff(attempt))
                    project = self._store.get(
                        ProjectModel, project.id, ctx.tenant_id, timeout=timeout
                    )
                    if self._already_applied(ctx, project, timeout):
                        logger.info(
                            "budget_write_already_applied",
                            extra={
                                "change_order_id": str(change_order.id),
                                "project_id": str(project.id),
                                "attempt": attempt,
                                "current_budget": project.current_budget,
                            },
                        )
                        return project
                target = project.current_budget + delta
                return self._store.update(
                    ProjectModel,
                    project.id,
                    {"current_budget": target},
                    ctx.tenant_id,
                    ctx.actor_id,
                    expected={"version": project.version},
                    timeout=timeout,
                )
            except _RETRYABLE_W2 as exc:
                last_error = exc
                logger.warning(
                    "budget_write_failed",
                    extra={
                        "change_order_id": str(change_order.id),
                        "project_id": str(project.id),
                        "attempt": attempt,
                        "max_attempts": max_attempts,
                        "error_type": type(exc).__name__,
                    },
                )

        logger.error(
            "partial_apply_detected",
            extra={
                "change_order_id": str(change_order.id),
                "project_id": str(project.id),
                "target_budget": target,
                "attempts": max_attempts,
            },
        )
        raise PartialApplyError(
            change_order.id, project.id, target, max_attempts, last_error
        ) from last_error

    def _already_applied(self, ctx: ActorContext, project: Project, timeout: float) -> bool:
        """True when the live budget already matches the approved history.

        W1 has committed, so the history includes this order; a match means
        an earlier attempt or a reconciliation already carried the delta.
        """
        approved = self._approved_orders(ctx, project.id, timeout)
        return project.current_budget == expected_current_budget(
            project.original_budget, approved
        )

    def _approved_orders(
        self, ctx: ActorContext, project_id: UUID, timeout: float
    ) -> list[ChangeOrder]:
        return self._store.find(
            ChangeOrderModel,
            ctx.tenant_id,
            {"project_id": project_id, "status": ChangeOrderStatus.APPROVED.value},
            timeout=timeout,
        )

    def _backoff(self, attempt: int) -> float:
        return self._config.retry_backoff_seconds * (2 ** (attempt - 2))

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def reconcile(
        self,
        ctx: ActorContext,
        project_id: UUID,
        *,
        timeout: float | None = None,
    ) -> Project:
        """Rewrite current_budget from the approved change-order history.

        Raises:
            ConcurrentModificationError: The project moved during reconciliation.
        """
        timeout = timeout if timeout is not None else self._config.store_timeout_seconds
        project: Project = self._store.get(
            ProjectModel, project_id, ctx.tenant_id, timeout=timeout
        )
        approved = self._approved_orders(ctx, project_id, timeout)
        expected = expected_current_budget(project.original_budget, approved)
        if expected == project.current_budget:
            logger.info(
                "project_budget_consistent",
                extra={"project_id": str(project_id), "current_budget": expected},
            )
            return project

        reconciled: Project = self._store.update(
            ProjectModel,
            project_id,
            {"current_budget": expected},
            ctx.tenant_id,
            ctx.actor_id,
            expected={"version": project.version},
            timeout=timeout,
        )
        logger.warning(
            "project_budget_reconciled",
            extra={
                "project_id": str(project_id),
                "previous_budget": project.current_budget,
                "current_budget": expected,
                "drift": expected - project.current_budget,
            },
        )
        return reconciled
