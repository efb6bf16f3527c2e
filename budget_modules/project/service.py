"""
Project Budget Module Service (``budget_modules.project.service``).

Responsibility
--------------
The public entry point for project budgeting: project, phase and cost-item
maintenance, the change-order lifecycle, project approval and the derived
budget summary.  Pure rules come from ``change_orders``, ``approval`` and
``budget_engines``; the two-record change-order approval is delegated to
``ChangeOrderCoordinator``.

Architecture position
---------------------
**Modules layer**: thin glue over the ``EntityStore`` protocol.  Every store
call is its own committed unit; no method holds a transaction open across
calls.

Invariants enforced
-------------------
* Budget identity: ``current_budget`` changes only through an approved change order
  (or reconciliation back to ``original_budget + sum(approved deltas)``).
* ``approved_budget`` is written once, by ``approve_project``.
* Overspend on a cost item is reported, never rejected.
* Change-order snapshots are fixed at proposal time.
* All money is ``Decimal``; floats are refused.

Failure modes
-------------
* ``ValidationError`` / ``NotFoundError``: surfaced verbatim, nothing written.
* ``InvalidTransitionError``: workflow precondition not met.
* ``ConcurrentModificationError``: a conditional write lost a race; retryable.
* ``PartialApplyError``: change order approved, budget not applied; repair
  with ``reconcile_project_budget``.
* ``StoreTimeoutError``: a store call exceeded its deadline.

Audit relevance
---------------
Every state change emits one structured log event with the tenant, actor,
project and change-order ids bound through ``LogContext``.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID

from budget_config.schema import BudgetConfig
from budget_engines.aggregation import BudgetSummary, check_overspend, summarize_project
from budget_engines.approval_policy import PolicyEvaluation, evaluate_change_order_policy
from budget_kernel.domain.clock import Clock, SystemClock
from budget_kernel.domain.context import ActorContext
from budget_kernel.exceptions import (
    ConcurrentModificationError,
    InvalidTransitionError,
    NotFoundError,
    ReferentialIntegrityError,
    ValidationError,
)
from budget_kernel.logging_config import LogContext, get_logger
from budget_kernel.store.base import EntityStore
from budget_modules.project.approval import approval_guard, approve_project_fields
from budget_modules.project.change_orders import (
    build_proposal,
    pending_guard,
    rejection_fields,
)
from budget_modules.project.coordinator import CancelSignal, ChangeOrderCoordinator
from budget_modules.project.models import (
    ChangeOrder,
    ChangeOrderStatus,
    CostItem,
    CostItemResult,
    Phase,
    PhaseStatus,
    Project,
    ProjectStatus,
)
from budget_modules.project.orm import (
    ChangeOrderModel,
    CostItemModel,
    PhaseModel,
    ProjectModel,
)
from budget_modules.project.validation import (
    allowed_changes,
    as_decimal,
    as_enum,
    as_int,
    date_range,
    non_negative,
    percentage,
    require_text,
)

logger = get_logger("modules.project.service")

_CENTS = Decimal("0.01")
_PHASE_ORDER = ("phase_order", "created_at", "id")

_PROJECT_METADATA = frozenset({
    "name",
    "description",
    "project_type",
    "planned_start_date",
    "planned_end_date",
    "requires_approval",
    "approval_threshold",
})
_PHASE_FIELDS = frozenset({
    "name",
    "description",
    "phase_order",
    "phase_budget",
    "depends_on_phase_id",
    "status",
    "percent_complete",
    "planned_start",
    "planned_end",
})
_COST_ITEM_FIELDS = frozenset({
    "phase_id",
    "category",
    "description",
    "budgeted_amount",
    "committed_amount",
    "actual_spent",
    "purchase_order_number",
    "notes",
})


class ProjectBudgetService:
    """
    Keeps a project's budget figures consistent as it is planned and changed.

    Contract
    --------
    * Every method takes an ``ActorContext``; reads and writes are scoped to
      its tenant and writes are stamped with its actor.
    * Methods return frozen DTOs; ORM rows never leave the store.

    Non-goals
    ---------
    * Does NOT enforce the approval threshold (``evaluate_change_order_policy``
      reports it for an outer policy layer).
    * Does NOT authenticate the actor.
    """

    def __init__(
        self,
        store: EntityStore,
        clock: Clock | None = None,
        config: BudgetConfig | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._store = store
        self._clock = clock or SystemClock()
        self._config = config or BudgetConfig()
        self._coordinator = ChangeOrderCoordinator(
            store, self._clock, self._config.coordinator, sleep=sleep
        )

    # =========================================================================
    # Projects
    # =========================================================================

    def create_project(
        self,
        ctx: ActorContext,
        original_budget: Any,
        name: str,
        *,
        description: str | None = None,
        project_type: str | None = None,
        currency: str | None = None,
        contingency_percent: Any = None,
        requires_approval: bool | None = None,
        approval_threshold: Any = None,
        planned_start_date: date | None = None,
        planned_end_date: date | None = None,
        timeout: float | None = None,
    ) -> Project:
        """Create a draft project with ``current_budget = original_budget``.

        Omitted policy fields take ``config.project_defaults``.  The
        contingency reserve is recorded beside the budget, not added to it.
        """
        defaults = self._config.project_defaults
        budget = non_negative(original_budget, "original_budget")
        pct = percentage(
            defaults.contingency_percent if contingency_percent is None else contingency_percent,
            "contingency_percent",
        )
        threshold = non_negative(
            defaults.approval_threshold if approval_threshold is None else approval_threshold,
            "approval_threshold",
        )
        date_range(planned_start_date, planned_end_date, "planned_dates")

        fields = {
            "name": require_text(name, "name"),
            "description": description,
            "project_type": project_type,
            "currency": (currency or defaults.currency).upper(),
            "status": ProjectStatus.DRAFT.value,
            "original_budget": budget,
            "current_budget": budget,
            "approved_budget": None,
            "contingency_percent": pct,
            "contingency_amount": (budget * pct / Decimal("100")).quantize(_CENTS),
            "requires_approval": (
                defaults.requires_approval if requires_approval is None else requires_approval
            ),
            "approval_threshold": threshold,
            "planned_start_date": planned_start_date,
            "planned_end_date": planned_end_date,
        }

        with LogContext.bind(**ctx.log_fields()):
            project: Project = self._store.insert(
                ProjectModel, fields, ctx.tenant_id, ctx.actor_id, timeout=timeout
            )
            logger.info(
                "project_created",
                extra={
                    "project_id": str(project.id),
                    "original_budget": project.original_budget,
                    "contingency_amount": project.contingency_amount,
                },
            )
            return project

    def get_project(self, ctx: ActorContext, project_id: UUID) -> Project:
        return self._store.get(ProjectModel, project_id, ctx.tenant_id)

    def list_projects(
        self,
        ctx: ActorContext,
        status: str | None = None,
    ) -> list[Project]:
        filters = {}
        if status is not None:
            filters["status"] = as_enum(ProjectStatus, status, "status").value
        return self._store.find(ProjectModel, ctx.tenant_id, filters)

    def update_project(self, ctx: ActorContext, project_id: UUID, **changes: Any) -> Project:
        """Update descriptive and policy metadata.

        Budget figures, status and approval stamps are not metadata and are
        refused with ValidationError.
        """
        allowed_changes(changes, _PROJECT_METADATA, "Project")
        if "name" in changes:
            changes["name"] = require_text(changes["name"], "name")
        if "approval_threshold" in changes:
            changes["approval_threshold"] = non_negative(
                changes["approval_threshold"], "approval_threshold"
            )

        with LogContext.bind(project_id=project_id, **ctx.log_fields()):
            current = self.get_project(ctx, project_id)
            date_range(
                changes.get("planned_start_date", current.planned_start_date),
                changes.get("planned_end_date", current.planned_end_date),
                "planned_dates",
            )
            project: Project = self._store.update(
                ProjectModel, project_id, changes, ctx.tenant_id, ctx.actor_id
            )
            logger.info("project_updated", extra={"fields": sorted(changes)})
            return project

    def delete_project(self, ctx: ActorContext, project_id: UUID) -> None:
        """Delete a project that has no phases, cost items or change orders."""
        with LogContext.bind(project_id=project_id, **ctx.log_fields()):
            self.get_project(ctx, project_id)
            for model, label in (
                (PhaseModel, "phases"),
                (CostItemModel, "cost items"),
                (ChangeOrderModel, "change orders"),
            ):
                if self._store.find(model, ctx.tenant_id, {"project_id": project_id}):
                    raise ReferentialIntegrityError("Project", project_id, f"it still has {label}")
            self._store.delete(ProjectModel, project_id, ctx.tenant_id)
            logger.info("project_deleted")

    def approve_project(
        self,
        ctx: ActorContext,
        project_id: UUID,
        *,
        timeout: float | None = None,
    ) -> Project:
        """draft -> approved, snapshotting ``approved_budget = current_budget``.

        Raises:
            InvalidTransitionError: Project is not draft (also when a
                concurrent approval won).
            ConcurrentModificationError: The project changed between read and
                write; retry to snapshot the new value.
        """
        with LogContext.bind(project_id=project_id, **ctx.log_fields()):
            project = self._store.get(ProjectModel, project_id, ctx.tenant_id, timeout=timeout)
            fields = approve_project_fields(project, ctx.actor_id, self._clock.now())
            try:
                approved: Project = self._store.update(
                    ProjectModel,
                    project_id,
                    fields,
                    ctx.tenant_id,
                    ctx.actor_id,
                    expected=approval_guard(project),
                    timeout=timeout,
                )
            except ConcurrentModificationError:
                current = self._store.get(ProjectModel, project_id, ctx.tenant_id, timeout=timeout)
                if current.status != ProjectStatus.DRAFT:
                    raise InvalidTransitionError("Project", project_id, current.status, "approve")
                raise
            logger.info(
                "project_approved",
                extra={"approved_budget": approved.approved_budget},
            )
            return approved

    # =========================================================================
    # Phases
    # =========================================================================

    def create_phase(
        self,
        ctx: ActorContext,
        project_id: UUID,
        name: str,
        *,
        phase_order: int | None = None,
        phase_budget: Any = None,
        depends_on_phase_id: UUID | None = None,
        status: str = PhaseStatus.NOT_STARTED.value,
        percent_complete: Any = 0,
        description: str | None = None,
        planned_start: date | None = None,
        planned_end: date | None = None,
    ) -> Phase:
        """Add a phase; without ``phase_order`` it goes after the last one."""
        with LogContext.bind(project_id=project_id, **ctx.log_fields()):
            self.get_project(ctx, project_id)
            existing = self.list_phases(ctx, project_id)
            if phase_order is None:
                phase_order = max((p.phase_order for p in existing), default=0) + 1
            if depends_on_phase_id is not None:
                self._require_sibling_phase(ctx, project_id, depends_on_phase_id)
            date_range(planned_start, planned_end, "planned_dates")

            fields = {
                "project_id": project_id,
                "name": require_text(name, "name"),
                "description": description,
                "phase_order": as_int(phase_order, "phase_order"),
                "phase_budget": (
                    non_negative(phase_budget, "phase_budget") if phase_budget is not None else None
                ),
                "depends_on_phase_id": depends_on_phase_id,
                "status": self._phase_status(status),
                "percent_complete": percentage(percent_complete, "percent_complete"),
                "planned_start": planned_start,
                "planned_end": planned_end,
            }
            phase: Phase = self._store.insert(PhaseModel, fields, ctx.tenant_id, ctx.actor_id)
            logger.info(
                "phase_created",
                extra={"phase_id": str(phase.id), "phase_order": phase.phase_order},
            )
            return phase

    def update_phase(self, ctx: ActorContext, phase_id: UUID, **changes: Any) -> Phase:
        allowed_changes(changes, _PHASE_FIELDS, "Phase")
        phase: Phase = self._store.get(PhaseModel, phase_id, ctx.tenant_id)

        with LogContext.bind(project_id=phase.project_id, **ctx.log_fields()):
            if "name" in changes:
                changes["name"] = require_text(changes["name"], "name")
            if "status" in changes:
                changes["status"] = self._phase_status(changes["status"])
            if "percent_complete" in changes:
                changes["percent_complete"] = percentage(
                    changes["percent_complete"], "percent_complete"
                )
            if changes.get("phase_budget") is not None:
                changes["phase_budget"] = non_negative(changes["phase_budget"], "phase_budget")
            if "phase_order" in changes:
                changes["phase_order"] = as_int(changes["phase_order"], "phase_order")
            if changes.get("depends_on_phase_id") is not None:
                self._check_dependency(ctx, phase, changes["depends_on_phase_id"])
            date_range(
                changes.get("planned_start", phase.planned_start),
                changes.get("planned_end", phase.planned_end),
                "planned_dates",
            )

            updated: Phase = self._store.update(
                PhaseModel, phase_id, changes, ctx.tenant_id, ctx.actor_id
            )
            logger.info(
                "phase_updated",
                extra={"phase_id": str(phase_id), "fields": sorted(changes)},
            )
            return updated

    def delete_phase(self, ctx: ActorContext, phase_id: UUID) -> None:
        """Delete a phase, first detaching its cost items and dependents."""
        phase: Phase = self._store.get(PhaseModel, phase_id, ctx.tenant_id)

        with LogContext.bind(project_id=phase.project_id, **ctx.log_fields()):
            items = self._store.find(CostItemModel, ctx.tenant_id, {"phase_id": phase_id})
            for item in items:
                self._store.update(
                    CostItemModel, item.id, {"phase_id": None}, ctx.tenant_id, ctx.actor_id
                )
            dependents = self._store.find(
                PhaseModel, ctx.tenant_id, {"depends_on_phase_id": phase_id}
            )
            for dependent in dependents:
                self._store.update(
                    PhaseModel,
                    dependent.id,
                    {"depends_on_phase_id": None},
                    ctx.tenant_id,
                    ctx.actor_id,
                )
            self._store.delete(PhaseModel, phase_id, ctx.tenant_id)
            logger.info(
                "phase_deleted",
                extra={
                    "phase_id": str(phase_id),
                    "detached_cost_items": len(items),
                    "detached_dependents": len(dependents),
                },
            )

    def list_phases(self, ctx: ActorContext, project_id: UUID) -> list[Phase]:
        """Phases ordered by phase_order, then creation time."""
        return self._store.find(
            PhaseModel, ctx.tenant_id, {"project_id": project_id}, order_by=_PHASE_ORDER
        )

    def _phase_status(self, status: Any) -> str:
        return as_enum(PhaseStatus, status, "status").value

    def _require_sibling_phase(
        self,
        ctx: ActorContext,
        project_id: UUID,
        phase_id: UUID,
        field: str = "depends_on_phase_id",
    ) -> Phase:
        try:
            other: Phase = self._store.get(PhaseModel, phase_id, ctx.tenant_id)
        except NotFoundError:
            raise ValidationError(f"Phase {phase_id} does not exist", field=field) from None
        if other.project_id != project_id:
            raise ValidationError(
                f"Phase {phase_id} belongs to another project", field=field
            )
        return other

    def _check_dependency(self, ctx: ActorContext, phase: Phase, depends_on: UUID) -> None:
        if depends_on == phase.id:
            raise ValidationError("A phase cannot depend on itself", field="depends_on_phase_id")
        # Walk the chain from the new predecessor; reaching this phase is a cycle.
        seen: set[UUID] = set()
        cursor: UUID | None = depends_on
        while cursor is not None and cursor not in seen:
            if cursor == phase.id:
                raise ValidationError(
                    "Phase dependency would form a cycle", field="depends_on_phase_id"
                )
            seen.add(cursor)
            cursor = self._require_sibling_phase(ctx, phase.project_id, cursor).depends_on_phase_id

    # =========================================================================
    # Cost items
    # =========================================================================

    def create_cost_item(
        self,
        ctx: ActorContext,
        project_id: UUID,
        category: str,
        *,
        budgeted_amount: Any = 0,
        committed_amount: Any = 0,
        actual_spent: Any = 0,
        phase_id: UUID | None = None,
        description: str | None = None,
        purchase_order_number: str | None = None,
        notes: str | None = None,
    ) -> CostItemResult:
        """Add a cost item.  Overspend is reported on the result, not refused."""
        with LogContext.bind(project_id=project_id, **ctx.log_fields()):
            self.get_project(ctx, project_id)
            if phase_id is not None:
                self._require_sibling_phase(ctx, project_id, phase_id, field="phase_id")

            fields = {
                "project_id": project_id,
                "phase_id": phase_id,
                "category": require_text(category, "category"),
                "description": description,
                "budgeted_amount": non_negative(budgeted_amount, "budgeted_amount"),
                "committed_amount": non_negative(committed_amount, "committed_amount"),
                "actual_spent": non_negative(actual_spent, "actual_spent"),
                "purchase_order_number": purchase_order_number,
                "notes": notes,
            }
            item: CostItem = self._store.insert(
                CostItemModel, fields, ctx.tenant_id, ctx.actor_id
            )
            logger.info("cost_item_created", extra={"cost_item_id": str(item.id)})
            return self._with_overspend_check(item)

    def update_cost_item(self, ctx: ActorContext, item_id: UUID, **changes: Any) -> CostItemResult:
        allowed_changes(changes, _COST_ITEM_FIELDS, "CostItem")
        item: CostItem = self._store.get(CostItemModel, item_id, ctx.tenant_id)

        with LogContext.bind(project_id=item.project_id, **ctx.log_fields()):
            for amount_field in ("budgeted_amount", "committed_amount", "actual_spent"):
                if amount_field in changes:
                    changes[amount_field] = non_negative(changes[amount_field], amount_field)
            if "category" in changes:
                changes["category"] = require_text(changes["category"], "category")
            if changes.get("phase_id") is not None:
                self._require_sibling_phase(
                    ctx, item.project_id, changes["phase_id"], field="phase_id"
                )

            updated: CostItem = self._store.update(
                CostItemModel, item_id, changes, ctx.tenant_id, ctx.actor_id
            )
            logger.info(
                "cost_item_updated",
                extra={"cost_item_id": str(item_id), "fields": sorted(changes)},
            )
            return self._with_overspend_check(updated)

    def delete_cost_item(self, ctx: ActorContext, item_id: UUID) -> None:
        with LogContext.bind(**ctx.log_fields()):
            self._store.delete(CostItemModel, item_id, ctx.tenant_id)
            logger.info("cost_item_deleted", extra={"cost_item_id": str(item_id)})

    def list_cost_items(self, ctx: ActorContext, project_id: UUID) -> list[CostItem]:
        return self._store.find(CostItemModel, ctx.tenant_id, {"project_id": project_id})

    def _with_overspend_check(self, item: CostItem) -> CostItemResult:
        warning = check_overspend(item, self._config.cost_tracking.overspend_tolerance_pct)
        if warning is not None:
            logger.warning(
                "cost_item_overspend",
                extra={
                    "cost_item_id": str(item.id),
                    "committed_amount": warning.committed_amount,
                    "actual_spent": warning.actual_spent,
                    "overspend": warning.overspend,
                },
            )
        return CostItemResult(item=item, warning=warning)

    # =========================================================================
    # Change orders
    # =========================================================================

    def propose_change_order(
        self,
        ctx: ActorContext,
        project_id: UUID,
        reason: str,
        amount_change: Any,
        description: str | None = None,
        *,
        timeout: float | None = None,
    ) -> ChangeOrder:
        """Record a pending delta against the project's current budget."""
        with LogContext.bind(project_id=project_id, **ctx.log_fields()):
            project = self._store.get(ProjectModel, project_id, ctx.tenant_id, timeout=timeout)
            fields = build_proposal(project, reason, amount_change, description, ctx.actor_id)
            change_order: ChangeOrder = self._store.insert(
                ChangeOrderModel, fields, ctx.tenant_id, ctx.actor_id, timeout=timeout
            )
            logger.info(
                "change_order_proposed",
                extra={
                    "change_order_id": str(change_order.id),
                    "amount_change": change_order.amount_change,
                    "original_budget": change_order.original_budget,
                    "new_budget": change_order.new_budget,
                },
            )
            return change_order

    def approve_change_order(
        self,
        ctx: ActorContext,
        change_order_id: UUID,
        *,
        timeout: float | None = None,
        cancel: CancelSignal | None = None,
    ) -> Project:
        """Approve a pending change order and apply its delta to the live budget.

        Returns the project with the new ``current_budget``.  The actor in
        ``ctx`` is recorded as approver.
        """
        with LogContext.bind(change_order_id=change_order_id, **ctx.log_fields()):
            project, _ = self._coordinator.approve(
                ctx, change_order_id, timeout=timeout, cancel=cancel
            )
            return project

    def reject_change_order(
        self,
        ctx: ActorContext,
        change_order_id: UUID,
        reason: str,
        *,
        timeout: float | None = None,
    ) -> ChangeOrder:
        """pending -> rejected.  A second rejection keeps the first reason."""
        with LogContext.bind(change_order_id=change_order_id, **ctx.log_fields()):
            change_order: ChangeOrder = self._store.get(
                ChangeOrderModel, change_order_id, ctx.tenant_id, timeout=timeout
            )
            fields = rejection_fields(change_order, ctx.actor_id, reason, self._clock.now())
            try:
                rejected: ChangeOrder = self._store.update(
                    ChangeOrderModel,
                    change_order_id,
                    fields,
                    ctx.tenant_id,
                    ctx.actor_id,
                    expected=pending_guard(change_order),
                    timeout=timeout,
                )
            except ConcurrentModificationError:
                current = self._store.get(
                    ChangeOrderModel, change_order_id, ctx.tenant_id, timeout=timeout
                )
                if current.status != ChangeOrderStatus.PENDING:
                    raise InvalidTransitionError(
                        "ChangeOrder", change_order_id, current.status, "reject"
                    )
                raise
            logger.info(
                "change_order_rejected",
                extra={
                    "project_id": str(rejected.project_id),
                    "rejection_reason": rejected.rejection_reason,
                },
            )
            return rejected

    def get_change_order(self, ctx: ActorContext, change_order_id: UUID) -> ChangeOrder:
        return self._store.get(ChangeOrderModel, change_order_id, ctx.tenant_id)

    def list_change_orders(
        self,
        ctx: ActorContext,
        project_id: UUID,
        status: str | None = None,
    ) -> list[ChangeOrder]:
        filters: dict[str, Any] = {"project_id": project_id}
        if status is not None:
            filters["status"] = as_enum(ChangeOrderStatus, status, "status").value
        return self._store.find(ChangeOrderModel, ctx.tenant_id, filters)

    def reconcile_project_budget(
        self,
        ctx: ActorContext,
        project_id: UUID,
        *,
        timeout: float | None = None,
    ) -> Project:
        """Restore ``current_budget = original_budget + sum(approved deltas)``."""
        with LogContext.bind(project_id=project_id, **ctx.log_fields()):
            return self._coordinator.reconcile(ctx, project_id, timeout=timeout)

    # =========================================================================
    # Reporting
    # =========================================================================

    def get_budget_summary(self, ctx: ActorContext, project_id: UUID) -> BudgetSummary:
        """Roll-up of the project's cost items, phases and change orders."""
        project = self.get_project(ctx, project_id)
        return summarize_project(
            project,
            self.list_cost_items(ctx, project_id),
            self.list_phases(ctx, project_id),
            self.list_change_orders(ctx, project_id),
            overspend_tolerance=self._config.cost_tracking.overspend_tolerance_pct,
        )

    def evaluate_change_order_policy(
        self,
        ctx: ActorContext,
        project_id: UUID,
        amount_change: Any,
    ) -> PolicyEvaluation:
        project = self.get_project(ctx, project_id)
        return evaluate_change_order_policy(project, as_decimal(amount_change, "amount_change"))
