"""
Change-order state machine (``budget_modules.project.change_orders``).

Responsibility
--------------
Pure rules for the change-order lifecycle: what a proposal must satisfy,
which snapshot it records, and which fields each decision writes.  No I/O;
``ProjectBudgetService`` and ``ChangeOrderCoordinator`` apply the results
through the entity store.

Invariants enforced
-------------------
* ``amount_change`` is never zero.
* ``new_budget == original_budget + amount_change`` at creation; the
  snapshot is not recomputed at approval time.
* Only ``pending`` orders may be approved or rejected (``CHANGE_ORDER_WORKFLOW``).
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from budget_kernel.domain.workflow import Transition, resolve_transition
from budget_kernel.exceptions import ValidationError
from budget_modules.project.models import ChangeOrder, ChangeOrderStatus, Project
from budget_modules.project.validation import as_decimal, require_text
from budget_modules.project.workflows import CHANGE_ORDER_WORKFLOW

# States in which a project still accepts proposals; closure states are
# managed outside this core.
PROPOSABLE_PROJECT_STATES = frozenset({"draft", "approved"})


def require_transition(change_order: ChangeOrder, action: str) -> Transition:
    """Raise InvalidTransitionError unless ``action`` is legal from the order's state."""
    return resolve_transition(
        CHANGE_ORDER_WORKFLOW,
        change_order.status,
        action,
        entity_type="ChangeOrder",
        entity_id=change_order.id,
    )


def build_proposal(
    project: Project,
    reason: str,
    amount_change: Any,
    description: str | None,
    requested_by_id: UUID,
) -> dict[str, Any]:
    """Insert fields for a new pending change order against ``project``."""
    if project.status not in PROPOSABLE_PROJECT_STATES:
        raise ValidationError(
            f"Project {project.id} in state '{project.status}' does not accept change orders",
            field="project_id",
        )
    delta = as_decimal(amount_change, "amount_change")
    if delta == 0:
        raise ValidationError("amount_change must not be zero", field="amount_change")

    baseline = project.current_budget
    return {
        "project_id": project.id,
        "reason": require_text(reason, "reason"),
        "description": description,
        "amount_change": delta,
        "original_budget": baseline,
        "new_budget": baseline + delta,
        "status": CHANGE_ORDER_WORKFLOW.initial_state,
        "requested_by_id": requested_by_id,
    }


def approval_fields(
    change_order: ChangeOrder,
    approver_id: UUID,
    decided_at: datetime,
) -> dict[str, Any]:
    """W1 fields.  Snapshot columns are deliberately absent."""
    transition = require_transition(change_order, "approve")
    return {
        "status": transition.to_state,
        "decided_by_id": approver_id,
        "decided_at": decided_at,
    }


def rejection_fields(
    change_order: ChangeOrder,
    approver_id: UUID,
    reason: str,
    decided_at: datetime,
) -> dict[str, Any]:
    transition = require_transition(change_order, "reject")
    return {
        "status": transition.to_state,
        "decided_by_id": approver_id,
        "decided_at": decided_at,
        "rejection_reason": require_text(reason, "rejection_reason"),
    }


def pending_guard(change_order: ChangeOrder) -> dict[str, Any]:
    """CAS expectation: still pending and unchanged since read."""
    return {
        "status": ChangeOrderStatus.PENDING.value,
        "version": change_order.version,
    }
