"""
budget_engines.aggregation -- Pure budget roll-up.

Responsibility:
    Derive a project's budget summary from its cost items, phases and change
    orders: totals, variance, per-phase subtotals, change-order exposure,
    overspend warnings and earned value.  Results are recomputed on every
    read and never stored.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Inputs are structural
    (``Protocol``) so the module DTOs, ORM rows or test doubles all fit.

Invariants enforced:
    - variance = current_budget - total_committed.
    - Every cost item lands in exactly one bucket: its phase, or the
      unassigned bucket when phase_id is None or names a phase that is not
      in ``phases``.  Bucket sums equal the project totals.
    - expected_current_budget = original_budget + sum(approved deltas).
    - An overspend warning is advisory and never raised as an error.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Protocol
from uuid import UUID

from budget_engines.evm import EarnedValue, evaluate_earned_value

_ZERO = Decimal("0")
_HUNDRED = Decimal("100")
_CENTS = Decimal("0.01")


class ProjectFigures(Protocol):
    original_budget: Decimal
    current_budget: Decimal
    approved_budget: Decimal | None
    contingency_amount: Decimal


class CostLine(Protocol):
    id: UUID
    phase_id: UUID | None
    budgeted_amount: Decimal
    committed_amount: Decimal
    actual_spent: Decimal


class PhaseLine(Protocol):
    id: UUID
    name: str
    phase_order: int
    phase_budget: Decimal | None
    percent_complete: Decimal
    created_at: datetime | None


class ChangeOrderLine(Protocol):
    status: str
    amount_change: Decimal


@dataclass(frozen=True)
class OverspendWarning:
    """actual_spent exceeded committed_amount beyond the tolerance."""
    cost_item_id: UUID
    committed_amount: Decimal
    actual_spent: Decimal
    tolerance_pct: Decimal
    overspend: Decimal


@dataclass(frozen=True)
class PhaseSubtotal:
    """Roll-up of one bucket; ``phase_id`` None is the unassigned bucket."""
    phase_id: UUID | None
    phase_name: str
    phase_budget: Decimal | None
    budgeted: Decimal = _ZERO
    committed: Decimal = _ZERO
    actual: Decimal = _ZERO
    item_count: int = 0


@dataclass(frozen=True)
class ChangeOrderTotals:
    approved_delta: Decimal = _ZERO
    pending_delta: Decimal = _ZERO
    approved_count: int = 0
    pending_count: int = 0
    rejected_count: int = 0


@dataclass(frozen=True)
class BudgetSummary:
    original_budget: Decimal
    current_budget: Decimal
    approved_budget: Decimal | None
    contingency_amount: Decimal
    total_budgeted: Decimal
    total_committed: Decimal
    total_actual: Decimal
    variance: Decimal
    remaining: Decimal
    approved_drift: Decimal | None
    spent_percent: Decimal
    expected_current_budget: Decimal
    phases: tuple[PhaseSubtotal, ...]
    unassigned: PhaseSubtotal
    change_orders: ChangeOrderTotals
    warnings: tuple[OverspendWarning, ...] = field(default=())
    earned_value: EarnedValue | None = None

    @property
    def is_consistent(self) -> bool:
        """current_budget agrees with the approved change-order history."""
        return self.current_budget == self.expected_current_budget


def phase_sort_key(phase: PhaseLine) -> tuple[Any, ...]:
    """Order by phase_order, then created_at, then id."""
    created = phase.created_at
    return (
        phase.phase_order,
        created is None,
        created.replace(tzinfo=None) if created is not None else datetime.min,
        str(phase.id),
    )


def check_overspend(
    item: CostLine,
    tolerance_pct: Decimal = _ZERO,
) -> OverspendWarning | None:
    """Return a warning when actual_spent > committed_amount * (1 + tolerance)."""
    limit = item.committed_amount * (Decimal("1") + tolerance_pct)
    if item.actual_spent > limit:
        return OverspendWarning(
            cost_item_id=item.id,
            committed_amount=item.committed_amount,
            actual_spent=item.actual_spent,
            tolerance_pct=tolerance_pct,
            overspend=item.actual_spent - item.committed_amount,
        )
    return None


def expected_current_budget(
    original_budget: Decimal,
    change_orders: Iterable[ChangeOrderLine],
) -> Decimal:
    """original_budget plus every approved delta."""
    return original_budget + sum(
        (co.amount_change for co in change_orders if co.status == "approved"),
        _ZERO,
    )


def summarize_change_orders(change_orders: Iterable[ChangeOrderLine]) -> ChangeOrderTotals:
    approved = pending = _ZERO
    approved_count = pending_count = rejected_count = 0
    for co in change_orders:
        if co.status == "approved":
            approved += co.amount_change
            approved_count += 1
        elif co.status == "pending":
            pending += co.amount_change
            pending_count += 1
        elif co.status == "rejected":
            rejected_count += 1
    return ChangeOrderTotals(
        approved_delta=approved,
        pending_delta=pending,
        approved_count=approved_count,
        pending_count=pending_count,
        rejected_count=rejected_count,
    )


def _bucket(
    phase_id: UUID | None,
    name: str,
    phase_budget: Decimal | None,
    items: Sequence[CostLine],
) -> PhaseSubtotal:
    return PhaseSubtotal(
        phase_id=phase_id,
        phase_name=name,
        phase_budget=phase_budget,
        budgeted=sum((i.budgeted_amount for i in items), _ZERO),
        committed=sum((i.committed_amount for i in items), _ZERO),
        actual=sum((i.actual_spent for i in items), _ZERO),
        item_count=len(items),
    )


def summarize_project(
    project: ProjectFigures,
    cost_items: Sequence[CostLine],
    phases: Sequence[PhaseLine] = (),
    change_orders: Sequence[ChangeOrderLine] = (),
    overspend_tolerance: Decimal = _ZERO,
) -> BudgetSummary:
    """Roll a project's figures up into a ``BudgetSummary``.

    Args:
        project: Budget figures of the project.
        cost_items: All cost items of the project.
        phases: All phases of the project, in any order.
        change_orders: All change orders of the project.
        overspend_tolerance: Fraction above committed that is not yet overspend.
    """
    ordered_phases = sorted(phases, key=phase_sort_key)
    known = {p.id for p in ordered_phases}

    by_phase: dict[UUID, list[CostLine]] = {pid: [] for pid in known}
    unassigned_items: list[CostLine] = []
    for item in cost_items:
        if item.phase_id is not None and item.phase_id in known:
            by_phase[item.phase_id].append(item)
        else:
            unassigned_items.append(item)

    subtotals = tuple(
        _bucket(p.id, p.name, p.phase_budget, by_phase[p.id]) for p in ordered_phases
    )
    unassigned = _bucket(None, "unassigned", None, unassigned_items)

    total_budgeted = sum((i.budgeted_amount for i in cost_items), _ZERO)
    total_committed = sum((i.committed_amount for i in cost_items), _ZERO)
    total_actual = sum((i.actual_spent for i in cost_items), _ZERO)

    current = project.current_budget
    spent_percent = (
        (total_actual / current * _HUNDRED).quantize(_CENTS) if current else _ZERO
    )
    approved_drift = (
        current - project.approved_budget if project.approved_budget is not None else None
    )

    warnings = tuple(
        w for w in (check_overspend(i, overspend_tolerance) for i in cost_items) if w
    )

    return BudgetSummary(
        original_budget=project.original_budget,
        current_budget=current,
        approved_budget=project.approved_budget,
        contingency_amount=project.contingency_amount,
        total_budgeted=total_budgeted,
        total_committed=total_committed,
        total_actual=total_actual,
        variance=current - total_committed,
        remaining=current - total_committed - total_actual,
        approved_drift=approved_drift,
        spent_percent=spent_percent,
        expected_current_budget=expected_current_budget(
            project.original_budget, change_orders
        ),
        phases=subtotals,
        unassigned=unassigned,
        change_orders=summarize_change_orders(change_orders),
        warnings=warnings,
        earned_value=evaluate_earned_value(current, ordered_phases, total_actual),
    )
