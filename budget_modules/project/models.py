"""
Project Budget Domain Models (``budget_modules.project.models``).

Responsibility
--------------
Frozen dataclass value objects for the nouns of project budgeting:
projects, phases, cost items and change orders, plus the status enums
their workflows move through.  Every store read returns one of these;
callers never see ORM rows.

Architecture position
---------------------
**Modules layer**: pure data definitions with zero I/O.

Invariants enforced
-------------------
* All models are ``frozen=True``.
* All monetary fields are ``Decimal``.
* ``version`` mirrors the row's optimistic concurrency token.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from budget_engines.aggregation import OverspendWarning


class ProjectStatus(str, Enum):
    DRAFT = "draft"
    APPROVED = "approved"


class PhaseStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    DELAYED = "delayed"


class ChangeOrderStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


@dataclass(frozen=True)
class Project:
    """A budgeted project.

    ``original_budget`` is fixed at creation; ``current_budget`` moves only
    through approved change orders; ``approved_budget`` is written once, on
    project approval.
    """
    id: UUID
    tenant_id: UUID
    name: str
    original_budget: Decimal
    current_budget: Decimal
    status: str = ProjectStatus.DRAFT.value
    approved_budget: Decimal | None = None
    description: str | None = None
    project_type: str | None = None
    currency: str = "USD"
    contingency_percent: Decimal = Decimal("0")
    contingency_amount: Decimal = Decimal("0")
    requires_approval: bool = True
    approval_threshold: Decimal = Decimal("0")
    planned_start_date: date | None = None
    planned_end_date: date | None = None
    approved_by_id: UUID | None = None
    approved_at: datetime | None = None
    version: int = 1
    created_at: datetime | None = None
    updated_at: datetime | None = None
    created_by_id: UUID | None = None
    updated_by_id: UUID | None = None


@dataclass(frozen=True)
class Phase:
    """A stage of a project, ordered by ``phase_order``."""
    id: UUID
    tenant_id: UUID
    project_id: UUID
    name: str
    phase_order: int
    phase_budget: Decimal | None = None
    depends_on_phase_id: UUID | None = None
    status: str = PhaseStatus.NOT_STARTED.value
    percent_complete: Decimal = Decimal("0")
    description: str | None = None
    planned_start: date | None = None
    planned_end: date | None = None
    version: int = 1
    created_at: datetime | None = None
    updated_at: datetime | None = None
    created_by_id: UUID | None = None
    updated_by_id: UUID | None = None


@dataclass(frozen=True)
class CostItem:
    """A budget line; ``phase_id`` None means unassigned."""
    id: UUID
    tenant_id: UUID
    project_id: UUID
    category: str
    budgeted_amount: Decimal = Decimal("0")
    committed_amount: Decimal = Decimal("0")
    actual_spent: Decimal = Decimal("0")
    phase_id: UUID | None = None
    description: str | None = None
    purchase_order_number: str | None = None
    notes: str | None = None
    version: int = 1
    created_at: datetime | None = None
    updated_at: datetime | None = None
    created_by_id: UUID | None = None
    updated_by_id: UUID | None = None


@dataclass(frozen=True)
class ChangeOrder:
    """A proposed delta to a project's current budget.

    ``original_budget``/``new_budget`` are snapshots taken at proposal time
    and never recomputed.
    """
    id: UUID
    tenant_id: UUID
    project_id: UUID
    reason: str
    amount_change: Decimal
    original_budget: Decimal
    new_budget: Decimal
    status: str = ChangeOrderStatus.PENDING.value
    description: str | None = None
    requested_by_id: UUID | None = None
    decided_by_id: UUID | None = None
    decided_at: datetime | None = None
    rejection_reason: str | None = None
    version: int = 1
    created_at: datetime | None = None
    updated_at: datetime | None = None
    created_by_id: UUID | None = None
    updated_by_id: UUID | None = None


@dataclass(frozen=True)
class CostItemResult:
    """A saved cost item and the overspend warning it raised, if any."""
    item: CostItem
    warning: OverspendWarning | None = None
