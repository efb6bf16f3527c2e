"""
SQLAlchemy ORM persistence models for project budgeting.

Responsibility
--------------
Tables for projects, phases, cost items and change orders.  Rows are only
read and written through the entity store; callers receive the frozen DTOs
from ``budget_modules.project.models`` via ``to_dto()``.

Architecture position
---------------------
**Modules layer**: ORM models inheriting ``TenantScopedBase`` (kernel db
layer), so every row carries tenant_id and a version counter.

Invariants enforced
-------------------
* Monetary fields are ``Decimal`` (the ``Money`` column type).
* Status columns are constrained to their workflow's states.
* A change order's ``amount_change`` is never zero.
* Deleting a phase sets ``phase_id`` on its cost items and
  ``depends_on_phase_id`` on dependent phases to NULL.
* A project cannot be deleted while children reference it (no cascade).
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, CheckConstraint, Date, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from budget_kernel.db.base import TenantScopedBase, UUIDString

# ---------------------------------------------------------------------------
# ProjectModel
# ---------------------------------------------------------------------------


class ProjectModel(TenantScopedBase):
    """
    A budgeted project.

    Maps to the ``Project`` DTO.  ``status`` follows draft -> approved.
    """

    __tablename__ = "budget_projects"
    __entity_name__ = "Project"

    __table_args__ = (
        CheckConstraint("status IN ('draft', 'approved')", name="ck_budget_project_status"),
        CheckConstraint("original_budget >= 0", name="ck_budget_project_original_nonneg"),
        Index("idx_budget_project_tenant_status", "tenant_id", "status"),
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    project_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="draft")

    original_budget: Mapped[Decimal] = mapped_column(nullable=False)
    current_budget: Mapped[Decimal] = mapped_column(nullable=False)
    approved_budget: Mapped[Decimal | None] = mapped_column(nullable=True)

    contingency_percent: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    contingency_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    requires_approval: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    approval_threshold: Mapped[Decimal] = mapped_column(default=Decimal("0"))

    planned_start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    planned_end_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    approved_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def to_dto(self):
        from budget_modules.project.models import Project

        return Project(
            id=self.id,
            tenant_id=self.tenant_id,
            name=self.name,
            original_budget=self.original_budget,
            current_budget=self.current_budget,
            status=self.status,
            approved_budget=self.approved_budget,
            description=self.description,
            project_type=self.project_type,
            currency=self.currency,
            contingency_percent=self.contingency_percent,
            contingency_amount=self.contingency_amount,
            requires_approval=self.requires_approval,
            approval_threshold=self.approval_threshold,
            planned_start_date=self.planned_start_date,
            planned_end_date=self.planned_end_date,
            approved_by_id=self.approved_by_id,
            approved_at=self.approved_at,
            version=self.version,
            created_at=self.created_at,
            updated_at=self.updated_at,
            created_by_id=self.created_by_id,
            updated_by_id=self.updated_by_id,
        )

    def __repr__(self) -> str:
        return f"<ProjectModel {self.name} [{self.status}] v{self.version}>"


# ---------------------------------------------------------------------------
# PhaseModel
# ---------------------------------------------------------------------------


class PhaseModel(TenantScopedBase):
    """An ordered stage of a project; may depend on another phase."""

    __tablename__ = "budget_phases"
    __entity_name__ = "Phase"

    __table_args__ = (
        CheckConstraint(
            "status IN ('not_started', 'in_progress', 'completed', 'delayed')",
            name="ck_budget_phase_status",
        ),
        CheckConstraint(
            "percent_complete >= 0 AND percent_complete <= 100",
            name="ck_budget_phase_percent",
        ),
        Index("idx_budget_phase_project_order", "project_id", "phase_order"),
    )

    project_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("budget_projects.id"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    phase_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    phase_budget: Mapped[Decimal | None] = mapped_column(nullable=True)
    depends_on_phase_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("budget_phases.id", ondelete="SET NULL"),
        nullable=True,
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="not_started")
    percent_complete: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    planned_start: Mapped[date | None] = mapped_column(Date, nullable=True)
    planned_end: Mapped[date | None] = mapped_column(Date, nullable=True)

    def to_dto(self):
        from budget_modules.project.models import Phase

        return Phase(
            id=self.id,
            tenant_id=self.tenant_id,
            project_id=self.project_id,
            name=self.name,
            phase_order=self.phase_order,
            phase_budget=self.phase_budget,
            depends_on_phase_id=self.depends_on_phase_id,
            status=self.status,
            percent_complete=self.percent_complete,
            description=self.description,
            planned_start=self.planned_start,
            planned_end=self.planned_end,
            version=self.version,
            created_at=self.created_at,
            updated_at=self.updated_at,
            created_by_id=self.created_by_id,
            updated_by_id=self.updated_by_id,
        )

    def __repr__(self) -> str:
        return f"<PhaseModel {self.phase_order}:{self.name} [{self.status}]>"


# ---------------------------------------------------------------------------
# CostItemModel
# ---------------------------------------------------------------------------


class CostItemModel(TenantScopedBase):
    """A budget line of a project, optionally tagged to a phase."""

    __tablename__ = "budget_cost_items"
    __entity_name__ = "CostItem"

    __table_args__ = (
        CheckConstraint(
            "budgeted_amount >= 0 AND committed_amount >= 0 AND actual_spent >= 0",
            name="ck_budget_cost_item_amounts_nonneg",
        ),
        Index("idx_budget_cost_item_project", "project_id"),
        Index("idx_budget_cost_item_phase", "phase_id"),
    )

    project_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("budget_projects.id"), nullable=False
    )
    phase_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("budget_phases.id", ondelete="SET NULL"),
        nullable=True,
    )
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    budgeted_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    committed_amount: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    actual_spent: Mapped[Decimal] = mapped_column(default=Decimal("0"))
    purchase_order_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    def to_dto(self):
        from budget_modules.project.models import CostItem

        return CostItem(
            id=self.id,
            tenant_id=self.tenant_id,
            project_id=self.project_id,
            category=self.category,
            budgeted_amount=self.budgeted_amount,
            committed_amount=self.committed_amount,
            actual_spent=self.actual_spent,
            phase_id=self.phase_id,
            description=self.description,
            purchase_order_number=self.purchase_order_number,
            notes=self.notes,
            version=self.version,
            created_at=self.created_at,
            updated_at=self.updated_at,
            created_by_id=self.created_by_id,
            updated_by_id=self.updated_by_id,
        )

    def __repr__(self) -> str:
        return f"<CostItemModel {self.category} committed={self.committed_amount}>"


# ---------------------------------------------------------------------------
# ChangeOrderModel
# ---------------------------------------------------------------------------


class ChangeOrderModel(TenantScopedBase):
    """
    A proposed budget delta.

    ``original_budget``/``new_budget`` are proposal-time snapshots;
    ``amount_change`` is never rewritten after insert.
    """

    __tablename__ = "budget_change_orders"
    __entity_name__ = "ChangeOrder"

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected')",
            name="ck_budget_change_order_status",
        ),
        CheckConstraint("amount_change <> 0", name="ck_budget_change_order_nonzero"),
        Index("idx_budget_change_order_project_status", "project_id", "status"),
    )

    project_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("budget_projects.id"), nullable=False
    )
    reason: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    amount_change: Mapped[Decimal] = mapped_column(nullable=False)
    original_budget: Mapped[Decimal] = mapped_column(nullable=False)
    new_budget: Mapped[Decimal] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    requested_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    decided_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    decided_at: Mapped[datetime | None] = mapped_column(nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    def to_dto(self):
        from budget_modules.project.models import ChangeOrder

        return ChangeOrder(
            id=self.id,
            tenant_id=self.tenant_id,
            project_id=self.project_id,
            reason=self.reason,
            amount_change=self.amount_change,
            original_budget=self.original_budget,
            new_budget=self.new_budget,
            status=self.status,
            description=self.description,
            requested_by_id=self.requested_by_id,
            decided_by_id=self.decided_by_id,
            decided_at=self.decided_at,
            rejection_reason=self.rejection_reason,
            version=self.version,
            created_at=self.created_at,
            updated_at=self.updated_at,
            created_by_id=self.created_by_id,
            updated_by_id=self.updated_by_id,
        )

    def __repr__(self) -> str:
        return f"<ChangeOrderModel {self.amount_change} [{self.status}]>"
