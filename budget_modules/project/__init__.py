"""
Project budgeting module.

Public surface: ``ProjectBudgetService`` plus the DTOs and status enums it
returns.
"""

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
from budget_modules.project.service import ProjectBudgetService

__all__ = [
    "ChangeOrder",
    "ChangeOrderStatus",
    "CostItem",
    "CostItemResult",
    "Phase",
    "PhaseStatus",
    "Project",
    "ProjectBudgetService",
    "ProjectStatus",
]
