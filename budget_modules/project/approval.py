"""
Project approval workflow (``budget_modules.project.approval``).

draft --approve--> approved.  Approval snapshots ``current_budget`` into
``approved_budget``; once set, ``approved_budget`` is never written again.
The store write is conditioned on the project's version so the snapshot is
always taken from the value actually stored at approval time.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from budget_kernel.domain.workflow import resolve_transition
from budget_modules.project.models import Project
from budget_modules.project.workflows import PROJECT_APPROVAL_WORKFLOW


def approve_project_fields(
    project: Project,
    approver_id: UUID,
    approved_at: datetime,
) -> dict[str, Any]:
    transition = resolve_transition(
        PROJECT_APPROVAL_WORKFLOW,
        project.status,
        "approve",
        entity_type="Project",
        entity_id=project.id,
    )
    return {
        "status": transition.to_state,
        "approved_budget": project.current_budget,
        "approved_by_id": approver_id,
        "approved_at": approved_at,
    }


def approval_guard(project: Project) -> dict[str, Any]:
    return {
        "status": PROJECT_APPROVAL_WORKFLOW.initial_state,
        "version": project.version,
    }
