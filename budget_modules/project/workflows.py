"""Project budget workflows."""

from __future__ import annotations

from budget_kernel.domain.workflow import Transition, Workflow

CHANGE_ORDER_WORKFLOW = Workflow(
    name="change_order_lifecycle",
    description="A proposed budget delta is approved or rejected exactly once",
    initial_state="pending",
    states=("pending", "approved", "rejected"),
    transitions=(
        Transition("pending", "approved", action="approve"),
        Transition("pending", "rejected", action="reject"),
    ),
    terminal_states=("approved", "rejected"),
)

PROJECT_APPROVAL_WORKFLOW = Workflow(
    name="project_approval",
    description="Promote a project from draft to approved, freezing approved_budget",
    initial_state="draft",
    states=("draft", "approved"),
    transitions=(Transition("draft", "approved", action="approve"),),
    terminal_states=("approved",),
)
