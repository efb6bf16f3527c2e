"""
Workflow value types (``budget_kernel.domain.workflow``).

Responsibility
--------------
Frozen descriptions of small state machines (change orders, project
approval) plus ``resolve_transition``, the single lookup every module uses
to decide whether an action is legal from a state.

Architecture position
---------------------
**Kernel domain layer**: pure value objects, zero I/O.

Invariants enforced
-------------------
* Transitions reference only states in ``Workflow.states``.
* ``initial_state`` is a member of ``states``.
* A (state, action) pair with no transition raises
  ``InvalidTransitionError``; there is no implicit fallthrough.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from budget_kernel.exceptions import InvalidTransitionError


@dataclass(frozen=True)
class Transition:
    """A legal move ``from_state --action--> to_state``."""

    from_state: str
    to_state: str
    action: str


@dataclass(frozen=True)
class Workflow:
    """A document lifecycle state machine.

    ``terminal_states`` have no outgoing transitions.
    """

    name: str
    description: str
    initial_state: str
    states: tuple[str, ...]
    transitions: tuple[Transition, ...]
    terminal_states: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.initial_state not in self.states:
            raise ValueError(
                f"Workflow {self.name}: initial state {self.initial_state!r} "
                "is not a declared state"
            )
        for t in self.transitions:
            if t.from_state not in self.states or t.to_state not in self.states:
                raise ValueError(
                    f"Workflow {self.name}: transition {t.action!r} "
                    f"references an undeclared state"
                )
            if t.from_state in self.terminal_states:
                raise ValueError(
                    f"Workflow {self.name}: terminal state {t.from_state!r} "
                    "has an outgoing transition"
                )

    def actions_from(self, state: str) -> tuple[str, ...]:
        return tuple(t.action for t in self.transitions if t.from_state == state)


def resolve_transition(
    workflow: Workflow,
    current_state: str,
    action: str,
    *,
    entity_type: str,
    entity_id: Any,
) -> Transition:
    """Return the transition for (current_state, action) or raise.

    Raises:
        InvalidTransitionError: No transition matches.
    """
    for t in workflow.transitions:
        if t.from_state == current_state and t.action == action:
            return t
    raise InvalidTransitionError(entity_type, entity_id, current_state, action)
