"""
budget_engines.approval_policy -- Advisory change-order approval policy.

Responsibility:
    Tell an external policy layer whether a proposed budget delta crosses
    the project's approval threshold.  The core never blocks on this
    result; it is reported, not enforced.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Rules:
    - ``requires_approval`` False: never needs additional approval.
    - Otherwise ``abs(amount_change) >= approval_threshold`` needs it.
      Decreases are judged by magnitude like increases.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol


class ApprovalSettings(Protocol):
    requires_approval: bool
    approval_threshold: Decimal


@dataclass(frozen=True)
class PolicyEvaluation:
    needs_additional_approval: bool
    threshold: Decimal
    amount: Decimal
    reason: str


def evaluate_change_order_policy(
    settings: ApprovalSettings,
    amount_change: Decimal,
) -> PolicyEvaluation:
    threshold = settings.approval_threshold
    if not settings.requires_approval:
        return PolicyEvaluation(
            needs_additional_approval=False,
            threshold=threshold,
            amount=amount_change,
            reason="Project does not require approval",
        )

    magnitude = abs(amount_change)
    if magnitude >= threshold:
        return PolicyEvaluation(
            needs_additional_approval=True,
            threshold=threshold,
            amount=amount_change,
            reason=f"Change of {magnitude} meets approval threshold {threshold}",
        )
    return PolicyEvaluation(
        needs_additional_approval=False,
        threshold=threshold,
        amount=amount_change,
        reason=f"Change of {magnitude} below approval threshold {threshold}",
    )
