"""
Earned Value calculations -- pure functions.

Budget at completion (BAC) is the project's current budget.  Earned value is
credited per phase: ``phase_budget * percent_complete / 100``; phases without
a budget earn nothing.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal
from typing import Protocol

_CENTS = Decimal("0.01")
_INDEX = Decimal("0.0001")
_ZERO = Decimal("0")


class ProgressLine(Protocol):
    phase_budget: Decimal | None
    percent_complete: Decimal


@dataclass(frozen=True)
class EarnedValue:
    bac: Decimal
    earned_value: Decimal
    actual_cost: Decimal
    cpi: Decimal
    eac: Decimal
    vac: Decimal


def calculate_earned_value(phases: Iterable[ProgressLine]) -> Decimal:
    total = _ZERO
    for phase in phases:
        if phase.phase_budget is None:
            continue
        total += phase.phase_budget * Decimal(phase.percent_complete) / Decimal("100")
    return total.quantize(_CENTS)


def calculate_cpi(earned_value: Decimal, actual_cost: Decimal) -> Decimal:
    """Cost Performance Index = EV / AC. >1 = under budget."""
    if actual_cost == 0:
        return _ZERO
    return (earned_value / actual_cost).quantize(_INDEX)


def calculate_eac(bac: Decimal, cpi: Decimal) -> Decimal:
    """Estimate at Completion = BAC / CPI."""
    if cpi == 0:
        return _ZERO
    return (bac / cpi).quantize(_CENTS)


def calculate_vac(bac: Decimal, eac: Decimal) -> Decimal:
    """Variance at Completion = BAC - EAC."""
    return (bac - eac).quantize(_CENTS)


def evaluate_earned_value(
    bac: Decimal,
    phases: Iterable[ProgressLine],
    actual_cost: Decimal,
) -> EarnedValue:
    ev = calculate_earned_value(phases)
    cpi = calculate_cpi(ev, actual_cost)
    eac = calculate_eac(bac, cpi)
    # No performance history yet: nothing to forecast against
    vac = calculate_vac(bac, eac) if cpi != 0 else _ZERO
    return EarnedValue(
        bac=bac,
        earned_value=ev,
        actual_cost=actual_cost,
        cpi=cpi,
        eac=eac,
        vac=vac,
    )
