"""
Hypothesis fuzzing of change-order sequences.

Each example builds a fresh project and replays a random sequence of
propose / approve / reject steps against the real service, checking after
every step that:
- current_budget == original_budget + sum(approved amount_change)
- every proposal kept the snapshot taken when it was created
- decided orders refuse further decisions and never apply twice
"""

from __future__ import annotations

from decimal import Decimal

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from budget_kernel.exceptions import InvalidTransitionError
from budget_modules.project.models import ChangeOrderStatus

FUZZ_SETTINGS = settings(
    max_examples=40,
    deadline=None,
    suppress_health_check=[HealthCheck.function_scoped_fixture, HealthCheck.too_slow],
)

budgets = st.decimals(
    min_value=Decimal("0"),
    max_value=Decimal("999999999.99"),
    places=2,
    allow_nan=False,
    allow_infinity=False,
)

deltas = st.decimals(
    min_value=Decimal("-999999999.99"),
    max_value=Decimal("999999999.99"),
    places=2,
    allow_nan=False,
    allow_infinity=False,
).filter(lambda d: d != 0)

steps = st.lists(
    st.one_of(
        st.tuples(st.just("propose"), deltas),
        st.tuples(st.just("approve"), st.integers(min_value=0, max_value=50)),
        st.tuples(st.just("reject"), st.integers(min_value=0, max_value=50)),
    ),
    min_size=1,
    max_size=12,
)


class _Model:
    """Expected state of one project, kept in memory."""

    def __init__(self, original: Decimal):
        self.original = original
        self.current = original
        self.orders: list[tuple[object, Decimal, Decimal]] = []  # (id, delta, snapshot)
        self.decided: dict[object, str] = {}

    def pick(self, index: int):
        return self.orders[index % len(self.orders)] if self.orders else None


class TestBudgetIdentityFuzzing:

    @FUZZ_SETTINGS
    @given(original=budgets, sequence=steps)
    def test_random_decision_sequences(self, service, actor_ctx, original, sequence):
        project = service.create_project(actor_ctx, original, "Fuzzed")
        model = _Model(original)

        for action, arg in sequence:
            if action == "propose":
                co = service.propose_change_order(actor_ctx, project.id, "fuzz", arg)
                assert co.original_budget == model.current
                assert co.new_budget == model.current + arg
                model.orders.append((co.id, arg, model.current))
                continue

            picked = model.pick(arg)
            if picked is None:
                continue
            co_id, delta, _ = picked

            if co_id in model.decided:
                with pytest.raises(InvalidTransitionError):
                    if action == "approve":
                        service.approve_change_order(actor_ctx, co_id)
                    else:
                        service.reject_change_order(actor_ctx, co_id, "fuzz")
            elif action == "approve":
                updated = service.approve_change_order(actor_ctx, co_id)
                model.current += delta
                model.decided[co_id] = "approved"
                assert updated.current_budget == model.current
            else:
                service.reject_change_order(actor_ctx, co_id, "fuzz")
                model.decided[co_id] = "rejected"

            self._check(service, actor_ctx, project.id, model)

        self._check(service, actor_ctx, project.id, model)

    @staticmethod
    def _check(service, ctx, project_id, model: _Model) -> None:
        project = service.get_project(ctx, project_id)
        assert project.original_budget == model.original
        assert project.current_budget == model.current

        approved = service.list_change_orders(ctx, project_id, status="approved")
        assert project.current_budget == project.original_budget + sum(
            (co.amount_change for co in approved), Decimal("0")
        )

        stored = {co.id: co for co in service.list_change_orders(ctx, project_id)}
        for co_id, delta, snapshot in model.orders:
            co = stored[co_id]
            assert co.original_budget == snapshot
            assert co.new_budget == snapshot + delta
            expected_status = model.decided.get(co_id, "pending")
            assert co.status == ChangeOrderStatus(expected_status)

        assert service.get_budget_summary(ctx, project_id).is_consistent
