"""Greedy allocation planner: highest available first, ties by location code."""

from decimal import Decimal

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from inventory_kernel.domain.allocation import (
    LocationAvailability,
    plan_allocation,
    rank_candidates,
)
from inventory_kernel.exceptions import InsufficientStockError


def loc(code: str, available) -> LocationAvailability:
    return LocationAvailability(location_id=f"id-{code}", location_code=code, available=Decimal(available))


class TestPlanAllocation:

    def test_single_location_covers_request(self):
        plan = plan_allocation([loc("A", 15)], Decimal("10"), variant_id="v", scope="wh")
        assert [(s.location_code, s.quantity) for s in plan] == [("A", Decimal("10"))]

    def test_highest_available_first(self):
        plan = plan_allocation(
            [loc("A", 3), loc("B", 8), loc("C", 5)], Decimal("10"), variant_id="v", scope="wh",
        )
        assert [(s.location_code, s.quantity) for s in plan] == [
            ("B", Decimal("8")),
            ("C", Decimal("2")),
        ]

    def test_ties_break_by_code_ascending(self):
        plan = plan_allocation(
            [loc("B-02", 5), loc("A-09", 5), loc("B-01", 5)],
            Decimal("7"),
            variant_id="v",
            scope="wh",
        )
        assert [s.location_code for s in plan] == ["A-09", "B-01"]

    def test_empty_locations_ignored(self):
        ranked = rank_candidates([loc("A", 0), loc("B", 2)])
        assert [c.location_code for c in ranked] == ["B"]

    def test_shortfall_raises_with_totals(self):
        with pytest.raises(InsufficientStockError) as exc_info:
            plan_allocation([loc("A", 3), loc("B", 4)], Decimal("10"), variant_id="v1", scope="WH1")
        err = exc_info.value
        assert err.requested == Decimal("10")
        assert err.available == Decimal("7")
        assert err.variant_id == "v1"

    @pytest.mark.parametrize("quantity", [Decimal("0"), Decimal("-1")])
    def test_non_positive_quantity(self, quantity):
        with pytest.raises(ValueError):
            plan_allocation([loc("A", 5)], quantity, variant_id="v", scope="wh")


location_lists = st.lists(
    st.tuples(
        st.text(alphabet="ABCDEFGH0123456789-", min_size=1, max_size=6),
        st.integers(min_value=0, max_value=50),
    ),
    min_size=1,
    max_size=8,
    unique_by=lambda t: t[0],
)


class TestPlanAllocationProperties:

    @settings(max_examples=200)
    @given(locations=location_lists, data=st.data())
    def test_plan_sums_to_request_and_respects_availability(self, locations, data):
        candidates = [loc(code, qty) for code, qty in locations]
        total = sum(qty for _, qty in locations)
        if total == 0:
            return
        quantity = Decimal(data.draw(st.integers(min_value=1, max_value=total)))

        plan = plan_allocation(candidates, quantity, variant_id="v", scope="wh")

        assert sum(s.quantity for s in plan) == quantity
        by_code = {c.location_code: c.available for c in candidates}
        for s in plan:
            assert Decimal("0") < s.quantity <= by_code[s.location_code]
        assert len({s.location_code for s in plan}) == len(plan)

    @settings(max_examples=200)
    @given(locations=location_lists)
    def test_over_request_always_fails(self, locations):
        candidates = [loc(code, qty) for code, qty in locations]
        total = sum(qty for _, qty in locations)
        with pytest.raises(InsufficientStockError):
            plan_allocation(candidates, Decimal(total + 1), variant_id="v", scope="wh")

    @settings(max_examples=100)
    @given(locations=location_lists)
    def test_only_last_slice_is_partial(self, locations):
        candidates = [loc(code, qty) for code, qty in locations]
        total = sum(qty for _, qty in locations)
        if total == 0:
            return
        plan = plan_allocation(candidates, Decimal(total), variant_id="v", scope="wh")
        by_code = {c.location_code: c.available for c in candidates}
        for s in plan[:-1]:
            assert s.quantity == by_code[s.location_code]
