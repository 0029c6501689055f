"""
Greedy allocation planner.

Pure function over (location, available) candidates.  The services gather
candidates under row locks and then ask this module which locations to draw
from; the plan is the same whatever order the rows came back in.

Policy: exhaust the location with the highest available quantity first;
ties go to the lower location code.  Locations with nothing available are
never part of a plan.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Sequence

from inventory_kernel.domain.quantities import ZERO
from inventory_kernel.exceptions import InsufficientStockError


@dataclass(frozen=True)
class LocationAvailability:
    location_id: object
    location_code: str
    available: Decimal


@dataclass(frozen=True)
class AllocationSlice:
    """Quantity to take from one location."""
    location_id: object
    location_code: str
    quantity: Decimal


def rank_candidates(
    candidates: Iterable[LocationAvailability],
) -> list[LocationAvailability]:
    return sorted(
        (c for c in candidates if c.available > ZERO),
        key=lambda c: (-c.available, c.location_code),
    )


def plan_allocation(
    candidates: Sequence[LocationAvailability],
    quantity: Decimal,
    *,
    variant_id: object,
    scope: str,
) -> tuple[AllocationSlice, ...]:
    """
    Split ``quantity`` across candidate locations.

    Postconditions:
        Slice quantities are positive and sum to ``quantity``; no slice
        exceeds its location's availability.

    Raises:
        ValueError: ``quantity`` is not positive.
        InsufficientStockError: Total availability is below ``quantity``.
    """
    if quantity <= ZERO:
        raise ValueError("Allocation quantity must be positive")

    ranked = rank_candidates(candidates)
    total = sum((c.available for c in ranked), ZERO)
    if total < quantity:
        raise InsufficientStockError(str(variant_id), quantity, total, scope)

    plan: list[AllocationSlice] = []
    remaining = quantity
    for candidate in ranked:
        if remaining <= ZERO:
            break
        take = min(candidate.available, remaining)
        plan.append(
            AllocationSlice(candidate.location_id, candidate.location_code, take)
        )
        remaining -= take
    return tuple(plan)
