"""
Module: dispatch_engines.allocation
Responsibility:
    FIFO-by-expiration planning of batch consumption for a product demand,
    and the reverse split of a returned quantity back onto the batches it
    was taken from.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  StockLedgerService loads
    the candidate batches under a row lock, asks this module for a plan and
    applies it.

Invariants enforced:
    - Candidates are consumed in (expiration_date, receipt_sequence) order;
      the sort is stable so equal keys keep their input order.
    - sum(plan.allocations) + plan.shortfall == requested.
    - No allocation exceeds its batch's quantity_current; every allocation
      quantity is a positive integer.

Failure modes:
    - ValueError on a negative requested or returned quantity.

Usage:
    plan = plan_fifo_allocation(
        product_id=product_id,
        candidates=[
            BatchCandidate(b1, "L-001", date(2025, 1, 1), 1, 10),
            BatchCandidate(b2, "L-002", date(2025, 6, 1), 2, 20),
        ],
        required=15,
    )
    # plan.allocations -> (L-001 x10, L-002 x5), plan.shortfall -> 0
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date
from uuid import UUID

from dispatch_engines.tracer import traced_engine
from dispatch_kernel.logging_config import get_logger

logger = get_logger("engines.allocation")


@dataclass(frozen=True)
class BatchCandidate:
    """A batch that may be consumed, as seen at planning time."""

    batch_id: UUID
    batch_code: str
    expiration_date: date
    receipt_sequence: int
    quantity_current: int

    @property
    def fifo_key(self) -> tuple[date, int]:
        return (self.expiration_date, self.receipt_sequence)


@dataclass(frozen=True)
class PlannedAllocation:
    """Take ``quantity`` base units from one batch."""

    batch_id: UUID
    batch_code: str
    quantity: int

    def __post_init__(self) -> None:
        if self.quantity <= 0:
            raise ValueError("Allocation quantity must be positive")


@dataclass(frozen=True)
class AllocationPlan:
    """
    Result of planning one product demand.

    Guarantees:
        - ``allocated + shortfall == requested``.
    """

    product_id: UUID
    requested: int
    allocations: tuple[PlannedAllocation, ...]
    shortfall: int

    @property
    def allocated(self) -> int:
        return sum(a.quantity for a in self.allocations)

    @property
    def is_complete(self) -> bool:
        return self.shortfall == 0


@dataclass(frozen=True)
class ReturnPlan:
    """
    Split of a returned quantity onto previously allocated batches.

    ``unbacked`` counts returned base units that exceed what the batches
    supplied (possible when the original allocation ran short).
    """

    returns: tuple[PlannedAllocation, ...]
    unbacked: int

    @property
    def restocked(self) -> int:
        return sum(r.quantity for r in self.returns)


def fifo_order(candidates: Sequence[BatchCandidate]) -> list[BatchCandidate]:
    """Candidates with stock, earliest expiration first, receipt order on ties."""
    return sorted(
        (c for c in candidates if c.quantity_current > 0),
        key=lambda c: c.fifo_key,
    )


@traced_engine(
    "fifo_allocation", "1.0", fingerprint_fields=("product_id", "candidates", "required")
)
def plan_fifo_allocation(
    *,
    product_id: UUID,
    candidates: Sequence[BatchCandidate],
    required: int,
) -> AllocationPlan:
    """
    Plan greedy FIFO-by-expiration consumption of ``required`` base units.

    Each batch in order contributes ``min(remaining, quantity_current)``
    until the demand is met or the batches are exhausted; what is left is
    the shortfall.  Whether a shortfall is acceptable is the caller's call.
    """
    if required < 0:
        raise ValueError(f"Required quantity cannot be negative: {required}")

    remaining = required
    allocations: list[PlannedAllocation] = []

    for candidate in fifo_order(candidates):
        if remaining == 0:
            break
        take = min(remaining, candidate.quantity_current)
        allocations.append(
            PlannedAllocation(
                batch_id=candidate.batch_id,
                batch_code=candidate.batch_code,
                quantity=take,
            )
        )
        remaining -= take

    if remaining > 0:
        logger.info(
            "fifo_allocation_shortfall",
            extra={
                "product_id": str(product_id),
                "requested": required,
                "shortfall": remaining,
            },
        )

    return AllocationPlan(
        product_id=product_id,
        requested=required,
        allocations=tuple(allocations),
        shortfall=remaining,
    )


def plan_return(
    allocations: Sequence[PlannedAllocation],
    returned: int,
) -> ReturnPlan:
    """
    Put ``returned`` base units back onto the batches they came from.

    Walks the allocations in reverse consumption order (the last batch
    touched is refilled first), never returning more to a batch than was
    taken from it.
    """
    if returned < 0:
        raise ValueError(f"Returned quantity cannot be negative: {returned}")

    remaining = returned
    returns: list[PlannedAllocation] = []
    for allocation in reversed(allocations):
        if remaining == 0:
            break
        give = min(remaining, allocation.quantity)
        returns.append(
            PlannedAllocation(
                batch_id=allocation.batch_id,
                batch_code=allocation.batch_code,
                quantity=give,
            )
        )
        remaining -= give

    return ReturnPlan(returns=tuple(returns), unbacked=remaining)
