"""
Module: dispatch_kernel.selectors.inventory_selector
Responsibility: Read-only stock queries: the kardex of a product, stock on
    hand, batches in FIFO order and the live allocations of a set.
Architecture position: Kernel > Selectors.  May import from models/ and
    selectors/base.py.

Invariants enforced:
    - Kardex lines are returned in "stock_movement" sequence order, never by
      wall-clock time.
    - stock_on_hand is the sum of batch quantity_current; it never includes
      units returned without a backing batch.
"""

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select

from dispatch_kernel.db.base import enum_value
from dispatch_kernel.models.allocation import AllocationSetModel, BatchAllocationModel
from dispatch_kernel.models.batch import BatchModel
from dispatch_kernel.models.movements import MovementDirection, StockMovementModel
from dispatch_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class KardexLine:
    """One stock movement with the running balance after it."""

    sequence: int
    batch_code: str | None
    direction: str
    reason: str
    quantity: int
    balance: int
    document_ref: str | None
    occurred_at: datetime


@dataclass(frozen=True)
class BatchInfo:
    batch_id: UUID
    code: str
    quantity_initial: int
    quantity_current: int
    cost: Decimal
    expiration_date: date
    receipt_sequence: int


@dataclass(frozen=True)
class AllocationInfo:
    batch_id: UUID
    batch_code: str
    product_id: UUID
    quantity: int


class InventorySelector(BaseSelector):
    """Read side of the stock ledger."""

    def kardex(self, product_id: UUID) -> list[KardexLine]:
        """
        Movements of a product, oldest first, with a running balance.

        The balance counts every movement, including returns recorded
        without a batch.
        """
        rows = self.session.execute(
            select(StockMovementModel)
            .where(StockMovementModel.product_id == product_id)
            .order_by(StockMovementModel.sequence)
        ).scalars()

        lines: list[KardexLine] = []
        balance = 0
        for row in rows:
            direction = enum_value(row.direction)
            balance += row.quantity if direction == MovementDirection.IN.value else -row.quantity
            lines.append(
                KardexLine(
                    sequence=row.sequence,
                    batch_code=row.batch_code,
                    direction=direction,
                    reason=enum_value(row.reason),
                    quantity=row.quantity,
                    balance=balance,
                    document_ref=row.document_ref,
                    occurred_at=row.occurred_at,
                )
            )
        return lines

    def stock_on_hand(self, product_id: UUID) -> int:
        total = self.session.execute(
            select(func.coalesce(func.sum(BatchModel.quantity_current), 0)).where(
                BatchModel.product_id == product_id
            )
        ).scalar_one()
        return int(total)

    def batches_for_product(
        self,
        product_id: UUID,
        include_empty: bool = False,
    ) -> list[BatchInfo]:
        """Batches in FIFO order (expiration, then receipt)."""
        stmt = select(BatchModel).where(BatchModel.product_id == product_id)
        if not include_empty:
            stmt = stmt.where(BatchModel.quantity_current > 0)
        stmt = stmt.order_by(BatchModel.expiration_date, BatchModel.receipt_sequence)

        return [
            BatchInfo(
                batch_id=b.id,
                code=b.code,
                quantity_initial=b.quantity_initial,
                quantity_current=b.quantity_current,
                cost=b.cost,
                expiration_date=b.expiration_date,
                receipt_sequence=b.receipt_sequence,
            )
            for b in self.session.execute(stmt).scalars()
        ]

    def allocations(self, allocation_set_id: UUID) -> list[AllocationInfo]:
        allocation_set = self.session.get(AllocationSetModel, allocation_set_id)
        if allocation_set is None:
            return []
        return [
            AllocationInfo(
                batch_id=a.batch_id,
                batch_code=a.batch_code,
                product_id=a.product_id,
                quantity=a.quantity,
            )
            for a in allocation_set.allocations
        ]

    def outstanding_allocated(self, batch_id: UUID) -> int:
        """Units of a batch held by allocation sets that are not released."""
        total = self.session.execute(
            select(func.coalesce(func.sum(BatchAllocationModel.quantity), 0))
            .join(
                AllocationSetModel,
                AllocationSetModel.id == BatchAllocationModel.allocation_set_id,
            )
            .where(
                BatchAllocationModel.batch_id == batch_id,
                AllocationSetModel.released_at.is_(None),
            )
        ).scalar_one()
        return int(total)
