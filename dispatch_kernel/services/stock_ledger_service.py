"""
StockLedgerService -- per-batch stock: receipt, FIFO allocation, release
and returns.

Responsibility:
    The only writer of BatchModel.quantity_current.  Receives batches,
    applies FIFO allocation plans from dispatch_engines.allocation, gives
    stock back on release (order revised/rejected, sale voided) and on
    partial returns, and writes one kardex line per batch movement.

Architecture position:
    Kernel > Services -- imperative shell around the pure allocation
    planner.

Invariants enforced:
    - Stock conservation: 0 <= quantity_current <= quantity_initial, and
      quantity_current == quantity_initial - outstanding allocations.
      Every change goes through an allocation set.
    - Allocation idempotency: an allocation set is released at most once;
      a second release raises AllocationAlreadyReleasedError and leaves
      every batch untouched.
    - Batches are locked (``SELECT ... FOR UPDATE``) before they are read
      for planning or mutated.
    - A partial return never edits allocations in place: the old set is
      released and a replacement set supersedes it.

Failure modes:
    - ProductNotFoundError: allocation or receipt for an unknown product.
    - InsufficientStockError: strict allocation with a shortfall; raised
      before any batch is touched.
    - AllocationAlreadyReleasedError: release/return on a released set.
    - ValueError: non-positive receipt quantity, negative demand.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from dispatch_engines.allocation import (
    AllocationPlan,
    BatchCandidate,
    PlannedAllocation,
    plan_fifo_allocation,
    plan_return,
)
from dispatch_kernel.domain.clock import Clock
from dispatch_kernel.exceptions import (
    AllocationAlreadyReleasedError,
    InsufficientStockError,
    ProductNotFoundError,
)
from dispatch_kernel.logging_config import get_logger
from dispatch_kernel.models.allocation import AllocationSetModel, BatchAllocationModel
from dispatch_kernel.models.batch import BatchModel
from dispatch_kernel.models.catalog import Product
from dispatch_kernel.models.movements import (
    MovementDirection,
    MovementReason,
    StockMovementModel,
)
from dispatch_kernel.services.base import BaseService
from dispatch_kernel.services.sequence_service import SequenceService

logger = get_logger("services.stock_ledger")


@dataclass(frozen=True)
class ReturnOutcome:
    """What a partial return did to the ledger."""

    replacement_set_id: UUID
    restocked: int
    unbacked: int


class StockLedgerService(BaseService):
    """
    Batch ledger service.

    Contract:
        Every method flushes within the caller's transaction.  Allocation
        sets are owned by order and sale lines; callers pass the set they
        own.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
        - Does NOT decide strict vs lenient allocation; callers pass it.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session, clock)
        self._sequences = SequenceService(session)

    # ------------------------------------------------------------------
    # Kardex
    # ------------------------------------------------------------------

    def _record_movement(
        self,
        *,
        product_id: UUID,
        batch: BatchModel | None,
        direction: MovementDirection,
        reason: MovementReason,
        quantity: int,
        document_ref: str | None,
    ) -> StockMovementModel:
        movement = StockMovementModel(
            sequence=self._sequences.next_value(SequenceService.STOCK_MOVEMENT),
            product_id=product_id,
            batch_id=batch.id if batch is not None else None,
            batch_code=batch.code if batch is not None else None,
            direction=direction.value,
            reason=reason.value,
            quantity=quantity,
            document_ref=document_ref,
            occurred_at=self.clock.now(),
        )
        self.session.add(movement)
        return movement

    # ------------------------------------------------------------------
    # Receipt
    # ------------------------------------------------------------------

    def _require_product(self, product_id: UUID) -> Product:
        product = self.session.get(Product, product_id)
        if product is None:
            raise ProductNotFoundError(str(product_id))
        return product

    def receive_batch(
        self,
        *,
        product_id: UUID,
        code: str,
        quantity: int,
        cost: Decimal,
        expiration_date: date,
        purchase_ref: str | None = None,
        is_bonus: bool = False,
    ) -> BatchModel:
        """
        Register a received lot.

        The product's last_cost follows the receipt unless the line is a
        bonus (free goods carry no cost signal).
        """
        if quantity <= 0:
            raise ValueError(f"Received quantity must be positive: {quantity}")
        product = self._require_product(product_id)

        batch = BatchModel(
            product_id=product_id,
            code=code,
            quantity_initial=quantity,
            quantity_current=quantity,
            cost=cost,
            expiration_date=expiration_date,
            receipt_sequence=self._sequences.next_value(SequenceService.BATCH_RECEIPT),
            purchase_ref=purchase_ref,
        )
        self.session.add(batch)
        self.session.flush()

        if not is_bonus:
            product.last_cost = cost

        self._record_movement(
            product_id=product_id,
            batch=batch,
            direction=MovementDirection.IN,
            reason=MovementReason.PURCHASE,
            quantity=quantity,
            document_ref=purchase_ref,
        )
        self.session.flush()

        logger.info(
            "batch_received",
            extra={
                "product_id": str(product_id),
                "batch_code": code,
                "quantity": quantity,
                "expiration_date": expiration_date.isoformat(),
                "receipt_sequence": batch.receipt_sequence,
                "is_bonus": is_bonus,
            },
        )
        return batch

    # ------------------------------------------------------------------
    # Allocation
    # ------------------------------------------------------------------

    def open_allocation_set(
        self,
        reference: str,
        supersedes_id: UUID | None = None,
    ) -> AllocationSetModel:
        allocation_set = AllocationSetModel(reference=reference, supersedes_id=supersedes_id)
        self.session.add(allocation_set)
        self.session.flush()
        return allocation_set

    def _locked_candidates(self, product_id: UUID) -> list[BatchModel]:
        return list(
            self.session.execute(
                select(BatchModel)
                .where(
                    BatchModel.product_id == product_id,
                    BatchModel.quantity_current > 0,
                )
                .order_by(BatchModel.expiration_date, BatchModel.receipt_sequence)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalars()
        )

    def _locked_batches(self, batch_ids: Iterable[UUID]) -> dict[UUID, BatchModel]:
        ids = list(set(batch_ids))
        if not ids:
            return {}
        rows = self.session.execute(
            select(BatchModel)
            .where(BatchModel.id.in_(ids))
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalars()
        return {row.id: row for row in rows}

    def _append_allocation(
        self,
        allocation_set: AllocationSetModel,
        *,
        batch_id: UUID,
        batch_code: str,
        product_id: UUID,
        quantity: int,
    ) -> BatchAllocationModel:
        allocation = BatchAllocationModel(
            allocation_set_id=allocation_set.id,
            batch_id=batch_id,
            batch_code=batch_code,
            product_id=product_id,
            quantity=quantity,
            position=len(allocation_set.allocations),
        )
        allocation_set.allocations.append(allocation)
        self.session.add(allocation)
        return allocation

    def allocate(
        self,
        allocation_set: AllocationSetModel,
        product_id: UUID,
        required: int,
        *,
        strict: bool = False,
        reason: MovementReason = MovementReason.ORDER,
    ) -> AllocationPlan:
        """
        Consume ``required`` base units FIFO-by-expiration into the set.

        Lenient mode accepts a partial allocation and returns the
        shortfall on the plan; strict mode raises InsufficientStockError
        without touching any batch.
        """
        if allocation_set.is_released:
            raise AllocationAlreadyReleasedError(str(allocation_set.id))
        self._require_product(product_id)

        batches = self._locked_candidates(product_id) if required > 0 else []
        plan = plan_fifo_allocation(
            product_id=product_id,
            candidates=[
                BatchCandidate(
                    batch_id=b.id,
                    batch_code=b.code,
                    expiration_date=b.expiration_date,
                    receipt_sequence=b.receipt_sequence,
                    quantity_current=b.quantity_current,
                )
                for b in batches
            ],
            required=required,
        )

        if plan.shortfall and strict:
            raise InsufficientStockError(str(product_id), required, plan.allocated)

        by_id = {b.id: b for b in batches}
        for planned in plan.allocations:
            batch = by_id[planned.batch_id]
            batch.quantity_current -= planned.quantity
            self._append_allocation(
                allocation_set,
                batch_id=batch.id,
                batch_code=batch.code,
                product_id=product_id,
                quantity=planned.quantity,
            )
            self._record_movement(
                product_id=product_id,
                batch=batch,
                direction=MovementDirection.OUT,
                reason=reason,
                quantity=planned.quantity,
                document_ref=allocation_set.reference,
            )
        self.session.flush()

        if plan.shortfall:
            logger.warning(
                "stock_allocation_partial",
                extra={
                    "product_id": str(product_id),
                    "allocation_set_id": str(allocation_set.id),
                    "requested": required,
                    "allocated": plan.allocated,
                    "shortfall": plan.shortfall,
                },
            )
        else:
            logger.info(
                "stock_allocated",
                extra={
                    "product_id": str(product_id),
                    "allocation_set_id": str(allocation_set.id),
                    "requested": required,
                    "batches": len(plan.allocations),
                },
            )
        return plan

    # ------------------------------------------------------------------
    # Release and returns
    # ------------------------------------------------------------------

    def _mark_released(self, allocation_set: AllocationSetModel, reason: MovementReason) -> None:
        allocation_set.released_at = self.clock.now()
        allocation_set.release_reason = reason.value

    def release(
        self,
        allocation_set: AllocationSetModel,
        *,
        reason: MovementReason = MovementReason.RELEASE,
        document_ref: str | None = None,
    ) -> int:
        """
        Give every allocation of the set back to its batch.

        Returns the number of base units restored.

        Raises:
            AllocationAlreadyReleasedError: If the set was released before.
        """
        if allocation_set.is_released:
            logger.warning(
                "allocation_release_rejected",
                extra={"allocation_set_id": str(allocation_set.id)},
            )
            raise AllocationAlreadyReleasedError(str(allocation_set.id))

        batches = self._locked_batches(a.batch_id for a in allocation_set.allocations)
        restored = 0
        for allocation in allocation_set.allocations:
            batch = batches[allocation.batch_id]
            batch.quantity_current += allocation.quantity
            restored += allocation.quantity
            self._record_movement(
                product_id=allocation.product_id,
                batch=batch,
                direction=MovementDirection.IN,
                reason=reason,
                quantity=allocation.quantity,
                document_ref=document_ref or allocation_set.reference,
            )

        self._mark_released(allocation_set, reason)
        self.session.flush()

        logger.info(
            "allocation_set_released",
            extra={
                "allocation_set_id": str(allocation_set.id),
                "reason": reason.value,
                "restored": restored,
            },
        )
        return restored

    def record_unbacked_return(
        self,
        product_id: UUID,
        quantity: int,
        *,
        reason: MovementReason,
        document_ref: str | None,
    ) -> None:
        """
        Kardex entry for returned units no batch supplied.

        Happens when the original allocation ran short; batches are left
        alone so quantity_current never exceeds quantity_initial.
        """
        if quantity <= 0:
            return
        self._record_movement(
            product_id=product_id,
            batch=None,
            direction=MovementDirection.IN,
            reason=reason,
            quantity=quantity,
            document_ref=document_ref,
        )
        self.session.flush()
        logger.warning(
            "stock_return_unbacked",
            extra={
                "product_id": str(product_id),
                "quantity": quantity,
                "reason": reason.value,
                "document_ref": document_ref,
            },
        )

    def return_stock(
        self,
        allocation_set: AllocationSetModel,
        product_quantities: Iterable[tuple[UUID, int]],
        *,
        reason: MovementReason = MovementReason.CREDIT_NOTE_RETURN,
        document_ref: str | None = None,
    ) -> ReturnOutcome:
        """
        Bring part of a set's stock back.

        Per product the returned units go back onto its batches in reverse
        allocation order, never more than a batch gave.  The old set is
        marked released and a replacement set holding what remains
        allocated supersedes it.
        """
        if allocation_set.is_released:
            raise AllocationAlreadyReleasedError(str(allocation_set.id))

        returned_by_product: dict[UUID, int] = {}
        for product_id, quantity in product_quantities:
            if quantity < 0:
                raise ValueError(f"Returned quantity cannot be negative: {quantity}")
            returned_by_product[product_id] = returned_by_product.get(product_id, 0) + quantity

        allocations = list(allocation_set.allocations)
        batches = self._locked_batches(a.batch_id for a in allocations)
        given_back: dict[UUID, int] = {}
        restocked = 0
        unbacked_total = 0

        for product_id, quantity in returned_by_product.items():
            owned = [a for a in allocations if a.product_id == product_id]
            # Keyed by allocation id: one batch may appear twice in a set
            plan = plan_return(
                [
                    PlannedAllocation(batch_id=a.id, batch_code=a.batch_code, quantity=a.quantity)
                    for a in owned
                ],
                quantity,
            )
            by_allocation = {a.id: a for a in owned}
            for planned in plan.returns:
                allocation = by_allocation[planned.batch_id]
                batch = batches[allocation.batch_id]
                batch.quantity_current += planned.quantity
                given_back[allocation.id] = planned.quantity
                restocked += planned.quantity
                self._record_movement(
                    product_id=product_id,
                    batch=batch,
                    direction=MovementDirection.IN,
                    reason=reason,
                    quantity=planned.quantity,
                    document_ref=document_ref,
                )
            if plan.unbacked:
                unbacked_total += plan.unbacked
                self.record_unbacked_return(
                    product_id,
                    plan.unbacked,
                    reason=reason,
                    document_ref=document_ref,
                )

        self._mark_released(allocation_set, reason)
        replacement = self.open_allocation_set(
            allocation_set.reference,
            supersedes_id=allocation_set.id,
        )
        for allocation in allocations:
            remaining = allocation.quantity - given_back.get(allocation.id, 0)
            if remaining > 0:
                self._append_allocation(
                    replacement,
                    batch_id=allocation.batch_id,
                    batch_code=allocation.batch_code,
                    product_id=allocation.product_id,
                    quantity=remaining,
                )
        self.session.flush()

        logger.info(
            "allocation_set_superseded",
            extra={
                "allocation_set_id": str(allocation_set.id),
                "replacement_set_id": str(replacement.id),
                "reason": reason.value,
                "restocked": restocked,
                "unbacked": unbacked_total,
            },
        )
        return ReturnOutcome(
            replacement_set_id=replacement.id,
            restocked=restocked,
            unbacked=unbacked_total,
        )
