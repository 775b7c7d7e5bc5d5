"""
Module: dispatch_kernel.models.batch
Responsibility: ORM persistence for received stock batches (lots).  Each
    batch carries its own cost, expiration date and remaining quantity.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - 0 <= quantity_current <= quantity_initial (check constraints, and
      StockLedgerService before every mutation).
    - Batches are never deleted (ORM listener in db/immutability.py).
    - Only quantity_current changes after receipt; identity, cost and
      expiration are frozen (ORM listener).
    - (product_id, expiration_date, receipt_sequence) gives the FIFO order.
      receipt_sequence is allocated from the "batch_receipt" sequence and
      breaks expiration ties in receipt order.

Failure modes:
    - IntegrityError if a check constraint is violated at flush.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from dispatch_kernel.db.base import TrackedBase, UUIDString


class BatchModel(TrackedBase):
    """
    One received lot of a product.

    Guarantees:
        - receipt_sequence is unique and strictly increasing by receipt.
        - quantity_initial is fixed at receipt.

    Non-goals:
        - Does not store allocation history; see BatchAllocationModel and
          the kardex (StockMovementModel).
    """

    __tablename__ = "batches"

    __table_args__ = (
        UniqueConstraint("receipt_sequence", name="uq_batch_receipt_sequence"),
        CheckConstraint("quantity_initial >= 0", name="ck_batch_initial_non_negative"),
        CheckConstraint("quantity_current >= 0", name="ck_batch_current_non_negative"),
        CheckConstraint(
            "quantity_current <= quantity_initial",
            name="ck_batch_current_within_initial",
        ),
        # FIFO candidate scan
        Index(
            "idx_batch_product_fifo",
            "product_id",
            "expiration_date",
            "receipt_sequence",
        ),
    )

    product_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("products.id"),
        nullable=False,
    )

    code: Mapped[str] = mapped_column(String(50), nullable=False)

    quantity_initial: Mapped[int] = mapped_column(nullable=False)

    quantity_current: Mapped[int] = mapped_column(nullable=False)

    # Base-unit cost
    cost: Mapped[Decimal] = mapped_column(nullable=False)

    expiration_date: Mapped[date] = mapped_column(nullable=False)

    receipt_sequence: Mapped[int] = mapped_column(nullable=False)

    # Purchase document the batch came from, if any
    purchase_ref: Mapped[str | None] = mapped_column(String(100), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<Batch {self.code}: {self.quantity_current}/{self.quantity_initial} "
            f"exp={self.expiration_date}>"
        )
