"""
Module: dispatch_kernel.models.movements
Responsibility: Append-only ledgers of physical and cash movements: the
    kardex (stock movements per product and batch) and cash movements.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - Both tables are append-only (ORM listeners in db/immutability.py).
    - Every change to a batch's quantity_current has exactly one matching
      stock movement row.  A return with no backing allocation is recorded
      with batch_id NULL.
    - Kardex order is the "stock_movement" sequence, never wall-clock time.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from dispatch_kernel.db.base import Base, UUIDString


class MovementDirection(str, Enum):
    IN = "IN"
    OUT = "OUT"


class MovementReason(str, Enum):
    """Why stock moved."""

    PURCHASE = "PURCHASE"  # Batch received
    ORDER = "ORDER"  # Allocated to an order line
    SALE = "SALE"  # Allocated to a direct sale line
    RELEASE = "RELEASE"  # Order revised or rejected
    VOID_RETURN = "VOID_RETURN"  # Sale voided at liquidation
    CREDIT_NOTE_RETURN = "CREDIT_NOTE_RETURN"  # Partial return at liquidation


class CashMovementType(str, Enum):
    INCOME = "INCOME"
    EXPENSE = "EXPENSE"


class StockMovementModel(Base):
    """One kardex line."""

    __tablename__ = "stock_movements"

    __table_args__ = (
        UniqueConstraint("sequence", name="uq_stock_movement_sequence"),
        CheckConstraint("quantity > 0", name="ck_stock_movement_quantity"),
        Index("idx_stock_movement_product", "product_id", "sequence"),
        Index("idx_stock_movement_batch", "batch_id"),
    )

    sequence: Mapped[int] = mapped_column(nullable=False)

    product_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("products.id"),
        nullable=False,
    )

    batch_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("batches.id"),
        nullable=True,
    )

    batch_code: Mapped[str | None] = mapped_column(String(50), nullable=True)

    direction: Mapped[MovementDirection] = mapped_column(String(3), nullable=False)

    reason: Mapped[MovementReason] = mapped_column(String(30), nullable=False)

    quantity: Mapped[int] = mapped_column(nullable=False)

    # Document that caused the movement, e.g. F001-00000042 or NC01-00000046
    document_ref: Mapped[str | None] = mapped_column(String(100), nullable=True)

    occurred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )


class CashMovementModel(Base):
    """One cash-flow entry (collections, liquidation cash)."""

    __tablename__ = "cash_movements"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_cash_movement_amount"),
        Index("idx_cash_movement_reference", "reference_id"),
    )

    movement_type: Mapped[CashMovementType] = mapped_column(String(10), nullable=False)

    # VENTA, COBRANZA, LIQUIDACION ...
    category_name: Mapped[str] = mapped_column(String(50), nullable=False)

    description: Mapped[str] = mapped_column(String(500), nullable=False)

    amount: Mapped[Decimal] = mapped_column(nullable=False)

    occurred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    reference_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    user_id: Mapped[str | None] = mapped_column(String(50), nullable=True)
