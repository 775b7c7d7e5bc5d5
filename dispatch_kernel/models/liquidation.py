"""
Module: dispatch_kernel.models.liquidation
Responsibility: ORM persistence for finalized dispatch liquidations, their
    per-sale documents and the returned items of partial returns.
Architecture position: Kernel > Models.  May import from db/ and domain/ only.

Invariants enforced:
    - A DispatchLiquidation is created once per dispatch sheet
      (uq_liquidation_dispatch_sheet) and never updated or deleted; its
      documents and returned items are equally frozen (ORM listeners in
      db/immutability.py).
    - For every document, amount_collected + amount_credit + amount_void
      + amount_credit_note equals the sale total within 0.01.  Checked by
      the reconciler before the record is built.
    - Totals are the rounded sums of the document amounts.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from dispatch_kernel.db.base import Base, TrackedBase, UUIDString
from dispatch_kernel.domain.values import LiquidationAction, PaymentMethod


class DispatchLiquidationModel(TrackedBase):
    """The immutable closeout of one dispatch sheet."""

    __tablename__ = "dispatch_liquidations"

    __table_args__ = (
        UniqueConstraint("dispatch_sheet_id", name="uq_liquidation_dispatch_sheet"),
    )

    dispatch_sheet_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("dispatch_sheets.id"),
        nullable=False,
    )

    liquidation_date: Mapped[date] = mapped_column(nullable=False)

    total_cash_collected: Mapped[Decimal] = mapped_column(nullable=False)
    total_credit_receivable: Mapped[Decimal] = mapped_column(nullable=False)
    total_voided: Mapped[Decimal] = mapped_column(nullable=False)
    total_returns_value: Mapped[Decimal] = mapped_column(nullable=False)

    documents: Mapped[list["LiquidationDocumentModel"]] = relationship(
        back_populates="liquidation",
        cascade="all",
        order_by="LiquidationDocumentModel.position",
    )

    def __repr__(self) -> str:
        return (
            f"<DispatchLiquidation sheet={self.dispatch_sheet_id} "
            f"cash={self.total_cash_collected} credit={self.total_credit_receivable}>"
        )


class LiquidationDocumentModel(Base):
    """
    The finalized disposition of one sale.

    credit_note_series / credit_note_number are set only for PARTIAL_RETURN
    and carry the NOTA_CREDITO number issued at finalize.
    """

    __tablename__ = "liquidation_documents"

    __table_args__ = (
        UniqueConstraint("liquidation_id", "sale_id", name="uq_liquidation_document_sale"),
    )

    liquidation_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("dispatch_liquidations.id"),
        nullable=False,
    )

    sale_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("sales.id"),
        nullable=False,
    )

    position: Mapped[int] = mapped_column(nullable=False)

    action: Mapped[LiquidationAction] = mapped_column(String(20), nullable=False)

    amount_collected: Mapped[Decimal] = mapped_column(nullable=False)
    amount_credit: Mapped[Decimal] = mapped_column(nullable=False)
    amount_void: Mapped[Decimal] = mapped_column(nullable=False)
    amount_credit_note: Mapped[Decimal] = mapped_column(nullable=False)

    reason: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    balance_payment_method: Mapped[PaymentMethod | None] = mapped_column(
        String(10),
        nullable=True,
    )

    credit_note_series: Mapped[str | None] = mapped_column(String(10), nullable=True)
    credit_note_number: Mapped[str | None] = mapped_column(String(8), nullable=True)

    liquidation: Mapped["DispatchLiquidationModel"] = relationship(back_populates="documents")

    returned_items: Mapped[list["ReturnedItemModel"]] = relationship(
        back_populates="document",
        cascade="all",
        order_by="ReturnedItemModel.position",
    )

    @property
    def credit_note_ref(self) -> str | None:
        if self.credit_note_series is None:
            return None
        return f"{self.credit_note_series}-{self.credit_note_number}"


class ReturnedItemModel(Base):
    """Base units of one sale line brought back under a credit note."""

    __tablename__ = "liquidation_returned_items"

    document_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("liquidation_documents.id"),
        nullable=False,
    )

    sale_item_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("sale_items.id"),
        nullable=False,
    )

    position: Mapped[int] = mapped_column(nullable=False)

    product_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    product_name: Mapped[str] = mapped_column(String(255), nullable=False)

    boxes: Mapped[int] = mapped_column(nullable=False, default=0)
    units: Mapped[int] = mapped_column(nullable=False, default=0)

    quantity_base: Mapped[int] = mapped_column(nullable=False)

    unit_price: Mapped[Decimal] = mapped_column(nullable=False)

    total_refund: Mapped[Decimal] = mapped_column(nullable=False)

    document: Mapped["LiquidationDocumentModel"] = relationship(back_populates="returned_items")
