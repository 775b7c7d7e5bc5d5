"""
Module: dispatch_kernel.models.sale
Responsibility: ORM persistence for numbered sales documents (FACTURA /
    BOLETA) and their lines.
Architecture position: Kernel > Models.  May import from db/ and domain/ only.

Invariants enforced:
    - (document_type, series, number) is unique: no two documents share a
      number within a series.
    - 0 <= balance <= total (check constraints); balance == 0 iff the sale
      is fully collected.
    - quantity_base on a line is the sold base-unit count used to validate
      and prorate returns.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from dispatch_kernel.db.base import Base, TrackedBase, UUIDString
from dispatch_kernel.domain.values import (
    CollectionStatus,
    DocumentType,
    PaymentMethod,
    PaymentStatus,
    SunatStatus,
    UnitType,
)


class SaleStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    CANCELED = "canceled"


class DispatchStatus(str, Enum):
    """Where the sale is in the delivery cycle."""

    PENDING = "pending"  # Not yet on a dispatch sheet
    ASSIGNED = "assigned"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    LIQUIDATED = "liquidated"


class SaleModel(TrackedBase):
    """
    A numbered sales document.

    Guarantees:
        - series/number come from DocumentNumberingService only.
        - origin_order_id links a sale produced by batch order processing
          back to its order.
    """

    __tablename__ = "sales"

    __table_args__ = (
        UniqueConstraint(
            "document_type", "series", "number", name="uq_sale_document_number"
        ),
        CheckConstraint("balance >= 0", name="ck_sale_balance_non_negative"),
        CheckConstraint("balance <= total", name="ck_sale_balance_within_total"),
        Index("idx_sale_dispatch_status", "dispatch_status"),
        Index("idx_sale_origin_order", "origin_order_id"),
    )

    document_type: Mapped[DocumentType] = mapped_column(String(20), nullable=False)

    series: Mapped[str] = mapped_column(String(10), nullable=False)

    # Zero-padded to eight digits
    number: Mapped[str] = mapped_column(String(8), nullable=False)

    payment_method: Mapped[PaymentMethod] = mapped_column(String(10), nullable=False)

    payment_status: Mapped[PaymentStatus] = mapped_column(String(10), nullable=False)

    collection_status: Mapped[CollectionStatus] = mapped_column(String(10), nullable=False)

    client_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("clients.id"),
        nullable=True,
    )

    client_name: Mapped[str] = mapped_column(String(255), nullable=False)

    # RUC or DNI as snapshotted on the order
    client_ruc: Mapped[str] = mapped_column(String(20), nullable=False)

    client_address: Mapped[str] = mapped_column(String(500), nullable=False, default="")

    subtotal: Mapped[Decimal] = mapped_column(nullable=False)

    igv: Mapped[Decimal] = mapped_column(nullable=False)

    total: Mapped[Decimal] = mapped_column(nullable=False)

    balance: Mapped[Decimal] = mapped_column(nullable=False)

    observation: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    status: Mapped[SaleStatus] = mapped_column(
        String(20),
        nullable=False,
        default=SaleStatus.COMPLETED,
    )

    dispatch_status: Mapped[DispatchStatus] = mapped_column(
        String(20),
        nullable=False,
        default=DispatchStatus.PENDING,
    )

    origin_order_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("orders.id"),
        nullable=True,
    )

    # SUNAT submission result, persisted as given by the gateway
    sunat_status: Mapped[SunatStatus] = mapped_column(
        String(20),
        nullable=False,
        default=SunatStatus.PENDING,
    )
    sunat_sent_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    sunat_message: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    items: Mapped[list["SaleItemModel"]] = relationship(
        back_populates="sale",
        cascade="all, delete-orphan",
        order_by="SaleItemModel.position",
    )

    @property
    def document_ref(self) -> str:
        """Printed reference, e.g. F001-00000042."""
        return f"{self.series}-{self.number}"

    def __repr__(self) -> str:
        return f"<Sale {self.document_ref}: {self.total} balance={self.balance}>"


class SaleItemModel(Base):
    """
    One sold line.

    For combo lines product_id is NULL, combo_id is set, quantity_base is the
    combo count and combo_snapshot lists the components as sold.
    """

    __tablename__ = "sale_items"

    __table_args__ = (
        CheckConstraint("quantity_base >= 0", name="ck_sale_item_quantity_base"),
    )

    sale_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("sales.id"),
        nullable=False,
    )

    position: Mapped[int] = mapped_column(nullable=False)

    product_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("products.id"),
        nullable=True,
    )

    combo_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("combos.id"),
        nullable=True,
    )

    product_sku: Mapped[str | None] = mapped_column(String(50), nullable=True)

    product_name: Mapped[str] = mapped_column(String(255), nullable=False)

    selected_unit: Mapped[UnitType] = mapped_column(String(10), nullable=False)

    quantity_presentation: Mapped[int] = mapped_column(nullable=False)

    quantity_base: Mapped[int] = mapped_column(nullable=False)

    unit_price: Mapped[Decimal] = mapped_column(nullable=False)

    total_price: Mapped[Decimal] = mapped_column(nullable=False)

    is_bonus: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    allocation_set_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("allocation_sets.id"),
        nullable=True,
    )

    combo_snapshot: Mapped[list | None] = mapped_column(JSON, nullable=True)

    sale: Mapped["SaleModel"] = relationship(back_populates="items")

    allocation_set: Mapped["AllocationSetModel | None"] = relationship()

    @property
    def is_combo(self) -> bool:
        return self.combo_id is not None
