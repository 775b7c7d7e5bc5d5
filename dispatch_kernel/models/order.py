"""
Module: dispatch_kernel.models.order
Responsibility: ORM persistence for field orders taken by sellers, before
    they are processed into numbered sales.
Architecture position: Kernel > Models.  May import from db/ and domain/ only.

Invariants enforced:
    - Client name, document type, document number and address are
      snapshotted at order creation.  The suggested document type is
      derived from that snapshot and never from the live client record.
    - Lines hold an allocation set; combo lines also hold the combo
      component snapshot taken at planning time.
    - Status moves pending -> processed or pending -> rejected, never back.
"""

from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, Boolean, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from dispatch_kernel.db.base import Base, TrackedBase, UUIDString, enum_value
from dispatch_kernel.domain.values import DocumentType, PaymentMethod, UnitType


class OrderStatus(str, Enum):
    PENDING = "pending"
    PROCESSED = "processed"
    REJECTED = "rejected"


class OrderModel(TrackedBase):
    """
    A field order with its client snapshot.

    Guarantees:
        - code is unique (PED-00000001 style).
        - created_at decides the numbering order during batch processing.
    """

    __tablename__ = "orders"

    __table_args__ = (
        UniqueConstraint("code", name="uq_order_code"),
        Index("idx_order_status_created", "status", "created_at"),
    )

    code: Mapped[str] = mapped_column(String(20), nullable=False)

    seller_id: Mapped[str | None] = mapped_column(String(50), nullable=True)

    client_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("clients.id"),
        nullable=True,
    )

    # Snapshot
    client_name: Mapped[str] = mapped_column(String(255), nullable=False)
    client_doc_type: Mapped[str] = mapped_column(String(10), nullable=False)
    client_doc_number: Mapped[str] = mapped_column(String(20), nullable=False)
    client_address: Mapped[str | None] = mapped_column(String(500), nullable=True)

    suggested_document_type: Mapped[DocumentType] = mapped_column(String(20), nullable=False)

    payment_method: Mapped[PaymentMethod] = mapped_column(String(10), nullable=False)

    delivery_date: Mapped[date | None] = mapped_column(nullable=True)

    total: Mapped[Decimal] = mapped_column(nullable=False)

    status: Mapped[OrderStatus] = mapped_column(
        String(20),
        nullable=False,
        default=OrderStatus.PENDING,
    )

    items: Mapped[list["OrderItemModel"]] = relationship(
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItemModel.position",
    )

    @property
    def is_pending(self) -> bool:
        return self.status == OrderStatus.PENDING

    def __repr__(self) -> str:
        return f"<Order {self.code}: {enum_value(self.status)} {self.total}>"


class OrderItemModel(Base):
    """
    One order line: a plain product (UND/PKG) or a combo (COMBO).

    quantity_base is the base-unit demand for plain products and the
    combo count for combo lines.  shortfall records base units that could
    not be allocated when the line was planned leniently.
    """

    __tablename__ = "order_items"

    order_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("orders.id"),
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

    unit_type: Mapped[UnitType] = mapped_column(String(10), nullable=False)

    quantity: Mapped[int] = mapped_column(nullable=False)

    quantity_base: Mapped[int] = mapped_column(nullable=False)

    unit_price: Mapped[Decimal] = mapped_column(nullable=False)

    total_price: Mapped[Decimal] = mapped_column(nullable=False)

    is_promo: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    allocation_set_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("allocation_sets.id"),
        nullable=True,
    )

    shortfall: Mapped[int] = mapped_column(nullable=False, default=0)

    combo_snapshot: Mapped[list | None] = mapped_column(JSON, nullable=True)

    order: Mapped["OrderModel"] = relationship(back_populates="items")

    allocation_set: Mapped["AllocationSetModel | None"] = relationship()
