"""
Module: dispatch_kernel.models.collection
Responsibility: ORM persistence for seller-reported collections awaiting
    back-office validation.
Architecture position: Kernel > Models.  May import from db/ only.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from dispatch_kernel.db.base import TrackedBase, UUIDString


class CollectionRecordStatus(str, Enum):
    PENDING_VALIDATION = "PENDING_VALIDATION"
    VALIDATED = "VALIDATED"
    REJECTED = "REJECTED"


class CollectionRecordModel(TrackedBase):
    """A payment a seller reports having collected against a sale."""

    __tablename__ = "collection_records"

    __table_args__ = (
        CheckConstraint("amount_reported > 0", name="ck_collection_amount"),
        Index("idx_collection_status", "status"),
        Index("idx_collection_sale", "sale_id"),
    )

    sale_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("sales.id"),
        nullable=False,
    )

    seller_id: Mapped[str] = mapped_column(String(50), nullable=False)

    client_name: Mapped[str] = mapped_column(String(255), nullable=False)

    # e.g. F001-00000203
    document_ref: Mapped[str] = mapped_column(String(30), nullable=False)

    amount_reported: Mapped[Decimal] = mapped_column(nullable=False)

    date_reported: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    status: Mapped[CollectionRecordStatus] = mapped_column(
        String(20),
        nullable=False,
        default=CollectionRecordStatus.PENDING_VALIDATION,
    )

    # CASH / TRANSFER / CHECK
    payment_method: Mapped[str | None] = mapped_column(String(10), nullable=True)

    validated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
