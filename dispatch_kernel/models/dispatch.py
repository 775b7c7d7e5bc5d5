"""
Module: dispatch_kernel.models.dispatch
Responsibility: ORM persistence for dispatch sheets (route manifests) and
    the sales assigned to them.
Architecture position: Kernel > Models.  May import from db/ and domain/ only.

Invariants enforced:
    - A completed sheet is terminal: it has exactly one DispatchLiquidation
      and is never liquidated again (checked under a row lock by the
      liquidation service).
    - A sale appears at most once per sheet.
"""

from datetime import date, datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import DateTime, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from dispatch_kernel.db.base import Base, TrackedBase, UUIDString, enum_value
from dispatch_kernel.domain.values import SunatStatus


class DispatchSheetStatus(str, Enum):
    PENDING = "pending"
    IN_TRANSIT = "in_transit"
    COMPLETED = "completed"


class DispatchSheetModel(TrackedBase):
    """A route manifest grouping the sales delivered on one trip."""

    __tablename__ = "dispatch_sheets"

    __table_args__ = (
        UniqueConstraint("code", name="uq_dispatch_sheet_code"),
    )

    # HR-00000001 style
    code: Mapped[str] = mapped_column(String(20), nullable=False)

    vehicle_id: Mapped[str] = mapped_column(String(50), nullable=False)

    status: Mapped[DispatchSheetStatus] = mapped_column(
        String(20),
        nullable=False,
        default=DispatchSheetStatus.PENDING,
    )

    dispatch_date: Mapped[date] = mapped_column(nullable=False)

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

    sale_links: Mapped[list["DispatchSheetSaleModel"]] = relationship(
        back_populates="dispatch_sheet",
        cascade="all, delete-orphan",
        order_by="DispatchSheetSaleModel.position",
    )

    @property
    def sale_ids(self) -> list[UUID]:
        return [link.sale_id for link in self.sale_links]

    @property
    def is_completed(self) -> bool:
        return self.status == DispatchSheetStatus.COMPLETED

    def __repr__(self) -> str:
        return f"<DispatchSheet {self.code}: {enum_value(self.status)}>"


class DispatchSheetSaleModel(Base):
    """Membership of a sale on a dispatch sheet."""

    __tablename__ = "dispatch_sheet_sales"

    __table_args__ = (
        UniqueConstraint("dispatch_sheet_id", "sale_id", name="uq_dispatch_sheet_sale"),
    )

    dispatch_sheet_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("dispatch_sheets.id"),
        nullable=False,
    )

    sale_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("sales.id"),
        nullable=False,
    )

    position: Mapped[int] = mapped_column(nullable=False)

    dispatch_sheet: Mapped["DispatchSheetModel"] = relationship(back_populates="sale_links")
