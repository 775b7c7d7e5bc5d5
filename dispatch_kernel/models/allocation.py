"""
Module: dispatch_kernel.models.allocation
Responsibility: ORM persistence for batch allocations.  An allocation set
    groups every (batch, quantity) pair consumed for one order or sale line;
    for a combo line it spans several products.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - BatchAllocationModel rows are immutable once flushed (ORM listener).
    - An allocation set is released at most once.  released_at is the
      explicit released-state marker; it may go from NULL to a timestamp
      and never back (ORM listener).
    - A correction never edits allocations in place: a partial return
      releases the old set and creates a replacement set that
      ``supersedes_id`` the old one.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from dispatch_kernel.db.base import Base, TrackedBase, UUIDString


class AllocationSetModel(TrackedBase):
    """
    The allocations owned by one order or sale line.

    Order lines hand their set over to the sale line created from them, so
    stock is allocated once per line for the whole order-to-sale lifecycle.
    """

    __tablename__ = "allocation_sets"

    __table_args__ = (
        Index("idx_allocation_set_reference", "reference"),
    )

    # Document the allocation was made for, e.g. PED-00000001 or F001-00000042
    reference: Mapped[str] = mapped_column(String(100), nullable=False)

    released_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    release_reason: Mapped[str | None] = mapped_column(String(50), nullable=True)

    supersedes_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("allocation_sets.id"),
        nullable=True,
    )

    allocations: Mapped[list["BatchAllocationModel"]] = relationship(
        back_populates="allocation_set",
        order_by="BatchAllocationModel.position",
    )

    @property
    def is_released(self) -> bool:
        return self.released_at is not None

    @property
    def total_quantity(self) -> int:
        return sum(a.quantity for a in self.allocations)

    def quantity_for_product(self, product_id: UUID) -> int:
        return sum(a.quantity for a in self.allocations if a.product_id == product_id)


class BatchAllocationModel(Base):
    """
    Quantity of one batch consumed for one line.

    Contract:
        Immutable once flushed.  batch_code is copied at allocation time so
        the record reads on its own.
    """

    __tablename__ = "batch_allocations"

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_batch_allocation_quantity"),
        Index("idx_batch_allocation_batch", "batch_id"),
        Index("idx_batch_allocation_set", "allocation_set_id"),
    )

    allocation_set_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("allocation_sets.id"),
        nullable=False,
    )

    batch_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("batches.id"),
        nullable=False,
    )

    batch_code: Mapped[str] = mapped_column(String(50), nullable=False)

    product_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("products.id"),
        nullable=False,
    )

    quantity: Mapped[int] = mapped_column(nullable=False)

    # Allocation order within the set (FIFO order of consumption)
    position: Mapped[int] = mapped_column(nullable=False)

    allocation_set: Mapped["AllocationSetModel"] = relationship(back_populates="allocations")

    def __repr__(self) -> str:
        return f"<BatchAllocation {self.batch_code} x{self.quantity}>"
