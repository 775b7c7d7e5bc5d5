"""
Module: dispatch_kernel.models.catalog
Responsibility: ORM persistence for the product catalog, the combo catalog
    and the client registry.  These are the external lookups the planners
    read through the session.
Architecture position: Kernel > Models.  May import from db/ and domain/ only.

Invariants enforced:
    - package_content >= 1 (a package holds at least one base unit).
    - Combo components are snapshotted onto order and sale lines at
      planning time; editing a combo never alters historical documents.
    - Client records only backfill missing snapshot fields; they never
      override an order's snapshot.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from dispatch_kernel.db.base import Base, TrackedBase, UUIDString
from dispatch_kernel.domain.values import UnitType


class Product(TrackedBase):
    """
    Catalog product counted in base units.

    Guarantees:
        - sku is unique (uq_product_sku).
        - package_content is the conversion factor from package to base unit.
        - last_cost is the base-unit cost of the most recent non-bonus receipt.
    """

    __tablename__ = "products"

    __table_args__ = (
        UniqueConstraint("sku", name="uq_product_sku"),
        CheckConstraint("package_content >= 1", name="ck_product_package_content"),
        Index("idx_product_active", "is_active"),
    )

    sku: Mapped[str] = mapped_column(String(50), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    # Presentation labels, e.g. BOTELLA / CAJA
    unit_label: Mapped[str] = mapped_column(String(50), nullable=False, default="UNIDAD")
    package_label: Mapped[str | None] = mapped_column(String(50), nullable=True)

    package_content: Mapped[int] = mapped_column(nullable=False, default=1)

    price_unit: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    price_package: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    last_cost: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def price_for(self, unit_type: UnitType | str) -> Decimal:
        """List price for one presentation unit."""
        if UnitType(unit_type) == UnitType.PKG:
            return self.price_package
        return self.price_unit

    def __repr__(self) -> str:
        return f"<Product {self.sku}: {self.name}>"


class Combo(TrackedBase):
    """A priced bundle of component products."""

    __tablename__ = "combos"

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    price: Mapped[Decimal] = mapped_column(nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    items: Mapped[list["ComboItem"]] = relationship(
        back_populates="combo",
        cascade="all, delete-orphan",
        order_by="ComboItem.position",
    )

    def __repr__(self) -> str:
        return f"<Combo {self.name}: {len(self.items)} components>"


class ComboItem(Base):
    """One component of a combo: quantity of a product in UND or PKG."""

    __tablename__ = "combo_items"

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_combo_item_quantity"),
    )

    combo_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("combos.id"),
        nullable=False,
    )

    product_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("products.id"),
        nullable=False,
    )

    quantity: Mapped[int] = mapped_column(nullable=False)

    unit_type: Mapped[UnitType] = mapped_column(
        String(10),
        nullable=False,
        default=UnitType.UND,
    )

    position: Mapped[int] = mapped_column(nullable=False, default=0)

    combo: Mapped["Combo"] = relationship(back_populates="items")


class Client(TrackedBase):
    """
    Client registry entry.

    doc_number is an 11-digit RUC for companies or an 8-digit DNI for
    people; the length decides FACTURA vs BOLETA at order time.
    """

    __tablename__ = "clients"

    __table_args__ = (
        UniqueConstraint("code", name="uq_client_code"),
        Index("idx_client_doc_number", "doc_number"),
    )

    code: Mapped[str] = mapped_column(String(50), nullable=False)

    doc_type: Mapped[str] = mapped_column(String(10), nullable=False)

    doc_number: Mapped[str] = mapped_column(String(20), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    address: Mapped[str | None] = mapped_column(String(500), nullable=True)

    def __repr__(self) -> str:
        return f"<Client {self.code}: {self.name}>"
