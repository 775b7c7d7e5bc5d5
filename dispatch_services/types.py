"""
Command inputs of the dispatch services.

Each input is a frozen dataclass with its required fields first and its
optional fields defaulted; values are validated at construction so a
service never sees a half-formed command.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from dispatch_kernel.domain.values import PaymentMethod, UnitType


@dataclass(frozen=True)
class LineInput:
    """
    One requested line.

    unit_price None means the catalog price (product price for the unit
    type, or the combo price).  Promotional lines are free.
    """

    item_id: UUID
    quantity: int
    unit_type: UnitType = UnitType.UND
    unit_price: Decimal | None = None
    is_promo: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "unit_type", UnitType(self.unit_type))
        if self.quantity <= 0:
            raise ValueError(f"Line quantity must be positive, got {self.quantity}")
        if self.unit_price is not None and self.unit_price < 0:
            raise ValueError("Unit price cannot be negative")


@dataclass(frozen=True)
class ClientSnapshotInput:
    """
    Client data as captured on the document.

    Blank fields are backfilled from the client registry when client_id is
    given; filled fields are never overridden.
    """

    client_id: UUID | None = None
    name: str = ""
    doc_type: str = ""
    doc_number: str = ""
    address: str | None = None


@dataclass(frozen=True)
class OrderInput:
    client: ClientSnapshotInput
    payment_method: PaymentMethod
    lines: tuple[LineInput, ...]
    seller_id: str | None = None
    delivery_date: date | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "payment_method", PaymentMethod(self.payment_method))
        object.__setattr__(self, "lines", tuple(self.lines))
        if not self.lines:
            raise ValueError("An order needs at least one line")


@dataclass(frozen=True)
class SaleInput:
    """A counter sale, numbered and allocated immediately."""

    client: ClientSnapshotInput
    payment_method: PaymentMethod
    lines: tuple[LineInput, ...]
    seller_id: str | None = None
    observation: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "payment_method", PaymentMethod(self.payment_method))
        object.__setattr__(self, "lines", tuple(self.lines))
        if not self.lines:
            raise ValueError("A sale needs at least one line")
