"""
Liquidation types -- frozen inputs and outputs of the liquidation reconciler.

Sales enter the reconciler as SaleSnapshot values built by the service from
the ORM; dispositions leave it as Disposition values the service persists on
finalize.  Nothing here touches the database.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from dispatch_kernel.domain.values import LiquidationAction, PaymentMethod


@dataclass(frozen=True)
class ComponentShare:
    """Base units of one component product per combo unit."""

    product_id: UUID
    base_units: int


@dataclass(frozen=True)
class SaleLine:
    """
    One sale line as the reconciler sees it.

    package_content converts returned boxes to base units (1 for combo
    lines, whose base unit is the combo).  components is empty for plain
    products.
    """

    sale_item_id: UUID
    product_id: UUID | None
    product_name: str
    quantity_base: int
    unit_price: Decimal
    total_price: Decimal
    package_content: int = 1
    components: tuple[ComponentShare, ...] = ()

    @property
    def is_combo(self) -> bool:
        return bool(self.components)


@dataclass(frozen=True)
class SaleSnapshot:
    """A sale on the dispatch sheet being liquidated."""

    sale_id: UUID
    document_ref: str
    total: Decimal
    payment_method: PaymentMethod
    lines: tuple[SaleLine, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "payment_method", PaymentMethod(self.payment_method))


@dataclass(frozen=True)
class ReturnEntry:
    """Operator entry for one line: whole boxes plus loose base units."""

    sale_item_id: UUID
    boxes: int = 0
    units: int = 0

    def __post_init__(self) -> None:
        if self.boxes < 0 or self.units < 0:
            raise ValueError("Returned boxes and units cannot be negative")

    @property
    def is_empty(self) -> bool:
        return self.boxes == 0 and self.units == 0


@dataclass(frozen=True)
class ReturnedLine:
    """A line brought back under a credit note, with its prorated refund."""

    sale_item_id: UUID
    product_id: UUID | None
    product_name: str
    boxes: int
    units: int
    quantity_base: int
    unit_price: Decimal
    refund: Decimal


@dataclass(frozen=True)
class Disposition:
    """
    The decided outcome for one sale.

    Guarantees (checked when built by the reconciler):
        amount_collected + amount_credit + amount_void + amount_credit_note
        == sale total within the money tolerance.
    """

    sale_id: UUID
    action: LiquidationAction
    amount_collected: Decimal = Decimal("0")
    amount_credit: Decimal = Decimal("0")
    amount_void: Decimal = Decimal("0")
    amount_credit_note: Decimal = Decimal("0")
    reason: str | None = None
    balance_payment_method: PaymentMethod | None = None
    credit_note_series: str | None = None
    returned_lines: tuple[ReturnedLine, ...] = ()

    @property
    def accounted_total(self) -> Decimal:
        return (
            self.amount_collected
            + self.amount_credit
            + self.amount_void
            + self.amount_credit_note
        )


@dataclass(frozen=True)
class LiquidationTotals:
    """Aggregate of all dispositions, rounded to document precision."""

    total_cash_collected: Decimal
    total_credit_receivable: Decimal
    total_voided: Decimal
    total_returns_value: Decimal
    document_count: int


@dataclass(frozen=True)
class StockReturnInstruction:
    """
    Stock to bring back for one sale line.

    full=True means every allocated unit of the line returns (VOID);
    otherwise product_quantities lists base units per product (a combo
    line lists its components).
    """

    sale_id: UUID
    sale_item_id: UUID
    full: bool
    product_quantities: tuple[tuple[UUID, int], ...] = ()
