"""
Module: dispatch_engines.liquidation.reconciler
Responsibility:
    The liquidation state machine for one dispatch sheet: per-sale
    dispositions (PAID / CREDIT / VOID / PARTIAL_RETURN), aggregate totals
    and the stock-return instructions applied at finalize.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  LiquidationService feeds
    it SaleSnapshot values and persists its output.

Invariants enforced:
    - Money conservation: every disposition accounts for the sale total
      within MONEY_TOLERANCE; violating it raises InvariantViolationError.
    - Validation happens before any state change: a rejected action leaves
      the previous disposition in place.
    - Re-selecting an action replaces the prior disposition.

State per sale:

    UNDECIDED --mark_paid-----------> PAID
              --mark_credit---------> CREDIT
              --mark_void-----------> VOID
              --mark_partial_return-> PARTIAL_RETURN
    (any state) --clear-------------> UNDECIDED
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from decimal import Decimal
from uuid import UUID

from dispatch_engines.numbering import CREDIT_NOTE_PLACEHOLDER
from dispatch_engines.liquidation.types import (
    Disposition,
    LiquidationTotals,
    ReturnedLine,
    ReturnEntry,
    SaleSnapshot,
    StockReturnInstruction,
)
from dispatch_engines.tracer import traced_engine
from dispatch_kernel.db.types import MONEY_TOLERANCE, round_money, within_tolerance
from dispatch_kernel.domain.values import (
    LiquidationAction,
    PaymentMethod,
    boxes_and_units_to_base,
)
from dispatch_kernel.exceptions import (
    DuplicateReturnEntryError,
    EmptyReturnError,
    InvariantViolationError,
    NoDispositionsError,
    ReturnExceedsSaleTotalError,
    ReturnQuantityExceededError,
    SaleItemNotFoundError,
    SaleNotFoundError,
    VoidReasonRequiredError,
)
from dispatch_kernel.invariants import EngineInvariant
from dispatch_kernel.logging_config import get_logger

logger = get_logger("engines.liquidation")

UNDECIDED = "UNDECIDED"
VOID_REASON_MIN_LENGTH = 5

_ZERO = Decimal("0")
_STORAGE_PLACES = 9


def check_money_conservation(
    disposition: Disposition,
    sale_total: Decimal,
    tolerance: Decimal = MONEY_TOLERANCE,
) -> Disposition:
    """Return the disposition if it accounts for the sale total, else raise."""
    if not within_tolerance(disposition.accounted_total, sale_total, tolerance):
        raise InvariantViolationError(
            EngineInvariant.MONEY_CONSERVATION.value,
            f"sale {disposition.sale_id}: dispositions sum to "
            f"{disposition.accounted_total}, sale total is {sale_total}",
        )
    return disposition


def paid_disposition(sale: SaleSnapshot) -> Disposition:
    """Whole total collected in cash."""
    return Disposition(
        sale_id=sale.sale_id,
        action=LiquidationAction.PAID,
        amount_collected=round_money(sale.total),
    )


def credit_disposition(sale: SaleSnapshot) -> Disposition:
    """Whole total left as receivable."""
    return Disposition(
        sale_id=sale.sale_id,
        action=LiquidationAction.CREDIT,
        amount_credit=round_money(sale.total),
    )


def void_disposition(
    sale: SaleSnapshot,
    reason: str | None,
    min_reason_length: int = VOID_REASON_MIN_LENGTH,
) -> Disposition:
    """
    Annul the document; every item returns to stock.

    Raises:
        VoidReasonRequiredError: If the stripped reason is shorter than
            min_reason_length.
    """
    cleaned = (reason or "").strip()
    if len(cleaned) < min_reason_length:
        raise VoidReasonRequiredError(str(sale.sale_id), min_reason_length)
    return Disposition(
        sale_id=sale.sale_id,
        action=LiquidationAction.VOID,
        amount_void=round_money(sale.total),
        reason=cleaned,
    )


@traced_engine(
    "partial_return", "1.0", fingerprint_fields=("sale", "entries", "balance_payment_method")
)
def partial_return_disposition(
    *,
    sale: SaleSnapshot,
    entries: Sequence[ReturnEntry],
    balance_payment_method: PaymentMethod,
) -> Disposition:
    """
    Credit-note flow: part of the goods come back.

    Each line's refund is prorated by value, total_price * returned /
    quantity_base, so line discounts are honoured.  The summed refund is
    rounded to cents; the remainder of the sale goes wholly to cash
    (CONTADO) or credit (CREDITO).

    Raises:
        SaleItemNotFoundError: An entry names a line not on the sale.
        DuplicateReturnEntryError: Two entries name the same line.
        ReturnQuantityExceededError: A line returns more than was sold.
        EmptyReturnError: Nothing (or nothing of value) was returned.
        ReturnExceedsSaleTotalError: The refund reaches the sale total;
            the operator must VOID instead.
    """
    balance_payment_method = PaymentMethod(balance_payment_method)
    by_item: dict[UUID, ReturnEntry] = {}
    line_ids = {line.sale_item_id for line in sale.lines}
    for entry in entries:
        if entry.sale_item_id not in line_ids:
            raise SaleItemNotFoundError(str(entry.sale_item_id))
        if entry.sale_item_id in by_item:
            raise DuplicateReturnEntryError(str(sale.sale_id), str(entry.sale_item_id))
        by_item[entry.sale_item_id] = entry

    returned_lines: list[ReturnedLine] = []
    raw_refund = _ZERO
    for line in sale.lines:
        entry = by_item.get(line.sale_item_id)
        if entry is None or entry.is_empty:
            continue

        returned = boxes_and_units_to_base(entry.boxes, entry.units, line.package_content)
        if returned > line.quantity_base:
            raise ReturnQuantityExceededError(line.product_name, returned, line.quantity_base)

        refund = line.total_price * Decimal(returned) / Decimal(line.quantity_base)
        raw_refund += refund
        returned_lines.append(
            ReturnedLine(
                sale_item_id=line.sale_item_id,
                product_id=line.product_id,
                product_name=line.product_name,
                boxes=entry.boxes,
                units=entry.units,
                quantity_base=returned,
                unit_price=line.unit_price,
                refund=round_money(refund, _STORAGE_PLACES),
            )
        )

    total_refund = round_money(raw_refund)
    if not returned_lines or total_refund == _ZERO:
        raise EmptyReturnError(str(sale.sale_id))

    sale_total = round_money(sale.total)
    if total_refund >= sale_total:
        raise ReturnExceedsSaleTotalError(str(sale.sale_id), total_refund, sale_total)

    remainder = round_money(sale_total - total_refund)
    collected = remainder if balance_payment_method == PaymentMethod.CONTADO else _ZERO
    credit = remainder if balance_payment_method == PaymentMethod.CREDITO else _ZERO

    return Disposition(
        sale_id=sale.sale_id,
        action=LiquidationAction.PARTIAL_RETURN,
        amount_collected=collected,
        amount_credit=credit,
        amount_credit_note=total_refund,
        balance_payment_method=balance_payment_method,
        credit_note_series=CREDIT_NOTE_PLACEHOLDER,
        returned_lines=tuple(returned_lines),
    )


def compute_totals(dispositions: Iterable[Disposition]) -> LiquidationTotals:
    """Sum the four amounts across dispositions, rounded to cents."""
    cash = credit = voided = returns = _ZERO
    count = 0
    for disposition in dispositions:
        cash += disposition.amount_collected
        credit += disposition.amount_credit
        voided += disposition.amount_void
        returns += disposition.amount_credit_note
        count += 1
    return LiquidationTotals(
        total_cash_collected=round_money(cash),
        total_credit_receivable=round_money(credit),
        total_voided=round_money(voided),
        total_returns_value=round_money(returns),
        document_count=count,
    )


def stock_return_instructions(
    disposition: Disposition,
    sale: SaleSnapshot,
) -> list[StockReturnInstruction]:
    """
    What goes back to the ledger for one disposition.

    VOID returns every line in full.  PARTIAL_RETURN returns the entered
    base units; a combo line returns its components in proportion.
    PAID and CREDIT return nothing.
    """
    if disposition.action == LiquidationAction.VOID:
        return [
            StockReturnInstruction(
                sale_id=sale.sale_id,
                sale_item_id=line.sale_item_id,
                full=True,
            )
            for line in sale.lines
        ]

    if disposition.action != LiquidationAction.PARTIAL_RETURN:
        return []

    lines = {line.sale_item_id: line for line in sale.lines}
    instructions: list[StockReturnInstruction] = []
    for returned in disposition.returned_lines:
        line = lines[returned.sale_item_id]
        if line.is_combo:
            quantities = tuple(
                (share.product_id, share.base_units * returned.quantity_base)
                for share in line.components
            )
        elif line.product_id is not None:
            quantities = ((line.product_id, returned.quantity_base),)
        else:
            quantities = ()
        instructions.append(
            StockReturnInstruction(
                sale_id=sale.sale_id,
                sale_item_id=line.sale_item_id,
                full=False,
                product_quantities=quantities,
            )
        )
    return instructions


class LiquidationReconciler:
    """
    Holds the dispositions of one liquidation session.

    Contract:
        Built from the sales of one dispatch sheet.  Every mark_* call
        validates first and only then replaces the sale's disposition.

    Non-goals:
        - Does not persist anything or touch stock; see LiquidationService.
    """

    def __init__(
        self,
        sales: Iterable[SaleSnapshot],
        *,
        void_reason_min_length: int = VOID_REASON_MIN_LENGTH,
        tolerance: Decimal = MONEY_TOLERANCE,
    ):
        self._sales: dict[UUID, SaleSnapshot] = {sale.sale_id: sale for sale in sales}
        self._dispositions: dict[UUID, Disposition] = {}
        self._void_reason_min_length = void_reason_min_length
        self._tolerance = tolerance

    @property
    def sales(self) -> tuple[SaleSnapshot, ...]:
        return tuple(self._sales.values())

    def sale(self, sale_id: UUID) -> SaleSnapshot:
        sale = self._sales.get(sale_id)
        if sale is None:
            raise SaleNotFoundError(str(sale_id))
        return sale

    def _accept(self, disposition: Disposition) -> Disposition:
        sale = self._sales[disposition.sale_id]
        check_money_conservation(disposition, round_money(sale.total), self._tolerance)
        self._dispositions[disposition.sale_id] = disposition
        logger.info(
            "liquidation_disposition_set",
            extra={
                "sale_id": str(disposition.sale_id),
                "action": disposition.action.value,
                "amount_collected": disposition.amount_collected,
                "amount_credit": disposition.amount_credit,
                "amount_void": disposition.amount_void,
                "amount_credit_note": disposition.amount_credit_note,
            },
        )
        return disposition

    def initialize_from_payment_methods(self) -> None:
        """Default each undecided sale to PAID (CONTADO) or CREDIT (CREDITO)."""
        for sale in self._sales.values():
            if sale.sale_id in self._dispositions:
                continue
            if sale.payment_method == PaymentMethod.CONTADO:
                self._accept(paid_disposition(sale))
            else:
                self._accept(credit_disposition(sale))

    def mark_paid(self, sale_id: UUID) -> Disposition:
        return self._accept(paid_disposition(self.sale(sale_id)))

    def mark_credit(self, sale_id: UUID) -> Disposition:
        return self._accept(credit_disposition(self.sale(sale_id)))

    def mark_void(self, sale_id: UUID, reason: str | None) -> Disposition:
        return self._accept(
            void_disposition(self.sale(sale_id), reason, self._void_reason_min_length)
        )

    def mark_partial_return(
        self,
        sale_id: UUID,
        entries: Sequence[ReturnEntry],
        balance_payment_method: PaymentMethod | str,
    ) -> Disposition:
        return self._accept(
            partial_return_disposition(
                sale=self.sale(sale_id),
                entries=tuple(entries),
                balance_payment_method=PaymentMethod(balance_payment_method),
            )
        )

    def clear(self, sale_id: UUID) -> None:
        """Back to UNDECIDED."""
        self.sale(sale_id)
        self._dispositions.pop(sale_id, None)

    def state(self, sale_id: UUID) -> str:
        self.sale(sale_id)
        disposition = self._dispositions.get(sale_id)
        return disposition.action.value if disposition else UNDECIDED

    def disposition(self, sale_id: UUID) -> Disposition | None:
        self.sale(sale_id)
        return self._dispositions.get(sale_id)

    @property
    def dispositions(self) -> tuple[Disposition, ...]:
        """Decided dispositions in sheet order."""
        return tuple(
            self._dispositions[sale_id]
            for sale_id in self._sales
            if sale_id in self._dispositions
        )

    def totals(self) -> LiquidationTotals:
        return compute_totals(self.dispositions)

    def stock_returns(self) -> list[StockReturnInstruction]:
        instructions: list[StockReturnInstruction] = []
        for disposition in self.dispositions:
            instructions.extend(
                stock_return_instructions(disposition, self._sales[disposition.sale_id])
            )
        return instructions

    def ensure_finalizable(self, dispatch_sheet_id: UUID) -> None:
        """
        Raises:
            NoDispositionsError: If no sale has a disposition.
        """
        if not self._dispositions:
            raise NoDispositionsError(str(dispatch_sheet_id))
