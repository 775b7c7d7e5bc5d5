"""
Module: dispatch_services.sale_service
Responsibility:
    Counter (POS) sales: number, allocate and settle a sale in one step.

Architecture:
    dispatch_services layer -- owns the transaction boundary.

Invariants:
    - CONTADO sales are collected on the spot: balance 0, PAID, COLLECTED,
      and one INCOME cash movement for the total.
    - CREDITO sales start with balance == total, PENDING, NONE.
    - The document number is issued before stock is allocated so the
      kardex references the printed document.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import uuid4

from sqlalchemy.orm import Session

from dispatch_engines.numbering import classify_document_type
from dispatch_engines.pricing import DEFAULT_IGV_RATE, split_igv
from dispatch_kernel.db.types import round_money
from dispatch_kernel.domain.clock import Clock, SystemClock
from dispatch_kernel.domain.values import (
    CollectionStatus,
    PaymentMethod,
    PaymentStatus,
    UnitType,
)
from dispatch_kernel.logging_config import LogContext, get_logger
from dispatch_kernel.models.movements import CashMovementModel, CashMovementType, MovementReason
from dispatch_kernel.models.sale import DispatchStatus, SaleItemModel, SaleModel, SaleStatus
from dispatch_kernel.services.numbering_service import DocumentNumberingService
from dispatch_kernel.services.stock_ledger_service import StockLedgerService
from dispatch_services._planning import LinePlanner, lines_total, resolve_client_snapshot
from dispatch_services.types import SaleInput

logger = get_logger("services.sale")

SALE_CASH_CATEGORY = "VENTA"


class SaleService:
    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        igv_rate: Decimal = DEFAULT_IGV_RATE,
        strict_allocation: bool = True,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._igv_rate = igv_rate
        self._strict = strict_allocation
        self._numbering = DocumentNumberingService(session, self._clock)
        self._planner = LinePlanner(session, StockLedgerService(session, self._clock))

    def create_sale(self, sale_input: SaleInput) -> SaleModel:
        """
        Record a counter sale.

        Raises:
            InsufficientStockError: strict allocation (the default) with a
                shortfall; nothing is written.
        """
        sale_id = uuid4()
        with LogContext.bind(sale_id=sale_id):
            try:
                client = resolve_client_snapshot(self._session, sale_input.client)
                document_type = classify_document_type(client.doc_number)
                issued = self._numbering.next_number(document_type)

                priced = self._planner.plan(
                    sale_input.lines,
                    reference=issued.ref,
                    strict=self._strict,
                    reason=MovementReason.SALE,
                )
                total = lines_total(priced)
                subtotal, igv = split_igv(total, self._igv_rate)
                cash = sale_input.payment_method == PaymentMethod.CONTADO

                sale = SaleModel(
                    id=sale_id,
                    document_type=document_type.value,
                    series=issued.series,
                    number=issued.formatted_number,
                    payment_method=sale_input.payment_method.value,
                    payment_status=(PaymentStatus.PAID if cash else PaymentStatus.PENDING).value,
                    collection_status=(
                        CollectionStatus.COLLECTED if cash else CollectionStatus.NONE
                    ).value,
                    client_id=client.client_id,
                    client_name=client.name,
                    client_ruc=client.doc_number,
                    client_address=client.address or "",
                    subtotal=subtotal,
                    igv=igv,
                    total=total,
                    balance=Decimal("0") if cash else total,
                    observation=sale_input.observation,
                    status=SaleStatus.COMPLETED.value,
                    dispatch_status=DispatchStatus.PENDING.value,
                    created_at=self._clock.now(),
                )
                for position, line in enumerate(priced):
                    is_combo = line.line.unit_type == UnitType.COMBO
                    sale.items.append(
                        SaleItemModel(
                            position=position,
                            product_id=None if is_combo else line.line.item_id,
                            combo_id=line.line.item_id if is_combo else None,
                            product_sku=line.planned.demand.sku,
                            product_name=line.planned.demand.name,
                            selected_unit=line.line.unit_type.value,
                            quantity_presentation=line.line.quantity,
                            quantity_base=line.planned.demand.quantity_base,
                            unit_price=line.unit_price,
                            total_price=line.total_price,
                            is_bonus=line.line.is_promo,
                            allocation_set_id=line.allocation_set.id,
                            combo_snapshot=line.combo_snapshot,
                        )
                    )
                self._session.add(sale)
                self._session.flush()

                if cash and total > 0:
                    self._session.add(
                        CashMovementModel(
                            movement_type=CashMovementType.INCOME.value,
                            category_name=SALE_CASH_CATEGORY,
                            description=f"Venta {sale.document_ref}",
                            amount=round_money(total),
                            occurred_at=self._clock.now(),
                            reference_id=sale.document_ref,
                            user_id=sale_input.seller_id,
                        )
                    )
                self._session.flush()
                self._session.commit()
            except Exception:
                self._session.rollback()
                raise

            logger.info(
                "sale_created",
                extra={
                    "document_ref": sale.document_ref,
                    "payment_method": sale_input.payment_method.value,
                    "total": str(sale.total),
                    "fallback_series": issued.fallback,
                },
            )
        return sale
