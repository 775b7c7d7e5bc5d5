"""
Module: dispatch_services.collection_service
Responsibility:
    Collections on credit sales: sellers report payments in the field, the
    back office validates them in bulk and books the cash.

Invariants:
    - A reported amount is positive and never exceeds the sale's balance.
    - No collection is taken on a sale that is out on an open dispatch
      sheet.
    - A sale whose balance drops under PAID_OFF_THRESHOLD is REPORTED;
      otherwise PARTIAL.  Only validation turns REPORTED into COLLECTED.
    - One consolidation produces exactly one INCOME cash movement.
"""

from __future__ import annotations

from collections.abc import Sequence
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from dispatch_kernel.db.base import enum_value
from dispatch_kernel.db.types import round_money
from dispatch_kernel.domain.clock import Clock, SystemClock
from dispatch_kernel.domain.values import CollectionStatus, PaymentStatus
from dispatch_kernel.exceptions import (
    CollectionRecordNotFoundError,
    InvalidPaymentAmountError,
    SaleNotCollectibleError,
    SaleNotFoundError,
)
from dispatch_kernel.logging_config import LogContext, get_logger
from dispatch_kernel.models.collection import CollectionRecordModel, CollectionRecordStatus
from dispatch_kernel.models.movements import CashMovementModel, CashMovementType
from dispatch_kernel.models.sale import DispatchStatus, SaleModel

logger = get_logger("services.collection")

PAID_OFF_THRESHOLD = Decimal("0.1")
DEFAULT_COLLECTION_METHOD = "CASH"
COLLECTION_CASH_CATEGORY = "COBRANZA MASIVA"

# Liquidation settles these sales from their total; collect afterwards.
UNSETTLED_DISPATCH_STATUSES = frozenset(
    {DispatchStatus.ASSIGNED.value, DispatchStatus.IN_TRANSIT.value}
)


class CollectionService:
    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()

    def _locked_sale(self, sale_id: UUID) -> SaleModel:
        sale = self._session.execute(
            select(SaleModel)
            .where(SaleModel.id == sale_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if sale is None:
            raise SaleNotFoundError(str(sale_id))
        return sale

    def report_collection(
        self,
        sale_id: UUID,
        seller_id: str,
        amount: Decimal,
        payment_method: str | None = None,
    ) -> CollectionRecordModel:
        """
        Record a payment a seller collected against a sale.

        Raises:
            SaleNotFoundError: unknown sale.
            SaleNotCollectibleError: sale is on an open dispatch sheet.
            InvalidPaymentAmountError: amount <= 0 or above the balance.
        """
        amount = round_money(amount)
        with LogContext.bind(sale_id=sale_id):
            try:
                sale = self._locked_sale(sale_id)
                if enum_value(sale.dispatch_status) in UNSETTLED_DISPATCH_STATUSES:
                    raise SaleNotCollectibleError(str(sale.id), enum_value(sale.dispatch_status))
                balance = round_money(sale.balance)
                if amount <= 0 or amount > balance:
                    raise InvalidPaymentAmountError(str(sale.id), amount, balance)

                new_balance = balance - amount
                sale.balance = new_balance
                sale.collection_status = (
                    CollectionStatus.REPORTED
                    if new_balance < PAID_OFF_THRESHOLD
                    else CollectionStatus.PARTIAL
                ).value

                record = CollectionRecordModel(
                    sale_id=sale.id,
                    seller_id=seller_id,
                    client_name=sale.client_name,
                    document_ref=sale.document_ref,
                    amount_reported=amount,
                    date_reported=self._clock.now(),
                    status=CollectionRecordStatus.PENDING_VALIDATION.value,
                    payment_method=payment_method or DEFAULT_COLLECTION_METHOD,
                )
                self._session.add(record)
                self._session.flush()
                self._session.commit()
            except Exception:
                self._session.rollback()
                raise

            logger.info(
                "collection_reported",
                extra={
                    "document_ref": record.document_ref,
                    "seller_id": seller_id,
                    "amount": str(amount),
                    "balance": str(sale.balance),
                    "collection_status": sale.collection_status,
                },
            )
        return record

    def consolidate_collections(
        self,
        record_ids: Sequence[UUID],
        user_id: str | None = None,
    ) -> CashMovementModel | None:
        """
        Validate reported collections and book them as one cash income.

        Records already validated are left alone and not counted again.
        Returns the cash movement, or None when nothing was validated.
        """
        try:
            records = {
                record.id: record
                for record in self._session.execute(
                    select(CollectionRecordModel)
                    .where(CollectionRecordModel.id.in_(list(record_ids)))
                    .with_for_update()
                    .execution_options(populate_existing=True)
                ).scalars()
            }
            for record_id in record_ids:
                if record_id not in records:
                    raise CollectionRecordNotFoundError(str(record_id))

            now = self._clock.now()
            total = Decimal("0")
            validated: list[CollectionRecordModel] = []
            for record_id in record_ids:
                record = records[record_id]
                if record.status != CollectionRecordStatus.PENDING_VALIDATION:
                    continue
                record.status = CollectionRecordStatus.VALIDATED.value
                record.validated_at = now
                total += record.amount_reported
                validated.append(record)

                sale = self._locked_sale(record.sale_id)
                if sale.collection_status == CollectionStatus.REPORTED:
                    sale.balance = Decimal("0")
                    sale.payment_status = PaymentStatus.PAID.value
                    sale.collection_status = CollectionStatus.COLLECTED.value

            movement = None
            if validated:
                sellers = sorted({record.seller_id for record in validated})
                movement = CashMovementModel(
                    movement_type=CashMovementType.INCOME.value,
                    category_name=COLLECTION_CASH_CATEGORY,
                    description=f"Planilla de cobranza - vendedores: {', '.join(sellers)}",
                    amount=round_money(total),
                    occurred_at=now,
                    user_id=user_id,
                )
                self._session.add(movement)
            self._session.flush()
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

        logger.info(
            "collections_consolidated",
            extra={
                "record_count": len(validated),
                "skipped": len(record_ids) - len(validated),
                "total": str(round_money(total)),
            },
        )
        return movement

    def pending_records(self) -> list[CollectionRecordModel]:
        return list(
            self._session.execute(
                select(CollectionRecordModel)
                .where(
                    CollectionRecordModel.status
                    == CollectionRecordStatus.PENDING_VALIDATION.value
                )
                .order_by(CollectionRecordModel.date_reported)
            ).scalars()
        )
