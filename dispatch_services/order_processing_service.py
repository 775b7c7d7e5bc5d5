"""
Module: dispatch_services.order_processing_service
Responsibility:
    Batch processing of pending orders into numbered sales documents.

Architecture:
    dispatch_services layer -- one call is one transaction.  Either every
    requested order becomes a sale or none does.

Invariants:
    - Orders are numbered oldest first: sorted in SQL by (created_at,
      code), so ties on the timestamp keep code order.
    - The counter of each series is threaded through the batch: the series
      row stays locked from the first number until commit, so the batch
      issues consecutive numbers with no gaps and no reuse.
    - Document type comes from the order's snapshot (FACTURA iff an
      11-digit RUC), never from the live client record.
    - Allocation sets move from order lines to sale lines; no stock is
      allocated twice for one line.

Failure modes:
    - OrderNotFoundError / OrderNotPendingError: raised before anything is
      written; the transaction is rolled back.
    - FatalError: any unexpected failure; the batch is rolled back in full
      and the original exception is chained as ``__cause__``.
"""

from __future__ import annotations

from collections.abc import Sequence
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from dispatch_engines.numbering import classify_document_type
from dispatch_engines.pricing import DEFAULT_IGV_RATE, split_igv
from dispatch_kernel.db.base import enum_value
from dispatch_kernel.db.types import round_money
from dispatch_kernel.domain.clock import Clock, SystemClock
from dispatch_kernel.domain.values import CollectionStatus, PaymentStatus
from dispatch_kernel.exceptions import (
    DispatchKernelError,
    FatalError,
    OrderNotFoundError,
    OrderNotPendingError,
)
from dispatch_kernel.logging_config import LogContext, get_logger
from dispatch_kernel.models.catalog import Client
from dispatch_kernel.models.order import OrderModel, OrderStatus
from dispatch_kernel.models.sale import (
    DispatchStatus,
    SaleItemModel,
    SaleModel,
    SaleStatus,
)
from dispatch_kernel.services.numbering_service import DocumentNumberingService

logger = get_logger("services.order_processing")


class OrderProcessingService:
    """
    Turns pending orders into sales.

    Contract:
        process_orders() commits on success and rolls back on any failure.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        igv_rate: Decimal = DEFAULT_IGV_RATE,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._igv_rate = igv_rate
        self._numbering = DocumentNumberingService(session, self._clock)

    def _locked_orders(self, order_ids: Sequence[UUID] | None) -> list[OrderModel]:
        stmt = select(OrderModel)
        if order_ids is None:
            stmt = stmt.where(OrderModel.status == OrderStatus.PENDING.value)
        else:
            stmt = stmt.where(OrderModel.id.in_(list(order_ids)))
        stmt = (
            stmt.order_by(OrderModel.created_at, OrderModel.code)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        orders = list(self._session.execute(stmt).scalars())

        if order_ids is not None:
            found = {o.id for o in orders}
            for order_id in order_ids:
                if order_id not in found:
                    raise OrderNotFoundError(str(order_id))
            for order in orders:
                if not order.is_pending:
                    raise OrderNotPendingError(str(order.id), enum_value(order.status))
        return orders

    def _backfill_address(self, order: OrderModel) -> str:
        if order.client_address:
            return order.client_address
        if order.client_id is not None:
            client = self._session.get(Client, order.client_id)
            if client is not None and client.address:
                return client.address
        return ""

    def _sale_from_order(self, order: OrderModel) -> SaleModel:
        document_type = classify_document_type(order.client_doc_number)
        issued = self._numbering.next_number(document_type)
        total = round_money(order.total)
        subtotal, igv = split_igv(total, self._igv_rate)

        sale = SaleModel(
            document_type=document_type.value,
            series=issued.series,
            number=issued.formatted_number,
            payment_method=enum_value(order.payment_method),
            payment_status=PaymentStatus.PENDING.value,
            collection_status=CollectionStatus.NONE.value,
            client_id=order.client_id,
            client_name=order.client_name,
            client_ruc=order.client_doc_number,
            client_address=self._backfill_address(order),
            subtotal=subtotal,
            igv=igv,
            total=total,
            balance=total,
            status=SaleStatus.COMPLETED.value,
            dispatch_status=DispatchStatus.PENDING.value,
            origin_order_id=order.id,
            created_at=self._clock.now(),
        )
        for item in order.items:
            sale.items.append(
                SaleItemModel(
                    position=item.position,
                    product_id=item.product_id,
                    combo_id=item.combo_id,
                    product_sku=item.product_sku,
                    product_name=item.product_name,
                    selected_unit=enum_value(item.unit_type),
                    quantity_presentation=item.quantity,
                    quantity_base=item.quantity_base,
                    unit_price=item.unit_price,
                    total_price=item.total_price,
                    is_bonus=item.is_promo,
                    allocation_set_id=item.allocation_set_id,
                    combo_snapshot=item.combo_snapshot,
                )
            )
        self._session.add(sale)
        order.status = OrderStatus.PROCESSED.value
        return sale

    def process_orders(self, order_ids: Sequence[UUID] | None = None) -> list[SaleModel]:
        """
        Process the given orders, or every pending order when None.

        Returns the sales in numbering order.
        """
        try:
            orders = self._locked_orders(order_ids)
            sales: list[SaleModel] = []
            for order in orders:
                with LogContext.bind(order_id=order.id):
                    sale = self._sale_from_order(order)
                    self._session.flush()
                    logger.info(
                        "order_processed",
                        extra={
                            "order_code": order.code,
                            "document_ref": sale.document_ref,
                            "total": str(sale.total),
                        },
                    )
                sales.append(sale)
            self._session.commit()
        except DispatchKernelError:
            self._session.rollback()
            raise
        except Exception as exc:
            self._session.rollback()
            logger.warning(
                "order_batch_rolled_back",
                extra={"order_count": len(order_ids) if order_ids is not None else None},
                exc_info=True,
            )
            raise FatalError("process_orders", str(exc)) from exc

        logger.info(
            "order_batch_processed",
            extra={
                "order_count": len(sales),
                "documents": [s.document_ref for s in sales],
            },
        )
        return sales
