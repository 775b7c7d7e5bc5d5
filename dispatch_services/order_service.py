"""
Module: dispatch_services.order_service
Responsibility:
    Order lifecycle before processing: create (snapshot the client, suggest
    the document type, allocate stock), revise and reject.

Architecture:
    dispatch_services layer -- owns the transaction boundary of each public
    method (commit on success, rollback on failure).

    Dependency direction (strict):
        order_service  -->  dispatch_engines.numbering    (classification)
        order_service  -->  dispatch_kernel.services      (ledger, sequences)
        order_service  -X-> other dispatch_services        (FORBIDDEN)

Invariants:
    - The suggested document type is computed from the order's snapshot of
      the client tax id, never from the live client record.
    - Revise and reject only touch pending orders, and always release the
      old allocation sets before anything else changes.

Failure modes:
    - OrderNotFoundError, OrderNotPendingError.
    - ProductNotFoundError / ComboNotFoundError / ClientNotFoundError.
    - InsufficientStockError when allocation is strict.
"""

from __future__ import annotations

from collections.abc import Sequence
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from dispatch_engines.numbering import classify_document_type, format_sequence_code
from dispatch_kernel.db.base import enum_value
from dispatch_kernel.domain.clock import Clock, SystemClock
from dispatch_kernel.domain.values import UnitType
from dispatch_kernel.exceptions import OrderNotFoundError, OrderNotPendingError
from dispatch_kernel.logging_config import LogContext, get_logger
from dispatch_kernel.models.movements import MovementReason
from dispatch_kernel.models.order import OrderItemModel, OrderModel, OrderStatus
from dispatch_kernel.services.sequence_service import SequenceService
from dispatch_kernel.services.stock_ledger_service import StockLedgerService
from dispatch_services._planning import LinePlanner, PricedLine, lines_total, resolve_client_snapshot
from dispatch_services.types import LineInput, OrderInput

logger = get_logger("services.order")

ORDER_CODE_PREFIX = "PED"


class OrderService:
    """
    Field orders.

    Contract:
        Each public method owns its transaction boundary.  Returned ORM
        objects stay usable after commit (sessions do not expire on
        commit).
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        strict_allocation: bool = False,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._strict = strict_allocation
        self._ledger = StockLedgerService(session, self._clock)
        self._planner = LinePlanner(session, self._ledger)
        self._sequences = SequenceService(session)

    def _locked_order(self, order_id: UUID) -> OrderModel:
        order = self._session.execute(
            select(OrderModel)
            .where(OrderModel.id == order_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if order is None:
            raise OrderNotFoundError(str(order_id))
        return order

    def _require_pending(self, order: OrderModel) -> None:
        if not order.is_pending:
            raise OrderNotPendingError(str(order.id), enum_value(order.status))

    def _add_items(self, order: OrderModel, priced: Sequence[PricedLine]) -> None:
        for position, line in enumerate(priced):
            demand = line.planned.demand
            is_combo = line.line.unit_type == UnitType.COMBO
            order.items.append(
                OrderItemModel(
                    position=position,
                    product_id=None if is_combo else line.line.item_id,
                    combo_id=line.line.item_id if is_combo else None,
                    product_sku=demand.sku,
                    product_name=demand.name,
                    unit_type=line.line.unit_type.value,
                    quantity=line.line.quantity,
                    quantity_base=demand.quantity_base,
                    unit_price=line.unit_price,
                    total_price=line.total_price,
                    is_promo=line.line.is_promo,
                    allocation_set_id=line.allocation_set.id,
                    shortfall=line.planned.shortfall,
                    combo_snapshot=line.combo_snapshot,
                )
            )
        order.total = lines_total(priced)

    def _release_items(self, order: OrderModel) -> None:
        for item in order.items:
            allocation_set = item.allocation_set
            if allocation_set is not None and not allocation_set.is_released:
                self._ledger.release(
                    allocation_set,
                    reason=MovementReason.RELEASE,
                    document_ref=order.code,
                )

    def create_order(self, order_input: OrderInput) -> OrderModel:
        """
        Take an order: snapshot the client, allocate every line.

        Lenient allocation records each line's shortfall on the line.
        """
        order_id = uuid4()
        with LogContext.bind(order_id=order_id):
            try:
                client = resolve_client_snapshot(self._session, order_input.client)
                code = format_sequence_code(
                    ORDER_CODE_PREFIX,
                    self._sequences.next_value(SequenceService.ORDER),
                )
                order = OrderModel(
                    id=order_id,
                    code=code,
                    seller_id=order_input.seller_id,
                    client_id=client.client_id,
                    client_name=client.name,
                    client_doc_type=client.doc_type,
                    client_doc_number=client.doc_number,
                    client_address=client.address,
                    suggested_document_type=classify_document_type(client.doc_number).value,
                    payment_method=order_input.payment_method.value,
                    delivery_date=order_input.delivery_date,
                    total=Decimal("0"),
                    status=OrderStatus.PENDING.value,
                    created_at=self._clock.now(),
                )
                self._session.add(order)
                self._session.flush()

                priced = self._planner.plan(
                    order_input.lines,
                    reference=code,
                    strict=self._strict,
                    reason=MovementReason.ORDER,
                )
                self._add_items(order, priced)
                self._session.flush()
                self._session.commit()
            except Exception:
                self._session.rollback()
                raise

            logger.info(
                "order_created",
                extra={
                    "order_code": order.code,
                    "suggested_document_type": order.suggested_document_type,
                    "total": str(order.total),
                    "line_count": len(order.items),
                    "shortfall": sum(item.shortfall for item in order.items),
                },
            )
        return order

    def revise_order(self, order_id: UUID, lines: Sequence[LineInput]) -> OrderModel:
        """
        Replace the lines of a pending order.

        The old allocations go back to stock before the new lines are
        planned, so the revised order may reuse the same batches.
        """
        if not lines:
            raise ValueError("An order needs at least one line")
        with LogContext.bind(order_id=order_id):
            try:
                order = self._locked_order(order_id)
                self._require_pending(order)

                self._release_items(order)
                order.items.clear()
                self._session.flush()

                priced = self._planner.plan(
                    lines,
                    reference=order.code,
                    strict=self._strict,
                    reason=MovementReason.ORDER,
                )
                self._add_items(order, priced)
                self._session.flush()
                self._session.commit()
            except Exception:
                self._session.rollback()
                raise

            logger.info(
                "order_revised",
                extra={"order_code": order.code, "total": str(order.total)},
            )
        return order

    def reject_order(self, order_id: UUID) -> OrderModel:
        """Give the order's stock back and mark it rejected."""
        with LogContext.bind(order_id=order_id):
            try:
                order = self._locked_order(order_id)
                self._require_pending(order)

                self._release_items(order)
                order.status = OrderStatus.REJECTED.value
                self._session.flush()
                self._session.commit()
            except Exception:
                self._session.rollback()
                raise

            logger.info("order_rejected", extra={"order_code": order.code})
        return order

    def get_order(self, order_id: UUID) -> OrderModel:
        order = self._session.get(OrderModel, order_id)
        if order is None:
            raise OrderNotFoundError(str(order_id))
        return order

    def pending_orders(self) -> list[OrderModel]:
        """Pending orders, oldest first."""
        return list(
            self._session.execute(
                select(OrderModel)
                .where(OrderModel.status == OrderStatus.PENDING.value)
                .order_by(OrderModel.created_at, OrderModel.code)
            ).scalars()
        )
