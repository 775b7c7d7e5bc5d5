"""
Module: dispatch_services.liquidation_service
Responsibility:
    Liquidation (closeout) of a dispatch sheet when the truck returns:
    open a session over the sheet's sales, let the operator decide a
    disposition per sale, then finalize everything in one transaction.

Architecture:
    dispatch_services layer -- thin orchestration around the pure
    LiquidationReconciler (dispatch_engines.liquidation).  The session
    object holds no database state; finalize() owns the transaction.

Invariants:
    - Finalize is all-or-nothing: the liquidation record, credit-note
      numbers, sale updates, stock returns, the cash movement and the
      sheet status commit together or not at all.
    - A completed sheet is never liquidated again: checked under a row
      lock on the sheet.
    - Money conservation is rechecked against the persisted sale totals.
    - Stock returns go through StockLedgerService: VOID releases the
      line's allocation set; PARTIAL_RETURN supersedes it.

Failure modes:
    - NoDispositionsError: nothing decided; raised before any write.
    - DispatchAlreadyLiquidatedError: sheet completed meanwhile.
    - FatalError: any unexpected failure; everything rolled back and the
      original exception chained as ``__cause__``.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from dispatch_config.schema import LiquidationPolicy
from dispatch_engines.liquidation import (
    ComponentShare,
    Disposition,
    LiquidationReconciler,
    LiquidationTotals,
    ReturnEntry,
    SaleLine,
    SaleSnapshot,
    check_money_conservation,
    stock_return_instructions,
)
from dispatch_kernel.db.base import enum_value
from dispatch_kernel.db.types import round_money
from dispatch_kernel.domain.clock import Clock, SystemClock
from dispatch_kernel.domain.values import (
    CollectionStatus,
    DocumentType,
    LiquidationAction,
    PaymentMethod,
    PaymentStatus,
)
from dispatch_kernel.exceptions import (
    DispatchAlreadyLiquidatedError,
    DispatchKernelError,
    DispatchSheetNotFoundError,
    FatalError,
    SaleNotFoundError,
)
from dispatch_kernel.logging_config import LogContext, get_logger
from dispatch_kernel.models.allocation import AllocationSetModel
from dispatch_kernel.models.catalog import Product
from dispatch_kernel.models.dispatch import DispatchSheetModel, DispatchSheetStatus
from dispatch_kernel.models.liquidation import (
    DispatchLiquidationModel,
    LiquidationDocumentModel,
    ReturnedItemModel,
)
from dispatch_kernel.models.movements import CashMovementModel, CashMovementType, MovementReason
from dispatch_kernel.models.sale import DispatchStatus, SaleItemModel, SaleModel, SaleStatus
from dispatch_kernel.services.numbering_service import DocumentNumber, DocumentNumberingService
from dispatch_kernel.services.stock_ledger_service import StockLedgerService

logger = get_logger("services.liquidation")

LIQUIDATION_CASH_CATEGORY = "LIQUIDACION"


class LiquidationSession:
    """
    The in-progress liquidation of one sheet.

    Every sale starts with the disposition its payment method implies
    (CONTADO -> PAID, CREDITO -> CREDIT); the operator changes them
    through the mark_* methods.  Nothing here is persisted until
    LiquidationService.finalize().
    """

    def __init__(self, dispatch_sheet_id: UUID, code: str, reconciler: LiquidationReconciler):
        self.dispatch_sheet_id = dispatch_sheet_id
        self.code = code
        self.reconciler = reconciler

    @property
    def sales(self) -> tuple[SaleSnapshot, ...]:
        return self.reconciler.sales

    def mark_paid(self, sale_id: UUID) -> Disposition:
        return self.reconciler.mark_paid(sale_id)

    def mark_credit(self, sale_id: UUID) -> Disposition:
        return self.reconciler.mark_credit(sale_id)

    def mark_void(self, sale_id: UUID, reason: str | None) -> Disposition:
        return self.reconciler.mark_void(sale_id, reason)

    def mark_partial_return(
        self,
        sale_id: UUID,
        entries: Sequence[ReturnEntry],
        balance_payment_method: PaymentMethod | str,
    ) -> Disposition:
        return self.reconciler.mark_partial_return(sale_id, entries, balance_payment_method)

    def clear(self, sale_id: UUID) -> None:
        self.reconciler.clear(sale_id)

    def state(self, sale_id: UUID) -> str:
        return self.reconciler.state(sale_id)

    def disposition(self, sale_id: UUID) -> Disposition | None:
        return self.reconciler.disposition(sale_id)

    @property
    def dispositions(self) -> tuple[Disposition, ...]:
        return self.reconciler.dispositions

    def totals(self) -> LiquidationTotals:
        return self.reconciler.totals()


class LiquidationService:
    """
    Opens and finalizes dispatch liquidations.

    Contract:
        open_for_liquidation() only reads.  finalize() commits on success
        and rolls back on any failure.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        policy: LiquidationPolicy | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._policy = policy or LiquidationPolicy()
        self._numbering = DocumentNumberingService(session, self._clock)
        self._ledger = StockLedgerService(session, self._clock)

    # ------------------------------------------------------------------
    # Opening
    # ------------------------------------------------------------------

    def _snapshot(self, sale: SaleModel) -> SaleSnapshot:
        product_ids = {item.product_id for item in sale.items if item.product_id is not None}
        package_contents: dict[UUID, int] = {}
        if product_ids:
            for product in self._session.execute(
                select(Product).where(Product.id.in_(product_ids))
            ).scalars():
                package_contents[product.id] = product.package_content

        lines = []
        for item in sale.items:
            components: tuple[ComponentShare, ...] = ()
            if item.is_combo:
                components = tuple(
                    ComponentShare(UUID(part["product_id"]), int(part["base_units"]))
                    for part in item.combo_snapshot or ()
                )
            lines.append(
                SaleLine(
                    sale_item_id=item.id,
                    product_id=item.product_id,
                    product_name=item.product_name,
                    quantity_base=item.quantity_base,
                    unit_price=item.unit_price,
                    total_price=item.total_price,
                    package_content=package_contents.get(item.product_id, 1),
                    components=components,
                )
            )
        return SaleSnapshot(
            sale_id=sale.id,
            document_ref=sale.document_ref,
            total=round_money(sale.total),
            payment_method=enum_value(sale.payment_method),
            lines=tuple(lines),
        )

    def open_for_liquidation(self, code: str) -> LiquidationSession:
        """
        Start liquidating the sheet with this code.

        Raises:
            DispatchSheetNotFoundError: unknown code.
            DispatchAlreadyLiquidatedError: the sheet is completed.
        """
        sheet = self._session.execute(
            select(DispatchSheetModel).where(DispatchSheetModel.code == code)
        ).scalar_one_or_none()
        if sheet is None:
            raise DispatchSheetNotFoundError(code)
        if sheet.is_completed:
            raise DispatchAlreadyLiquidatedError(str(sheet.id), sheet.code)

        sales = {
            sale.id: sale
            for sale in self._session.execute(
                select(SaleModel).where(SaleModel.id.in_(sheet.sale_ids))
            ).scalars()
        }
        snapshots = [self._snapshot(sales[sale_id]) for sale_id in sheet.sale_ids]
        reconciler = LiquidationReconciler(
            snapshots,
            void_reason_min_length=self._policy.void_reason_min_length,
            tolerance=self._policy.money_tolerance,
        )
        reconciler.initialize_from_payment_methods()

        logger.info(
            "liquidation_opened",
            extra={"dispatch_code": sheet.code, "sale_count": len(snapshots)},
        )
        return LiquidationSession(sheet.id, sheet.code, reconciler)

    # ------------------------------------------------------------------
    # Finalize
    # ------------------------------------------------------------------

    def _locked_sheet(self, sheet_id: UUID) -> DispatchSheetModel:
        sheet = self._session.execute(
            select(DispatchSheetModel)
            .where(DispatchSheetModel.id == sheet_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if sheet is None:
            raise DispatchSheetNotFoundError(str(sheet_id))
        return sheet

    def _locked_sales(self, sale_ids: Sequence[UUID]) -> dict[UUID, SaleModel]:
        rows = self._session.execute(
            select(SaleModel)
            .where(SaleModel.id.in_(list(sale_ids)))
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalars()
        return {sale.id: sale for sale in rows}

    def _settle_sale(self, sale: SaleModel, disposition: Disposition) -> None:
        action = disposition.action
        if action == LiquidationAction.PAID:
            sale.balance = Decimal("0")
            sale.payment_status = PaymentStatus.PAID.value
            sale.collection_status = CollectionStatus.COLLECTED.value
        elif action == LiquidationAction.CREDIT:
            sale.balance = disposition.amount_credit
            sale.payment_status = PaymentStatus.PENDING.value
        elif action == LiquidationAction.VOID:
            sale.status = SaleStatus.CANCELED.value
            sale.balance = Decimal("0")
        else:
            sale.balance = disposition.amount_credit
            if disposition.amount_credit == 0:
                sale.payment_status = PaymentStatus.PAID.value
                sale.collection_status = CollectionStatus.COLLECTED.value
            else:
                sale.payment_status = PaymentStatus.PENDING.value
        sale.dispatch_status = DispatchStatus.LIQUIDATED.value

    @staticmethod
    def _line_demand(line: SaleLine) -> dict[UUID, int]:
        """Base units per product a full return of the line brings back."""
        if line.is_combo:
            demand: dict[UUID, int] = {}
            for share in line.components:
                demand[share.product_id] = (
                    demand.get(share.product_id, 0) + share.base_units * line.quantity_base
                )
            return demand
        if line.product_id is None:
            return {}
        return {line.product_id: line.quantity_base}

    def _return_stock(
        self,
        sale: SaleModel,
        snapshot: SaleSnapshot,
        disposition: Disposition,
        document_ref: str,
    ) -> None:
        reason = (
            MovementReason.VOID_RETURN
            if disposition.action == LiquidationAction.VOID
            else MovementReason.CREDIT_NOTE_RETURN
        )
        items: dict[UUID, SaleItemModel] = {item.id: item for item in sale.items}
        lines = {line.sale_item_id: line for line in snapshot.lines}

        for instruction in stock_return_instructions(disposition, snapshot):
            item = items[instruction.sale_item_id]
            allocation_set = item.allocation_set
            live_set = allocation_set is not None and not allocation_set.is_released

            if instruction.full:
                demand = self._line_demand(lines[item.id])
                backed = {
                    product_id: allocation_set.quantity_for_product(product_id) if live_set else 0
                    for product_id in demand
                }
                if live_set:
                    self._ledger.release(allocation_set, reason=reason, document_ref=document_ref)
                for product_id, units in demand.items():
                    self._ledger.record_unbacked_return(
                        product_id,
                        units - backed[product_id],
                        reason=reason,
                        document_ref=document_ref,
                    )
            elif live_set:
                outcome = self._ledger.return_stock(
                    allocation_set,
                    instruction.product_quantities,
                    reason=reason,
                    document_ref=document_ref,
                )
                item.allocation_set = self._session.get(
                    AllocationSetModel, outcome.replacement_set_id
                )
            else:
                for product_id, units in instruction.product_quantities:
                    self._ledger.record_unbacked_return(
                        product_id,
                        units,
                        reason=reason,
                        document_ref=document_ref,
                    )

    def _document(
        self,
        position: int,
        disposition: Disposition,
        credit_note: DocumentNumber | None,
    ) -> LiquidationDocumentModel:
        document = LiquidationDocumentModel(
            sale_id=disposition.sale_id,
            position=position,
            action=disposition.action.value,
            amount_collected=disposition.amount_collected,
            amount_credit=disposition.amount_credit,
            amount_void=disposition.amount_void,
            amount_credit_note=disposition.amount_credit_note,
            reason=disposition.reason,
            balance_payment_method=enum_value(disposition.balance_payment_method),
            credit_note_series=credit_note.series if credit_note else None,
            credit_note_number=credit_note.formatted_number if credit_note else None,
        )
        for index, returned in enumerate(disposition.returned_lines):
            document.returned_items.append(
                ReturnedItemModel(
                    sale_item_id=returned.sale_item_id,
                    position=index,
                    product_id=returned.product_id,
                    product_name=returned.product_name,
                    boxes=returned.boxes,
                    units=returned.units,
                    quantity_base=returned.quantity_base,
                    unit_price=returned.unit_price,
                    total_refund=returned.refund,
                )
            )
        return document

    def finalize(
        self,
        liquidation: LiquidationSession,
        *,
        liquidation_date: date | None = None,
        user_id: str | None = None,
    ) -> DispatchLiquidationModel:
        """
        Persist the liquidation and close the sheet.

        Sales left undecided go back to dispatch_status pending so they
        can be put on another sheet.
        """
        reconciler = liquidation.reconciler
        reconciler.ensure_finalizable(liquidation.dispatch_sheet_id)

        with LogContext.bind(dispatch_sheet_id=liquidation.dispatch_sheet_id):
            try:
                sheet = self._locked_sheet(liquidation.dispatch_sheet_id)
                if sheet.is_completed:
                    raise DispatchAlreadyLiquidatedError(str(sheet.id), sheet.code)
                sales = self._locked_sales(sheet.sale_ids)

                totals = reconciler.totals()
                record = DispatchLiquidationModel(
                    dispatch_sheet_id=sheet.id,
                    liquidation_date=liquidation_date or self._clock.today(),
                    total_cash_collected=totals.total_cash_collected,
                    total_credit_receivable=totals.total_credit_receivable,
                    total_voided=totals.total_voided,
                    total_returns_value=totals.total_returns_value,
                )
                self._session.add(record)

                decided: set[UUID] = set()
                for position, disposition in enumerate(reconciler.dispositions):
                    sale = sales.get(disposition.sale_id)
                    if sale is None:
                        raise SaleNotFoundError(str(disposition.sale_id))
                    check_money_conservation(
                        disposition,
                        round_money(sale.total),
                        self._policy.money_tolerance,
                    )

                    credit_note = None
                    document_ref = sale.document_ref
                    if disposition.action == LiquidationAction.PARTIAL_RETURN:
                        credit_note = self._numbering.next_number(DocumentType.NOTA_CREDITO)
                        document_ref = credit_note.ref

                    record.documents.append(self._document(position, disposition, credit_note))
                    self._return_stock(
                        sale,
                        reconciler.sale(sale.id),
                        disposition,
                        document_ref,
                    )
                    self._settle_sale(sale, disposition)
                    decided.add(sale.id)

                for sale in sales.values():
                    if sale.id not in decided:
                        sale.dispatch_status = DispatchStatus.PENDING.value
                        logger.warning(
                            "liquidation_sale_undecided",
                            extra={"document_ref": sale.document_ref},
                        )

                if totals.total_cash_collected > 0:
                    self._session.add(
                        CashMovementModel(
                            movement_type=CashMovementType.INCOME.value,
                            category_name=LIQUIDATION_CASH_CATEGORY,
                            description=f"Liquidacion {sheet.code}",
                            amount=totals.total_cash_collected,
                            occurred_at=self._clock.now(),
                            reference_id=sheet.code,
                            user_id=user_id,
                        )
                    )

                sheet.status = DispatchSheetStatus.COMPLETED.value
                self._session.flush()
                self._session.commit()
            except DispatchKernelError:
                self._session.rollback()
                raise
            except Exception as exc:
                self._session.rollback()
                logger.warning(
                    "liquidation_rolled_back",
                    extra={"dispatch_code": liquidation.code},
                    exc_info=True,
                )
                raise FatalError("finalize_liquidation", str(exc)) from exc

            logger.info(
                "liquidation_finalized",
                extra={
                    "dispatch_code": sheet.code,
                    "document_count": totals.document_count,
                    "total_cash_collected": str(totals.total_cash_collected),
                    "total_credit_receivable": str(totals.total_credit_receivable),
                    "total_voided": str(totals.total_voided),
                    "total_returns_value": str(totals.total_returns_value),
                },
            )
        return record

    def get_liquidation(self, dispatch_sheet_id: UUID) -> DispatchLiquidationModel | None:
        return self._session.execute(
            select(DispatchLiquidationModel).where(
                DispatchLiquidationModel.dispatch_sheet_id == dispatch_sheet_id
            )
        ).scalar_one_or_none()
