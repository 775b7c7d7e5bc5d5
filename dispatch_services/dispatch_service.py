"""
Module: dispatch_services.dispatch_service
Responsibility:
    Dispatch sheets (route manifests): assign pending sales to a vehicle
    trip and put the trip on the road.

Architecture:
    dispatch_services layer -- owns the transaction boundary.

Invariants:
    - Only sales with dispatch_status pending can be assigned; a sale is on
      at most one open sheet.
    - A sale with collections reported against it never goes out again;
      liquidation settles from the sale total.
    - Sheet codes come from the "dispatch_sheet" sequence (HR-00000001).
    - A completed sheet is terminal.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from dispatch_engines.numbering import format_sequence_code
from dispatch_kernel.db.base import enum_value
from dispatch_kernel.domain.clock import Clock, SystemClock
from dispatch_kernel.exceptions import (
    DispatchAlreadyLiquidatedError,
    DispatchSheetNotFoundError,
    SaleNotDispatchableError,
    SaleNotFoundError,
)
from dispatch_kernel.logging_config import LogContext, get_logger
from dispatch_kernel.models.collection import CollectionRecordModel
from dispatch_kernel.models.dispatch import (
    DispatchSheetModel,
    DispatchSheetSaleModel,
    DispatchSheetStatus,
)
from dispatch_kernel.models.sale import DispatchStatus, SaleModel, SaleStatus
from dispatch_kernel.services.sequence_service import SequenceService

logger = get_logger("services.dispatch")

DISPATCH_CODE_PREFIX = "HR"


class DispatchService:
    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()
        self._sequences = SequenceService(session)

    def _locked_sales(self, sale_ids: Sequence[UUID]) -> dict[UUID, SaleModel]:
        rows = self._session.execute(
            select(SaleModel)
            .where(SaleModel.id.in_(list(sale_ids)))
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalars()
        return {sale.id: sale for sale in rows}

    def _sales_with_collections(self, sale_ids: Sequence[UUID]) -> set[UUID]:
        return set(
            self._session.scalars(
                select(CollectionRecordModel.sale_id)
                .where(CollectionRecordModel.sale_id.in_(list(sale_ids)))
                .distinct()
            )
        )

    def create_dispatch_sheet(
        self,
        vehicle_id: str,
        sale_ids: Sequence[UUID],
        dispatch_date: date | None = None,
    ) -> DispatchSheetModel:
        """
        Group pending sales into a new sheet; the sales become assigned.

        Raises:
            ValueError: no sales, or a sale listed twice.
            SaleNotFoundError: unknown sale id.
            SaleNotDispatchableError: sale not pending dispatch, canceled,
                or already carrying reported collections.
        """
        if not sale_ids:
            raise ValueError("A dispatch sheet needs at least one sale")
        if len(set(sale_ids)) != len(sale_ids):
            raise ValueError("A sale can appear only once on a dispatch sheet")

        sheet_id = uuid4()
        with LogContext.bind(dispatch_sheet_id=sheet_id):
            try:
                sales = self._locked_sales(sale_ids)
                collected = self._sales_with_collections(sale_ids)
                for sale_id in sale_ids:
                    sale = sales.get(sale_id)
                    if sale is None:
                        raise SaleNotFoundError(str(sale_id))
                    if (
                        sale.dispatch_status != DispatchStatus.PENDING
                        or sale.status == SaleStatus.CANCELED
                    ):
                        raise SaleNotDispatchableError(
                            str(sale_id), enum_value(sale.dispatch_status)
                        )
                    if sale_id in collected:
                        raise SaleNotDispatchableError(
                            str(sale_id),
                            enum_value(sale.dispatch_status),
                            reason="collections already reported against it",
                        )

                code = format_sequence_code(
                    DISPATCH_CODE_PREFIX,
                    self._sequences.next_value(SequenceService.DISPATCH_SHEET),
                )
                sheet = DispatchSheetModel(
                    id=sheet_id,
                    code=code,
                    vehicle_id=vehicle_id,
                    status=DispatchSheetStatus.PENDING.value,
                    dispatch_date=dispatch_date or self._clock.today(),
                )
                for position, sale_id in enumerate(sale_ids):
                    sheet.sale_links.append(
                        DispatchSheetSaleModel(sale_id=sale_id, position=position)
                    )
                    sales[sale_id].dispatch_status = DispatchStatus.ASSIGNED.value
                self._session.add(sheet)
                self._session.flush()
                self._session.commit()
            except Exception:
                self._session.rollback()
                raise

            logger.info(
                "dispatch_sheet_created",
                extra={
                    "dispatch_code": sheet.code,
                    "vehicle_id": vehicle_id,
                    "sale_count": len(sale_ids),
                },
            )
        return sheet

    def start_route(self, sheet_id: UUID) -> DispatchSheetModel:
        """Sheet and its sales go in transit."""
        try:
            sheet = self._locked_sheet(sheet_id)
            if sheet.is_completed:
                raise DispatchAlreadyLiquidatedError(str(sheet.id), sheet.code)
            sheet.status = DispatchSheetStatus.IN_TRANSIT.value
            for sale in self._locked_sales(sheet.sale_ids).values():
                sale.dispatch_status = DispatchStatus.IN_TRANSIT.value
            self._session.flush()
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

        logger.info("dispatch_sheet_in_transit", extra={"dispatch_code": sheet.code})
        return sheet

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

    def get_by_code(self, code: str) -> DispatchSheetModel:
        sheet = self._session.execute(
            select(DispatchSheetModel).where(DispatchSheetModel.code == code)
        ).scalar_one_or_none()
        if sheet is None:
            raise DispatchSheetNotFoundError(code)
        return sheet
