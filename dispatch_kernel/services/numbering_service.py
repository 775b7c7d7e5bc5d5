"""
DocumentNumberingService -- series + sequential number per document type.

Responsibility:
    Issues (series, number) pairs for FACTURA, BOLETA, GUIA and
    NOTA_CREDITO documents from the DocumentSeriesModel rows.

Architecture position:
    Kernel > Services -- imperative shell.
    Called by the order processing, sale and liquidation services inside
    their own transaction.

Invariants enforced:
    - Numbering monotonicity: current_number goes up by exactly one per
      issued document while the series row is locked
      (``SELECT ... FOR UPDATE``).  The lock is held until the caller's
      transaction ends, so a batch call threads the counter for every
      document it issues.
    - No duplicate (document_type, series, number): the counter row is the
      only source of the next number.

Failure modes:
    - ValueError from format_document_number when a series runs past
      99999999.

Degraded path:
    When no active series exists for a type, the default series
    (F001 / B001 / NC01 / T001) is used and persisted so repeated fallbacks
    continue the same counter.  Logged at WARNING.
"""

from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from dispatch_engines.numbering import (
    default_series_for,
    format_document_number,
    format_document_ref,
)
from dispatch_kernel.domain.values import DocumentType
from dispatch_kernel.logging_config import get_logger
from dispatch_kernel.models.document_series import DocumentSeriesModel
from dispatch_kernel.services.base import BaseService

logger = get_logger("services.numbering")


@dataclass(frozen=True)
class DocumentNumber:
    """An issued document number."""

    document_type: DocumentType
    series: str
    number: int
    fallback: bool = False

    @property
    def formatted_number(self) -> str:
        return format_document_number(self.number)

    @property
    def ref(self) -> str:
        return format_document_ref(self.series, self.number)


class DocumentNumberingService(BaseService):
    """
    Single writer of document series counters.

    Contract:
        next_number() returns the next number for a document type and
        flushes the incremented counter.  The caller commits.

    Guarantees:
        - When several series are active for one type, the lowest series
          code is used.
        - The series row stays locked until the caller's transaction ends.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
        - Does NOT decide the document type; see classify_document_type.
    """

    def _locked_active_series(self, document_type: DocumentType) -> DocumentSeriesModel | None:
        return self.session.execute(
            select(DocumentSeriesModel)
            .where(
                DocumentSeriesModel.document_type == document_type.value,
                DocumentSeriesModel.is_active.is_(True),
            )
            .order_by(DocumentSeriesModel.series)
            .limit(1)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _locked_series(self, document_type: DocumentType, series: str) -> DocumentSeriesModel | None:
        return self.session.execute(
            select(DocumentSeriesModel)
            .where(
                DocumentSeriesModel.document_type == document_type.value,
                DocumentSeriesModel.series == series,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _fallback_series(self, document_type: DocumentType) -> DocumentSeriesModel:
        series = default_series_for(document_type)
        row = self._locked_series(document_type, series)

        logger.warning(
            "document_series_fallback",
            extra={
                "document_type": document_type.value,
                "series": series,
                "existing_row": row is not None,
            },
        )

        if row is not None:
            return row

        savepoint = self.session.begin_nested()
        try:
            row = DocumentSeriesModel(
                document_type=document_type.value,
                series=series,
                current_number=0,
                is_active=False,
            )
            self.session.add(row)
            self.session.flush()
            savepoint.commit()
            return row
        except IntegrityError:
            savepoint.rollback()
            row = self._locked_series(document_type, series)
            if row is None:
                raise
            return row

    def next_number(self, document_type: DocumentType | str) -> DocumentNumber:
        """
        Issue the next number of the active series for ``document_type``.

        Postconditions:
            - The returned number is exactly one more than the series'
              previous current_number, and current_number now equals it.
        """
        document_type = DocumentType(document_type)

        row = self._locked_active_series(document_type)
        fallback = row is None
        if row is None:
            row = self._fallback_series(document_type)

        number = row.current_number + 1
        # Validates the eight-digit range before the counter moves
        format_document_number(number)
        row.current_number = number
        self.session.flush()

        logger.info(
            "document_number_issued",
            extra={
                "document_type": document_type.value,
                "series": row.series,
                "number": number,
                "fallback": fallback,
            },
        )

        return DocumentNumber(
            document_type=document_type,
            series=row.series,
            number=number,
            fallback=fallback,
        )

    def current_number(self, document_type: DocumentType | str, series: str) -> int | None:
        """Last number issued for a series, None if the series does not exist."""
        document_type = DocumentType(document_type)
        row = self.session.execute(
            select(DocumentSeriesModel).where(
                DocumentSeriesModel.document_type == document_type.value,
                DocumentSeriesModel.series == series,
            )
        ).scalar_one_or_none()
        return row.current_number if row else None

    def ensure_series(
        self,
        document_type: DocumentType | str,
        series: str,
        current_number: int = 0,
        is_active: bool = True,
    ) -> DocumentSeriesModel:
        """Create a series row if missing; an existing row is left untouched."""
        document_type = DocumentType(document_type)
        row = self._locked_series(document_type, series)
        if row is not None:
            return row

        row = DocumentSeriesModel(
            document_type=document_type.value,
            series=series,
            current_number=current_number,
            is_active=is_active,
        )
        self.session.add(row)
        self.session.flush()

        logger.info(
            "document_series_created",
            extra={
                "document_type": document_type.value,
                "series": series,
                "current_number": current_number,
                "is_active": is_active,
            },
        )
        return row
