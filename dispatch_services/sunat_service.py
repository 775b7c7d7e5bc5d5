"""
Module: dispatch_services.sunat_service
Responsibility:
    Submission of sales documents and dispatch guides to the tax
    authority (SUNAT) through a pluggable gateway, and persistence of the
    answer on the document.

Architecture:
    The gateway is an interface; the real PSE/OSE client lives outside this
    package.  SimulatedSunatGateway stands in for it in demos and tests and
    takes its randomness from an injected ``random.Random``.

Invariants:
    - Every submission ends with a final status (ACCEPTED, REJECTED or
      EXCEPTED), a message and the send timestamp.
    - A gateway failure is recorded as REJECTED; there is no retry.
"""

from __future__ import annotations

import random
from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum
from uuid import UUID

from sqlalchemy.orm import Session

from dispatch_kernel.domain.clock import Clock, SystemClock
from dispatch_kernel.domain.values import SunatStatus
from dispatch_kernel.exceptions import DispatchSheetNotFoundError, SaleNotFoundError
from dispatch_kernel.logging_config import get_logger
from dispatch_kernel.models.dispatch import DispatchSheetModel
from dispatch_kernel.models.sale import SaleModel

logger = get_logger("services.sunat")

_FINAL_STATUSES = frozenset({SunatStatus.ACCEPTED, SunatStatus.REJECTED, SunatStatus.EXCEPTED})


class SunatDocumentKind(str, Enum):
    SALE = "sale"
    DISPATCH = "dispatch"


@dataclass(frozen=True)
class SunatResult:
    status: SunatStatus
    message: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "status", SunatStatus(self.status))
        if self.status not in _FINAL_STATUSES:
            raise ValueError(f"Not a final SUNAT status: {self.status.value}")


class SunatGateway(ABC):
    """Sends one document to the tax authority and returns its verdict."""

    @abstractmethod
    def submit(self, kind: SunatDocumentKind, document_id: UUID, document_ref: str) -> SunatResult:
        ...


class SimulatedSunatGateway(SunatGateway):
    """Accepts ``success_rate`` of the submissions at random."""

    ACCEPTED_MESSAGE = "Comprobante aceptado exitosamente por SUNAT."
    REJECTED_MESSAGE = "Error de conexion o comprobante rechazado (simulacion)."

    def __init__(self, rng: random.Random, success_rate: float = 0.9):
        if not 0.0 <= success_rate <= 1.0:
            raise ValueError(f"success_rate must be within [0, 1]: {success_rate}")
        self._rng = rng
        self._success_rate = success_rate

    def submit(self, kind: SunatDocumentKind, document_id: UUID, document_ref: str) -> SunatResult:
        if self._rng.random() < self._success_rate:
            return SunatResult(SunatStatus.ACCEPTED, self.ACCEPTED_MESSAGE)
        return SunatResult(SunatStatus.REJECTED, self.REJECTED_MESSAGE)


class SunatService:
    def __init__(self, session: Session, gateway: SunatGateway, clock: Clock | None = None):
        self._session = session
        self._gateway = gateway
        self._clock = clock or SystemClock()

    def _load(self, kind: SunatDocumentKind, document_id: UUID) -> SaleModel | DispatchSheetModel:
        if kind == SunatDocumentKind.SALE:
            sale = self._session.get(SaleModel, document_id)
            if sale is None:
                raise SaleNotFoundError(str(document_id))
            return sale
        sheet = self._session.get(DispatchSheetModel, document_id)
        if sheet is None:
            raise DispatchSheetNotFoundError(str(document_id))
        return sheet

    def _submit(self, kind: SunatDocumentKind, document_id: UUID) -> SunatResult:
        document = self._load(kind, document_id)
        document_ref = document.document_ref if kind == SunatDocumentKind.SALE else document.code

        try:
            result = self._gateway.submit(kind, document.id, document_ref)
        except Exception as exc:
            logger.warning(
                "sunat_gateway_failed",
                extra={"kind": kind.value, "document_ref": document_ref},
                exc_info=True,
            )
            result = SunatResult(SunatStatus.REJECTED, str(exc) or type(exc).__name__)

        try:
            document.sunat_status = result.status.value
            document.sunat_message = result.message
            document.sunat_sent_at = self._clock.now()
            self._session.flush()
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

        log = logger.info if result.status == SunatStatus.ACCEPTED else logger.warning
        log(
            "sunat_submission_recorded",
            extra={
                "kind": kind.value,
                "document_ref": document_ref,
                "sunat_status": result.status.value,
            },
        )
        return result

    def submit_sale(self, sale_id: UUID) -> SunatResult:
        return self._submit(SunatDocumentKind.SALE, sale_id)

    def submit_dispatch(self, dispatch_sheet_id: UUID) -> SunatResult:
        return self._submit(SunatDocumentKind.DISPATCH, dispatch_sheet_id)

    def submit_many(
        self,
        kind: SunatDocumentKind | str,
        document_ids: Sequence[UUID],
    ) -> dict[UUID, SunatResult]:
        """Submit each document on its own; one rejection does not stop the batch."""
        kind = SunatDocumentKind(kind)
        return {document_id: self._submit(kind, document_id) for document_id in document_ids}
