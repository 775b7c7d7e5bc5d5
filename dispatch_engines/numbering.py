"""
Module: dispatch_engines.numbering
Responsibility:
    Pure rules of document numbering: FACTURA/BOLETA classification from a
    client tax id, default fallback series, and number formatting.

Architecture position:
    Engines -- pure calculation layer.  DocumentNumberingService owns the
    locked counters.
"""

from __future__ import annotations

from dispatch_kernel.domain.values import DocumentType

RUC_LENGTH = 11
DOCUMENT_NUMBER_WIDTH = 8
MAX_DOCUMENT_NUMBER = 10**DOCUMENT_NUMBER_WIDTH - 1

# Used when no active series is configured for a type
DEFAULT_SERIES: dict[DocumentType, str] = {
    DocumentType.FACTURA: "F001",
    DocumentType.BOLETA: "B001",
    DocumentType.NOTA_CREDITO: "NC01",
    DocumentType.GUIA: "T001",
}

# Credit-note reference carried by a partial return until finalize numbers it
CREDIT_NOTE_PLACEHOLDER = "TBD"


def classify_document_type(tax_id: str | None) -> DocumentType:
    """
    FACTURA iff the tax id is an 11-digit RUC, else BOLETA.

    Callers pass the order's snapshot, never the live client record.
    """
    value = (tax_id or "").strip()
    if len(value) == RUC_LENGTH and value.isdigit():
        return DocumentType.FACTURA
    return DocumentType.BOLETA


def default_series_for(document_type: DocumentType | str) -> str:
    return DEFAULT_SERIES[DocumentType(document_type)]


def format_document_number(number: int) -> str:
    """Zero-pad a document number to eight digits."""
    if number < 1 or number > MAX_DOCUMENT_NUMBER:
        raise ValueError(f"Document number out of range: {number}")
    return str(number).zfill(DOCUMENT_NUMBER_WIDTH)


def format_document_ref(series: str, number: int) -> str:
    """Printed reference, e.g. F001-00000042."""
    return f"{series}-{format_document_number(number)}"


def format_sequence_code(prefix: str, value: int) -> str:
    """Internal codes such as PED-00000001 or HR-00000001."""
    return f"{prefix}-{str(value).zfill(DOCUMENT_NUMBER_WIDTH)}"
