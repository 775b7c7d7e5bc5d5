"""Services for the dispatch kernel (write side)."""

from dispatch_kernel.services.numbering_service import DocumentNumber, DocumentNumberingService
from dispatch_kernel.services.sequence_service import SequenceService
from dispatch_kernel.services.stock_ledger_service import ReturnOutcome, StockLedgerService

__all__ = [
    "DocumentNumber",
    "DocumentNumberingService",
    "ReturnOutcome",
    "SequenceService",
    "StockLedgerService",
]
