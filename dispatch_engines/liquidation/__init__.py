"""
Liquidation - Pure reconciliation of a dispatch sheet's sales.

The stateful, persisted session lives in
dispatch_services.liquidation_service.
"""

from dispatch_engines.liquidation.reconciler import (
    UNDECIDED,
    VOID_REASON_MIN_LENGTH,
    LiquidationReconciler,
    check_money_conservation,
    compute_totals,
    credit_disposition,
    paid_disposition,
    partial_return_disposition,
    stock_return_instructions,
    void_disposition,
)
from dispatch_engines.liquidation.types import (
    ComponentShare,
    Disposition,
    LiquidationTotals,
    ReturnedLine,
    ReturnEntry,
    SaleLine,
    SaleSnapshot,
    StockReturnInstruction,
)

__all__ = [
    "UNDECIDED",
    "VOID_REASON_MIN_LENGTH",
    "LiquidationReconciler",
    "check_money_conservation",
    "compute_totals",
    "credit_disposition",
    "paid_disposition",
    "partial_return_disposition",
    "stock_return_instructions",
    "void_disposition",
    "ComponentShare",
    "Disposition",
    "LiquidationTotals",
    "ReturnedLine",
    "ReturnEntry",
    "SaleLine",
    "SaleSnapshot",
    "StockReturnInstruction",
]
