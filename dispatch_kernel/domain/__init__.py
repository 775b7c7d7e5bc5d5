"""Pure domain vocabulary: clock abstraction and shared value enums."""

from dispatch_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from dispatch_kernel.domain.values import (
    CollectionStatus,
    DocumentType,
    LiquidationAction,
    PaymentMethod,
    PaymentStatus,
    SunatStatus,
    UnitType,
    boxes_and_units_to_base,
    conversion_factor,
    to_base_units,
)

__all__ = [
    "Clock",
    "SystemClock",
    "DeterministicClock",
    "UnitType",
    "DocumentType",
    "PaymentMethod",
    "PaymentStatus",
    "CollectionStatus",
    "LiquidationAction",
    "SunatStatus",
    "conversion_factor",
    "to_base_units",
    "boxes_and_units_to_base",
]
