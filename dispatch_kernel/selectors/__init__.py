"""Selectors for the dispatch kernel (read side)."""

from dispatch_kernel.selectors.inventory_selector import (
    AllocationInfo,
    BatchInfo,
    InventorySelector,
    KardexLine,
)

__all__ = [
    "AllocationInfo",
    "BatchInfo",
    "InventorySelector",
    "KardexLine",
]
