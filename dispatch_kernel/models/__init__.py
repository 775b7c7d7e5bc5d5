"""Domain models for the dispatch kernel."""

from dispatch_kernel.models.allocation import AllocationSetModel, BatchAllocationModel
from dispatch_kernel.models.batch import BatchModel
from dispatch_kernel.models.catalog import Client, Combo, ComboItem, Product
from dispatch_kernel.models.collection import CollectionRecordModel, CollectionRecordStatus
from dispatch_kernel.models.dispatch import (
    DispatchSheetModel,
    DispatchSheetSaleModel,
    DispatchSheetStatus,
)
from dispatch_kernel.models.document_series import DocumentSeriesModel
from dispatch_kernel.models.liquidation import (
    DispatchLiquidationModel,
    LiquidationDocumentModel,
    ReturnedItemModel,
)
from dispatch_kernel.models.movements import (
    CashMovementModel,
    CashMovementType,
    MovementDirection,
    MovementReason,
    StockMovementModel,
)
from dispatch_kernel.models.order import OrderItemModel, OrderModel, OrderStatus
from dispatch_kernel.models.sale import (
    DispatchStatus,
    SaleItemModel,
    SaleModel,
    SaleStatus,
)
from dispatch_kernel.models.sequence import SequenceCounter

__all__ = [
    "Product",
    "Combo",
    "ComboItem",
    "Client",
    "BatchModel",
    "AllocationSetModel",
    "BatchAllocationModel",
    "OrderModel",
    "OrderItemModel",
    "OrderStatus",
    "SaleModel",
    "SaleItemModel",
    "SaleStatus",
    "DispatchStatus",
    "DispatchSheetModel",
    "DispatchSheetSaleModel",
    "DispatchSheetStatus",
    "DispatchLiquidationModel",
    "LiquidationDocumentModel",
    "ReturnedItemModel",
    "DocumentSeriesModel",
    "StockMovementModel",
    "CashMovementModel",
    "CashMovementType",
    "MovementDirection",
    "MovementReason",
    "CollectionRecordModel",
    "CollectionRecordStatus",
    "SequenceCounter",
]
