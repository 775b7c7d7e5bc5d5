"""
dispatch_services -- Package init and public API.

Responsibility:
    Stateful orchestration over the pure engines (dispatch_engines/) and the
    kernel services.  This is the only layer that commits or rolls back a
    database session.

Architecture position:
    Services -- stateful orchestration over engines + kernel.

    Dependency direction:
        dispatch_services/ -> dispatch_engines/  (allowed)
        dispatch_services/ -> dispatch_kernel/   (allowed)
        dispatch_engines/  -> dispatch_services/ (FORBIDDEN)
        dispatch_kernel/   -> dispatch_services/ (FORBIDDEN)

Invariants enforced:
    - Each public service method is one transaction: commit on success,
      rollback on any failure.
"""

from dispatch_services.collection_service import CollectionService
from dispatch_services.dispatch_service import DispatchService
from dispatch_services.liquidation_service import LiquidationService, LiquidationSession
from dispatch_services.order_processing_service import OrderProcessingService
from dispatch_services.order_service import OrderService
from dispatch_services.sale_service import SaleService
from dispatch_services.sunat_service import (
    SimulatedSunatGateway,
    SunatDocumentKind,
    SunatGateway,
    SunatResult,
    SunatService,
)
from dispatch_services.types import (
    ClientSnapshotInput,
    LineInput,
    OrderInput,
    SaleInput,
)

__all__ = [
    "ClientSnapshotInput",
    "CollectionService",
    "DispatchService",
    "LineInput",
    "LiquidationService",
    "LiquidationSession",
    "OrderInput",
    "OrderProcessingService",
    "OrderService",
    "SaleInput",
    "SaleService",
    "SimulatedSunatGateway",
    "SunatDocumentKind",
    "SunatGateway",
    "SunatResult",
    "SunatService",
]
