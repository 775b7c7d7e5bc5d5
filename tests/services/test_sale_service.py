"""
Tests for SaleService (counter sales).

Covers:
- CONTADO settles on the spot with one INCOME cash movement
- CREDITO opens a receivable
- Strict allocation rejects a shortfall without writing anything
- Kardex entries reference the printed document
"""

from datetime import date
from decimal import Decimal

import pytest

from dispatch_kernel.domain.values import CollectionStatus, PaymentMethod, PaymentStatus, UnitType
from dispatch_kernel.exceptions import InsufficientStockError
from dispatch_kernel.logging_config import LogContext
from dispatch_kernel.models.movements import CashMovementModel, MovementReason
from dispatch_kernel.models.sale import SaleModel
from dispatch_kernel.selectors.inventory_selector import InventorySelector
from dispatch_kernel.services.numbering_service import DocumentNumberingService
from dispatch_services import SaleService
from dispatch_services.sale_service import SALE_CASH_CATEGORY
from dispatch_services.types import LineInput
from tests.conftest import DNI_CLIENT_DOC, sale_input


@pytest.fixture
def sales(session, clock, seeded_series):
    return SaleService(session, clock)


@pytest.fixture
def water(make_product, receive):
    product = make_product()
    receive(product, 24, date(2025, 3, 1), code="A")
    return product


class TestCreateSale:
    def test_contado_is_collected_immediately(self, session, sales, make_client, water):
        client = make_client()

        sale = sales.create_sale(
            sale_input(client, LineInput(water.id, 1, UnitType.PKG), payment_method=PaymentMethod.CONTADO)
        )

        assert sale.document_ref == "F001-00000001"
        assert sale.total == Decimal("15.00")
        assert sale.balance == Decimal("0")
        assert sale.payment_status == PaymentStatus.PAID.value
        assert sale.collection_status == CollectionStatus.COLLECTED.value

        (movement,) = session.query(CashMovementModel).all()
        assert movement.category_name == SALE_CASH_CATEGORY
        assert movement.amount == Decimal("15.00")
        assert movement.reference_id == "F001-00000001"

    def test_credito_opens_receivable(self, session, sales, make_client, water):
        client = make_client("JUAN PEREZ", doc_number=DNI_CLIENT_DOC)

        sale = sales.create_sale(sale_input(client, LineInput(water.id, 4)))

        assert sale.document_ref == "B001-00000001"
        assert sale.balance == sale.total == Decimal("6.00")
        assert sale.payment_status == PaymentStatus.PENDING.value
        assert sale.collection_status == CollectionStatus.NONE.value
        assert session.query(CashMovementModel).count() == 0

    def test_kardex_references_document(self, session, sales, make_client, water):
        client = make_client()

        sales.create_sale(sale_input(client, LineInput(water.id, 5)))

        outs = [k for k in InventorySelector(session).kardex(water.id) if k.direction == "OUT"]
        assert [(k.reason, k.document_ref, k.quantity) for k in outs] == [
            (MovementReason.SALE.value, "F001-00000001", 5)
        ]

    def test_igv_split(self, sales, make_client, water):
        client = make_client()

        sale = sales.create_sale(sale_input(client, LineInput(water.id, 1, UnitType.PKG, unit_price=Decimal("150.00"))))

        assert (sale.subtotal, sale.igv) == (Decimal("127.12"), Decimal("22.88"))

    def test_shortfall_rejected_without_writes(self, session, sales, make_client, water):
        client = make_client()

        with pytest.raises(InsufficientStockError):
            sales.create_sale(
                sale_input(
                    client,
                    LineInput(water.id, 1, UnitType.PKG),
                    LineInput(water.id, 13),
                    payment_method=PaymentMethod.CONTADO,
                )
            )

        assert session.query(SaleModel).count() == 0
        assert session.query(CashMovementModel).count() == 0
        assert InventorySelector(session).stock_on_hand(water.id) == 24
        assert DocumentNumberingService(session).current_number("FACTURA", "F001") == 0

    def test_lenient_sales_allowed_when_configured(self, session, clock, seeded_series, make_client, water):
        lenient = SaleService(session, clock, strict_allocation=False)

        sale = lenient.create_sale(sale_input(make_client(), LineInput(water.id, 30)))

        assert sale.items[0].quantity_base == 30
        assert InventorySelector(session).stock_on_hand(water.id) == 0


class TestSaleLogContext:
    def test_allocation_logs_carry_sale_id(self, sales, make_client, water, captured_logs):
        sale = sales.create_sale(sale_input(make_client(), LineInput(water.id, 2)))

        allocated = [r for r in captured_logs() if r["message"] == "stock_allocated"]
        assert allocated[-1]["sale_id"] == str(sale.id)
        assert LogContext.get_all() == {}
