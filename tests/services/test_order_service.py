"""
Tests for OrderService.

Covers:
- Client snapshot and suggested document type at creation
- Order codes from the order sequence
- Lenient allocation records the shortfall per line
- Combo lines carry their component snapshot
- Revise and reject release the old allocations
- Only pending orders can be revised or rejected
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from dispatch_kernel.domain.values import DocumentType, PaymentMethod, UnitType
from dispatch_kernel.exceptions import (
    ClientNotFoundError,
    InsufficientStockError,
    OrderNotFoundError,
    OrderNotPendingError,
    ProductNotFoundError,
)
from dispatch_kernel.logging_config import LogContext
from dispatch_kernel.models.order import OrderModel, OrderStatus
from dispatch_kernel.selectors.inventory_selector import InventorySelector
from dispatch_services import OrderService
from dispatch_services.types import ClientSnapshotInput, LineInput, OrderInput
from tests.conftest import DNI_CLIENT_DOC, client_snapshot


@pytest.fixture
def orders(session, clock):
    return OrderService(session, clock)


@pytest.fixture
def water(make_product, receive):
    product = make_product("AGUA 625ML", package_content=12, price_unit="1.50", price_package="15.00")
    receive(product, 30, date(2025, 3, 1), code="A")
    return product


def order_input(client, *lines, payment_method=PaymentMethod.CREDITO):
    return OrderInput(client=client_snapshot(client), payment_method=payment_method, lines=lines)


class TestCreateOrder:
    def test_snapshot_and_suggested_factura(self, orders, make_client, water):
        client = make_client("BODEGA SAN MARTIN")

        order = orders.create_order(order_input(client, LineInput(water.id, 1, UnitType.PKG)))

        assert order.code == "PED-00000001"
        assert order.client_name == "BODEGA SAN MARTIN"
        assert order.client_doc_number == client.doc_number
        assert order.client_address == "JR. LAS FLORES 456"
        assert order.suggested_document_type == DocumentType.FACTURA.value
        assert order.status == OrderStatus.PENDING.value
        assert order.total == Decimal("15.00")

    def test_dni_client_suggests_boleta(self, orders, make_client, water):
        client = make_client("JUAN PEREZ", doc_number=DNI_CLIENT_DOC)

        order = orders.create_order(order_input(client, LineInput(water.id, 2)))

        assert order.suggested_document_type == DocumentType.BOLETA.value
        assert order.total == Decimal("3.00")

    def test_snapshot_fields_win_over_registry(self, orders, make_client, water):
        client = make_client("BODEGA SAN MARTIN")

        order = orders.create_order(
            OrderInput(
                client=ClientSnapshotInput(client_id=client.id, name="BODEGA SM SUCURSAL 2"),
                payment_method=PaymentMethod.CONTADO,
                lines=(LineInput(water.id, 1),),
            )
        )

        assert order.client_name == "BODEGA SM SUCURSAL 2"
        assert order.client_doc_number == client.doc_number

    def test_codes_are_consecutive(self, orders, make_client, water):
        client = make_client()

        first = orders.create_order(order_input(client, LineInput(water.id, 1)))
        second = orders.create_order(order_input(client, LineInput(water.id, 1)))

        assert (first.code, second.code) == ("PED-00000001", "PED-00000002")

    def test_stock_is_allocated_per_line(self, session, orders, make_client, water):
        client = make_client()

        order = orders.create_order(order_input(client, LineInput(water.id, 2, UnitType.PKG)))

        (item,) = order.items
        assert item.quantity_base == 24
        assert item.allocation_set.quantity_for_product(water.id) == 24
        assert InventorySelector(session).stock_on_hand(water.id) == 6

    def test_lenient_shortfall_is_recorded(self, session, orders, make_client, water, captured_logs):
        client = make_client()

        order = orders.create_order(order_input(client, LineInput(water.id, 3, UnitType.PKG)))

        (item,) = order.items
        assert item.quantity_base == 36
        assert item.shortfall == 6
        assert InventorySelector(session).stock_on_hand(water.id) == 0
        created = [r for r in captured_logs() if r["message"] == "order_created"]
        assert created[0]["shortfall"] == 6

    def test_strict_allocation_rejects_and_writes_nothing(self, session, clock, make_client, water):
        client = make_client()
        strict = OrderService(session, clock, strict_allocation=True)

        with pytest.raises(InsufficientStockError):
            strict.create_order(order_input(client, LineInput(water.id, 31)))

        assert session.query(OrderModel).count() == 0
        assert InventorySelector(session).stock_on_hand(water.id) == 30

    def test_promo_line_is_free(self, orders, make_client, water):
        client = make_client()

        order = orders.create_order(
            order_input(client, LineInput(water.id, 1, UnitType.PKG), LineInput(water.id, 2, is_promo=True))
        )

        assert [item.total_price for item in order.items] == [Decimal("15.00"), Decimal("0.00")]
        assert order.total == Decimal("15.00")

    def test_combo_line_keeps_component_snapshot(self, session, orders, make_client, make_product, make_combo, receive, water):
        cup = make_product("VASO DESCARTABLE", package_content=50, price_unit="0.10", price_package="4.00")
        receive(cup, 100, date(2025, 5, 1))
        combo = make_combo("PACK FIESTA", "20.00", [(water, 1, UnitType.PKG), (cup, 10, UnitType.UND)])
        client = make_client()

        order = orders.create_order(order_input(client, LineInput(combo.id, 2, UnitType.COMBO)))

        (item,) = order.items
        assert item.combo_id == combo.id
        assert item.product_id is None
        assert item.quantity_base == 2
        assert item.total_price == Decimal("40.00")
        assert [(part["base_units"], part["unit_type"]) for part in item.combo_snapshot] == [
            (12, "PKG"),
            (10, "UND"),
        ]
        assert item.allocation_set.quantity_for_product(water.id) == 24
        assert item.allocation_set.quantity_for_product(cup.id) == 20

    def test_unknown_product_writes_nothing(self, session, orders, make_client, water):
        client = make_client()

        with pytest.raises(ProductNotFoundError):
            orders.create_order(order_input(client, LineInput(water.id, 1), LineInput(uuid4(), 1)))

        assert session.query(OrderModel).count() == 0
        assert InventorySelector(session).stock_on_hand(water.id) == 30

    def test_unknown_client(self, orders, water):
        with pytest.raises(ClientNotFoundError):
            orders.create_order(
                OrderInput(
                    client=ClientSnapshotInput(client_id=uuid4()),
                    payment_method=PaymentMethod.CREDITO,
                    lines=(LineInput(water.id, 1),),
                )
            )

    def test_order_needs_lines(self, make_client):
        with pytest.raises(ValueError):
            OrderInput(client=ClientSnapshotInput(name="X"), payment_method="CREDITO", lines=())


class TestReviseOrder:
    def test_revision_reallocates(self, session, orders, make_client, water):
        client = make_client()
        order = orders.create_order(order_input(client, LineInput(water.id, 2, UnitType.PKG)))
        old_set = order.items[0].allocation_set

        revised = orders.revise_order(order.id, [LineInput(water.id, 5)])

        assert old_set.is_released
        assert [item.quantity_base for item in revised.items] == [5]
        assert revised.total == Decimal("7.50")
        assert InventorySelector(session).stock_on_hand(water.id) == 25

    def test_revision_can_reuse_released_stock(self, session, orders, make_client, water):
        client = make_client()
        order = orders.create_order(order_input(client, LineInput(water.id, 30)))

        revised = orders.revise_order(order.id, [LineInput(water.id, 30)])

        assert revised.items[0].shortfall == 0

    def test_revise_processed_order_rejected(self, session, orders, make_client, water):
        client = make_client()
        order = orders.create_order(order_input(client, LineInput(water.id, 1)))
        order.status = OrderStatus.PROCESSED.value
        session.commit()

        with pytest.raises(OrderNotPendingError):
            orders.revise_order(order.id, [LineInput(water.id, 2)])

    def test_unknown_order(self, orders, water):
        with pytest.raises(OrderNotFoundError):
            orders.revise_order(uuid4(), [LineInput(water.id, 1)])


class TestRejectOrder:
    def test_reject_returns_stock(self, session, orders, make_client, water):
        client = make_client()
        order = orders.create_order(order_input(client, LineInput(water.id, 20)))

        rejected = orders.reject_order(order.id)

        assert rejected.status == OrderStatus.REJECTED.value
        assert InventorySelector(session).stock_on_hand(water.id) == 30

    def test_reject_twice(self, orders, make_client, water):
        client = make_client()
        order = orders.create_order(order_input(client, LineInput(water.id, 1)))
        orders.reject_order(order.id)

        with pytest.raises(OrderNotPendingError):
            orders.reject_order(order.id)

    def test_rejected_order_leaves_pending_list(self, orders, make_client, water):
        client = make_client()
        kept = orders.create_order(order_input(client, LineInput(water.id, 1)))
        dropped = orders.create_order(order_input(client, LineInput(water.id, 1)))

        orders.reject_order(dropped.id)

        assert [o.id for o in orders.pending_orders()] == [kept.id]


class TestGetOrder:
    def test_found(self, orders, make_client, water):
        client = make_client()
        order = orders.create_order(order_input(client, LineInput(water.id, 3)))

        fetched = orders.get_order(order.id)

        assert fetched.code == order.code
        assert fetched.is_pending

    def test_rejected_is_not_pending(self, orders, make_client, water):
        client = make_client()
        order = orders.create_order(order_input(client, LineInput(water.id, 3)))
        orders.reject_order(order.id)

        assert not orders.get_order(order.id).is_pending

    def test_unknown(self, orders):
        with pytest.raises(OrderNotFoundError):
            orders.get_order(uuid4())


class TestOrderLogContext:
    def test_order_id_bound_per_operation(self, orders, make_client, water, captured_logs):
        client = make_client()
        first = orders.create_order(order_input(client, LineInput(water.id, 1)))
        second = orders.create_order(order_input(client, LineInput(water.id, 1)))

        orders.reject_order(first.id)

        logs = captured_logs()
        created = [r["order_id"] for r in logs if r["message"] == "order_created"]
        released = [r for r in logs if r["message"] == "allocation_set_released"]
        assert created == [str(first.id), str(second.id)]
        assert released[-1]["order_id"] == str(first.id)
        assert LogContext.get_all() == {}
