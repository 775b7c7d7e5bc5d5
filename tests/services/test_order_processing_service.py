"""
Tests for OrderProcessingService.

Covers:
- Oldest-first numbering with consecutive numbers per series
- FACTURA / BOLETA from the order snapshot, not the live client
- Sale totals, IGV split and opening balance
- Allocation sets moved from order lines to sale lines
- Batch atomicity (FatalError rolls back every order)
"""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from dispatch_kernel.domain.values import CollectionStatus, DocumentType, PaymentStatus, UnitType
from dispatch_kernel.exceptions import FatalError, OrderNotFoundError, OrderNotPendingError
from dispatch_kernel.models.order import OrderStatus
from dispatch_kernel.models.sale import DispatchStatus, SaleModel
from dispatch_kernel.services.numbering_service import DocumentNumberingService
from dispatch_services import OrderProcessingService, OrderService, order_processing_service
from dispatch_services.types import LineInput, OrderInput
from tests.conftest import DNI_CLIENT_DOC, client_snapshot


@pytest.fixture
def water(make_product, receive):
    product = make_product("AGUA 625ML", package_content=12, price_unit="1.50", price_package="15.00")
    receive(product, 500, date(2025, 3, 1))
    return product


@pytest.fixture
def take_order(session, clock, water):
    service = OrderService(session, clock)

    def _take(client, packages=10):
        return service.create_order(
            OrderInput(
                client=client_snapshot(client),
                payment_method="CREDITO",
                lines=(LineInput(water.id, packages, UnitType.PKG),),
            )
        )

    return _take


@pytest.fixture
def processing(session, clock, seeded_series):
    return OrderProcessingService(session, clock)


class TestProcessOrders:
    def test_document_type_per_client(self, processing, take_order, make_client):
        company = take_order(make_client("BODEGA SAN MARTIN"))
        person = take_order(make_client("JUAN PEREZ", doc_number=DNI_CLIENT_DOC))

        sales = processing.process_orders([company.id, person.id])

        assert [(s.document_type, s.document_ref) for s in sales] == [
            (DocumentType.FACTURA.value, "F001-00000001"),
            (DocumentType.BOLETA.value, "B001-00000001"),
        ]

    def test_oldest_order_numbered_first(self, clock, processing, take_order, make_client):
        client = make_client()
        clock.advance(60)
        newer = take_order(client)
        clock.set_time(datetime(2024, 12, 31, 8, 0, tzinfo=timezone.utc))
        older = take_order(client)

        sales = processing.process_orders([newer.id, older.id])

        assert [s.origin_order_id for s in sales] == [older.id, newer.id]
        assert [s.document_ref for s in sales] == ["F001-00000001", "F001-00000002"]

    def test_counter_threaded_through_batch(self, session, processing, take_order, make_client):
        DocumentNumberingService(session).ensure_series(DocumentType.FACTURA, "F002", is_active=False)
        session.commit()
        client = make_client()
        ids = [take_order(client).id for _ in range(5)]

        sales = processing.process_orders(ids)

        assert [s.number for s in sales] == [f"{n:08d}" for n in range(1, 6)]
        assert DocumentNumberingService(session).current_number(DocumentType.FACTURA, "F001") == 5

    def test_sale_amounts(self, processing, take_order, make_client):
        order = take_order(make_client())

        (sale,) = processing.process_orders([order.id])

        assert sale.total == Decimal("150.00")
        assert sale.subtotal == Decimal("127.12")
        assert sale.igv == Decimal("22.88")
        assert sale.balance == sale.total
        assert sale.payment_status == PaymentStatus.PENDING.value
        assert sale.collection_status == CollectionStatus.NONE.value
        assert sale.dispatch_status == DispatchStatus.PENDING.value

    def test_snapshot_wins_over_live_client(self, session, processing, take_order, make_client):
        client = make_client()
        order = take_order(client)
        client.doc_number = DNI_CLIENT_DOC
        client.name = "RENAMED"
        session.commit()

        (sale,) = processing.process_orders([order.id])

        assert sale.document_type == DocumentType.FACTURA.value
        assert sale.client_name == "BODEGA SAN MARTIN"

    def test_address_backfilled_from_registry(self, session, processing, take_order, make_client):
        client = make_client(address=None)
        order = take_order(client)
        client.address = "AV. LOS OLIVOS 100"
        session.commit()

        (sale,) = processing.process_orders([order.id])

        assert sale.client_address == "AV. LOS OLIVOS 100"

    def test_allocation_sets_transferred(self, processing, take_order, make_client):
        order = take_order(make_client())
        order_set_ids = [item.allocation_set_id for item in order.items]

        (sale,) = processing.process_orders([order.id])

        assert [item.allocation_set_id for item in sale.items] == order_set_ids
        assert sale.items[0].quantity_base == 120
        assert sale.items[0].selected_unit == UnitType.PKG.value

    def test_orders_marked_processed(self, processing, take_order, make_client):
        order = take_order(make_client())

        processing.process_orders([order.id])

        assert order.status == OrderStatus.PROCESSED.value

    def test_none_processes_every_pending_order(self, session, processing, take_order, make_client):
        client = make_client()
        take_order(client)
        take_order(client)

        sales = processing.process_orders()

        assert len(sales) == 2
        assert session.query(SaleModel).count() == 2

    def test_processed_order_cannot_be_processed_again(self, processing, take_order, make_client):
        order = take_order(make_client())
        processing.process_orders([order.id])

        with pytest.raises(OrderNotPendingError):
            processing.process_orders([order.id])

    def test_unknown_order_rolls_back(self, session, processing, take_order, make_client):
        order = take_order(make_client())

        with pytest.raises(OrderNotFoundError):
            processing.process_orders([order.id, uuid4()])

        assert session.query(SaleModel).count() == 0


class TestBatchAtomicity:
    def test_unexpected_failure_rolls_back_everything(
        self, session, processing, take_order, make_client, monkeypatch, captured_logs
    ):
        client = make_client()
        ids = [take_order(client).id for _ in range(3)]
        calls = {"n": 0}

        real_split = order_processing_service.split_igv

        def failing_split(total, rate):
            calls["n"] += 1
            if calls["n"] == 3:
                raise RuntimeError("printer offline")
            return real_split(total, rate)

        monkeypatch.setattr(order_processing_service, "split_igv", failing_split)

        with pytest.raises(FatalError) as exc_info:
            processing.process_orders(ids)

        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert session.query(SaleModel).count() == 0
        assert DocumentNumberingService(session).current_number(DocumentType.FACTURA, "F001") == 0
        assert all(o.status == OrderStatus.PENDING.value for o in OrderService(session).pending_orders())
        assert len(OrderService(session).pending_orders()) == 3
        assert any(r["message"] == "order_batch_rolled_back" for r in captured_logs())

    def test_numbers_reused_after_rollback(self, processing, take_order, make_client, monkeypatch):
        order = take_order(make_client())

        def broken_split(total, rate):
            raise RuntimeError("boom")

        with monkeypatch.context() as patch:
            patch.setattr(order_processing_service, "split_igv", broken_split)
            with pytest.raises(FatalError):
                processing.process_orders([order.id])

        (sale,) = processing.process_orders([order.id])

        assert sale.document_ref == "F001-00000001"

    def test_order_days_apart(self, clock, processing, take_order, make_client):
        client = make_client()
        first = take_order(client)
        clock.advance(int(timedelta(days=1).total_seconds()))
        second = take_order(client)

        sales = processing.process_orders([second.id, first.id])

        assert [s.origin_order_id for s in sales] == [first.id, second.id]
