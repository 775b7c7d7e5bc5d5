"""
Pytest fixtures for the dispatch engine test suite.

Provides:
- A fresh in-memory SQLite database per test (tables created, immutability
  listeners registered)
- A deterministic clock
- Catalog and stock factories
- Seeded document series
- Structured log capture

Environment Variables:
- DATABASE_URL: run the suite against another database (e.g. PostgreSQL).
  If not set, uses in-memory SQLite.
"""

import itertools
import json
import logging
import os
from datetime import date
from decimal import Decimal
from io import StringIO

import pytest

from dispatch_config import get_active_config, seed_document_series
from dispatch_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session,
    init_engine_from_url,
    reset_engine,
)
from dispatch_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from dispatch_kernel.domain.clock import DeterministicClock
from dispatch_kernel.domain.values import PaymentMethod, UnitType
from dispatch_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from dispatch_kernel.models.catalog import Client, Combo, ComboItem, Product
from dispatch_kernel.services.stock_ledger_service import StockLedgerService
from dispatch_services.types import ClientSnapshotInput, LineInput, SaleInput

DEFAULT_DATABASE_URL = "sqlite://"

RUC_CLIENT_DOC = "20512345678"
DNI_CLIENT_DOC = "45678912"


def get_database_url() -> str:
    return os.environ.get("DATABASE_URL", DEFAULT_DATABASE_URL)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture dispatch_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, ledger):
            ledger.allocate(...)
            logs = captured_logs()
            assert any(r["message"] == "stock_allocated" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("dispatch_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
def engine():
    """Fresh database per test."""
    eng = init_engine_from_url(get_database_url(), echo=False)
    drop_tables()
    create_tables()
    register_immutability_listeners()
    yield eng
    unregister_immutability_listeners()
    drop_tables()
    reset_engine()


@pytest.fixture
def session(engine):
    s = get_session()
    yield s
    s.rollback()
    s.close()


@pytest.fixture
def clock():
    return DeterministicClock()


@pytest.fixture
def company_config():
    return get_active_config()


@pytest.fixture
def seeded_series(session, company_config):
    """F001, B001, FC01 and T001 at zero."""
    seed_document_series(session, company_config)
    session.commit()
    return company_config


# =============================================================================
# Catalog factories
# =============================================================================


@pytest.fixture
def make_product(session):
    counter = itertools.count(1)

    def _make(
        name: str = "AGUA MINERAL 625ML",
        package_content: int = 12,
        price_unit: str = "1.50",
        price_package: str = "15.00",
    ) -> Product:
        n = next(counter)
        product = Product(
            sku=f"SKU-{n:04d}",
            name=name,
            unit_label="UNIDAD",
            package_label="CAJA",
            package_content=package_content,
            price_unit=Decimal(price_unit),
            price_package=Decimal(price_package),
        )
        session.add(product)
        session.commit()
        return product

    return _make


@pytest.fixture
def make_combo(session):
    def _make(name: str, price: str, components) -> Combo:
        """components: iterable of (product, quantity, unit_type)."""
        combo = Combo(name=name, price=Decimal(price))
        for position, (product, quantity, unit_type) in enumerate(components):
            combo.items.append(
                ComboItem(
                    product_id=product.id,
                    quantity=quantity,
                    unit_type=UnitType(unit_type).value,
                    position=position,
                )
            )
        session.add(combo)
        session.commit()
        return combo

    return _make


@pytest.fixture
def make_client(session):
    counter = itertools.count(1)

    def _make(
        name: str = "BODEGA SAN MARTIN",
        doc_number: str = RUC_CLIENT_DOC,
        address: str | None = "JR. LAS FLORES 456",
    ) -> Client:
        client = Client(
            code=f"CLI-{next(counter):04d}",
            doc_type="RUC" if len(doc_number) == 11 else "DNI",
            doc_number=doc_number,
            name=name,
            address=address,
        )
        session.add(client)
        session.commit()
        return client

    return _make


@pytest.fixture
def ledger(session, clock):
    return StockLedgerService(session, clock)


@pytest.fixture
def receive(ledger, session):
    """Receive a batch and commit it."""
    counter = itertools.count(1)

    def _receive(
        product: Product,
        quantity: int,
        expiration_date: date,
        code: str | None = None,
        cost: str = "1.00",
    ):
        batch = ledger.receive_batch(
            product_id=product.id,
            code=code or f"L{next(counter):03d}",
            quantity=quantity,
            cost=Decimal(cost),
            expiration_date=expiration_date,
        )
        session.commit()
        return batch

    return _receive


# =============================================================================
# Input helpers
# =============================================================================


def client_snapshot(client: Client) -> ClientSnapshotInput:
    return ClientSnapshotInput(client_id=client.id)


def sale_input(client: Client, *lines: LineInput, payment_method=PaymentMethod.CREDITO) -> SaleInput:
    return SaleInput(
        client=client_snapshot(client),
        payment_method=payment_method,
        lines=lines,
    )
