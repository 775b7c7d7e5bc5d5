"""
Tests for engine lifecycle and the transactional session scope.
"""

from decimal import Decimal

import pytest
from sqlalchemy import select

from dispatch_kernel.db.engine import get_session, reset_engine, session_scope
from dispatch_kernel.models.catalog import Product


def new_product(sku: str) -> Product:
    return Product(
        sku=sku,
        name="GASEOSA 500ML",
        unit_label="UNIDAD",
        package_label="PAQUETE",
        package_content=6,
        price_unit=Decimal("2.00"),
        price_package=Decimal("11.00"),
    )


def skus(session) -> list[str]:
    return list(session.scalars(select(Product.sku)))


class TestSessionScope:
    def test_commits_on_exit(self, session):
        with session_scope() as scoped:
            scoped.add(new_product("SKU-A"))

        assert skus(session) == ["SKU-A"]

    def test_rolls_back_and_reraises(self, session, captured_logs):
        with pytest.raises(RuntimeError):
            with session_scope() as scoped:
                scoped.add(new_product("SKU-B"))
                scoped.flush()
                raise RuntimeError("boom")

        assert skus(session) == []
        assert any(r["message"] == "transaction_rolled_back" for r in captured_logs())


class TestEngineLifecycle:
    def test_session_before_init(self):
        reset_engine()

        with pytest.raises(RuntimeError):
            get_session()
