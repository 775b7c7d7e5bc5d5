"""
Tests for the order fulfillment planner.

Covers:
- Plain product lines in units and packages
- Combo expansion (component packages, snapshot)
- Unknown product / combo rejected before any allocation
- Line index passed to the allocation callback
"""

from uuid import uuid4

import pytest

from dispatch_engines.allocation import AllocationPlan
from dispatch_engines.fulfillment import (
    ComboComponent,
    ComboInfo,
    OrderLine,
    ProductInfo,
    expand_line,
    plan_order,
)
from dispatch_kernel.domain.values import UnitType
from dispatch_kernel.exceptions import ComboNotFoundError, ProductNotFoundError


@pytest.fixture
def water():
    return ProductInfo(product_id=uuid4(), name="AGUA 625ML", package_content=12, sku="AG-625")


@pytest.fixture
def soda():
    return ProductInfo(product_id=uuid4(), name="GASEOSA 500ML", package_content=6)


def full_allocation(calls):
    """Allocation callback that records its calls and never runs short."""

    def _allocate(index, product_id, base_units):
        calls.append((index, product_id, base_units))
        return AllocationPlan(
            product_id=product_id,
            requested=base_units,
            allocations=(),
            shortfall=0,
        )

    return _allocate


class TestExpandLine:
    def test_units_line(self, water):
        demand = expand_line(OrderLine(water.product_id, 5, UnitType.UND), {water.product_id: water}, {})

        assert demand.quantity_base == 5
        assert [(d.product_id, d.base_units) for d in demand.demands] == [(water.product_id, 5)]
        assert demand.sku == "AG-625"
        assert demand.combo_snapshot is None

    def test_package_line_uses_package_content(self, water):
        demand = expand_line(OrderLine(water.product_id, 2, UnitType.PKG), {water.product_id: water}, {})

        assert demand.quantity_base == 24

    def test_package_without_content_counts_one(self):
        loose = ProductInfo(product_id=uuid4(), name="SUELTO", package_content=0)

        demand = expand_line(OrderLine(loose.product_id, 3, UnitType.PKG), {loose.product_id: loose}, {})

        assert demand.quantity_base == 3

    def test_combo_expands_components(self, water, soda):
        combo = ComboInfo(
            combo_id=uuid4(),
            name="PACK FIESTA",
            components=(
                ComboComponent(water.product_id, 1, UnitType.PKG),
                ComboComponent(soda.product_id, 2, UnitType.UND),
            ),
        )
        products = {water.product_id: water, soda.product_id: soda}

        demand = expand_line(OrderLine(combo.combo_id, 3, UnitType.COMBO), products, {combo.combo_id: combo})

        assert demand.name == "PACK FIESTA"
        assert demand.quantity_base == 3
        assert [(d.product_id, d.base_units) for d in demand.demands] == [
            (water.product_id, 36),
            (soda.product_id, 6),
        ]
        assert demand.combo_snapshot == (
            {"product_id": str(water.product_id), "quantity": 1, "unit_type": "PKG", "base_units": 12},
            {"product_id": str(soda.product_id), "quantity": 2, "unit_type": "UND", "base_units": 2},
        )

    def test_unknown_product(self):
        with pytest.raises(ProductNotFoundError):
            expand_line(OrderLine(uuid4(), 1), {}, {})

    def test_unknown_combo(self):
        with pytest.raises(ComboNotFoundError):
            expand_line(OrderLine(uuid4(), 1, UnitType.COMBO), {}, {})

    def test_combo_component_cannot_be_combo(self):
        with pytest.raises(ValueError):
            ComboComponent(uuid4(), 1, UnitType.COMBO)

    def test_line_quantity_must_be_positive(self):
        with pytest.raises(ValueError):
            OrderLine(uuid4(), 0)


class TestPlanOrder:
    def test_callback_receives_line_index(self, water, soda):
        calls = []
        products = {water.product_id: water, soda.product_id: soda}

        planned = plan_order(
            [OrderLine(water.product_id, 1, UnitType.PKG), OrderLine(soda.product_id, 4)],
            products,
            {},
            full_allocation(calls),
        )

        assert calls == [(0, water.product_id, 12), (1, soda.product_id, 4)]
        assert [p.shortfall for p in planned] == [0, 0]

    def test_unknown_item_stops_before_any_allocation(self, water):
        calls = []

        with pytest.raises(ProductNotFoundError):
            plan_order(
                [OrderLine(water.product_id, 1), OrderLine(uuid4(), 1)],
                {water.product_id: water},
                {},
                full_allocation(calls),
            )

        assert calls == []

    def test_shortfall_summed_over_components(self, water, soda):
        combo = ComboInfo(
            combo_id=uuid4(),
            name="DUO",
            components=(ComboComponent(water.product_id, 1), ComboComponent(soda.product_id, 1)),
        )

        def short_by_one(index, product_id, base_units):
            return AllocationPlan(product_id=product_id, requested=base_units, allocations=(), shortfall=1)

        planned = plan_order(
            [OrderLine(combo.combo_id, 2, UnitType.COMBO)],
            {water.product_id: water, soda.product_id: soda},
            {combo.combo_id: combo},
            short_by_one,
        )

        assert planned[0].shortfall == 2
