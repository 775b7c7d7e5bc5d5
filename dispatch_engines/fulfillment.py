"""
Module: dispatch_engines.fulfillment
Responsibility:
    Expand order lines (plain product or combo) into base-unit demands per
    product and delegate each demand to an allocation callback.

Architecture position:
    Engines -- pure calculation layer.  The allocation callback is the only
    seam to the stock ledger; the caller supplies it.

Invariants enforced:
    - Plain line: required = quantity * (PKG ? package_content : 1).
    - Combo line: per component, required = quantity * component_quantity
      * (component PKG ? component package_content : 1); one allocation
      call per component, allocations concatenated under the combo line.
    - The combo component list is snapshotted at planning time, including
      base units per combo, so later catalog edits never alter history.
    - Unknown products and combos raise NotFoundError; nothing is skipped.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from uuid import UUID

from dispatch_engines.allocation import AllocationPlan, PlannedAllocation
from dispatch_kernel.domain.values import UnitType, conversion_factor
from dispatch_kernel.exceptions import ComboNotFoundError, ProductNotFoundError


@dataclass(frozen=True)
class ProductInfo:
    """Catalog facts the planner needs about a product."""

    product_id: UUID
    name: str
    package_content: int = 1
    sku: str | None = None


@dataclass(frozen=True)
class ComboComponent:
    product_id: UUID
    quantity: int
    unit_type: UnitType = UnitType.UND

    def __post_init__(self) -> None:
        object.__setattr__(self, "unit_type", UnitType(self.unit_type))
        if self.unit_type == UnitType.COMBO:
            raise ValueError("A combo component cannot itself be a combo")
        if self.quantity <= 0:
            raise ValueError("Combo component quantity must be positive")


@dataclass(frozen=True)
class ComboInfo:
    combo_id: UUID
    name: str
    components: tuple[ComboComponent, ...]


@dataclass(frozen=True)
class OrderLine:
    """
    One requested line.

    ``item_id`` is a product id for UND/PKG lines and a combo id for COMBO
    lines.
    """

    item_id: UUID
    quantity: int
    unit_type: UnitType = UnitType.UND

    def __post_init__(self) -> None:
        object.__setattr__(self, "unit_type", UnitType(self.unit_type))
        if self.quantity <= 0:
            raise ValueError(f"Line quantity must be positive, got {self.quantity}")

    @property
    def is_combo(self) -> bool:
        return self.unit_type == UnitType.COMBO


@dataclass(frozen=True)
class ProductDemand:
    product_id: UUID
    base_units: int


@dataclass(frozen=True)
class LineDemand:
    """
    Base-unit demands of one line.

    quantity_base is the line's base-unit count for plain products and the
    combo count for combo lines.
    """

    line: OrderLine
    name: str
    quantity_base: int
    demands: tuple[ProductDemand, ...]
    combo_snapshot: tuple[dict, ...] | None = None
    sku: str | None = None


@dataclass(frozen=True)
class PlannedItem:
    """A line with the allocation plans of all its demands."""

    demand: LineDemand
    plans: tuple[AllocationPlan, ...]

    @property
    def line(self) -> OrderLine:
        return self.demand.line

    @property
    def allocations(self) -> tuple[PlannedAllocation, ...]:
        return tuple(a for plan in self.plans for a in plan.allocations)

    @property
    def shortfall(self) -> int:
        return sum(plan.shortfall for plan in self.plans)


# (line index, product id, base units) -> plan
AllocateFn = Callable[[int, UUID, int], AllocationPlan]


def _product(products: Mapping[UUID, ProductInfo], product_id: UUID) -> ProductInfo:
    product = products.get(product_id)
    if product is None:
        raise ProductNotFoundError(str(product_id))
    return product


def expand_line(
    line: OrderLine,
    products: Mapping[UUID, ProductInfo],
    combos: Mapping[UUID, ComboInfo],
) -> LineDemand:
    """Expand one line into per-product base-unit demands."""
    if not line.is_combo:
        product = _product(products, line.item_id)
        base = line.quantity * conversion_factor(line.unit_type, product.package_content)
        return LineDemand(
            line=line,
            name=product.name,
            quantity_base=base,
            demands=(ProductDemand(product.product_id, base),),
            sku=product.sku,
        )

    combo = combos.get(line.item_id)
    if combo is None:
        raise ComboNotFoundError(str(line.item_id))

    demands: list[ProductDemand] = []
    snapshot: list[dict] = []
    for component in combo.components:
        product = _product(products, component.product_id)
        per_combo = component.quantity * conversion_factor(
            component.unit_type, product.package_content
        )
        demands.append(ProductDemand(product.product_id, line.quantity * per_combo))
        snapshot.append(
            {
                "product_id": str(product.product_id),
                "quantity": component.quantity,
                "unit_type": component.unit_type.value,
                "base_units": per_combo,
            }
        )

    return LineDemand(
        line=line,
        name=combo.name,
        quantity_base=line.quantity,
        demands=tuple(demands),
        combo_snapshot=tuple(snapshot),
    )


def plan_order(
    lines: Sequence[OrderLine],
    products: Mapping[UUID, ProductInfo],
    combos: Mapping[UUID, ComboInfo],
    allocate: AllocateFn,
) -> list[PlannedItem]:
    """
    Plan every line of an order.

    All lines are expanded (and so validated) before the first allocation
    call, so an unknown product or combo never leaves a half-planned order.
    The callback receives the line index so the caller can keep one
    allocation set per line.
    """
    expanded = [expand_line(line, products, combos) for line in lines]
    planned: list[PlannedItem] = []
    for index, demand in enumerate(expanded):
        plans = tuple(allocate(index, d.product_id, d.base_units) for d in demand.demands)
        planned.append(PlannedItem(demand=demand, plans=plans))
    return planned
