"""
Shared line planning for orders and counter sales.

Reads the product and combo catalogs through the session, hands the lines
to the fulfillment planner with a ledger-backed allocation callback (one
allocation set per line) and prices the result.  Also resolves client
snapshots against the client registry.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, replace
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from dispatch_engines.fulfillment import (
    ComboComponent,
    ComboInfo,
    OrderLine,
    PlannedItem,
    ProductInfo,
    plan_order,
)
from dispatch_kernel.db.types import round_money
from dispatch_kernel.domain.values import UnitType
from dispatch_kernel.exceptions import ClientNotFoundError
from dispatch_kernel.models.allocation import AllocationSetModel
from dispatch_kernel.models.catalog import Client, Combo, Product
from dispatch_kernel.models.movements import MovementReason
from dispatch_kernel.services.stock_ledger_service import StockLedgerService
from dispatch_services.types import ClientSnapshotInput, LineInput

_ZERO = Decimal("0")


@dataclass(frozen=True)
class PricedLine:
    line: LineInput
    planned: PlannedItem
    allocation_set: AllocationSetModel
    unit_price: Decimal
    total_price: Decimal

    @property
    def combo_snapshot(self) -> list[dict] | None:
        snapshot = self.planned.demand.combo_snapshot
        return list(snapshot) if snapshot is not None else None


def resolve_client_snapshot(session: Session, snapshot: ClientSnapshotInput) -> ClientSnapshotInput:
    """
    Fill blank snapshot fields from the client registry.

    Raises:
        ClientNotFoundError: client_id given but unknown.
        ValueError: no client name after backfill.
    """
    if snapshot.client_id is not None:
        client = session.get(Client, snapshot.client_id)
        if client is None:
            raise ClientNotFoundError(str(snapshot.client_id))
        snapshot = replace(
            snapshot,
            name=snapshot.name or client.name,
            doc_type=snapshot.doc_type or client.doc_type,
            doc_number=snapshot.doc_number or client.doc_number,
            address=snapshot.address or client.address,
        )
    if not snapshot.name.strip():
        raise ValueError("Client name is required")
    return snapshot


class LinePlanner:
    """Plans, allocates and prices document lines."""

    def __init__(self, session: Session, ledger: StockLedgerService):
        self.session = session
        self.ledger = ledger

    def _load_catalog(
        self,
        lines: Sequence[LineInput],
    ) -> tuple[dict[UUID, Product], dict[UUID, Combo]]:
        combo_ids = {line.item_id for line in lines if line.unit_type == UnitType.COMBO}
        product_ids = {line.item_id for line in lines if line.unit_type != UnitType.COMBO}

        combos: dict[UUID, Combo] = {}
        if combo_ids:
            for combo in self.session.execute(
                select(Combo).where(Combo.id.in_(combo_ids)).options(selectinload(Combo.items))
            ).scalars():
                combos[combo.id] = combo
                product_ids.update(item.product_id for item in combo.items)

        products: dict[UUID, Product] = {}
        if product_ids:
            for product in self.session.execute(
                select(Product).where(Product.id.in_(product_ids))
            ).scalars():
                products[product.id] = product
        return products, combos

    def plan(
        self,
        lines: Sequence[LineInput],
        *,
        reference: str,
        strict: bool,
        reason: MovementReason,
    ) -> list[PricedLine]:
        """
        Allocate every line under ``reference``.

        Unknown products or combos raise before any stock moves.
        """
        products, combos = self._load_catalog(lines)
        product_infos = {
            p.id: ProductInfo(
                product_id=p.id,
                name=p.name,
                package_content=p.package_content,
                sku=p.sku,
            )
            for p in products.values()
        }
        combo_infos = {
            c.id: ComboInfo(
                combo_id=c.id,
                name=c.name,
                components=tuple(
                    ComboComponent(
                        product_id=item.product_id,
                        quantity=item.quantity,
                        unit_type=item.unit_type,
                    )
                    for item in c.items
                ),
            )
            for c in combos.values()
        }

        sets: dict[int, AllocationSetModel] = {}

        def allocate(index: int, product_id: UUID, base_units: int):
            allocation_set = sets.get(index)
            if allocation_set is None:
                allocation_set = sets[index] = self.ledger.open_allocation_set(reference)
            return self.ledger.allocate(
                allocation_set,
                product_id,
                base_units,
                strict=strict,
                reason=reason,
            )

        planned = plan_order(
            [OrderLine(line.item_id, line.quantity, line.unit_type) for line in lines],
            product_infos,
            combo_infos,
            allocate,
        )

        priced: list[PricedLine] = []
        for index, (line, item) in enumerate(zip(lines, planned)):
            # A combo without components never reached the callback
            allocation_set = sets.get(index) or self.ledger.open_allocation_set(reference)
            if line.is_promo:
                unit_price = _ZERO
            elif line.unit_price is not None:
                unit_price = line.unit_price
            elif line.unit_type == UnitType.COMBO:
                unit_price = combos[line.item_id].price
            else:
                unit_price = products[line.item_id].price_for(line.unit_type)
            priced.append(
                PricedLine(
                    line=line,
                    planned=item,
                    allocation_set=allocation_set,
                    unit_price=unit_price,
                    total_price=round_money(unit_price * line.quantity),
                )
            )
        return priced


def lines_total(priced: Sequence[PricedLine]) -> Decimal:
    return round_money(sum((p.total_price for p in priced), _ZERO))
