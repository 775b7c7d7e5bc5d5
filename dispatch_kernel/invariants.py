"""
Engine Invariants Contract.

These invariants are structural law for the dispatch engine.  They are
enforced in the allocation planner, the liquidation reconciler, the
numbering service and the ORM immutability listeners; no configuration
may switch them off.
"""

from enum import Enum, unique


@unique
class EngineInvariant(str, Enum):
    """Non-configurable invariants enforced by the engine."""

    MONEY_CONSERVATION = "money_conservation"
    """For every reconciled sale, collected + credit + void + credit_note
    equals the sale total within the money tolerance.  Enforced by the
    liquidation reconciler before a disposition is accepted."""

    STOCK_CONSERVATION = "stock_conservation"
    """0 <= quantity_current <= quantity_initial for every batch, and
    quantity_current equals quantity_initial minus net outstanding
    allocations.  Enforced by StockLedgerService."""

    NUMBERING_MONOTONICITY = "numbering_monotonicity"
    """Each document series increments by exactly one per issued
    document, under a row lock.  Enforced by DocumentNumberingService."""

    ALLOCATION_IDEMPOTENCY = "allocation_idempotency"
    """An allocation set is released at most once.  Enforced by the
    released_at marker on AllocationSetModel."""

    LIQUIDATION_IMMUTABILITY = "liquidation_immutability"
    """A finalized dispatch liquidation is append-only.  Enforced by ORM
    listeners (dispatch_kernel.db.immutability)."""


ALL_ENGINE_INVARIANTS: frozenset[EngineInvariant] = frozenset(EngineInvariant)
