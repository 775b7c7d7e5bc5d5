"""
Module: dispatch_engines
Responsibility:
    Pure calculation engines of the dispatch system: FIFO batch allocation,
    order fulfillment expansion, document numbering rules and liquidation
    reconciliation.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May import dispatch_kernel domain values, exceptions and logging only.
    MUST NOT import dispatch_services or touch a Session.

Invariants enforced:
    - Purity: engines never read the clock; dates are passed in.
    - Decimal-only money arithmetic; integer base-unit quantities.
    - Determinism: identical inputs always produce identical outputs.

Usage:
    from dispatch_engines.allocation import plan_fifo_allocation
    from dispatch_engines.fulfillment import plan_order
    from dispatch_engines.numbering import classify_document_type
    from dispatch_engines.liquidation import LiquidationReconciler
"""
