"""
Dispatch Kernel

The persistence and invariant core of the route-distribution back office:
- Batch-level stock ledger with FIFO-by-expiration allocation
- Gap-free document numbering per series
- Append-only kardex and cash movements
- Immutable dispatch liquidation records
"""

__version__ = "0.1.0"
