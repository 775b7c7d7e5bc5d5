"""
Company configuration schema.

YAML sets are parsed into these frozen types by the loader.  Services
receive the policies they need (LiquidationPolicy, AllocationPolicy, the
IGV rate) through their constructors; nothing reads YAML at runtime
except ``get_active_config()``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from dispatch_kernel.domain.values import DocumentType


@dataclass(frozen=True)
class SeriesConfig:
    """A numbering series to seed."""

    document_type: DocumentType
    series: str
    current_number: int = 0
    is_active: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(self, "document_type", DocumentType(self.document_type))
        if self.current_number < 0:
            raise ValueError(f"Series {self.series}: current_number cannot be negative")
        if not self.series:
            raise ValueError("Series code cannot be empty")


@dataclass(frozen=True)
class LiquidationPolicy:
    void_reason_min_length: int = 5
    money_tolerance: Decimal = Decimal("0.01")

    def __post_init__(self) -> None:
        if self.void_reason_min_length < 0:
            raise ValueError("void_reason_min_length cannot be negative")
        if self.money_tolerance < 0:
            raise ValueError("money_tolerance cannot be negative")


@dataclass(frozen=True)
class AllocationPolicy:
    # Orders may be taken against stock not yet received
    strict_orders: bool = False
    # Counter sales sell only what is on the shelf
    strict_direct_sales: bool = True


@dataclass(frozen=True)
class CompanyConfig:
    """Root of a configuration set."""

    config_id: str
    version: int
    ruc: str
    name: str
    address: str
    currency: str = "PEN"
    igv_percent: Decimal = Decimal("18")
    series: tuple[SeriesConfig, ...] = ()
    liquidation: LiquidationPolicy = field(default_factory=LiquidationPolicy)
    allocation: AllocationPolicy = field(default_factory=AllocationPolicy)
    checksum: str = ""

    @property
    def igv_rate(self) -> Decimal:
        return self.igv_percent / Decimal("100")

    def series_for(self, document_type: DocumentType | str) -> tuple[SeriesConfig, ...]:
        document_type = DocumentType(document_type)
        return tuple(s for s in self.series if s.document_type == document_type)
