"""
Values -- Shared enumerations and unit conversion for the dispatch domain.

Responsibility:
    Defines the closed vocabularies (unit types, document types, payment
    methods, liquidation actions, SUNAT statuses) used by the models, the
    pure engines and the services, plus the single base-unit conversion
    rule.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  Importable from
    models/, engines and services alike.

Invariants enforced:
    - Stock is counted in integer base units.  A package equals
      ``package_content`` base units; a missing or zero package_content
      counts as 1.
"""

from enum import Enum


class UnitType(str, Enum):
    """Presentation unit of a sold or ordered line."""

    UND = "UND"  # Base unit
    PKG = "PKG"  # Package (box) of package_content base units
    COMBO = "COMBO"  # Combo line, expands into components


class DocumentType(str, Enum):
    """Numbered document types, each with its own series."""

    FACTURA = "FACTURA"
    BOLETA = "BOLETA"
    GUIA = "GUIA"
    NOTA_CREDITO = "NOTA_CREDITO"


class PaymentMethod(str, Enum):
    CONTADO = "CONTADO"  # Cash on delivery
    CREDITO = "CREDITO"  # Credit, collected later


class PaymentStatus(str, Enum):
    PAID = "PAID"
    PENDING = "PENDING"


class CollectionStatus(str, Enum):
    """Collection progress of a sale's receivable."""

    NONE = "NONE"
    PARTIAL = "PARTIAL"
    REPORTED = "REPORTED"
    COLLECTED = "COLLECTED"


class LiquidationAction(str, Enum):
    """Per-sale disposition decided while liquidating a dispatch sheet."""

    PAID = "PAID"
    CREDIT = "CREDIT"
    VOID = "VOID"
    PARTIAL_RETURN = "PARTIAL_RETURN"


class SunatStatus(str, Enum):
    PENDING = "PENDING"
    SENT = "SENT"
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    EXCEPTED = "EXCEPTED"


def conversion_factor(unit_type: UnitType | str, package_content: int | None) -> int:
    """Base units per presentation unit."""
    if UnitType(unit_type) == UnitType.PKG:
        return package_content or 1
    return 1


def to_base_units(
    quantity: int,
    unit_type: UnitType | str,
    package_content: int | None,
) -> int:
    """
    Convert a presentation quantity to base units.

    Raises:
        ValueError: If unit_type is not a known UnitType.
    """
    return quantity * conversion_factor(unit_type, package_content)


def boxes_and_units_to_base(boxes: int, units: int, package_content: int | None) -> int:
    """Convert a (boxes, loose units) count to base units."""
    return boxes * (package_content or 1) + units
