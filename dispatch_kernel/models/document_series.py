"""
Module: dispatch_kernel.models.document_series
Responsibility: ORM persistence for document numbering series (FACTURA,
    BOLETA, GUIA, NOTA_CREDITO).
Architecture position: Kernel > Models.  May import from db/ and domain/ only.

Invariants enforced:
    - (document_type, series) is unique.
    - current_number only ever increases, by exactly one per issued
      document, under a row lock held by DocumentNumberingService.
"""

from sqlalchemy import Boolean, CheckConstraint, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from dispatch_kernel.db.base import TrackedBase, enum_value
from dispatch_kernel.domain.values import DocumentType


class DocumentSeriesModel(TrackedBase):
    """A numbering series: the last number issued for (type, series)."""

    __tablename__ = "document_series"

    __table_args__ = (
        UniqueConstraint("document_type", "series", name="uq_document_series"),
        CheckConstraint("current_number >= 0", name="ck_document_series_number"),
        Index("idx_document_series_active", "document_type", "is_active"),
    )

    document_type: Mapped[DocumentType] = mapped_column(String(20), nullable=False)

    series: Mapped[str] = mapped_column(String(10), nullable=False)

    # Last number issued (0 = none yet)
    current_number: Mapped[int] = mapped_column(nullable=False, default=0)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return (
            f"<DocumentSeries {enum_value(self.document_type)} {self.series} "
            f"@{self.current_number}>"
        )
