"""
Tests for DocumentNumberingService.

Covers:
- Consecutive numbering from a seeded counter
- Lowest active series wins
- Fallback series when none is active (logged, persisted, continues)
- Eight-digit range guard
"""

import pytest

from dispatch_kernel.domain.values import DocumentType
from dispatch_kernel.models.document_series import DocumentSeriesModel
from dispatch_kernel.services.numbering_service import DocumentNumberingService


@pytest.fixture
def numbering(session, clock):
    return DocumentNumberingService(session, clock)


class TestNextNumber:
    def test_five_facturas_from_100(self, session, numbering):
        numbering.ensure_series(DocumentType.FACTURA, "F001", current_number=100)
        session.commit()

        issued = [numbering.next_number(DocumentType.FACTURA) for _ in range(5)]
        session.commit()

        assert [n.number for n in issued] == [101, 102, 103, 104, 105]
        assert {n.series for n in issued} == {"F001"}
        assert numbering.current_number(DocumentType.FACTURA, "F001") == 105

    def test_ref_is_series_and_padded_number(self, session, numbering):
        numbering.ensure_series(DocumentType.BOLETA, "B001", current_number=41)

        issued = numbering.next_number("BOLETA")

        assert issued.ref == "B001-00000042"
        assert issued.formatted_number == "00000042"
        assert not issued.fallback

    def test_types_have_independent_counters(self, session, numbering):
        numbering.ensure_series(DocumentType.FACTURA, "F001")
        numbering.ensure_series(DocumentType.BOLETA, "B001")

        numbering.next_number(DocumentType.FACTURA)
        numbering.next_number(DocumentType.FACTURA)
        boleta = numbering.next_number(DocumentType.BOLETA)

        assert boleta.number == 1

    def test_lowest_active_series_is_used(self, session, numbering):
        numbering.ensure_series(DocumentType.FACTURA, "F002", current_number=500)
        numbering.ensure_series(DocumentType.FACTURA, "F001", current_number=7)
        numbering.ensure_series(DocumentType.FACTURA, "F000", current_number=900, is_active=False)

        issued = numbering.next_number(DocumentType.FACTURA)

        assert (issued.series, issued.number) == ("F001", 8)

    def test_range_guard_leaves_counter_alone(self, session, numbering):
        numbering.ensure_series(DocumentType.GUIA, "T001", current_number=99_999_999)

        with pytest.raises(ValueError):
            numbering.next_number(DocumentType.GUIA)

        assert numbering.current_number(DocumentType.GUIA, "T001") == 99_999_999


class TestFallbackSeries:
    def test_fallback_starts_at_one_and_logs(self, session, numbering, captured_logs):
        issued = numbering.next_number(DocumentType.FACTURA)

        assert (issued.series, issued.number) == ("F001", 1)
        assert issued.fallback
        warnings = [r for r in captured_logs() if r["message"] == "document_series_fallback"]
        assert warnings and warnings[0]["level"] == "WARNING"
        assert warnings[0]["series"] == "F001"

    def test_fallback_counter_continues(self, session, numbering):
        first = numbering.next_number(DocumentType.BOLETA)
        session.commit()
        second = numbering.next_number(DocumentType.BOLETA)

        assert (first.number, second.number) == (1, 2)
        assert second.series == "B001"

    def test_fallback_row_is_inactive(self, session, numbering):
        numbering.next_number(DocumentType.NOTA_CREDITO)
        session.commit()

        row = session.query(DocumentSeriesModel).filter_by(series="NC01").one()
        assert row.is_active is False
        assert row.current_number == 1

    def test_inactive_configured_series_is_reused_as_fallback(self, session, numbering):
        numbering.ensure_series(DocumentType.FACTURA, "F001", current_number=30, is_active=False)

        issued = numbering.next_number(DocumentType.FACTURA)

        assert (issued.series, issued.number, issued.fallback) == ("F001", 31, True)


class TestEnsureSeries:
    def test_existing_row_untouched(self, session, numbering):
        numbering.ensure_series(DocumentType.FACTURA, "F001", current_number=10)

        numbering.ensure_series(DocumentType.FACTURA, "F001", current_number=0)

        assert numbering.current_number(DocumentType.FACTURA, "F001") == 10

    def test_unknown_series(self, numbering):
        assert numbering.current_number(DocumentType.FACTURA, "F999") is None
