"""
Tests for the company configuration layer.

Covers:
- Default set: company identity, IGV rate, series, policies
- YAML parsing (decimals through str, optional blocks)
- Checksum stability
- Series seeding is idempotent and keeps existing counters
"""

from decimal import Decimal
from pathlib import Path

import pytest
import yaml

from dispatch_config import get_active_config, load_company_config, seed_document_series
from dispatch_config.loader import compute_checksum, parse_company_config
from dispatch_config.schema import LiquidationPolicy, SeriesConfig
from dispatch_kernel.domain.values import DocumentType
from dispatch_kernel.services.numbering_service import DocumentNumberingService

MINIMAL_SET = {
    "config_id": "TEST",
    "version": 3,
    "company": {"ruc": "20999999991", "name": "DISTRIBUIDORA NORTE"},
}


def write_set(tmp_path, data) -> Path:
    path = tmp_path / "company.yaml"
    path.write_text(yaml.safe_dump(data))
    return path


class TestDefaultSet:
    def test_company_and_rate(self, company_config):
        assert company_config.config_id == "DEFAULT"
        assert company_config.currency == "PEN"
        assert company_config.igv_rate == Decimal("0.18")

    def test_seeded_series(self, company_config):
        assert [(s.document_type, s.series) for s in company_config.series] == [
            (DocumentType.FACTURA, "F001"),
            (DocumentType.BOLETA, "B001"),
            (DocumentType.NOTA_CREDITO, "FC01"),
            (DocumentType.GUIA, "T001"),
        ]
        assert company_config.series_for("NOTA_CREDITO")[0].series == "FC01"

    def test_policies(self, company_config):
        assert company_config.liquidation.void_reason_min_length == 5
        assert company_config.liquidation.money_tolerance == Decimal("0.01")
        assert company_config.allocation.strict_orders is False
        assert company_config.allocation.strict_direct_sales is True

    def test_trace_logged(self, captured_logs):
        config = get_active_config()

        traces = [r for r in captured_logs() if r["message"] == "DISPATCH_CONFIG_TRACE"]
        assert traces[-1]["checksum"] == config.checksum


class TestLoader:
    def test_minimal_set_uses_defaults(self, tmp_path):
        config = load_company_config(write_set(tmp_path, MINIMAL_SET))

        assert config.version == 3
        assert config.address == ""
        assert config.igv_percent == Decimal("18")
        assert config.series == ()
        assert config.liquidation == LiquidationPolicy()

    def test_float_tolerance_stays_exact(self, tmp_path):
        data = dict(MINIMAL_SET, liquidation={"money_tolerance": 0.01, "void_reason_min_length": 8})

        config = load_company_config(write_set(tmp_path, data))

        assert config.liquidation.money_tolerance == Decimal("0.01")
        assert config.liquidation.void_reason_min_length == 8

    def test_missing_company_block(self):
        with pytest.raises(KeyError):
            parse_company_config({"config_id": "X", "version": 1})

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_company_config(tmp_path / "absent.yaml")

    def test_unknown_document_type(self):
        with pytest.raises(ValueError):
            SeriesConfig(document_type="RECIBO", series="R001")

    def test_negative_counter(self):
        with pytest.raises(ValueError):
            SeriesConfig(document_type="FACTURA", series="F001", current_number=-1)

    def test_checksum_ignores_key_order(self):
        reordered = {"company": MINIMAL_SET["company"], "version": 3, "config_id": "TEST"}

        assert compute_checksum(reordered) == compute_checksum(MINIMAL_SET)
        assert compute_checksum(dict(MINIMAL_SET, version=4)) != compute_checksum(MINIMAL_SET)


class TestSeedDocumentSeries:
    def test_seeding_creates_rows(self, session, company_config):
        created = seed_document_series(session, company_config)
        session.commit()

        assert created == 4
        assert DocumentNumberingService(session).current_number("GUIA", "T001") == 0

    def test_seeding_keeps_counters(self, session, company_config):
        numbering = DocumentNumberingService(session)
        numbering.ensure_series(DocumentType.FACTURA, "F001", current_number=250)
        session.commit()

        created = seed_document_series(session, company_config)

        assert created == 3
        assert numbering.current_number(DocumentType.FACTURA, "F001") == 250

    def test_seeding_logged(self, session, company_config, captured_logs):
        seed_document_series(session, company_config)

        seeded = [r for r in captured_logs() if r["message"] == "document_series_seeded"]
        assert seeded[-1]["rows_created"] == 4
        assert seeded[-1]["config_set_id"] == "DEFAULT"
