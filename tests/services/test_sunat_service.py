"""
Tests for SunatService and the simulated gateway.

Covers:
- Final status, message and timestamp recorded per document
- Gateway failures recorded as REJECTED, never retried
- Batch submission keeps going after a rejection
- Seeded simulation is reproducible
"""

import random
from datetime import date
from uuid import uuid4

import pytest

from dispatch_kernel.domain.values import SunatStatus
from dispatch_kernel.exceptions import SaleNotFoundError
from dispatch_services import (
    DispatchService,
    SaleService,
    SimulatedSunatGateway,
    SunatDocumentKind,
    SunatGateway,
    SunatResult,
    SunatService,
)
from dispatch_services.types import LineInput
from tests.conftest import sale_input


class ScriptedGateway(SunatGateway):
    """Returns queued results; an exception in the queue is raised."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    def submit(self, kind, document_id, document_ref):
        self.calls.append((kind, document_ref))
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


ACCEPTED = SunatResult(SunatStatus.ACCEPTED, "ok")
REJECTED = SunatResult(SunatStatus.REJECTED, "rechazado")


@pytest.fixture
def make_sale(session, clock, seeded_series, make_product, make_client, receive):
    product = make_product()
    receive(product, 100, date(2025, 3, 1))
    client = make_client()
    service = SaleService(session, clock)

    def _make():
        return service.create_sale(sale_input(client, LineInput(product.id, 1)))

    return _make


class TestSunatService:
    def test_accepted_sale(self, session, clock, make_sale):
        sale = make_sale()
        gateway = ScriptedGateway(ACCEPTED)

        result = SunatService(session, gateway, clock).submit_sale(sale.id)

        assert result.status == SunatStatus.ACCEPTED
        assert sale.sunat_status == SunatStatus.ACCEPTED.value
        assert sale.sunat_message == "ok"
        assert sale.sunat_sent_at is not None
        assert gateway.calls == [(SunatDocumentKind.SALE, "F001-00000001")]

    def test_dispatch_sheet_submitted_by_code(self, session, clock, make_sale):
        sheet = DispatchService(session, clock).create_dispatch_sheet("ABC-123", [make_sale().id])
        gateway = ScriptedGateway(ACCEPTED)

        SunatService(session, gateway, clock).submit_dispatch(sheet.id)

        assert sheet.sunat_status == SunatStatus.ACCEPTED.value
        assert gateway.calls == [(SunatDocumentKind.DISPATCH, "HR-00000001")]

    def test_gateway_error_recorded_as_rejected(self, session, clock, make_sale, captured_logs):
        sale = make_sale()
        gateway = ScriptedGateway(ConnectionError("timeout"), ACCEPTED)

        result = SunatService(session, gateway, clock).submit_sale(sale.id)

        assert result.status == SunatStatus.REJECTED
        assert result.message == "timeout"
        assert sale.sunat_status == SunatStatus.REJECTED.value
        assert len(gateway.calls) == 1
        assert any(r["message"] == "sunat_gateway_failed" for r in captured_logs())

    def test_batch_continues_after_rejection(self, session, clock, make_sale):
        first, second, third = make_sale(), make_sale(), make_sale()
        gateway = ScriptedGateway(ACCEPTED, REJECTED, ACCEPTED)

        results = SunatService(session, gateway, clock).submit_many(
            "sale", [first.id, second.id, third.id]
        )

        assert [results[s.id].status for s in (first, second, third)] == [
            SunatStatus.ACCEPTED,
            SunatStatus.REJECTED,
            SunatStatus.ACCEPTED,
        ]

    def test_unknown_sale(self, session, clock):
        with pytest.raises(SaleNotFoundError):
            SunatService(session, ScriptedGateway()).submit_sale(uuid4())


class TestSimulatedGateway:
    def test_seeded_runs_repeat(self):
        def run(seed):
            gateway = SimulatedSunatGateway(random.Random(seed), success_rate=0.5)
            return [gateway.submit(SunatDocumentKind.SALE, None, "F001-1").status for _ in range(20)]

        assert run(7) == run(7)

    @pytest.mark.parametrize(
        "rate, expected",
        [(1.0, SunatStatus.ACCEPTED), (0.0, SunatStatus.REJECTED)],
    )
    def test_extreme_rates(self, rate, expected):
        gateway = SimulatedSunatGateway(random.Random(1), success_rate=rate)

        assert {gateway.submit(SunatDocumentKind.SALE, None, "X").status for _ in range(10)} == {expected}

    def test_rate_out_of_range(self):
        with pytest.raises(ValueError):
            SimulatedSunatGateway(random.Random(1), success_rate=1.5)

    def test_result_must_be_final(self):
        with pytest.raises(ValueError):
            SunatResult(SunatStatus.PENDING, "en cola")
