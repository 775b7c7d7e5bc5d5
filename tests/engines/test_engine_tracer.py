"""
Tests for DISPATCH_ENGINE_TRACE records.

Covers:
- Fingerprints are stable for equal allocation inputs and change with them
- Decimal scale, enum members and their stored values fingerprint alike
- Allocation and partial-return engines emit one trace per call
- Rejections are traced with the error code and still raised
"""

from datetime import date
from decimal import Decimal
from uuid import UUID, uuid4

import pytest

from dispatch_engines.allocation import BatchCandidate, plan_fifo_allocation
from dispatch_engines.liquidation import (
    ReturnEntry,
    SaleLine,
    SaleSnapshot,
    partial_return_disposition,
)
from dispatch_engines.tracer import TRACE_TYPE, compute_input_fingerprint
from dispatch_kernel.domain.values import PaymentMethod
from dispatch_kernel.exceptions import ReturnQuantityExceededError

PRODUCT_ID = UUID("00000000-0000-0000-0000-0000000000a1")
BATCH_ID = UUID("00000000-0000-0000-0000-0000000000b1")


def batch(quantity=10):
    return BatchCandidate(
        batch_id=BATCH_ID,
        batch_code="L-001",
        expiration_date=date(2025, 1, 1),
        receipt_sequence=1,
        quantity_current=quantity,
    )


def traces(captured_logs, engine_name):
    return [
        r for r in captured_logs()
        if r["message"] == TRACE_TYPE and r["engine_name"] == engine_name
    ]


@pytest.fixture
def water_sale():
    item = SaleLine(
        sale_item_id=uuid4(),
        product_id=PRODUCT_ID,
        product_name="AGUA MINERAL",
        quantity_base=10,
        unit_price=Decimal("15.00"),
        total_price=Decimal("150.00"),
    )
    return SaleSnapshot(
        sale_id=uuid4(),
        document_ref="F001-00000001",
        total=Decimal("150.00"),
        payment_method=PaymentMethod.CREDITO,
        lines=(item,),
    )


class TestInputFingerprint:
    FIELDS = ("product_id", "candidates", "required")

    def test_equal_allocation_inputs_match(self):
        a = {"product_id": PRODUCT_ID, "candidates": [batch()], "required": 5}
        b = {"product_id": PRODUCT_ID, "candidates": (batch(),), "required": 5}

        assert compute_input_fingerprint(self.FIELDS, a) == (
            compute_input_fingerprint(self.FIELDS, b)
        )

    def test_batch_stock_changes_fingerprint(self):
        before = {"product_id": PRODUCT_ID, "candidates": [batch(10)], "required": 5}
        after = {"product_id": PRODUCT_ID, "candidates": [batch(5)], "required": 5}

        assert compute_input_fingerprint(self.FIELDS, before) != compute_input_fingerprint(
            self.FIELDS, after
        )

    def test_money_scale_does_not_matter(self):
        fields = ("amount",)

        assert compute_input_fingerprint(fields, {"amount": Decimal("1.50")}) == (
            compute_input_fingerprint(fields, {"amount": Decimal("1.5")})
        )

    def test_enum_matches_stored_value(self):
        fields = ("balance_payment_method",)

        assert compute_input_fingerprint(
            fields, {"balance_payment_method": PaymentMethod.CONTADO}
        ) == compute_input_fingerprint(fields, {"balance_payment_method": "CONTADO"})

    def test_missing_field_counts_as_null(self):
        assert compute_input_fingerprint(("required",), {}) == compute_input_fingerprint(
            ("required",), {"required": None}
        )
        assert len(compute_input_fingerprint(("required",), {})) == 16

    def test_unsupported_input_rejected(self):
        with pytest.raises(TypeError):
            compute_input_fingerprint(("candidates",), {"candidates": object()})


class TestEngineTraces:
    def test_allocation_traced(self, captured_logs):
        plan_fifo_allocation(product_id=PRODUCT_ID, candidates=[batch()], required=4)
        plan_fifo_allocation(product_id=PRODUCT_ID, candidates=[batch()], required=4)

        first, second = traces(captured_logs, "fifo_allocation")
        assert first["trace_type"] == TRACE_TYPE
        assert first["engine_version"] == "1.0"
        assert first["function"] == "plan_fifo_allocation"
        assert first["outcome"] == "ok"
        assert first["duration_ms"] >= 0
        assert first["input_fingerprint"] == second["input_fingerprint"]

    def test_partial_return_traced(self, water_sale, captured_logs):
        item = water_sale.lines[0]

        partial_return_disposition(
            sale=water_sale,
            entries=[ReturnEntry(item.sale_item_id, units=4)],
            balance_payment_method=PaymentMethod.CONTADO,
        )

        (trace,) = traces(captured_logs, "partial_return")
        assert trace["outcome"] == "ok"
        assert trace["input_fingerprint"]

    def test_rejection_traced_and_raised(self, water_sale, captured_logs):
        item = water_sale.lines[0]

        with pytest.raises(ReturnQuantityExceededError):
            partial_return_disposition(
                sale=water_sale,
                entries=[ReturnEntry(item.sale_item_id, units=11)],
                balance_payment_method=PaymentMethod.CREDITO,
            )

        (trace,) = traces(captured_logs, "partial_return")
        assert trace["outcome"] == "rejected"
        assert trace["error_code"] == "RETURN_QUANTITY_EXCEEDED"
