"""
dispatch_engines.tracer -- DISPATCH_ENGINE_TRACE records for pure engines.

``@traced_engine`` wraps an allocation or liquidation calculation and logs
one DEBUG record per call: which engine ran, a fingerprint of the inputs
that determine its result, how long it took, and whether it produced a
result or rejected the request.  Two calls with the same product, demand
and batch snapshot produce the same fingerprint, so a replayed allocation
can be matched to the original in the logs.

Engines stay free of I/O; the only side effect is the log record.
"""

from __future__ import annotations

import dataclasses
import functools
import hashlib
import time
from collections.abc import Callable, Mapping
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from dispatch_kernel.exceptions import DispatchKernelError
from dispatch_kernel.logging_config import get_logger

_logger = get_logger("engines.tracer")

TRACE_TYPE = "DISPATCH_ENGINE_TRACE"


def _canonicalize(value: Any) -> str:
    """
    Stable text for a fingerprint input.

    Decimals are normalized so 1.50 and 1.5 fingerprint alike; enums use
    their stored value; snapshots are expanded field by field.
    """
    if value is None:
        return "null"
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Decimal):
        return format(value.normalize(), "f")
    if isinstance(value, (int, str, UUID)):
        return str(value)
    if isinstance(value, date):
        return value.isoformat()
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        fields = {f.name: getattr(value, f.name) for f in dataclasses.fields(value)}
        return type(value).__name__ + _canonicalize(fields)
    if isinstance(value, Mapping):
        items = sorted(value.items(), key=lambda kv: str(kv[0]))
        return "{" + ",".join(f"{k}:{_canonicalize(v)}" for k, v in items) + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(_canonicalize(v) for v in value) + "]"
    raise TypeError(f"Cannot fingerprint {type(value).__name__}")


def compute_input_fingerprint(
    fingerprint_fields: tuple[str, ...],
    kwargs: dict[str, Any],
) -> str:
    """16-hex-char SHA-256 prefix over the named keyword inputs; absent ones count as null."""
    canonical = "|".join(
        f"{field}={_canonicalize(kwargs.get(field))}" for field in fingerprint_fields
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
) -> Callable:
    """
    Emit a DISPATCH_ENGINE_TRACE record around each call.

    Engines take keyword-only inputs, so only ``kwargs`` are fingerprinted.
    A ``DispatchKernelError`` raised by the engine is traced with
    ``outcome="rejected"`` and its ``error_code`` before it propagates.
    """

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            trace = {
                "trace_type": TRACE_TYPE,
                "engine_name": engine_name,
                "engine_version": engine_version,
                "input_fingerprint": (
                    compute_input_fingerprint(fingerprint_fields, kwargs)
                    if fingerprint_fields
                    else ""
                ),
                "function": func.__qualname__,
            }

            t0 = time.monotonic()
            try:
                result = func(*args, **kwargs)
            except DispatchKernelError as exc:
                trace["outcome"] = "rejected"
                trace["error_code"] = exc.code
                trace["duration_ms"] = round((time.monotonic() - t0) * 1000, 2)
                _logger.debug(TRACE_TYPE, extra=trace)
                raise

            trace["outcome"] = "ok"
            trace["duration_ms"] = round((time.monotonic() - t0) * 1000, 2)
            _logger.debug(TRACE_TYPE, extra=trace)
            return result

        return wrapper

    return decorator
