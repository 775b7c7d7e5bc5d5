"""
Configuration Loader (``dispatch_config.loader``).

Responsibility
--------------
Loads a company configuration YAML file and parses it into the frozen
``dispatch_config.schema`` types.  Runtime callers go through
``dispatch_config.get_active_config()``.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Invalid values  -> ``ValueError`` from the schema types.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal
from pathlib import Path
from typing import Any

import yaml

from dispatch_config.schema import (
    AllocationPolicy,
    CompanyConfig,
    LiquidationPolicy,
    SeriesConfig,
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_decimal(value: Any) -> Decimal:
    """YAML floats go through str so 0.01 stays 0.01."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, (int, float, str)):
        return Decimal(str(value))
    raise ValueError(f"Cannot parse decimal from {value!r}")


def parse_series(data: dict[str, Any]) -> SeriesConfig:
    return SeriesConfig(
        document_type=data["type"],
        series=str(data["series"]),
        current_number=int(data.get("current_number", 0)),
        is_active=bool(data.get("is_active", True)),
    )


def parse_liquidation(data: dict[str, Any]) -> LiquidationPolicy:
    defaults = LiquidationPolicy()
    return LiquidationPolicy(
        void_reason_min_length=int(
            data.get("void_reason_min_length", defaults.void_reason_min_length)
        ),
        money_tolerance=parse_decimal(data.get("money_tolerance", defaults.money_tolerance)),
    )


def parse_allocation(data: dict[str, Any]) -> AllocationPolicy:
    defaults = AllocationPolicy()
    return AllocationPolicy(
        strict_orders=bool(data.get("strict_orders", defaults.strict_orders)),
        strict_direct_sales=bool(data.get("strict_direct_sales", defaults.strict_direct_sales)),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization; deterministic."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def parse_company_config(data: dict[str, Any]) -> CompanyConfig:
    """
    Build a CompanyConfig from a parsed YAML mapping.

    ``config_id``, ``version`` and the ``company`` block are required.
    """
    company = data["company"]
    return CompanyConfig(
        config_id=data["config_id"],
        version=int(data["version"]),
        ruc=str(company["ruc"]),
        name=company["name"],
        address=company.get("address", ""),
        currency=company.get("currency", "PEN"),
        igv_percent=parse_decimal(company.get("igv_percent", "18")),
        series=tuple(parse_series(s) for s in data.get("series", [])),
        liquidation=parse_liquidation(data.get("liquidation") or {}),
        allocation=parse_allocation(data.get("allocation") or {}),
        checksum=compute_checksum(data),
    )


def load_company_config(path: Path) -> CompanyConfig:
    return parse_company_config(load_yaml_file(path))
