"""
dispatch_config -- single public entrypoint for company configuration.

Responsibility:
    ``get_active_config()`` is the only way to obtain configuration at
    runtime.  It returns a frozen ``CompanyConfig``: company identity, IGV
    rate, numbering series to seed, liquidation and allocation policies.

Architecture position:
    Configuration -- sits above ``dispatch_kernel`` and below
    ``dispatch_services``.  The kernel never imports from this package.

Failure modes:
    - ``FileNotFoundError`` -- the configuration file does not exist.
    - ``yaml.YAMLError`` / ``KeyError`` / ``ValueError`` -- malformed set.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``DISPATCH_CONFIG_TRACE`` log entry with the config id, version and
    checksum.
"""

from __future__ import annotations

import logging
from pathlib import Path

from sqlalchemy.orm import Session

from dispatch_config.loader import load_company_config
from dispatch_config.schema import (
    AllocationPolicy,
    CompanyConfig,
    LiquidationPolicy,
    SeriesConfig,
)
from dispatch_kernel.services.numbering_service import DocumentNumberingService

_logger = logging.getLogger("dispatch_kernel.config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default.yaml"


def get_active_config(path: Path | None = None) -> CompanyConfig:
    """
    The public configuration entrypoint.

    Args:
        path: Override path to a configuration YAML file.  Defaults to
            dispatch_config/sets/default.yaml.
    """
    config = load_company_config(path or DEFAULT_CONFIG_PATH)

    _logger.info(
        "DISPATCH_CONFIG_TRACE",
        extra={
            "trace_type": "DISPATCH_CONFIG_TRACE",
            "config_set_id": config.config_id,
            "config_set_version": config.version,
            "checksum": config.checksum,
            "series_count": len(config.series),
            "igv_percent": str(config.igv_percent),
        },
    )
    return config


def seed_document_series(session: Session, config: CompanyConfig) -> int:
    """
    Create the configured series rows that do not exist yet.

    Existing rows keep their counters.  Returns the number of rows
    created.  Flushes only; the caller commits.
    """
    numbering = DocumentNumberingService(session)
    created = 0
    for series in config.series:
        if numbering.current_number(series.document_type, series.series) is None:
            numbering.ensure_series(
                series.document_type,
                series.series,
                current_number=series.current_number,
                is_active=series.is_active,
            )
            created += 1

    _logger.info(
        "document_series_seeded",
        extra={"config_set_id": config.config_id, "rows_created": created},
    )
    return created


__all__ = [
    "AllocationPolicy",
    "CompanyConfig",
    "DEFAULT_CONFIG_PATH",
    "LiquidationPolicy",
    "SeriesConfig",
    "get_active_config",
    "load_company_config",
    "seed_document_series",
]
