"""Public package API for invoice editing and batch PDF generation."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from .aggregation import aggregate_total
from .errors import (
    AmountParseError,
    BatchStateError,
    CaptureUnavailable,
    DependencyError,
    InvoiceEditorError,
    ParseError,
    SettleTimeout,
)
from .models import InvoiceRecord, LineItem


def render_invoice(data: Dict[str, Any]) -> bytes:
    from .capture import render_invoice_pdf

    return render_invoice_pdf(data)


def parse_workbook(data: bytes) -> List[InvoiceRecord]:
    from .ingestion import parse_workbook as _parse_workbook

    return _parse_workbook(data)


def build_template_workbook() -> bytes:
    from .ingestion import build_template_workbook as _build_template_workbook

    return _build_template_workbook()


def run_batch(data: bytes, output_dir: Optional[str] = None):
    from .batch import run_batch as _run_batch

    return _run_batch(data, output_dir=output_dir)


def run(host: str = "0.0.0.0", port: int = 8080) -> None:
    from .server import run as _run

    _run(host, port)


__all__ = [
    "AmountParseError",
    "BatchStateError",
    "CaptureUnavailable",
    "DependencyError",
    "InvoiceEditorError",
    "InvoiceRecord",
    "LineItem",
    "ParseError",
    "SettleTimeout",
    "aggregate_total",
    "build_template_workbook",
    "parse_workbook",
    "render_invoice",
    "run",
    "run_batch",
]
