"""Exception types shared across ingestion, rendering and batch runs."""

from __future__ import annotations


class InvoiceEditorError(Exception):
    """Base class for invoice editor failures."""


class DependencyError(InvoiceEditorError, RuntimeError):
    """Raised when a required runtime dependency is missing."""


class ParseError(InvoiceEditorError, ValueError):
    """Raised when an uploaded spreadsheet cannot be read."""


class AmountParseError(InvoiceEditorError, ValueError):
    """Raised for a line-item amount that is not a decimal number."""

    def __init__(self, raw: str) -> None:
        super().__init__(f"Not a decimal amount: {raw!r}")
        self.raw = raw


class CaptureUnavailable(InvoiceEditorError):
    """Raised when there is no mounted view surface to capture."""


class SettleTimeout(InvoiceEditorError, TimeoutError):
    """Raised when the view does not settle within the configured timeout."""


class BatchStateError(InvoiceEditorError, RuntimeError):
    """Raised when a batch operation is not allowed in the current state."""
