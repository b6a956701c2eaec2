"""Invoice value types.

Records are immutable; every edit returns a new value with its total
recomputed, so a rendered document always matches the items it shows.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, Mapping, Tuple

from .aggregation import aggregate_total

DEFAULT_CURRENCY = "USD"
INVOICE_NO_KEYS = ("invoiceNo", "invoice_no", "number")


@dataclass(frozen=True)
class LineItem:
    date: str = ""
    description: str = ""
    amount: str = ""

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "LineItem":
        return cls(
            date=_text(data.get("date")),
            description=_text(data.get("description")),
            amount=_text(data.get("amount")),
        )

    def to_dict(self) -> Dict[str, str]:
        return {"date": self.date, "description": self.description, "amount": self.amount}


@dataclass(frozen=True)
class InvoiceRecord:
    invoice_no: str
    invoice_date: str = ""
    billing_period: str = ""
    currency: str = DEFAULT_CURRENCY
    items: Tuple[LineItem, ...] = field(default_factory=tuple)
    total: str = "0.00"

    @property
    def is_valid(self) -> bool:
        return bool(self.invoice_no.strip())

    def with_items(self, items: Iterable[LineItem]) -> "InvoiceRecord":
        items = tuple(items)
        return replace(self, items=items, total=aggregate_total(items))

    def with_total(self) -> "InvoiceRecord":
        return replace(self, total=aggregate_total(self.items))

    def with_fields(self, **changes: str) -> "InvoiceRecord":
        return replace(self, **changes).with_total()

    @classmethod
    def from_payload(cls, data: Mapping[str, Any]) -> "InvoiceRecord":
        """Build a record from a JSON-style mapping (camelCase or snake_case keys)."""
        items = data.get("items") or []
        currency = _text(_pick(data, "currency")) or DEFAULT_CURRENCY
        record = cls(
            invoice_no=payload_invoice_no(data),
            invoice_date=_text(_pick(data, "invoiceDate", "invoice_date", "date")),
            billing_period=_text(_pick(data, "billingPeriod", "billing_period")),
            currency=currency,
        )
        return record.with_items(LineItem.from_mapping(item) for item in items)

    def to_payload(self) -> Dict[str, Any]:
        return {
            "invoiceNo": self.invoice_no,
            "invoiceDate": self.invoice_date,
            "billingPeriod": self.billing_period,
            "currency": self.currency,
            "items": [item.to_dict() for item in self.items],
            "total": self.total,
        }


def payload_invoice_no(data: Mapping[str, Any]) -> str:
    """Invoice number of a JSON-style payload, trying each accepted key in order."""
    return _text(_pick(data, *INVOICE_NO_KEYS)).strip()


def _pick(data: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = data.get(key)
        if value not in (None, ""):
            return value
    return None


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value)
