"""Single-invoice editing state and PDF export."""

from __future__ import annotations

import asyncio
import itertools
from dataclasses import replace
from typing import Dict, List, Optional, Tuple

from .capture import CapturePipeline
from .models import InvoiceRecord, LineItem

EDITABLE_FIELDS = ("invoice_no", "invoice_date", "billing_period", "currency")
ITEM_FIELDS = ("date", "description", "amount")


def default_record() -> InvoiceRecord:
    return InvoiceRecord(
        invoice_no="2026010600102",
        invoice_date="06/01/2025",
        billing_period="2025/12/01-2025/12/31",
        currency="USD",
    ).with_items([LineItem(date="2025年12月", description="广告推广费用", amount="104,893.06")])


class InvoiceEditor:
    """Form state for one invoice. Every edit returns the new record with its total recomputed."""

    def __init__(self, record: Optional[InvoiceRecord] = None, pipeline: Optional[CapturePipeline] = None) -> None:
        record = record if record is not None else default_record()
        self.pipeline = pipeline if pipeline is not None else CapturePipeline()
        self._ids = itertools.count(1)
        self._header = replace(record, items=())
        self._items: List[Tuple[str, LineItem]] = [(self._next_id(), item) for item in record.items]

    def _next_id(self) -> str:
        return str(next(self._ids))

    @property
    def item_ids(self) -> List[str]:
        return [item_id for item_id, _ in self._items]

    @property
    def record(self) -> InvoiceRecord:
        return self._header.with_items(item for _, item in self._items)

    def set_field(self, name: str, value: str) -> InvoiceRecord:
        if name not in EDITABLE_FIELDS:
            raise KeyError(f"Unknown invoice field: {name}")
        self._header = replace(self._header, **{name: value})
        return self.record

    def add_item(self, date: str = "", description: str = "", amount: str = "") -> str:
        item_id = self._next_id()
        self._items.append((item_id, LineItem(date=date, description=description, amount=amount)))
        return item_id

    def remove_item(self, item_id: str) -> InvoiceRecord:
        self._items = [(key, item) for key, item in self._items if key != item_id]
        return self.record

    def update_item(self, item_id: str, field_name: str, value: str) -> InvoiceRecord:
        if field_name not in ITEM_FIELDS:
            raise KeyError(f"Unknown item field: {field_name}")
        self._items = [
            (key, replace(item, **{field_name: value}) if key == item_id else item)
            for key, item in self._items
        ]
        return self.record

    def to_payload(self) -> Dict[str, object]:
        return self.record.to_payload()

    async def render(self) -> Optional[bytes]:
        return await self.pipeline.capture(self.record)

    def export_pdf(self, directory: str) -> Optional[str]:
        """Write ``Invoice_<invoiceNo>.pdf`` into ``directory``."""
        return asyncio.run(self.pipeline.save(self.record, directory))
