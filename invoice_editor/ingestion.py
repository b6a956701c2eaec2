"""Spreadsheet ingestion: workbook rows grouped into invoice records."""

from __future__ import annotations

import io
import logging
import os
import re
import zipfile
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from openpyxl import Workbook, load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from .errors import ParseError
from .formatting import cell_text
from .models import DEFAULT_CURRENCY, InvoiceRecord, LineItem

logger = logging.getLogger(__name__)

TEMPLATE_FILENAME = "invoice_batch_template.xlsx"
TEMPLATE_SHEET = "Invoices"
TEMPLATE_HEADERS = (
    "Invoice No",
    "Invoice Date",
    "Billing Period",
    "Currency",
    "Item Date",
    "Item Description",
    "Item Amount",
)
TEMPLATE_SAMPLE_ROWS = (
    ("20260101", "01/01/2026", "2026/01/01-2026/01/31", "USD", "2026年1月", "服务费", "1000.00"),
    ("20260101", "01/01/2026", "2026/01/01-2026/01/31", "USD", "2026年1月", "咨询费", "500.00"),
    ("20260102", "02/01/2026", "2026/01/01-2026/01/31", "CNY", "2026年1月", "设备采购", "50000.00"),
)

# Normalized header text -> record field.
COLUMN_ALIASES = {
    "invoiceno": "invoice_no",
    "invoicenumber": "invoice_no",
    "invoice#": "invoice_no",
    "invoicedate": "invoice_date",
    "billingperiod": "billing_period",
    "currency": "currency",
    "itemdate": "item_date",
    "itemdescription": "item_description",
    "itemamount": "item_amount",
}

_HEADER_NOISE = re.compile(r"[\s_\-.]+")


def normalize_header(value: Any) -> Optional[str]:
    if value is None:
        return None
    key = _HEADER_NOISE.sub("", str(value)).lower()
    return COLUMN_ALIASES.get(key)


def _recognized_fields(row: Mapping[Any, Any]) -> Dict[str, str]:
    fields: Dict[str, str] = {}
    for column, value in row.items():
        name = normalize_header(column)
        if name is None:
            continue
        # First non-empty alias wins when a sheet carries duplicate columns.
        if not fields.get(name):
            fields[name] = cell_text(value)
    return fields


def rows_to_records(rows: Iterable[Mapping[Any, Any]]) -> List[InvoiceRecord]:
    """Group rows into records in first-seen order of their invoice number."""
    drafts: Dict[str, Dict[str, Any]] = {}
    skipped = 0

    for row in rows:
        fields = _recognized_fields(row)
        invoice_no = fields.get("invoice_no", "")
        if not invoice_no:
            skipped += 1
            continue

        draft = drafts.get(invoice_no)
        if draft is None:
            draft = {
                "invoice_no": invoice_no,
                "invoice_date": fields.get("invoice_date", ""),
                "billing_period": fields.get("billing_period", ""),
                "currency": fields.get("currency") or DEFAULT_CURRENCY,
                "items": [],
            }
            drafts[invoice_no] = draft

        draft["items"].append(
            LineItem(
                date=fields.get("item_date", ""),
                description=fields.get("item_description", ""),
                amount=fields.get("item_amount") or "0",
            )
        )

    if skipped:
        logger.info("Skipped %d row(s) without an invoice number", skipped)

    records = []
    for draft in drafts.values():
        items = draft.pop("items")
        records.append(InvoiceRecord(**draft).with_items(items))
    return records


def _sheet_rows(header: Sequence[Any], body: Iterable[Sequence[Any]]) -> Iterable[Dict[Any, Any]]:
    for values in body:
        if values is None or all(cell_text(value) == "" for value in values):
            continue
        yield {
            column: values[index] if index < len(values) else None
            for index, column in enumerate(header)
            if column is not None
        }


def parse_workbook(data: bytes) -> List[InvoiceRecord]:
    """Read the first sheet of an .xlsx workbook into invoice records."""
    if not data:
        raise ParseError("Spreadsheet is empty.")
    try:
        workbook = load_workbook(io.BytesIO(data), read_only=True, data_only=True)
    except (zipfile.BadZipFile, InvalidFileException, KeyError, OSError, ValueError) as exc:
        raise ParseError("File is not a readable .xlsx spreadsheet.") from exc

    try:
        if not workbook.sheetnames:
            raise ParseError("Spreadsheet has no sheets.")
        sheet = workbook[workbook.sheetnames[0]]
        rows = sheet.iter_rows(values_only=True)
        header = next(rows, None)
        if header is None:
            return []
        records = rows_to_records(_sheet_rows(header, rows))
    except ParseError:
        raise
    except (zipfile.BadZipFile, KeyError, ValueError) as exc:
        raise ParseError("Spreadsheet content could not be read.") from exc
    finally:
        workbook.close()

    logger.info("Ingested %d invoice(s) from spreadsheet", len(records))
    return records


def build_template_workbook() -> bytes:
    workbook = Workbook()
    sheet = workbook.active
    sheet.title = TEMPLATE_SHEET
    sheet.append(list(TEMPLATE_HEADERS))
    for row in TEMPLATE_SAMPLE_ROWS:
        sheet.append(list(row))

    buffer = io.BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


def write_template(destination: str) -> str:
    """Write the batch template; a directory destination gets the default file name."""
    if os.path.isdir(destination):
        destination = os.path.join(destination, TEMPLATE_FILENAME)
    with open(destination, "wb") as handle:
        handle.write(build_template_workbook())
    return destination
