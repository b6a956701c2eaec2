"""Invoice page geometry in layout units (CSS pixels of an A4 page at 96 dpi)."""

from __future__ import annotations

PAGE_W = 794
PAGE_H = 1123
MARGIN = 56
CONTENT_W = PAGE_W - 2 * MARGIN
RIGHT = PAGE_W - MARGIN

# A4 portrait in millimetres, used when encoding the bitmap into a PDF page.
PDF_PAGE_W_MM = 210.0
PDF_PAGE_H_MM = 297.0

FONT_SIZE_TITLE = 32
FONT_SIZE_COMPANY = 15
FONT_SIZE_SECTION = 14
FONT_SIZE_NORMAL = 12
FONT_SIZE_SMALL = 11

COLOR_TEXT = (31, 41, 55)
COLOR_MUTED = (107, 114, 128)
COLOR_TITLE = (17, 24, 39)
COLOR_RULE = (229, 231, 235)
COLOR_HEADER_FILL = (243, 244, 246)
WHITE = (255, 255, 255)

LOGO_Y = MARGIN
LOGO_H = 40
COMPANY_NAME_Y = LOGO_Y + LOGO_H + 8
WATERMARK_H = 150
WATERMARK_OPACITY = 0.05

TITLE_Y = MARGIN - 4
INFO_START_Y = 100
INFO_LINE_H = 20
INFO_LABEL_GAP = 8

BILL_TO_Y = 200
TABLE_Y = 228
TABLE_HEADER_H = 32
COL_DATE_W = CONTENT_W * 0.25
COL_ITEM_W = CONTENT_W * 0.50
COL_PADDING = 10
ROW_LINE_H = 18
ROW_PADDING = 7
ROW_MIN_H = ROW_LINE_H + 2 * ROW_PADDING

BANK_GAP = 32
BANK_LINE_H = 20
BANK_TOTAL_GAP = 16
BANK_LINE_COUNT = 11
FOOTER_GAP = 40
FOOTER_LINE_H = 22
FOOTER_H = 2 * FOOTER_LINE_H

FIXED_CONTENT_H = (
    TABLE_Y
    + TABLE_HEADER_H
    + BANK_GAP
    + BANK_LINE_COUNT * BANK_LINE_H
    + BANK_TOTAL_GAP
    + FOOTER_GAP
    + FOOTER_H
    + MARGIN
)


def max_items_per_page() -> int:
    """Single-line item rows that fit on one A4 page beneath the fixed blocks."""
    return max(1, (PAGE_H - FIXED_CONTENT_H) // ROW_MIN_H)


def fits_single_page(item_count: int) -> bool:
    return item_count <= max_items_per_page()
