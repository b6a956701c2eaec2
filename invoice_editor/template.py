"""The invoice view: a raster template drawn with Pillow from one invoice record."""

from __future__ import annotations

import asyncio
import logging
from typing import List, Optional, Tuple

from PIL import Image, ImageDraw

from . import config
from .fonts import Color, FontManager
from .formatting import wrap_text
from .layout import (
    BANK_GAP,
    BANK_LINE_H,
    BANK_TOTAL_GAP,
    BILL_TO_Y,
    COL_DATE_W,
    COL_ITEM_W,
    COL_PADDING,
    COLOR_HEADER_FILL,
    COLOR_MUTED,
    COLOR_RULE,
    COLOR_TEXT,
    COLOR_TITLE,
    COMPANY_NAME_Y,
    FONT_SIZE_COMPANY,
    FONT_SIZE_NORMAL,
    FONT_SIZE_SECTION,
    FONT_SIZE_SMALL,
    FONT_SIZE_TITLE,
    FOOTER_GAP,
    FOOTER_LINE_H,
    INFO_LABEL_GAP,
    INFO_LINE_H,
    INFO_START_Y,
    LOGO_H,
    LOGO_Y,
    MARGIN,
    PAGE_H,
    PAGE_W,
    RIGHT,
    ROW_LINE_H,
    ROW_PADDING,
    TABLE_HEADER_H,
    TABLE_Y,
    TITLE_Y,
    WATERMARK_H,
    WATERMARK_OPACITY,
    WHITE,
)
from .models import InvoiceRecord

logger = logging.getLogger(__name__)


def load_logo(path: Optional[str]) -> Optional[Image.Image]:
    if not path:
        return None
    with Image.open(path) as image:
        return image.convert("RGBA")


def _scaled_logo(logo: Image.Image, height: float, scale: int, opacity: float = 1.0) -> Image.Image:
    target_h = max(1, int(round(height * scale)))
    target_w = max(1, int(round(logo.width * target_h / logo.height)))
    resized = logo.resize((target_w, target_h), Image.Resampling.LANCZOS)
    if opacity < 1.0:
        alpha = resized.getchannel("A").point(lambda value: int(value * opacity))
        resized.putalpha(alpha)
    return resized


class InvoicePainter:
    """Lays out one record; coordinates are layout units, multiplied by ``scale`` on draw."""

    def __init__(
        self,
        record: InvoiceRecord,
        scale: int = 2,
        logo: Optional[Image.Image] = None,
        fonts: Optional[FontManager] = None,
    ) -> None:
        self.record = record
        self.scale = scale
        self.logo = logo
        self.fonts = fonts if fonts is not None and fonts.scale == scale else FontManager(scale)

        self.col_date_x = MARGIN
        self.col_item_x = MARGIN + COL_DATE_W

    def _px(self, value: float) -> int:
        return int(round(value * self.scale))

    def _text(
        self,
        draw: ImageDraw.ImageDraw,
        x: float,
        y: float,
        text: str,
        size: int,
        color: Color = COLOR_TEXT,
        bold: bool = False,
    ) -> None:
        self.fonts.draw_text(draw, x, y, text, size, color, bold=bold)

    def _text_right(
        self,
        draw: ImageDraw.ImageDraw,
        right: float,
        y: float,
        text: str,
        size: int,
        color: Color = COLOR_TEXT,
        bold: bool = False,
    ) -> None:
        width = self.fonts.text_width(text, size, bold=bold)
        self._text(draw, right - width, y, text, size, color, bold)

    def _text_center(
        self,
        draw: ImageDraw.ImageDraw,
        left: float,
        width: float,
        y: float,
        text: str,
        size: int,
        color: Color = COLOR_TEXT,
        bold: bool = False,
    ) -> None:
        text_w = self.fonts.text_width(text, size, bold=bold)
        self._text(draw, left + (width - text_w) / 2.0, y, text, size, color, bold)

    def _hline(self, draw: ImageDraw.ImageDraw, y: float, color: Color = COLOR_RULE) -> None:
        draw.line(
            [(self._px(MARGIN), self._px(y)), (self._px(RIGHT), self._px(y))],
            fill=color,
            width=max(1, self.scale),
        )

    def _item_rows(self) -> List[Tuple[List[str], float]]:
        max_width = COL_ITEM_W - 2 * COL_PADDING
        rows = []
        for item in self.record.items:
            lines = wrap_text(self.fonts, item.description, max_width, FONT_SIZE_NORMAL)
            rows.append((lines, len(lines) * ROW_LINE_H + 2 * ROW_PADDING))
        return rows

    def _bank_lines(self) -> List[Tuple[str, bool]]:
        record = self.record
        return [
            ("Bank Details:", True),
            (f"Account Name (公司名称): {config.COMPANY_NAME}", False),
            (f"Account Number 账号 (in {record.currency}): {config.BANK_ACCOUNT_NUMBER}", False),
            (f"Address (地址): {config.BANK_ADDRESS_LINES[0]}", False),
            (config.BANK_ADDRESS_LINES[1], False),
            (f"Beneficiary BANK (开户银行): {config.BANK_NAME}", False),
            (f"Beneficiary BANK Address: (开户地址): {config.BANK_BRANCH_ADDRESS}", False),
            (f"SWIFT Code(开户银行行号): {config.BANK_SWIFT}", False),
            (f"Bank code: {config.BANK_CODE}", False),
        ]

    def content_height(self) -> float:
        rows_h = sum(height for _, height in self._item_rows())
        bank_h = (len(self._bank_lines()) + 2) * BANK_LINE_H + BANK_TOTAL_GAP
        return TABLE_Y + TABLE_HEADER_H + rows_h + BANK_GAP + bank_h + FOOTER_GAP + 2 * FOOTER_LINE_H + MARGIN

    def _draw_watermark(self, image: Image.Image, page_h: float) -> None:
        if self.logo is None:
            return
        mark = _scaled_logo(self.logo, WATERMARK_H, self.scale, WATERMARK_OPACITY)
        x = (image.width - mark.width) // 2
        y = (self._px(page_h) - mark.height) // 2
        image.paste(mark, (x, y), mark)

    def _draw_header(self, image: Image.Image, draw: ImageDraw.ImageDraw) -> None:
        record = self.record
        if self.logo is not None:
            logo = _scaled_logo(self.logo, LOGO_H, self.scale)
            image.paste(logo, (self._px(MARGIN), self._px(LOGO_Y)), logo)
        self._text(draw, MARGIN, COMPANY_NAME_Y, config.COMPANY_NAME, FONT_SIZE_COMPANY, COLOR_TITLE, bold=True)

        self._text_right(draw, RIGHT, TITLE_Y, "INVOICE", FONT_SIZE_TITLE, COLOR_TITLE, bold=True)
        info = [
            ("INVOICE #:", record.invoice_no),
            ("INVOICE DATE:", record.invoice_date),
            ("BILLING PERIOD:", record.billing_period),
        ]
        for index, (label, value) in enumerate(info):
            y = INFO_START_Y + index * INFO_LINE_H
            value_w = self.fonts.text_width(value, FONT_SIZE_NORMAL)
            self._text_right(draw, RIGHT, y, value, FONT_SIZE_NORMAL)
            self._text_right(
                draw,
                RIGHT - value_w - INFO_LABEL_GAP,
                y,
                label,
                FONT_SIZE_NORMAL,
                COLOR_MUTED,
                bold=True,
            )

    def _draw_table(self, draw: ImageDraw.ImageDraw) -> float:
        self._text(draw, MARGIN, BILL_TO_Y, "Bill To:", FONT_SIZE_SECTION, COLOR_TITLE, bold=True)

        draw.rectangle(
            [self._px(MARGIN), self._px(TABLE_Y), self._px(RIGHT), self._px(TABLE_Y + TABLE_HEADER_H)],
            fill=COLOR_HEADER_FILL,
        )
        header_y = TABLE_Y + (TABLE_HEADER_H - ROW_LINE_H) / 2.0
        self._text(draw, self.col_date_x + COL_PADDING, header_y, "日期", FONT_SIZE_NORMAL, bold=True)
        self._text_center(draw, self.col_item_x, COL_ITEM_W, header_y, "项目", FONT_SIZE_NORMAL, bold=True)
        self._text_right(
            draw,
            RIGHT - COL_PADDING,
            header_y,
            f"金额({self.record.currency})",
            FONT_SIZE_NORMAL,
            bold=True,
        )

        y = TABLE_Y + TABLE_HEADER_H
        for item, (lines, row_h) in zip(self.record.items, self._item_rows()):
            text_y = y + ROW_PADDING
            self._text(draw, self.col_date_x + COL_PADDING, text_y, item.date, FONT_SIZE_NORMAL)
            for index, line in enumerate(lines):
                self._text_center(
                    draw,
                    self.col_item_x,
                    COL_ITEM_W,
                    text_y + index * ROW_LINE_H,
                    line,
                    FONT_SIZE_NORMAL,
                )
            self._text_right(draw, RIGHT - COL_PADDING, text_y, item.amount, FONT_SIZE_NORMAL)
            y += row_h
            self._hline(draw, y)
        return y

    def _draw_bank_details(self, draw: ImageDraw.ImageDraw, top: float) -> float:
        y = top + BANK_GAP
        for text, bold in self._bank_lines():
            self._text(draw, MARGIN, y, text, FONT_SIZE_NORMAL, bold=bold)
            y += BANK_LINE_H

        y += BANK_TOTAL_GAP
        self._text(draw, MARGIN, y, f"Invoice Total: {self.record.total}", FONT_SIZE_NORMAL, bold=True)
        y += BANK_LINE_H
        self._text(draw, MARGIN, y, f"Invoice Currency: {self.record.currency}", FONT_SIZE_NORMAL, bold=True)
        return y + BANK_LINE_H

    def _draw_footer(self, draw: ImageDraw.ImageDraw, top: float) -> None:
        y = top + FOOTER_GAP
        self._hline(draw, y - FOOTER_LINE_H / 2.0)
        contact = f"If you have any questions concerning this invoice, contact Email: {config.COMPANY_EMAIL}"
        self._text_center(draw, MARGIN, RIGHT - MARGIN, y, contact, FONT_SIZE_SMALL, COLOR_MUTED)
        self._text_center(
            draw,
            MARGIN,
            RIGHT - MARGIN,
            y + FOOTER_LINE_H,
            "THANK YOU FOR YOUR BUSINESS!",
            FONT_SIZE_SECTION,
            COLOR_TITLE,
            bold=True,
        )

    def paint(self) -> Image.Image:
        page_h = max(PAGE_H, self.content_height())
        image = Image.new("RGB", (self._px(PAGE_W), self._px(page_h)), WHITE)
        draw = ImageDraw.Draw(image)

        self._draw_watermark(image, page_h)
        self._draw_header(image, draw)
        table_end = self._draw_table(draw)
        bank_end = self._draw_bank_details(draw, table_end)
        self._draw_footer(draw, bank_end)
        return image


def render_page(
    record: InvoiceRecord,
    scale: int = 2,
    logo: Optional[Image.Image] = None,
    fonts: Optional[FontManager] = None,
) -> Image.Image:
    """Rasterize ``record`` onto an opaque white page."""
    return InvoicePainter(record, scale=scale, logo=logo, fonts=fonts).paint()


class InvoiceView:
    """The live invoice surface.

    ``publish`` replaces the current record; ``wait_ready`` completes once the
    assets the layout depends on (the logo) are loaded. Only a mounted view can
    be drawn.
    """

    def __init__(self, logo_path: Optional[str] = None, mounted: bool = True) -> None:
        self.logo_path = logo_path if logo_path is not None else config.LOGO_PATH
        self.mounted = mounted
        self._state: Optional[InvoiceRecord] = None
        self._logo: Optional[Image.Image] = None
        self._logo_loaded = False
        self._fonts: Optional[FontManager] = None

    @property
    def state(self) -> Optional[InvoiceRecord]:
        return self._state

    def mount(self) -> None:
        self.mounted = True

    def unmount(self) -> None:
        self.mounted = False

    def publish(self, record: InvoiceRecord) -> None:
        self._state = record

    async def wait_ready(self) -> None:
        if self._logo_loaded:
            return
        loop = asyncio.get_running_loop()
        try:
            self._logo = await loop.run_in_executor(None, load_logo, self.logo_path)
        except OSError:
            logger.warning("Logo %s could not be loaded; rendering without it", self.logo_path)
            self._logo = None
        self._logo_loaded = True

    def draw(self, scale: int = 2) -> Image.Image:
        if self._state is None:
            raise ValueError("No invoice has been published to the view.")
        if self._fonts is None or self._fonts.scale != scale:
            self._fonts = FontManager(scale)
        return render_page(self._state, scale=scale, logo=self._logo, fonts=self._fonts)
