"""Render-capture-encode pipeline: view state -> bitmap -> single-page PDF."""

from __future__ import annotations

import asyncio
import logging
import os
from typing import Any, Dict, Optional

from fpdf import FPDF  # type: ignore
from PIL import Image

from . import config
from .errors import CaptureUnavailable, SettleTimeout
from .formatting import invoice_filename
from .layout import PDF_PAGE_W_MM
from .models import InvoiceRecord
from .template import InvoiceView

logger = logging.getLogger(__name__)


def _pdf_bytes(blob: Any) -> bytes:
    if isinstance(blob, (bytes, bytearray)):
        return bytes(blob)
    raise RuntimeError(f"Unexpected PDF output type: {type(blob).__name__}")


def encode_pdf(image: Image.Image) -> bytes:
    """Place ``image`` full-bleed across the width of one A4 portrait page."""
    if image.mode != "RGB":
        background = Image.new("RGB", image.size, (255, 255, 255))
        background.paste(image, mask=image.getchannel("A") if "A" in image.getbands() else None)
        image = background

    pdf = FPDF(orientation="portrait", unit="mm", format="A4")
    pdf.set_auto_page_break(False)
    pdf.set_margins(0, 0, 0)
    pdf.add_page()

    width = PDF_PAGE_W_MM
    height = image.height * width / image.width
    pdf.image(image, x=0, y=0, w=width, h=height)
    return _pdf_bytes(pdf.output())


class CapturePipeline:
    """Drives an :class:`InvoiceView` through publish, settle, rasterize and encode.

    The view is a single slot: callers must not publish to it while a capture
    is in progress.
    """

    def __init__(
        self,
        view: Optional[InvoiceView] = None,
        scale: int = config.RENDER_SCALE,
        settle_delay_ms: int = config.SETTLE_DELAY_MS,
        settle_timeout_ms: int = config.SETTLE_TIMEOUT_MS,
    ) -> None:
        self.view = view if view is not None else InvoiceView()
        self.scale = scale
        self.settle_delay_ms = settle_delay_ms
        self.settle_timeout_ms = settle_timeout_ms

    def publish(self, record: InvoiceRecord) -> InvoiceRecord:
        self.view.publish(record)
        return record

    async def settle(self) -> None:
        try:
            await asyncio.wait_for(self.view.wait_ready(), timeout=self.settle_timeout_ms / 1000.0)
        except asyncio.TimeoutError as exc:
            raise SettleTimeout(
                f"View did not settle within {self.settle_timeout_ms} ms."
            ) from exc
        if self.settle_delay_ms:
            await asyncio.sleep(self.settle_delay_ms / 1000.0)

    async def rasterize(self) -> Image.Image:
        if not self.view.mounted:
            raise CaptureUnavailable("Invoice view is not mounted.")
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.view.draw, self.scale)

    async def render_current(self) -> Optional[bytes]:
        """Capture whatever the view currently shows; ``None`` when there is no surface."""
        if not self.view.mounted:
            logger.warning("Capture skipped: invoice view is not mounted")
            return None
        await self.settle()
        try:
            image = await self.rasterize()
        except CaptureUnavailable:
            logger.warning("Capture skipped: invoice view was unmounted while settling")
            return None
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, encode_pdf, image)

    async def capture(self, record: InvoiceRecord) -> Optional[bytes]:
        self.publish(record.with_total())
        return await self.render_current()

    async def save(self, record: InvoiceRecord, directory: str) -> Optional[str]:
        """Write ``Invoice_<invoiceNo>.pdf`` into ``directory``; ``None`` if nothing was captured."""
        pdf_bytes = await self.capture(record)
        if pdf_bytes is None:
            return None
        os.makedirs(directory, exist_ok=True)
        destination = os.path.join(directory, invoice_filename(record.invoice_no))
        with open(destination, "wb") as handle:
            handle.write(pdf_bytes)
        logger.info("Saved %s", destination)
        return destination


def render_invoice_pdf(payload: Dict[str, Any]) -> bytes:
    """Render one JSON-style invoice payload to PDF bytes."""
    record = InvoiceRecord.from_payload(payload)
    pdf_bytes = asyncio.run(CapturePipeline(settle_delay_ms=0).capture(record))
    if pdf_bytes is None:
        raise CaptureUnavailable("Invoice view is not mounted.")
    return pdf_bytes
