"""Font discovery and text drawing helpers for the raster invoice view."""

from __future__ import annotations

import logging
import os
import threading
from typing import Dict, List, Optional, Tuple, Union

from PIL import ImageDraw, ImageFont

logger = logging.getLogger(__name__)

_PACKAGE_ROOT = os.path.dirname(os.path.abspath(__file__))

Font = Union[ImageFont.FreeTypeFont, ImageFont.ImageFont]
Color = Tuple[int, int, int]


def find_font_path(env_var: str, candidates: List[str]) -> Optional[str]:
    override = os.getenv(env_var)
    if override and os.path.exists(override):
        return override

    for path in candidates:
        if os.path.exists(path):
            return path
    return None


FONT_INIT_LOCK = threading.Lock()


class FontManager:
    """Resolves TrueType fonts and draws text in layout units multiplied by ``scale``.

    CJK-capable fonts are preferred because item descriptions and table headers
    are often Chinese. When no TrueType file is found, Pillow's built-in font is
    used so rendering still succeeds.
    """

    BUNDLED_REGULAR = os.path.join(_PACKAGE_ROOT, "fonts", "NotoSansSC-Regular.ttf")
    BUNDLED_BOLD = os.path.join(_PACKAGE_ROOT, "fonts", "NotoSansSC-Bold.ttf")
    SYSTEM_REGULAR_CANDIDATES = [
        "/usr/share/fonts/opentype/noto/NotoSansCJK-Regular.ttc",
        "/usr/share/fonts/noto-cjk/NotoSansCJK-Regular.ttc",
        "/usr/share/fonts/truetype/wqy/wqy-microhei.ttc",
        "/System/Library/Fonts/PingFang.ttc",
        "C:\\Windows\\Fonts\\msyh.ttc",
        "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",
        "/usr/share/fonts/dejavu/DejaVuSans.ttf",
        "/Library/Fonts/DejaVuSans.ttf",
    ]
    SYSTEM_BOLD_CANDIDATES = [
        "/usr/share/fonts/opentype/noto/NotoSansCJK-Bold.ttc",
        "/usr/share/fonts/noto-cjk/NotoSansCJK-Bold.ttc",
        "C:\\Windows\\Fonts\\msyhbd.ttc",
        "/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf",
        "/usr/share/fonts/dejavu/DejaVuSans-Bold.ttf",
        "/Library/Fonts/DejaVuSans-Bold.ttf",
    ]

    def __init__(self, scale: int = 1) -> None:
        self.scale = scale
        self.regular_path = find_font_path(
            "INVOICE_FONT_PATH",
            [self.BUNDLED_REGULAR, *self.SYSTEM_REGULAR_CANDIDATES],
        )
        self.bold_path = find_font_path(
            "INVOICE_FONT_BOLD_PATH",
            [self.BUNDLED_BOLD, *self.SYSTEM_BOLD_CANDIDATES],
        )
        if not self.regular_path:
            logger.warning(
                "No TrueType font found; set INVOICE_FONT_PATH for CJK text. "
                "Falling back to Pillow's default font."
            )
        self.has_bold = self.bold_path is not None
        self._cache: Dict[Tuple[int, bool], Font] = {}

    def font(self, size: int, bold: bool = False) -> Font:
        key = (size, bold and self.has_bold)
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        path = self.bold_path if key[1] else self.regular_path
        pixel_size = max(1, int(round(size * self.scale)))
        with FONT_INIT_LOCK:
            if path:
                font: Font = ImageFont.truetype(path, pixel_size)
            else:
                font = ImageFont.load_default(size=pixel_size)
        self._cache[key] = font
        return font

    def text_width(self, text: str, size: int, bold: bool = False) -> float:
        """Width of ``text`` in layout units (independent of ``scale``)."""
        return self.font(size, bold).getlength(text) / self.scale

    def draw_text(
        self,
        draw: ImageDraw.ImageDraw,
        x: float,
        y: float,
        text: str,
        size: int,
        color: Color,
        bold: bool = False,
    ) -> None:
        position = (x * self.scale, y * self.scale)
        draw.text(position, text, fill=color, font=self.font(size, bold))
        if bold and not self.has_bold:
            # Fake bold by overdrawing with a small horizontal offset.
            offset = (position[0] + 0.5 * self.scale, position[1])
            draw.text(offset, text, fill=color, font=self.font(size, bold))
