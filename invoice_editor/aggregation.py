"""Line-item total computation."""

from __future__ import annotations

import logging
import re
from decimal import Decimal, localcontext
from typing import Iterable, List, Protocol

from .errors import AmountParseError
from .formatting import fmt_amount

logger = logging.getLogger(__name__)

# Plain decimal notation only: no exponents, underscores, NaN or Infinity.
_PLAIN_DECIMAL = re.compile(r"[+-]?(?:\d+(?:\.\d*)?|\.\d+)")


class HasAmount(Protocol):
    amount: str


def parse_amount(raw: str) -> Decimal:
    text = str(raw).replace(",", "").strip()
    if not _PLAIN_DECIMAL.fullmatch(text):
        raise AmountParseError(raw)
    return Decimal(text)


def _exact_precision(values: List[Decimal]) -> int:
    """Significant digits needed to add ``values`` without rounding."""
    highest = max(value.adjusted() for value in values)
    lowest = min(min(value.as_tuple().exponent for value in values), -2)
    return highest - lowest + len(str(len(values))) + 2


def aggregate_total(items: Iterable[HasAmount]) -> str:
    """Sum item amounts into display text; unparseable amounts count as zero."""
    values: List[Decimal] = []
    for item in items:
        try:
            values.append(parse_amount(item.amount))
        except AmountParseError as exc:
            logger.debug("Treating amount as zero: %s", exc)
    if not values:
        return fmt_amount(Decimal("0"))

    with localcontext() as context:
        context.prec = max(context.prec, _exact_precision(values))
        total = sum(values, Decimal("0"))
    return fmt_amount(total)
