"""Runtime configuration loaded from environment variables."""

from __future__ import annotations

import os
from typing import Optional


def env_int(name: str, default: int, minimum: int = 1) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value >= minimum else default


def env_str(name: str, default: str) -> str:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip()


def env_path(name: str) -> Optional[str]:
    raw = os.getenv(name)
    if raw and os.path.exists(raw):
        return raw
    return None


HOST = env_str("INVOICE_HOST", "0.0.0.0")
PORT = env_int("INVOICE_PORT", 8080, minimum=1)
LOG_LEVEL = env_str("INVOICE_LOG_LEVEL", "INFO").upper()

DEFAULT_MAX_CONCURRENT_RENDERS = max(2, min(8, os.cpu_count() or 2))
MAX_CONCURRENT_RENDERS = env_int(
    "INVOICE_MAX_CONCURRENT_RENDERS",
    DEFAULT_MAX_CONCURRENT_RENDERS,
    minimum=1,
)
MAX_INFLIGHT_RENDERS = env_int(
    "INVOICE_MAX_INFLIGHT_RENDERS",
    max(16, MAX_CONCURRENT_RENDERS * 4),
    minimum=1,
)
RENDER_QUEUE_TIMEOUT_MS = env_int("INVOICE_RENDER_QUEUE_TIMEOUT_MS", 30000, minimum=0)
RENDER_TIMEOUT_MS = env_int("INVOICE_RENDER_TIMEOUT_MS", 600000, minimum=1000)

MAX_BODY_BYTES = env_int("INVOICE_MAX_BODY_BYTES", 32 * 1024 * 1024, minimum=1024)
LISTEN_BACKLOG = env_int("INVOICE_LISTEN_BACKLOG", 128, minimum=1)

# Minimum pause after the view reports ready, and the upper bound on waiting for it.
SETTLE_DELAY_MS = env_int("INVOICE_SETTLE_DELAY_MS", 50, minimum=0)
SETTLE_TIMEOUT_MS = env_int("INVOICE_SETTLE_TIMEOUT_MS", 10000, minimum=1)
RENDER_SCALE = env_int("INVOICE_RENDER_SCALE", 2, minimum=1)

LOGO_PATH = env_path("INVOICE_LOGO_PATH")

COMPANY_NAME = env_str("INVOICE_COMPANY_NAME", "PINGWORTH TECHNOLOGY LIMITED")
COMPANY_EMAIL = env_str("INVOICE_COMPANY_EMAIL", "finance@sevensmarketing.com")
BANK_ACCOUNT_NUMBER = env_str("INVOICE_BANK_ACCOUNT_NUMBER", "1010 5060 14")
BANK_ADDRESS_LINES = (
    env_str(
        "INVOICE_BANK_ADDRESS",
        "WORKSHOP F8, 4F VALIANT IND, CTR NO 2-12 AU PUI WAN ST, SHATIN NT,",
    ),
    env_str("INVOICE_BANK_ADDRESS_2", "HONG KONG"),
)
BANK_NAME = env_str("INVOICE_BANK_NAME", "Citibank N.A., Hong Kong Branch")
BANK_BRANCH_ADDRESS = env_str("INVOICE_BANK_BRANCH_ADDRESS", "3 Garden Road, Central, Hong Kong")
BANK_SWIFT = env_str("INVOICE_BANK_SWIFT", "CITIH KHXXXX")
BANK_CODE = env_str("INVOICE_BANK_CODE", "006")
