# Overview: Opaque document numbers for invoices and payments (timestamp + random suffix).

from __future__ import annotations

import secrets
from datetime import datetime

from ..time_utils import utcnow, to_utc_naive


def _suffix(digits: int = 3) -> str:
    return f"{secrets.randbelow(10 ** digits):0{digits}d}"


def generate_invoice_number(now: datetime | None = None) -> str:
    """INV-YYYYMMDD-HHMMSS-rrr"""
    now = now or utcnow()
    return f"INV-{now:%Y%m%d-%H%M%S}-{_suffix()}"


def regenerate_invoice_number(now: datetime | None = None) -> str:
    """
    Number used after a collision: epoch milliseconds plus a wider suffix,
    so it cannot land on the same second-granularity value again.
    """
    now = to_utc_naive(now) or utcnow()
    epoch_ms = int((now - datetime(1970, 1, 1)).total_seconds() * 1000)
    return f"INV-{epoch_ms}-{_suffix(4)}"


def generate_payment_number(now: datetime | None = None) -> str:
    now = now or utcnow()
    return f"PAY-{now:%Y%m%d-%H%M%S}-{secrets.token_hex(3).upper()}"
