"""Voucher code generation."""

from __future__ import annotations

import secrets
import string
from datetime import datetime, timezone

VOUCHER_PREFIX = "VCH"
_ALPHABET = string.digits + string.ascii_uppercase
_SUFFIX_LENGTH = 9


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits: list[str] = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_ALPHABET[remainder])
    return "".join(reversed(digits))


def generate_voucher_code(*, now: datetime | None = None) -> str:
    """Return a ``VCH-<base36 millis>-<9 random chars>`` code.

    Codes only contain ``[A-Z0-9-]`` so they survive URLs and being read aloud
    at a merchant counter.
    """

    moment = now or datetime.now(timezone.utc)
    millis = int(moment.timestamp() * 1000)
    suffix = "".join(secrets.choice(_ALPHABET) for _ in range(_SUFFIX_LENGTH))
    return f"{VOUCHER_PREFIX}-{_to_base36(millis)}-{suffix}"


def build_qr_payload(frontend_url: str, voucher_code: str) -> str:
    """Verification URL encoded into the voucher QR image."""

    return f"{frontend_url.rstrip('/')}/verify-qr/{voucher_code}"


def normalize_voucher_code(raw: str) -> str:
    return raw.strip().upper()


__all__ = ["VOUCHER_PREFIX", "build_qr_payload", "generate_voucher_code", "normalize_voucher_code"]
