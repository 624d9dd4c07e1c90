from __future__ import annotations

import re
from decimal import Decimal, ROUND_HALF_UP

_WHITESPACE_RE = re.compile(r"\s+")
TWOPLACES = Decimal("0.01")


def normalize_title_text(value: str | None) -> str | None:
    """Collapse internal whitespace and trim; ``None`` for blank input."""
    if value is None:
        return None
    cleaned = _WHITESPACE_RE.sub(" ", str(value)).strip()
    return cleaned or None


def normalize_description_text(value: str | None) -> str | None:
    if value is None:
        return None
    cleaned = str(value).strip()
    return cleaned or None


def normalize_code(value: str | None) -> str | None:
    cleaned = normalize_title_text(value)
    return cleaned.upper().replace(" ", "_") if cleaned else None


def quantize_money(value: Decimal | int | float | str) -> Decimal:
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(TWOPLACES, rounding=ROUND_HALF_UP)


def require_reason(value: str | None, field: str = "reason") -> str:
    cleaned = normalize_description_text(value)
    if not cleaned:
        raise ValueError(f"{field} is required")
    return cleaned
