"""
Locale amount normalization (SSOT).

Closure reports print amounts in Argentine format (1.234,56) but values
also arrive already canonical (1234.56) when they are re-read from the
ledger. normalize_amount accepts both and always returns a non-negative
Decimal, or None when nothing numeric is left.

Precedence (first rule that applies wins):
1. Drop every character that is not a digit, '.', ',' or '-'
2. Both '.' and ',' present: '.' groups thousands, ',' is the decimal mark
3. Only ',' present: it is the decimal mark
4. More than one '.' and no ',': every '.' groups thousands
5. Parse; return the absolute value
"""

import re
from decimal import Decimal, InvalidOperation
from typing import Optional

_DISALLOWED = re.compile(r"[^0-9.,\-]")


def normalize_amount(raw: Optional[str]) -> Optional[Decimal]:
    """
    Convert a formatted amount string to a canonical non-negative Decimal.

    Args:
        raw: Matched amount text, e.g. "$ 1.234,56" or "-23.400,50"

    Returns:
        Decimal value, or None when the input holds no parseable number.
        None is the explicit "absent" marker; it is never zero.
    """
    if raw is None:
        return None

    cleaned = _DISALLOWED.sub("", str(raw))

    if "." in cleaned and "," in cleaned:
        cleaned = cleaned.replace(".", "").replace(",", ".")
    elif "," in cleaned:
        cleaned = cleaned.replace(",", ".")
    elif cleaned.count(".") > 1:
        cleaned = cleaned.replace(".", "")

    if not cleaned:
        return None

    try:
        value = Decimal(cleaned)
    except InvalidOperation:
        return None

    if not value.is_finite():
        return None
    return abs(value)


def format_amount(value: Optional[Decimal]) -> str:
    """Render an amount for logs and reports ("-" when absent)."""
    if value is None:
        return "-"
    return f"{value:.2f}"
