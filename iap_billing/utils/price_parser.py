"""Price string normalization.

The bridge reports prices formatted for display, e.g. ``"۱۲٬۰۰۰ ریال"`` or
``"12,000 Rials"``. Catalog prices are stored as plain ASCII digits.
"""

import re
import unicodedata

from iap_billing.errors import PriceFormatError

# Thousands separators: ASCII comma, Arabic thousands separator, apostrophe
_THOUSANDS_SEPARATORS = {",", "٬", "'", "’"}
_DECIMAL_SEPARATORS = {".", "٫"}

_NORMALIZED_PATTERN = re.compile(r"^\d+(\.\d+)?$")


def normalize_digits(text: str) -> str:
    """Map any Unicode decimal digit (Persian, Arabic-Indic, ...) to ASCII."""
    chars = []
    for char in text:
        value = unicodedata.decimal(char, None)
        chars.append(str(value) if value is not None else char)
    return "".join(chars)


def parse_price(raw_price: str) -> str:
    """Normalize a display price to ASCII digits.

    Currency units, whitespace and thousands separators are dropped. An Arabic
    decimal separator becomes ``"."``.

    Args:
        raw_price: Price as reported by the bridge

    Returns:
        Normalized price such as ``"12000"`` or ``"1.99"``

    Raises:
        PriceFormatError: If no digits are present or the number is malformed
    """
    if not isinstance(raw_price, str):
        raise PriceFormatError(str(raw_price))

    kept = []
    for char in normalize_digits(raw_price):
        if char.isascii() and char.isdigit():
            kept.append(char)
        elif char in _DECIMAL_SEPARATORS:
            kept.append(".")
        elif char in _THOUSANDS_SEPARATORS or char.isspace():
            continue
        # anything else is part of the currency unit

    normalized = "".join(kept).strip(".")
    if not _NORMALIZED_PATTERN.match(normalized):
        raise PriceFormatError(raw_price)
    return normalized
