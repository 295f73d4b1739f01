"""Utility functions and helpers."""

from iap_billing.utils.price_parser import normalize_digits, parse_price
from iap_billing.utils.token_generator import (
    generate_dummy_purchase,
    generate_order_id,
    generate_purchase_token,
)

__all__ = [
    # Price parsing
    "normalize_digits",
    "parse_price",
    # Dummy purchases
    "generate_dummy_purchase",
    "generate_order_id",
    "generate_purchase_token",
]
