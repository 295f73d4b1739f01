"""Order ID and purchase token generation for dummy purchases.

Used only where no bridge exists and dummy responses are enabled, so that
callers can exercise their success paths in development environments.
"""

import json
import random
import time
import uuid

from iap_billing.models import Purchase, PurchaseState


def generate_purchase_token(prefix: str = "dummy") -> str:
    """Generate a unique purchase token.

    Format: {prefix}_purchase_{uuid}_{timestamp}
    Example: dummy_purchase_a1b2c3d4e5f6g7h8_1700000000000
    """
    token_id = uuid.uuid4().hex[:16]
    timestamp = int(time.time() * 1000)
    return f"{prefix}_purchase_{token_id}_{timestamp}"


def generate_order_id(prefix: str = "DUMMY") -> str:
    """Generate an order ID.

    Format: {prefix}.{rand}-{rand}-{rand}-{rand}
    Example: DUMMY.1234-5678-9012-3456
    """
    parts = [random.randint(1000, 9999) for _ in range(4)]
    return f"{prefix}.{parts[0]}-{parts[1]}-{parts[2]}-{parts[3]}"


def generate_dummy_purchase(product_id: str, payload: str = "", package_name: str = "") -> Purchase:
    """Synthesize a purchase whose raw payload is its own JSON form.

    Args:
        product_id: Product being "purchased"
        payload: Developer payload to embed
        package_name: Application package name

    Returns:
        Purchase with order ID, token, purchase time and raw_json populated
    """
    fields = {
        "orderId": generate_order_id(),
        "purchaseToken": generate_purchase_token(),
        "developerPayload": payload,
        "packageName": package_name,
        "purchaseState": int(PurchaseState.PURCHASED),
        "purchaseTime": str(int(time.time() * 1000)),
        "productId": product_id,
        "itemType": "inapp",
    }
    raw_json = json.dumps(fields, separators=(",", ":"))
    return Purchase.from_bridge_data(raw_json)
