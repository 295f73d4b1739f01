"""Native billing bridge interface."""

from iap_billing.bridge.base import BillingBridge, BridgeReplyTarget

__all__ = ["BillingBridge", "BridgeReplyTarget"]
