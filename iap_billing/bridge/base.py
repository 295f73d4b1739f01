"""Native billing bridge interface.

The bridge is the host-supplied service that runs the store's purchase,
consume and inventory flows. Requests are fire-and-forget; results come back
later on the callback target's ``deliver`` method, one ``BridgeChannel`` per
request kind, each carrying a raw ``{"errorCode", "data"}`` string.
"""

from abc import ABC, abstractmethod
from typing import Protocol

from iap_billing.models import BridgeChannel


class BridgeReplyTarget(Protocol):
    """Receiver of asynchronous bridge replies."""

    def deliver(self, channel: BridgeChannel, raw: str) -> None: ...


class BillingBridge(ABC):
    """Narrow interface over the native billing service."""

    @abstractmethod
    def init(self, public_key: str, callback_target: BridgeReplyTarget) -> None:
        """Register the store public key and the reply receiver."""

    @abstractmethod
    def start_service(self) -> None:
        """Connect to the store service. Replies on ``INIT_RESULT``."""

    @abstractmethod
    def purchase(self, product_id: str, consume_immediate: bool, payload: str) -> None:
        """Start the purchase flow. Replies on ``PURCHASE_RESULT``."""

    @abstractmethod
    def check_inventory(self, product_id: str) -> None:
        """Look up an owned product. Replies on ``INVENTORY_RESULT``."""

    @abstractmethod
    def consume_purchase(self, item_type: str, raw_json: str, signature: str) -> None:
        """Consume an owned purchase. Replies on ``CONSUME_RESULT``.

        ``raw_json`` must be the purchase payload exactly as the bridge
        delivered it; the store verifies ``signature`` against it.
        """

    @abstractmethod
    def get_products_details(self, product_ids: str) -> None:
        """Query prices for comma-joined product IDs. Replies on ``PRODUCTS_DETAILS_RESULT``."""

    @abstractmethod
    def stop(self) -> None:
        """Disconnect from the store service."""
