"""Pydantic models for configuration, purchases and bridge replies."""

# Product configuration models
from .product import (
    ProductType,
    ProductDefinition,
    ValidationSettings,
    TimeoutSettings,
    StoreConfig,
)

# Purchase models
from .purchase import (
    PurchaseState,
    ConsumptionState,
    Purchase,
    ValidationResult,
)

# Bridge models
from .bridge import (
    BridgeChannel,
    BridgeReply,
)

__all__ = [
    # Product configuration
    "ProductType",
    "ProductDefinition",
    "ValidationSettings",
    "TimeoutSettings",
    "StoreConfig",
    # Purchase
    "PurchaseState",
    "ConsumptionState",
    "Purchase",
    "ValidationResult",
    # Bridge
    "BridgeChannel",
    "BridgeReply",
]
