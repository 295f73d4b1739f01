"""Purchase models - bridge purchase payloads and validation results.

A ``Purchase`` keeps the exact JSON string the bridge delivered: consume and
validate calls must hand that string back verbatim because the bridge checks
the signature against it.
"""

import json
from enum import IntEnum
from typing import Any

from pydantic import BaseModel, Field, field_validator


class PurchaseState(IntEnum):
    """Purchase state as reported by the store backend."""

    PURCHASED = 0
    REFUNDED = 1


class ConsumptionState(IntEnum):
    """Consumption state as reported by the validation API."""

    CONSUMED = 0
    NOT_CONSUMED = 1


class Purchase(BaseModel):
    """A purchase reported by the bridge."""

    order_id: str = Field(default="", alias="orderId", description="Unique order ID")
    purchase_token: str = Field(default="", alias="purchaseToken", description="Purchase token")
    developer_payload: str = Field(default="", alias="developerPayload", description="Developer payload")
    package_name: str = Field(default="", alias="packageName", description="Application package name")
    purchase_state: int = Field(default=PurchaseState.PURCHASED, alias="purchaseState")
    purchase_time: str = Field(default="", alias="purchaseTime", description="Purchase time (Unix millis)")
    product_id: str = Field(default="", alias="productId", description="Product ID")
    item_type: str = Field(default="inapp", alias="itemType", description="Store item type")
    signature: str = Field(default="", description="Store signature over raw_json")
    raw_json: str = Field(default="", exclude=True, description="Payload exactly as delivered")

    @field_validator(
        "order_id",
        "purchase_token",
        "developer_payload",
        "package_name",
        "purchase_time",
        "product_id",
        "item_type",
        "signature",
        mode="before",
    )
    @classmethod
    def coerce_to_str(cls, value: Any) -> str:
        if value is None:
            return ""
        return str(value)

    @classmethod
    def from_bridge_data(cls, data: str) -> "Purchase":
        """Parse a bridge purchase payload, keeping the original string.

        Args:
            data: JSON object string delivered by the bridge

        Returns:
            Purchase

        Raises:
            ValueError: If data is not a JSON object
        """
        try:
            fields = json.loads(data)
        except (TypeError, json.JSONDecodeError) as e:
            raise ValueError(f"purchase data is not valid JSON: {e}") from e
        if not isinstance(fields, dict):
            raise ValueError("purchase data is not a JSON object")
        return cls.model_validate({**fields, "raw_json": data})

    class Config:
        populate_by_name = True
        json_schema_extra = {
            "example": {
                "orderId": "5YmPcDx0r3AP2Nuc",
                "purchaseToken": "5YmPcDx0r3AP2Nuc",
                "developerPayload": "player-42",
                "packageName": "com.example.game",
                "purchaseState": 0,
                "purchaseTime": "1427814481707",
                "productId": "coins_500",
                "itemType": "inapp",
                "signature": "T2rlm...",
            }
        }


class ValidationResult(BaseModel):
    """Interpretation of the validation API's purchase status response."""

    is_consumed: bool = Field(..., description="Store reports the purchase consumed")
    is_refund: bool = Field(..., description="Store reports the purchase refunded")
    kind: str = Field(default="", description="Resource kind")
    payload: str = Field(default="", description="Developer payload recorded by the store")
    time: str = Field(default="", description="Purchase time recorded by the store")

    @classmethod
    def from_api_response(cls, body: dict[str, Any]) -> "ValidationResult":
        """Build a result from the status endpoint's JSON body."""

        def as_int(key: str, default: int) -> int:
            try:
                return int(body.get(key, default))
            except (TypeError, ValueError):
                return default

        def as_str(key: str) -> str:
            value = body.get(key)
            return "" if value is None else str(value)

        return cls(
            is_consumed=as_int("consumptionState", ConsumptionState.NOT_CONSUMED)
            == ConsumptionState.CONSUMED,
            is_refund=as_int("purchaseState", PurchaseState.PURCHASED) == PurchaseState.REFUNDED,
            kind=as_str("kind"),
            payload=as_str("developerPayload"),
            time=as_str("purchaseTime"),
        )
