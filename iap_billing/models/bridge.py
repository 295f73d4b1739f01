"""Bridge reply envelope and reply channels."""

import json
from enum import Enum

from pydantic import BaseModel, Field

from iap_billing.errors import NATIVE_EMPTY_REPLY, NATIVE_MALFORMED_REPLY


class BridgeChannel(str, Enum):
    """Named channels on which the bridge delivers its asynchronous replies."""

    INIT_RESULT = "init-result"
    PURCHASE_RESULT = "purchase-result"
    CONSUME_RESULT = "consume-result"
    INVENTORY_RESULT = "inventory-result"
    PRODUCTS_DETAILS_RESULT = "products-details-result"


class BridgeReply(BaseModel):
    """``{errorCode, data}`` envelope.

    errorCode 0 means success and ``data`` carries a JSON payload; anything
    else is a native error code and ``data`` is a human readable message.
    """

    error_code: int = Field(..., alias="errorCode")
    data: str = Field(default="")

    @property
    def ok(self) -> bool:
        return self.error_code == 0

    @classmethod
    def parse(cls, raw: str) -> "BridgeReply":
        """Decode a raw reply string.

        Never raises: empty or malformed envelopes become native error replies.
        """
        if not raw:
            return cls(errorCode=NATIVE_EMPTY_REPLY, data="unknown error")
        try:
            fields = json.loads(raw)
            error_code = int(fields["errorCode"])
            data = fields.get("data")
        except (TypeError, ValueError, OverflowError, KeyError, AttributeError):
            return cls(errorCode=NATIVE_MALFORMED_REPLY, data="the result from the bridge is not valid")
        if data is None:
            data = ""
        elif not isinstance(data, str):
            data = json.dumps(data)
        return cls(errorCode=error_code, data=data)

    class Config:
        populate_by_name = True
