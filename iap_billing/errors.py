"""Error taxonomy and categorization.

Bridge implementations report failures with their own numeric codes. Every
bridge-originated code is mapped through ``categorize_error_code`` to an
``ErrorKind`` before it reaches a caller, so callers only ever see the closed
set of kinds below.
"""

from enum import IntEnum
from typing import Optional


class ErrorKind(IntEnum):
    """Stable domain error kinds delivered to ``on_error`` callbacks."""

    WRONG_SETTINGS = 1
    BRIDGE_NOT_INSTALLED = 2
    SERVICE_NOT_INITIALIZED = 3
    INTERNAL = 4
    OPERATION_CANCELLED = 5
    CONSUME_FAILED = 6
    NOT_LOGGED_IN = 7
    NOT_IN_INVENTORY = 8
    VALIDATE_API_UNREACHABLE = 9
    PURCHASE_REFUNDED = 10
    UNSUPPORTED_PLATFORM = 11
    INVALID_PRODUCT_INDEX = 12
    INVALID_PRODUCT_ID = 13
    SERVICE_READY_RETRY = 14  # not a failure: reissue the original call
    BUSY = 15


# Native codes synthesized while decoding the bridge reply envelope
NATIVE_EMPTY_REPLY = 31
NATIVE_MALFORMED_REPLY = 32

_NATIVE_CODE_TABLE: dict[int, ErrorKind] = {
    1: ErrorKind.WRONG_SETTINGS,
    2: ErrorKind.BRIDGE_NOT_INSTALLED,
    3: ErrorKind.SERVICE_NOT_INITIALIZED,
    4: ErrorKind.SERVICE_NOT_INITIALIZED,
    5: ErrorKind.SERVICE_NOT_INITIALIZED,
    6: ErrorKind.SERVICE_NOT_INITIALIZED,
    11: ErrorKind.CONSUME_FAILED,
    17: ErrorKind.CONSUME_FAILED,
    18: ErrorKind.CONSUME_FAILED,
    21: ErrorKind.OPERATION_CANCELLED,
    22: ErrorKind.OPERATION_CANCELLED,
    23: ErrorKind.CONSUME_FAILED,
    24: ErrorKind.NOT_LOGGED_IN,
    26: ErrorKind.NOT_IN_INVENTORY,
    30: ErrorKind.UNSUPPORTED_PLATFORM,
    40: ErrorKind.VALIDATE_API_UNREACHABLE,
    41: ErrorKind.VALIDATE_API_UNREACHABLE,
    42: ErrorKind.VALIDATE_API_UNREACHABLE,
    43: ErrorKind.PURCHASE_REFUNDED,
    44: ErrorKind.VALIDATE_API_UNREACHABLE,
}


def categorize_error_code(native_code: int) -> ErrorKind:
    """Map a bridge-native error code to a domain error kind.

    Unknown codes map to ``ErrorKind.INTERNAL``.
    """
    return _NATIVE_CODE_TABLE.get(native_code, ErrorKind.INTERNAL)


class BillingError(Exception):
    """Base exception for all billing errors."""

    pass


class ConfigurationError(BillingError):
    """Raised when configuration is invalid or missing."""

    pass


class ProductNotFoundError(BillingError):
    """Raised when a product is not found in the catalog."""

    pass


class PriceFormatError(BillingError):
    """Raised when a price string reported by the bridge cannot be parsed."""

    def __init__(self, raw_price: str) -> None:
        self.raw_price = raw_price
        super().__init__(f"Unparseable price: {raw_price!r}")


class PriceMismatchError(BillingError):
    """Raised when a products-details payload does not line up with the catalog."""

    pass


class ValidationApiError(BillingError):
    """Raised when the remote validation API cannot be reached or answers badly."""

    def __init__(self, step: str, message: str, status_code: Optional[int] = None) -> None:
        self.step = step
        self.status_code = status_code
        super().__init__(f"{step} failed: {message}")


class OrchestratorAlreadyExistsError(BillingError):
    """Raised when a second purchase orchestrator is constructed in one process."""

    pass
