"""Simple state change logging for the billing service and its operations.

Tracks state transitions with before/after values for debugging and auditing.
"""

from typing import Any, Optional

from iap_billing.logging_config import get_logger, truncate_secret

logger = get_logger(__name__)


def log_service_state_change(
    old_state: Any,
    new_state: Any,
    reason: Optional[str] = None,
    **extra_context: Any,
) -> None:
    """Log billing service state change.

    Args:
        old_state: Previous service state
        new_state: New service state
        reason: Reason for state change
        **extra_context: Additional context
    """
    logger.info(
        "service_state_changed",
        old_state=str(old_state),
        new_state=str(new_state),
        reason=reason,
        **extra_context,
    )


def log_operation_started(
    operation: str,
    product_index: int,
    product_id: Optional[str] = None,
    **extra_context: Any,
) -> None:
    """Log the start of a purchase-like operation.

    Args:
        operation: Operation kind (purchase, check_inventory, consume)
        product_index: Catalog index of the product
        product_id: Product ID at that index
        **extra_context: Additional context
    """
    logger.info(
        "operation_started",
        operation=operation,
        product_index=product_index,
        product_id=product_id,
        **extra_context,
    )


def log_operation_finished(
    operation: str,
    outcome: str,
    error_kind: Any = None,
    message: Optional[str] = None,
    order_id: Optional[str] = None,
    **extra_context: Any,
) -> None:
    """Log the terminal outcome of an operation.

    Args:
        operation: Operation kind
        outcome: "success" or "error"
        error_kind: ErrorKind when outcome is "error"
        message: Error message
        order_id: Order ID of the purchase involved
        **extra_context: Additional context
    """
    log = logger.info if outcome == "success" else logger.warning
    log(
        "operation_finished",
        operation=operation,
        outcome=outcome,
        error_kind=error_kind.name if error_kind is not None else None,
        message=message,
        order_id=order_id,
        **extra_context,
    )


def log_validation_step(
    step: str,
    product_id: str,
    order_id: str,
    access_token: Optional[str] = None,
    **extra_context: Any,
) -> None:
    """Log a step of the server-side validation chain."""
    logger.debug(
        "validation_step",
        step=step,
        product_id=product_id,
        order_id=order_id,
        access_token=truncate_secret(access_token) if access_token else None,
        **extra_context,
    )


def log_price_change(
    product_id: str,
    old_price: Optional[str],
    new_price: Optional[str],
    **extra_context: Any,
) -> None:
    """Log a product price assignment."""
    logger.info(
        "product_price_changed",
        product_id=product_id,
        old_price=old_price,
        new_price=new_price,
        **extra_context,
    )
