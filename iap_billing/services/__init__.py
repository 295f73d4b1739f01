"""Billing services: purchase orchestration and remote validation."""

from iap_billing.services.purchase_orchestrator import (
    OperationKind,
    PurchaseOrchestrator,
    ServiceState,
    get_purchase_orchestrator,
    reset_purchase_orchestrator,
)
from iap_billing.services.validation_client import ValidationClient

__all__ = [
    "OperationKind",
    "PurchaseOrchestrator",
    "ServiceState",
    "ValidationClient",
    "get_purchase_orchestrator",
    "reset_purchase_orchestrator",
]
