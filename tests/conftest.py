"""Shared fixtures: a fake native bridge, a fake validation API and store configs."""

import asyncio
import json
from typing import Any, Optional

import httpx
import pytest

from iap_billing.bridge import BillingBridge
from iap_billing.models import BridgeChannel, ProductDefinition, StoreConfig
from iap_billing.services.purchase_orchestrator import PurchaseOrchestrator, reset_purchase_orchestrator
from iap_billing.services.validation_client import ValidationClient


class FakeBridge(BillingBridge):
    """Records every request; replies only when a test tells it to."""

    def __init__(self, events: Optional[list] = None):
        self.calls: list[tuple] = []
        self.events = events if events is not None else []
        self.target = None

    def _record(self, *call: Any) -> None:
        self.calls.append(call)
        self.events.append(("bridge", call[0]))

    def init(self, public_key, callback_target):
        self.target = callback_target
        self._record("init", public_key)

    def start_service(self):
        self._record("start_service")

    def purchase(self, product_id, consume_immediate, payload):
        self._record("purchase", product_id, consume_immediate, payload)

    def check_inventory(self, product_id):
        self._record("check_inventory", product_id)

    def consume_purchase(self, item_type, raw_json, signature):
        self._record("consume_purchase", item_type, raw_json, signature)

    def get_products_details(self, product_ids):
        self._record("get_products_details", product_ids)

    def stop(self):
        self._record("stop")

    def reply(self, channel: BridgeChannel, error_code: int = 0, data: str = "") -> None:
        self.target.deliver(channel, json.dumps({"errorCode": error_code, "data": data}))

    def call_names(self) -> list[str]:
        return [call[0] for call in self.calls]

    def count(self, name: str) -> int:
        return self.call_names().count(name)


class FakeValidationApi:
    """httpx.MockTransport handler standing in for the developer API."""

    def __init__(self, events: Optional[list] = None):
        self.events = events if events is not None else []
        self.requests: list[httpx.Request] = []
        self.token_status = 200
        self.token_body: Any = {"access_token": "access-token-123"}
        self.status_status = 200
        self.status_body: Any = {
            "kind": "androidpublisher#inappPurchase",
            "consumptionState": 1,
            "purchaseState": 0,
            "developerPayload": "iap-billing",
            "purchaseTime": 1427814481707,
        }
        self.fail_with: Optional[str] = None
        self.delay_seconds = 0.0

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        step = "token" if request.method == "POST" else "status"
        self.events.append(("api", step))

        if self.delay_seconds:
            await asyncio.sleep(self.delay_seconds)
        if self.fail_with == step:
            raise httpx.ConnectError("connection refused", request=request)

        if step == "token":
            return httpx.Response(self.token_status, json=self.token_body)
        return httpx.Response(self.status_status, json=self.status_body)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


def purchase_json(
    product_id: str = "coins_500",
    order_id: str = "ORDER-0001",
    signature: str = "c2lnbmF0dXJl",
) -> str:
    """Bridge purchase payload with deliberately irregular spacing."""
    return (
        '{"orderId": "%s",  "purchaseToken": "token-%s", "developerPayload": "iap-billing", '
        '"packageName": "com.example.game", "purchaseState": 0, "purchaseTime": 1427814481707, '
        '"productId": "%s", "itemType": "inapp", "signature": "%s"}'
    ) % (order_id, order_id, product_id, signature)


@pytest.fixture(autouse=True)
def reset_orchestrator():
    """Only one orchestrator may exist per process."""
    reset_purchase_orchestrator()
    yield
    reset_purchase_orchestrator()


@pytest.fixture
def events():
    return []


@pytest.fixture
def bridge(events):
    return FakeBridge(events)


@pytest.fixture
def validation_api(events):
    return FakeValidationApi(events)


@pytest.fixture
def make_store():
    """Factory for store configurations."""

    def factory(
        validation: bool = False,
        dummy: bool = False,
        products: Optional[list[ProductDefinition]] = None,
        bridge_seconds: float = 120.0,
        http_seconds: float = 15.0,
        application_id: Optional[str] = "com.example.game",
    ) -> StoreConfig:
        if products is None:
            products = [
                ProductDefinition(id="coins_500", type="consumable"),
                ProductDefinition(id="double_coins", type="non_consumable"),
            ]
        return StoreConfig(
            products=products,
            public_key="MIGfMA0GCSqGSIb3DQEBAQUAA4GNADCBiQKBgQC",
            payload="iap-billing",
            application_id=application_id,
            dummy_response_in_unsupported_environment=dummy,
            validation={
                "enabled": validation,
                "client_id": "client-id",
                "client_secret": "client-secret",
                "refresh_token": "refresh-token",
                "auth_endpoint": "https://api.example.test/auth/token/",
                "status_endpoint": "https://api.example.test/api/validate",
            },
            timeouts={"bridge_seconds": bridge_seconds, "http_seconds": http_seconds},
        )

    return factory


class CallbackRecorder:
    """Collects terminal callbacks so tests can assert exactly-once delivery."""

    def __init__(self, events: Optional[list] = None):
        self.errors: list[tuple] = []
        self.successes: list[tuple] = []
        self.events = events if events is not None else []

    def on_error(self, kind, message):
        self.errors.append((kind, message))
        self.events.append(("callback", "error"))

    def on_success(self, *args):
        self.successes.append(args)
        self.events.append(("callback", "success"))

    @property
    def total(self) -> int:
        return len(self.errors) + len(self.successes)


@pytest.fixture
def recorder(events):
    return CallbackRecorder(events)


@pytest.fixture
def make_recorder(events):
    return lambda: CallbackRecorder(events)


@pytest.fixture
def purchase_payload():
    """Factory for raw bridge purchase payloads."""
    return purchase_json


@pytest.fixture
def make_orchestrator(make_store, bridge, validation_api):
    """Factory for orchestrators wired to the fake bridge and fake API."""

    def factory(with_bridge: bool = True, **store_kwargs) -> PurchaseOrchestrator:
        store = make_store(**store_kwargs)
        client = ValidationClient(
            store.validation,
            timeout_seconds=store.timeouts.http_seconds,
            http_client=validation_api.client(),
        )
        return PurchaseOrchestrator(
            store=store,
            bridge=bridge if with_bridge else None,
            validation_client=client,
        )

    return factory


@pytest.fixture
def make_ready(bridge):
    """Drive an orchestrator through a successful initialization."""

    def ready(orchestrator: PurchaseOrchestrator) -> PurchaseOrchestrator:
        orchestrator.initialize_service()
        bridge.reply(BridgeChannel.INIT_RESULT)
        assert orchestrator.is_service_initialized
        bridge.calls.clear()
        bridge.events.clear()
        return orchestrator

    return ready
