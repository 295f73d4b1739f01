"""Integration tests for purchases validated against the developer API."""

import pytest

from iap_billing.errors import ErrorKind
from iap_billing.models import BridgeChannel


class TestValidatedPurchase:
    """Purchase -> token exchange -> status check -> (consume) -> callback."""

    @pytest.mark.asyncio
    async def test_consumable_unconsumed_runs_full_chain_in_order(
        self, make_orchestrator, make_ready, bridge, validation_api, recorder, purchase_payload, events
    ):
        orchestrator = make_ready(make_orchestrator(validation=True))
        raw = purchase_payload()

        orchestrator.purchase(0, recorder.on_error, recorder.on_success)
        assert bridge.calls == [("purchase", "coins_500", False, "iap-billing")]

        bridge.reply(BridgeChannel.PURCHASE_RESULT, data=raw)
        await orchestrator.join()

        assert recorder.total == 0
        assert bridge.calls[-1] == ("consume_purchase", "inapp", raw, "c2lnbmF0dXJl")

        bridge.reply(BridgeChannel.CONSUME_RESULT, data=raw)

        assert events == [
            ("bridge", "purchase"),
            ("api", "token"),
            ("api", "status"),
            ("bridge", "consume_purchase"),
            ("callback", "success"),
        ]
        assert recorder.errors == []
        [(purchase, index)] = recorder.successes
        assert purchase.order_id == "ORDER-0001"
        assert index == 0

    @pytest.mark.asyncio
    async def test_requests_carry_credentials_and_keys(
        self, make_orchestrator, make_ready, bridge, validation_api, recorder, purchase_payload
    ):
        orchestrator = make_ready(make_orchestrator(validation=True))
        orchestrator.purchase(1, recorder.on_error, recorder.on_success)
        bridge.reply(BridgeChannel.PURCHASE_RESULT, data=purchase_payload("double_coins", "ORD-9"))
        await orchestrator.join()

        token_request, status_request = validation_api.requests
        assert token_request.method == "POST"
        assert str(token_request.url) == "https://api.example.test/auth/token/"
        form = token_request.content.decode()
        assert "grant_type=refresh_token" in form
        assert "client_id=client-id" in form
        assert "client_secret=client-secret" in form
        assert "refresh_token=refresh-token" in form

        assert status_request.method == "GET"
        assert status_request.url.path == (
            "/api/validate/com.example.game/inapp/double_coins/purchases/ORD-9/"
        )
        assert status_request.url.params["access_token"] == "access-token-123"

    @pytest.mark.asyncio
    async def test_already_consumed_succeeds_without_consume(
        self, make_orchestrator, make_ready, bridge, validation_api, recorder, purchase_payload
    ):
        orchestrator = make_ready(make_orchestrator(validation=True))
        validation_api.status_body["consumptionState"] = 0

        orchestrator.purchase(0, recorder.on_error, recorder.on_success)
        bridge.reply(BridgeChannel.PURCHASE_RESULT, data=purchase_payload())
        await orchestrator.join()

        assert len(recorder.successes) == 1
        assert bridge.count("consume_purchase") == 0

    @pytest.mark.asyncio
    async def test_non_consumable_succeeds_after_validation(
        self, make_orchestrator, make_ready, bridge, validation_api, recorder, purchase_payload
    ):
        orchestrator = make_ready(make_orchestrator(validation=True))
        orchestrator.purchase(1, recorder.on_error, recorder.on_success)
        bridge.reply(BridgeChannel.PURCHASE_RESULT, data=purchase_payload("double_coins"))
        await orchestrator.join()

        assert len(recorder.successes) == 1
        assert bridge.count("consume_purchase") == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("consumption_state", [0, 1])
    async def test_refund_takes_priority(
        self, make_orchestrator, make_ready, bridge, validation_api, recorder, purchase_payload, consumption_state
    ):
        orchestrator = make_ready(make_orchestrator(validation=True))
        validation_api.status_body["purchaseState"] = 1
        validation_api.status_body["consumptionState"] = consumption_state

        orchestrator.purchase(0, recorder.on_error, recorder.on_success)
        bridge.reply(BridgeChannel.PURCHASE_RESULT, data=purchase_payload())
        await orchestrator.join()

        assert [kind for kind, _ in recorder.errors] == [ErrorKind.PURCHASE_REFUNDED]
        assert recorder.successes == []
        assert bridge.count("consume_purchase") == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("failing_step", ["token", "status"])
    async def test_transport_failure_is_unreachable(
        self, make_orchestrator, make_ready, bridge, validation_api, recorder, purchase_payload, failing_step
    ):
        orchestrator = make_ready(make_orchestrator(validation=True))
        validation_api.fail_with = failing_step

        orchestrator.purchase(0, recorder.on_error, recorder.on_success)
        bridge.reply(BridgeChannel.PURCHASE_RESULT, data=purchase_payload())
        await orchestrator.join()

        assert [kind for kind, _ in recorder.errors] == [ErrorKind.VALIDATE_API_UNREACHABLE]
        expected_calls = 1 if failing_step == "token" else 2
        assert len(validation_api.requests) == expected_calls

    @pytest.mark.asyncio
    async def test_http_error_status_is_unreachable(
        self, make_orchestrator, make_ready, bridge, validation_api, recorder, purchase_payload
    ):
        orchestrator = make_ready(make_orchestrator(validation=True))
        validation_api.token_status = 401
        validation_api.token_body = {"error": "invalid_grant"}

        orchestrator.purchase(0, recorder.on_error, recorder.on_success)
        bridge.reply(BridgeChannel.PURCHASE_RESULT, data=purchase_payload())
        await orchestrator.join()

        assert [kind for kind, _ in recorder.errors] == [ErrorKind.VALIDATE_API_UNREACHABLE]
        assert len(validation_api.requests) == 1

    @pytest.mark.asyncio
    async def test_http_timeout_is_unreachable(
        self, make_orchestrator, make_ready, bridge, validation_api, recorder, purchase_payload
    ):
        orchestrator = make_ready(make_orchestrator(validation=True, http_seconds=0.01))
        validation_api.delay_seconds = 0.5

        orchestrator.purchase(0, recorder.on_error, recorder.on_success)
        bridge.reply(BridgeChannel.PURCHASE_RESULT, data=purchase_payload())
        await orchestrator.join()

        assert [kind for kind, _ in recorder.errors] == [ErrorKind.VALIDATE_API_UNREACHABLE]

    @pytest.mark.asyncio
    async def test_busy_while_validating(
        self, make_orchestrator, make_ready, bridge, validation_api, make_recorder, purchase_payload
    ):
        orchestrator = make_ready(make_orchestrator(validation=True))
        first, second = make_recorder(), make_recorder()

        orchestrator.purchase(1, first.on_error, first.on_success)
        bridge.reply(BridgeChannel.PURCHASE_RESULT, data=purchase_payload("double_coins", "ORDER-A"))
        orchestrator.purchase(0, second.on_error, second.on_success)
        await orchestrator.join()

        assert [kind for kind, _ in second.errors] == [ErrorKind.BUSY]
        [(purchase, index)] = first.successes
        assert purchase.order_id == "ORDER-A"
        assert index == 1

    @pytest.mark.asyncio
    async def test_cancel_during_validation(
        self, make_orchestrator, make_ready, bridge, validation_api, recorder, purchase_payload
    ):
        orchestrator = make_ready(make_orchestrator(validation=True))
        validation_api.delay_seconds = 0.05

        orchestrator.purchase(0, recorder.on_error, recorder.on_success)
        bridge.reply(BridgeChannel.PURCHASE_RESULT, data=purchase_payload())
        orchestrator.cancel("player left the shop")
        await orchestrator.join()

        assert recorder.errors == [(ErrorKind.OPERATION_CANCELLED, "player left the shop")]
        assert recorder.successes == []
        assert bridge.count("consume_purchase") == 0


class TestValidatedInventory:
    """Inventory checks are validated but never consumed."""

    @pytest.mark.asyncio
    async def test_unconsumed_consumable_is_not_consumed(
        self, make_orchestrator, make_ready, bridge, validation_api, recorder, purchase_payload, events
    ):
        orchestrator = make_ready(make_orchestrator(validation=True))
        orchestrator.check_inventory(0, recorder.on_error, recorder.on_success)
        bridge.reply(BridgeChannel.INVENTORY_RESULT, data=purchase_payload())
        await orchestrator.join()

        assert bridge.count("consume_purchase") == 0
        assert len(recorder.successes) == 1
        assert events == [
            ("bridge", "check_inventory"),
            ("api", "token"),
            ("api", "status"),
            ("callback", "success"),
        ]

    @pytest.mark.asyncio
    async def test_refunded_inventory_item(
        self, make_orchestrator, make_ready, bridge, validation_api, recorder, purchase_payload
    ):
        orchestrator = make_ready(make_orchestrator(validation=True))
        validation_api.status_body["purchaseState"] = 1

        orchestrator.check_inventory(1, recorder.on_error, recorder.on_success)
        bridge.reply(BridgeChannel.INVENTORY_RESULT, data=purchase_payload("double_coins"))
        await orchestrator.join()

        assert [kind for kind, _ in recorder.errors] == [ErrorKind.PURCHASE_REFUNDED]
