"""Purchase Orchestrator - drives bridge requests and the validation chain.

The orchestrator owns every piece of mutable purchase state: the service
state, the pending callback slots and the purchase currently being validated.
It runs on a single asyncio event loop. Bridge replies are delivered through
``deliver`` (or ``deliver_threadsafe`` from a host thread) and processed one
at a time; the validation chain runs as a task on the same loop.

Every logical operation ends in exactly one terminal callback. Slots are
cleared as they fire, so a late or duplicate bridge reply finds nothing to
resolve and is dropped.
"""

import asyncio
from enum import Enum
from typing import Callable, Optional

from iap_billing.bridge import BillingBridge
from iap_billing.config import get_config
from iap_billing.errors import (
    ErrorKind,
    OrchestratorAlreadyExistsError,
    PriceFormatError,
    PriceMismatchError,
    ValidationApiError,
    categorize_error_code,
)
from iap_billing.logging_config import get_logger
from iap_billing.models import BridgeChannel, BridgeReply, ProductDefinition, Purchase, StoreConfig
from iap_billing.repositories.product_catalog import ProductCatalog
from iap_billing.services.validation_client import ValidationClient
from iap_billing.state_logger import (
    log_operation_finished,
    log_operation_started,
    log_service_state_change,
)
from iap_billing.utils.token_generator import generate_dummy_purchase

logger = get_logger(__name__)

ErrorCallback = Callable[[ErrorKind, str], None]
PurchaseCallback = Callable[[Purchase, int], None]
ReadyCallback = Callable[[], None]


class ServiceState(str, Enum):
    """Billing service lifecycle. READY is terminal."""

    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"


class OperationKind(str, Enum):
    INITIALIZE = "initialize"
    LOAD_PRICES = "load_prices"
    PURCHASE = "purchase"
    CHECK_INVENTORY = "check_inventory"
    CONSUME = "consume"


class PendingOperation:
    """Callback slot and in-flight state of one logical operation."""

    def __init__(
        self,
        kind: OperationKind,
        on_error: Optional[ErrorCallback],
        on_success: Optional[Callable],
        product_index: int = -1,
    ):
        self.kind = kind
        self.on_error = on_error
        self.on_success = on_success
        self.product_index = product_index
        self.awaiting: Optional[BridgeChannel] = None
        self.purchase: Optional[Purchase] = None
        self.timer: Optional[asyncio.TimerHandle] = None
        self.task: Optional[asyncio.Task] = None
        self.finished = False

    def stop_waiting(self) -> None:
        self.awaiting = None
        if self.timer is not None:
            self.timer.cancel()
            self.timer = None

    def take_callbacks(self) -> tuple[Optional[ErrorCallback], Optional[Callable]]:
        """Empty the slot. Only the first caller gets the callbacks."""
        on_error, on_success = self.on_error, self.on_success
        self.on_error = None
        self.on_success = None
        self.finished = True
        self.stop_waiting()
        if self.task is not None:
            self.task.cancel()
            self.task = None
        return on_error, on_success


# Process-wide instance
_orchestrator_instance: Optional["PurchaseOrchestrator"] = None


class PurchaseOrchestrator:
    """Coordinates purchases between the native bridge and the validation API.

    Construct once per process and pass the handle to callers; a second
    construction raises ``OrchestratorAlreadyExistsError`` while the first
    instance stays authoritative. Passing ``bridge=None`` means the platform
    has no billing bridge ("unsupported platform").

    Caller-facing operations never raise for business outcomes. They resolve
    through ``on_error(kind, message)`` or ``on_success(...)``, at most once.
    """

    def __init__(
        self,
        store: Optional[StoreConfig] = None,
        bridge: Optional[BillingBridge] = None,
        catalog: Optional[ProductCatalog] = None,
        validation_client: Optional[ValidationClient] = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        """Initialize purchase orchestrator.

        Args:
            store: Store configuration (uses global config if not provided)
            bridge: Native billing bridge, or None on unsupported platforms
            catalog: Product catalog (built from store configuration if not provided)
            validation_client: Validation API client (built from store configuration if needed)
            loop: Event loop replies are processed on (the running loop if not provided)

        Raises:
            OrchestratorAlreadyExistsError: If an orchestrator already exists in this process
        """
        global _orchestrator_instance
        if _orchestrator_instance is not None:
            raise OrchestratorAlreadyExistsError(
                "A PurchaseOrchestrator already exists; pass the existing handle instead"
            )

        self._store = store if store is not None else get_config().store
        self._bridge = bridge
        self._catalog = (
            catalog
            if catalog is not None
            else ProductCatalog(products=[p.model_copy() for p in self._store.products])
        )
        if validation_client is None and self._store.validation.enabled:
            validation_client = ValidationClient(
                self._store.validation, timeout_seconds=self._store.timeouts.http_seconds
            )
        self._validation_client = validation_client
        self._loop = loop

        self._state = ServiceState.UNINITIALIZED
        self._init_op: Optional[PendingOperation] = None
        self._prices_op: Optional[PendingOperation] = None
        self._operation: Optional[PendingOperation] = None

        _orchestrator_instance = self
        logger.info(
            "orchestrator_created",
            products=len(self._catalog),
            bridge=type(bridge).__name__ if bridge is not None else None,
            validation_enabled=self.validation_enabled,
            dummy_responses=self._store.dummy_response_in_unsupported_environment,
        )

    # ------------------------------------------------------------------
    # Read-only state

    @property
    def state(self) -> ServiceState:
        return self._state

    @property
    def is_service_initialized(self) -> bool:
        return self._state == ServiceState.READY

    @property
    def are_prices_loaded(self) -> bool:
        return self._catalog.prices_loaded

    @property
    def is_busy(self) -> bool:
        """True while a purchase, inventory check or consume is pending."""
        return self._operation is not None

    @property
    def catalog(self) -> ProductCatalog:
        return self._catalog

    @property
    def validation_enabled(self) -> bool:
        return self._store.validation.enabled

    @property
    def platform_supported(self) -> bool:
        return self._bridge is not None

    @property
    def _dummy_mode(self) -> bool:
        return self._bridge is None and self._store.dummy_response_in_unsupported_environment

    # ------------------------------------------------------------------
    # Caller-facing operations

    def initialize_service(
        self,
        on_error: Optional[ErrorCallback] = None,
        on_success: Optional[ReadyCallback] = None,
    ) -> None:
        """Connect to the billing service.

        When already ready, ``on_success`` fires synchronously; without one,
        ``on_error`` receives SERVICE_READY_RETRY. Requests made while
        initialization is in flight are coalesced and not notified.
        """
        if self._state == ServiceState.READY:
            self._notify_ready(on_error, on_success)
            return

        if self._state == ServiceState.INITIALIZING:
            logger.debug("initialize_coalesced")
            return

        if self._bridge is None:
            if not self._dummy_mode:
                logger.warning("initialize_skipped_unsupported_platform")
                return
            self._set_state(ServiceState.READY, reason="dummy responses in unsupported environment")
            self._notify_ready(on_error, on_success)
            return

        op = PendingOperation(OperationKind.INITIALIZE, on_error, on_success)
        self._init_op = op
        self._set_state(ServiceState.INITIALIZING)

        def start() -> None:
            self._bridge.init(self._store.public_key, self)
            self._bridge.start_service()

        self._send(op, BridgeChannel.INIT_RESULT, start)

    def load_prices(
        self,
        on_error: Optional[ErrorCallback] = None,
        on_success: Optional[ReadyCallback] = None,
    ) -> None:
        """Load display prices for every catalog product in one bridge request."""
        if self._bridge is None:
            if self._dummy_mode:
                self._catalog.mark_prices_loaded()
                self._invoke(on_success)
            else:
                self._reject(
                    OperationKind.LOAD_PRICES,
                    on_error,
                    ErrorKind.UNSUPPORTED_PLATFORM,
                    "in-app billing is not supported on this platform",
                )
            return

        if self._state != ServiceState.READY:
            self.initialize_service(on_error, None)
            return

        if self._prices_op is not None:
            self._reject(OperationKind.LOAD_PRICES, on_error, ErrorKind.BUSY, "prices are already loading")
            return

        if len(self._catalog) == 0:
            self._reject(
                OperationKind.LOAD_PRICES, on_error, ErrorKind.INVALID_PRODUCT_ID, "product catalog is empty"
            )
            return

        op = PendingOperation(OperationKind.LOAD_PRICES, on_error, on_success)
        self._prices_op = op
        product_ids = ",".join(self._catalog.product_ids())
        self._send(
            op,
            BridgeChannel.PRODUCTS_DETAILS_RESULT,
            lambda: self._bridge.get_products_details(product_ids),
        )

    def purchase(
        self,
        index: int,
        on_error: Optional[ErrorCallback] = None,
        on_success: Optional[PurchaseCallback] = None,
    ) -> None:
        """Buy the product at catalog ``index``."""
        product = self._admit(OperationKind.PURCHASE, index, on_error, on_success)
        if product is None:
            return

        op = self._open(OperationKind.PURCHASE, index, on_error, on_success, product)
        consume_immediate = product.is_consumable and not self.validation_enabled
        payload = self._store.payload
        self._send(
            op,
            BridgeChannel.PURCHASE_RESULT,
            lambda: self._bridge.purchase(product.id, consume_immediate, payload),
        )

    def check_inventory(
        self,
        index: int,
        on_error: Optional[ErrorCallback] = None,
        on_success: Optional[PurchaseCallback] = None,
    ) -> None:
        """Look up whether the product at ``index`` is owned. Never consumes it."""
        product = self._admit(OperationKind.CHECK_INVENTORY, index, on_error, on_success)
        if product is None:
            return

        op = self._open(OperationKind.CHECK_INVENTORY, index, on_error, on_success, product)
        self._send(
            op,
            BridgeChannel.INVENTORY_RESULT,
            lambda: self._bridge.check_inventory(product.id),
        )

    def consume_purchase(
        self,
        purchase: Purchase,
        index: int,
        on_error: Optional[ErrorCallback] = None,
        on_success: Optional[PurchaseCallback] = None,
    ) -> None:
        """Consume an owned purchase of the product at ``index``."""
        product = self._admit(OperationKind.CONSUME, index, on_error, on_success, purchase=purchase)
        if product is None:
            return

        op = self._open(OperationKind.CONSUME, index, on_error, on_success, product)
        self._send_consume(op, purchase)

    def cancel(self, message: str = "operation cancelled") -> None:
        """Resolve every pending operation with OPERATION_CANCELLED."""
        for op in (self._operation, self._prices_op, self._init_op):
            if op is not None:
                self._fail(op, ErrorKind.OPERATION_CANCELLED, message)

    async def join(self) -> None:
        """Wait until an in-flight validation chain, if any, has settled."""
        op = self._operation
        if op is not None and op.task is not None:
            await asyncio.wait({op.task})

    def close(self) -> None:
        """Cancel pending work, stop the bridge and release the process-wide slot."""
        global _orchestrator_instance
        self.cancel("billing service closed")
        if self._bridge is not None:
            try:
                self._bridge.stop()
            except Exception:
                logger.exception("bridge_stop_failed")
        if _orchestrator_instance is self:
            _orchestrator_instance = None
        logger.info("orchestrator_closed")

    async def aclose(self) -> None:
        """Close the orchestrator and its validation HTTP client."""
        self.close()
        if self._validation_client is not None:
            await self._validation_client.close()

    # ------------------------------------------------------------------
    # Bridge replies

    def deliver(self, channel: BridgeChannel, raw: str) -> None:
        """Process one bridge reply. Must run on the orchestrator's loop."""
        handlers = {
            BridgeChannel.INIT_RESULT: self.on_init_result,
            BridgeChannel.PURCHASE_RESULT: self.on_purchase_result,
            BridgeChannel.CONSUME_RESULT: self.on_consume_result,
            BridgeChannel.INVENTORY_RESULT: self.on_inventory_result,
            BridgeChannel.PRODUCTS_DETAILS_RESULT: self.on_products_details_result,
        }
        try:
            channel = BridgeChannel(channel)
        except ValueError:
            logger.warning("bridge_reply_dropped", channel=str(channel), reason="unknown channel")
            return
        handlers[channel](raw)

    def deliver_threadsafe(self, channel: BridgeChannel, raw: str) -> None:
        """Queue a bridge reply from a host thread onto the orchestrator's loop."""
        if self._loop is None:
            raise RuntimeError("orchestrator is not bound to an event loop yet")
        self._loop.call_soon_threadsafe(self.deliver, channel, raw)

    def on_init_result(self, raw: str) -> None:
        op = self._claim(self._init_op, BridgeChannel.INIT_RESULT)
        if op is None:
            return
        reply = BridgeReply.parse(raw)
        if not reply.ok:
            self._fail_native(op, reply)
            return
        self._init_op = None
        self._set_state(ServiceState.READY, reason="bridge connected")
        on_error, on_success = op.take_callbacks()
        log_operation_finished(op.kind.value, "success")
        self._notify_ready(on_error, on_success)

    def on_products_details_result(self, raw: str) -> None:
        op = self._claim(self._prices_op, BridgeChannel.PRODUCTS_DETAILS_RESULT)
        if op is None:
            return
        reply = BridgeReply.parse(raw)
        if not reply.ok:
            self._fail_native(op, reply)
            return
        try:
            self._catalog.apply_products_details(reply.data)
        except (PriceMismatchError, PriceFormatError) as e:
            self._fail(op, ErrorKind.INTERNAL, str(e))
            return
        self._succeed(op)

    def on_purchase_result(self, raw: str) -> None:
        self._handle_owned_purchase(BridgeChannel.PURCHASE_RESULT, raw)

    def on_inventory_result(self, raw: str) -> None:
        self._handle_owned_purchase(BridgeChannel.INVENTORY_RESULT, raw)

    def on_consume_result(self, raw: str) -> None:
        op = self._claim(self._operation, BridgeChannel.CONSUME_RESULT)
        if op is None:
            return
        reply = BridgeReply.parse(raw)
        if not reply.ok:
            self._fail_native(op, reply)
            return
        self._succeed(op, op.purchase, op.product_index)

    def _handle_owned_purchase(self, channel: BridgeChannel, raw: str) -> None:
        op = self._claim(self._operation, channel)
        if op is None:
            return
        reply = BridgeReply.parse(raw)
        if not reply.ok:
            self._fail_native(op, reply)
            return
        try:
            purchase = Purchase.from_bridge_data(reply.data)
        except ValueError as e:
            self._fail(op, ErrorKind.INTERNAL, f"purchase data is not valid: {e}")
            return
        op.purchase = purchase

        if self.validation_enabled:
            self._start_validation(op, purchase)
        elif op.kind == OperationKind.PURCHASE and self._catalog.get(op.product_index).is_consumable:
            self._send_consume(op, purchase)
        else:
            self._succeed(op, purchase, op.product_index)

    # ------------------------------------------------------------------
    # Validation chain

    def _start_validation(self, op: PendingOperation, purchase: Purchase) -> None:
        if self._validation_client is None:
            self._validation_client = ValidationClient(
                self._store.validation, timeout_seconds=self._store.timeouts.http_seconds
            )
        coro = self._run_validation(op, purchase)
        try:
            op.task = self._get_loop().create_task(coro)
        except RuntimeError as e:
            coro.close()
            logger.error("validation_not_started", order_id=purchase.order_id, error=str(e))
            self._fail(op, ErrorKind.INTERNAL, f"validation could not start: {e}")

    async def _run_validation(self, op: PendingOperation, purchase: Purchase) -> None:
        try:
            result = await self._validation_client.validate(purchase, self._store.application_id)
        except ValidationApiError as e:
            op.task = None
            self._fail(op, ErrorKind.VALIDATE_API_UNREACHABLE, str(e))
            return
        except Exception as e:
            logger.exception("validation_crashed", order_id=purchase.order_id)
            op.task = None
            self._fail(op, ErrorKind.INTERNAL, f"validation failed: {e}")
            return

        op.task = None
        if op.finished:
            return

        product = self._catalog.get(op.product_index)
        if result.is_refund:
            self._fail(op, ErrorKind.PURCHASE_REFUNDED, "purchase is refunded")
        elif op.kind == OperationKind.PURCHASE and product.is_consumable and not result.is_consumed:
            self._send_consume(op, purchase)
        else:
            self._succeed(op, purchase, op.product_index)

    # ------------------------------------------------------------------
    # Internals

    def _admit(
        self,
        kind: OperationKind,
        index: int,
        on_error: Optional[ErrorCallback],
        on_success: Optional[PurchaseCallback],
        purchase: Optional[Purchase] = None,
    ) -> Optional[ProductDefinition]:
        """Run the local checks shared by purchase-like operations.

        Returns the product when a bridge request should be issued, otherwise
        resolves the caller (or chains initialization) and returns None.
        """
        if not self._catalog.is_valid_index(index):
            self._reject(
                kind,
                on_error,
                ErrorKind.INVALID_PRODUCT_INDEX,
                f"product index {index} is out of range [0, {len(self._catalog)})",
            )
            return None

        product = self._catalog.get(index)

        if self._bridge is None:
            if self._dummy_mode:
                if purchase is None:
                    purchase = generate_dummy_purchase(
                        product.id,
                        payload=self._store.payload,
                        package_name=self._store.application_id or "",
                    )
                logger.info("dummy_response", operation=kind.value, product_id=product.id)
                self._invoke(on_success, purchase, index)
            else:
                self._reject(
                    kind,
                    on_error,
                    ErrorKind.UNSUPPORTED_PLATFORM,
                    "in-app billing is not supported on this platform",
                )
            return None

        if self._state != ServiceState.READY:
            self.initialize_service(on_error, None)
            return None

        if self._operation is not None:
            self._reject(
                kind,
                on_error,
                ErrorKind.BUSY,
                f"another operation ({self._operation.kind.value}) is in progress",
            )
            return None

        return product

    def _open(
        self,
        kind: OperationKind,
        index: int,
        on_error: Optional[ErrorCallback],
        on_success: Optional[PurchaseCallback],
        product: ProductDefinition,
    ) -> PendingOperation:
        op = PendingOperation(kind, on_error, on_success, product_index=index)
        self._operation = op
        log_operation_started(kind.value, index, product.id, validation_enabled=self.validation_enabled)
        return op

    def _send_consume(self, op: PendingOperation, purchase: Purchase) -> None:
        op.purchase = purchase
        self._send(
            op,
            BridgeChannel.CONSUME_RESULT,
            lambda: self._bridge.consume_purchase(purchase.item_type, purchase.raw_json, purchase.signature),
        )

    def _send(self, op: PendingOperation, channel: BridgeChannel, request: Callable[[], None]) -> None:
        """Issue a bridge request and wait (bounded) for its reply on ``channel``."""
        op.awaiting = channel
        try:
            op.timer = self._get_loop().call_later(
                self._store.timeouts.bridge_seconds, self._on_bridge_timeout, op, channel
            )
            request()
        except Exception as e:
            logger.exception("bridge_request_failed", channel=channel.value)
            self._fail(op, ErrorKind.INTERNAL, f"bridge request failed: {e}")

    def _on_bridge_timeout(self, op: PendingOperation, channel: BridgeChannel) -> None:
        if op.finished or op.awaiting != channel:
            return
        logger.warning(
            "bridge_reply_timed_out",
            operation=op.kind.value,
            channel=channel.value,
            timeout_seconds=self._store.timeouts.bridge_seconds,
        )
        self._fail(
            op,
            ErrorKind.SERVICE_NOT_INITIALIZED,
            f"no {channel.value} reply within {self._store.timeouts.bridge_seconds}s",
        )

    def _claim(self, op: Optional[PendingOperation], channel: BridgeChannel) -> Optional[PendingOperation]:
        """Return the operation waiting on ``channel``, or None to drop the reply."""
        if op is None or op.finished or op.awaiting != channel:
            logger.debug("bridge_reply_dropped", channel=channel.value)
            return None
        op.stop_waiting()
        return op

    def _release(self, op: PendingOperation) -> None:
        if self._operation is op:
            self._operation = None
        if self._prices_op is op:
            self._prices_op = None
        if self._init_op is op:
            self._init_op = None

    def _fail_native(self, op: PendingOperation, reply: BridgeReply) -> None:
        kind = categorize_error_code(reply.error_code)
        self._fail(op, kind, reply.data, native_code=reply.error_code)

    def _fail(self, op: PendingOperation, kind: ErrorKind, message: str, **extra) -> None:
        if op.finished:
            return
        self._release(op)
        if op.kind == OperationKind.INITIALIZE:
            self._set_state(ServiceState.UNINITIALIZED, reason=message)
        on_error, _ = op.take_callbacks()
        log_operation_finished(
            op.kind.value,
            "error",
            error_kind=kind,
            message=message,
            order_id=op.purchase.order_id if op.purchase else None,
            **extra,
        )
        self._invoke(on_error, kind, message)

    def _succeed(self, op: PendingOperation, *args) -> None:
        if op.finished:
            return
        self._release(op)
        _, on_success = op.take_callbacks()
        log_operation_finished(
            op.kind.value, "success", order_id=op.purchase.order_id if op.purchase else None
        )
        self._invoke(on_success, *args)

    def _reject(
        self,
        kind: OperationKind,
        on_error: Optional[ErrorCallback],
        error_kind: ErrorKind,
        message: str,
    ) -> None:
        """Resolve a request locally without touching any pending state."""
        log_operation_finished(kind.value, "error", error_kind=error_kind, message=message)
        self._invoke(on_error, error_kind, message)

    def _notify_ready(self, on_error: Optional[ErrorCallback], on_success: Optional[ReadyCallback]) -> None:
        if on_success is not None:
            self._invoke(on_success)
        else:
            self._invoke(
                on_error,
                ErrorKind.SERVICE_READY_RETRY,
                "billing service is now ready, retry the operation",
            )

    def _invoke(self, callback: Optional[Callable], *args) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:
            logger.exception("caller_callback_raised", callback=getattr(callback, "__name__", repr(callback)))

    def _set_state(self, new_state: ServiceState, reason: Optional[str] = None) -> None:
        old_state = self._state
        if old_state != new_state:
            self._state = new_state
            log_service_state_change(old_state.value, new_state.value, reason=reason)

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop


def get_purchase_orchestrator() -> Optional[PurchaseOrchestrator]:
    """Get the process-wide orchestrator, if one has been constructed."""
    return _orchestrator_instance


def reset_purchase_orchestrator() -> None:
    """Close and drop the process-wide orchestrator (useful for testing)."""
    global _orchestrator_instance
    if _orchestrator_instance is not None:
        _orchestrator_instance.close()
    _orchestrator_instance = None
