"""Remote validation client - server-side purchase status checks.

Validation is two strictly sequential calls against the store's developer API:

1. Token exchange: POST a refresh-token grant to the auth endpoint and read
   ``access_token`` from the JSON response.
2. Status check: GET ``<status>/<app-id>/inapp/<product-id>/purchases/<order-id>/``
   with the access token as a query parameter.

Every call is bounded by a timeout. Transport errors, HTTP error statuses,
timeouts and unusable bodies all surface as ``ValidationApiError``.
"""

import asyncio
from typing import Any, Optional
from urllib.parse import quote

import httpx

from iap_billing.errors import ValidationApiError
from iap_billing.logging_config import get_logger
from iap_billing.models import Purchase, ValidationResult, ValidationSettings
from iap_billing.state_logger import log_validation_step

logger = get_logger(__name__)


class ValidationClient:
    """Validation API client."""

    def __init__(
        self,
        settings: ValidationSettings,
        timeout_seconds: float = 15.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self._settings = settings
        self._timeout_seconds = timeout_seconds
        self._http_client = http_client
        self._owns_client = http_client is None

    @property
    def http_client(self) -> httpx.AsyncClient:
        """Get HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout_seconds)
        return self._http_client

    async def _request(self, step: str, method: str, url: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = await asyncio.wait_for(
                self.http_client.request(method, url, **kwargs),
                timeout=self._timeout_seconds,
            )
            response.raise_for_status()
            body = response.json()
        except asyncio.TimeoutError:
            logger.warning(f"validation_{step}_timed_out", timeout_seconds=self._timeout_seconds)
            raise ValidationApiError(step, f"no response within {self._timeout_seconds}s")
        except httpx.HTTPStatusError as e:
            logger.error(
                f"validation_{step}_failed",
                status=e.response.status_code,
                text=e.response.text[:200],
            )
            raise ValidationApiError(
                step, f"HTTP {e.response.status_code}", status_code=e.response.status_code
            ) from e
        except httpx.HTTPError as e:
            logger.error(f"validation_{step}_error", error=str(e), error_type=type(e).__name__)
            raise ValidationApiError(step, str(e) or type(e).__name__) from e
        except ValueError as e:
            logger.error(f"validation_{step}_bad_body", error=str(e))
            raise ValidationApiError(step, "response is not valid JSON") from e

        if not isinstance(body, dict):
            raise ValidationApiError(step, "response is not a JSON object")
        return body

    async def exchange_token(self) -> str:
        """Exchange the configured refresh token for an access token.

        Returns:
            Access token

        Raises:
            ValidationApiError: If the auth endpoint is unreachable or answers badly
        """
        data = {
            "grant_type": "refresh_token",
            "client_id": self._settings.client_id,
            "client_secret": self._settings.client_secret,
            "refresh_token": self._settings.refresh_token,
        }
        body = await self._request("token_exchange", "POST", self._settings.auth_endpoint, data=data)
        access_token = body.get("access_token")
        if not access_token or not isinstance(access_token, str):
            logger.error("validation_token_exchange_no_token", keys=sorted(body.keys()))
            raise ValidationApiError("token_exchange", "response has no access_token")
        return access_token

    def status_url(self, application_id: str, product_id: str, order_id: str) -> str:
        base = self._settings.status_endpoint.rstrip("/")
        return (
            f"{base}/{quote(application_id, safe='')}/inapp/{quote(product_id, safe='')}"
            f"/purchases/{quote(order_id, safe='')}/"
        )

    async def check_status(
        self, application_id: str, product_id: str, order_id: str, access_token: str
    ) -> ValidationResult:
        """Fetch the store's record of a purchase.

        Raises:
            ValidationApiError: If the status endpoint is unreachable or answers badly
        """
        url = self.status_url(application_id, product_id, order_id)
        body = await self._request(
            "status_check", "GET", url, params={"access_token": access_token}
        )
        return ValidationResult.from_api_response(body)

    async def validate(self, purchase: Purchase, application_id: Optional[str] = None) -> ValidationResult:
        """Run the full validation chain for a purchase.

        Args:
            purchase: Purchase reported by the bridge
            application_id: Package name for the status URL; defaults to the purchase's

        Returns:
            ValidationResult

        Raises:
            ValidationApiError: If either call fails
        """
        app_id = application_id or purchase.package_name
        log_validation_step("token_exchange", purchase.product_id, purchase.order_id)
        access_token = await self.exchange_token()

        log_validation_step(
            "status_check", purchase.product_id, purchase.order_id, access_token=access_token
        )
        result = await self.check_status(app_id, purchase.product_id, purchase.order_id, access_token)

        logger.info(
            "purchase_validated",
            product_id=purchase.product_id,
            order_id=purchase.order_id,
            is_consumed=result.is_consumed,
            is_refund=result.is_refund,
        )
        return result

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client is not None and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None
