"""
Razorpay REST client.

Built once from settings and handed to the payment operations, so tests can
swap the transport. Every call is bounded by ``timeout``. Order creation is
attempted exactly once; payment lookups are retried once on transport errors
or gateway-side (5xx) failures.
"""
from typing import Any, Optional

import httpx
from tenacity import Retrying, retry_if_exception, stop_after_attempt, wait_fixed

from medipay.config import Settings
from medipay.exceptions import ConfigurationError, GatewayError, NotFoundError
from medipay.logging_config import get_logger


logger = get_logger(__name__)

API_BASE_URL = "https://api.razorpay.com/v1"


class ProviderResponseError(Exception):
    """Non-2xx answer from the gateway, with its ``error`` object."""

    def __init__(self, status_code: int, error: dict):
        super().__init__(error.get("description") or f"HTTP {status_code}")
        self.status_code = status_code
        self.error = error


def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, (httpx.TimeoutException, httpx.TransportError)):
        return True
    return isinstance(exc, ProviderResponseError) and exc.status_code >= 500


def _error_details(exc: Exception) -> dict:
    """Collect whatever diagnostics the provider attached to ``exc``."""
    details = {"message": str(exc), "type": type(exc).__name__}
    if isinstance(exc, ProviderResponseError):
        details["statusCode"] = exc.status_code
        for field in ("code", "description", "field", "step", "reason", "source"):
            value = exc.error.get(field)
            if value not in (None, "", "NA"):
                details[field] = value
    return details


class GatewayClient:

    def __init__(
        self,
        key_id: Optional[str],
        key_secret: Optional[str],
        *,
        timeout: float = 10.0,
        base_url: str = API_BASE_URL,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.key_id = key_id
        self.key_secret = key_secret
        self.timeout = timeout
        self.base_url = base_url
        self._transport = transport
        self._http: Optional[httpx.Client] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "GatewayClient":
        return cls(settings.key_id, settings.key_secret, timeout=settings.gateway_timeout)

    @property
    def configured(self) -> bool:
        return bool(self.key_id and self.key_secret)

    @property
    def http(self) -> httpx.Client:
        if not self.configured:
            raise ConfigurationError("Payment gateway not properly configured")
        if self._http is None:
            self._http = httpx.Client(
                base_url=self.base_url,
                auth=(self.key_id, self.key_secret),
                timeout=httpx.Timeout(self.timeout),
                transport=self._transport,
            )
        return self._http

    def close(self) -> None:
        if self._http is not None:
            self._http.close()
            self._http = None

    def _request(self, method: str, path: str, **kwargs) -> Any:
        response = self.http.request(method, path, **kwargs)
        if response.is_success:
            return response.json()
        try:
            error = response.json().get("error") or {}
        except ValueError:
            error = {}
        raise ProviderResponseError(response.status_code, error)

    def create_order(self, amount: int, currency: str, receipt: str, notes: dict) -> dict:
        payload = {
            "amount": amount,
            "currency": currency,
            "receipt": receipt,
            "notes": notes,
        }
        try:
            return self._request("POST", "/orders", json=payload)
        except (ProviderResponseError, httpx.HTTPError) as exc:
            details = _error_details(exc)
            logger.error("gateway_create_order_failed", receipt=receipt, **details)
            raise GatewayError("Failed to create payment order", details=details) from exc

    def fetch_payment(self, payment_id: str) -> dict:
        try:
            for attempt in Retrying(
                stop=stop_after_attempt(2),
                wait=wait_fixed(0.2),
                retry=retry_if_exception(_is_retryable),
                reraise=True,
            ):
                with attempt:
                    return self._request("GET", f"/payments/{payment_id}")
        except ProviderResponseError as exc:
            details = _error_details(exc)
            if exc.status_code == 404 or "does not exist" in str(exc).lower():
                logger.info("gateway_payment_not_found", payment_id=payment_id)
                raise NotFoundError("Payment not found", details=details) from exc
            logger.error("gateway_fetch_payment_failed", payment_id=payment_id, **details)
            raise GatewayError("Failed to fetch payment details", details=details) from exc
        except httpx.HTTPError as exc:
            details = _error_details(exc)
            logger.error("gateway_fetch_payment_failed", payment_id=payment_id, **details)
            raise GatewayError("Failed to fetch payment details", details=details) from exc
