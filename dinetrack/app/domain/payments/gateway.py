"""
PayChangu payment gateway client.

Thin async wrapper over the provider's REST API:
    POST /payments          create a payment (Idempotency-Key honored)
    GET  /payments/{id}     fetch current status
"""

import logging
from typing import Any, Dict, Optional

import httpx

from dinetrack.app.core.reliability import CircuitBreaker, CircuitOpenError

logger = logging.getLogger("dinetrack.payments.gateway")


class PaymentGatewayError(Exception):
    """Gateway unreachable, circuit open, non-2xx answer or unreadable body."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: Any = None):
        self.status_code = status_code
        self.body = body
        super().__init__(message)

    @property
    def is_rejection(self) -> bool:
        """The provider answered with a 4xx (request refused, not an outage)."""
        return self.status_code is not None and 400 <= self.status_code < 500


def provider_payment_id(data: Dict[str, Any]) -> Optional[str]:
    value = data.get("id") or data.get("transaction_id")
    return str(value) if value is not None else None


def provider_status(data: Dict[str, Any]) -> Optional[str]:
    value = data.get("status") or data.get("state")
    if value is not None and not isinstance(value, str):
        raise PaymentGatewayError(f"Unreadable provider status {value!r}", body=data)
    return value


def checkout_url(data: Dict[str, Any]) -> Optional[str]:
    return data.get("checkout_url") or data.get("payment_url")


class PayChanguGateway:
    """
    PayChangu REST client.

    The underlying httpx.AsyncClient is owned by the application lifespan;
    pass one in to share its connection pool (or a MockTransport in tests).
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 15.0,
        breaker: Optional[CircuitBreaker] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.client = client or httpx.AsyncClient(timeout=timeout)
        self.breaker = breaker or CircuitBreaker(
            failure_threshold=5,
            reset_timeout=60,
            counts_as_failure=lambda exc: isinstance(exc, PaymentGatewayError) and not exc.is_rejection,
        )

    def _headers(self, idempotency_key: Optional[str] = None) -> Dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key
        return headers

    async def create_payment(self, payload: Dict[str, Any], idempotency_key: str) -> Dict[str, Any]:
        """Create a payment at the provider. Returns the provider's JSON body."""
        return await self._call("POST", "/payments", json=payload, headers=self._headers(idempotency_key))

    async def get_payment(self, provider_payment_id: str) -> Dict[str, Any]:
        """Fetch the provider's view of a payment."""
        return await self._call("GET", f"/payments/{provider_payment_id}", headers=self._headers())

    async def close(self):
        await self.client.aclose()

    async def _call(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        try:
            return await self.breaker.call(self._request, method, path, **kwargs)
        except CircuitOpenError:
            logger.warning("PayChangu circuit open, skipping %s %s", method, path)
            raise PaymentGatewayError("Payment gateway circuit is open")

    async def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            resp = await self.client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            logger.warning("PayChangu %s %s failed: %s", method, path, exc)
            raise PaymentGatewayError(f"Payment gateway unreachable: {exc.__class__.__name__}") from exc

        try:
            data = resp.json()
        except ValueError:
            data = None

        if resp.is_error:
            body = data if data is not None else resp.text
            logger.warning("PayChangu %s %s returned %s: %s", method, path, resp.status_code, body)
            raise PaymentGatewayError(
                f"Payment gateway returned {resp.status_code}",
                status_code=resp.status_code,
                body=body,
            )

        if not isinstance(data, dict):
            raise PaymentGatewayError(
                "Payment gateway returned an unreadable body",
                status_code=resp.status_code,
                body=resp.text,
            )

        return data
