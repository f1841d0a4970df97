"""
Razorpay gateway client and signature helpers.

Talks to the Razorpay REST API over httpx with basic auth
(key_id:key_secret). Reads are retried on transport errors; order
creation and refunds are not, since they are not idempotent.

Signature checks:
- payment signature = HMAC-SHA256(key_secret, "<order_id>|<payment_id>")
- webhook signature = HMAC-SHA256(webhook_secret, raw request body)
Both compare in constant time.
"""
import hashlib
import hmac
from typing import Any, Dict, Optional

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from homeserve.lib.logging import get_logger
from homeserve.lib.settings import Settings, settings as default_settings


logger = get_logger(__name__)


class GatewayError(Exception):
    """Raised when the gateway is unreachable, misconfigured or rejects a call."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: Any = None):
        self.status_code = status_code
        self.body = body
        super().__init__(message)


def compute_hmac_sha256(secret: str, payload: bytes) -> str:
    """Hex HMAC-SHA256 of payload."""
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()


def constant_time_compare(a: Optional[str], b: Optional[str]) -> bool:
    if not a or not b:
        return False
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))


def verify_payment_signature(order_id: str, payment_id: str, signature: str, secret: str) -> bool:
    if not secret:
        return False
    expected = compute_hmac_sha256(secret, f"{order_id}|{payment_id}".encode("utf-8"))
    return constant_time_compare(expected, signature)


def verify_webhook_signature(raw_body: bytes, signature: Optional[str], secret: str) -> bool:
    if not secret:
        return False
    expected = compute_hmac_sha256(secret, raw_body)
    return constant_time_compare(expected, signature)


def to_minor_units(amount) -> int:
    """Rupees to paise."""
    return int(round(float(amount) * 100))


class RazorpayGateway:
    """
    Thin async client over the Razorpay orders/payments API.
    """

    def __init__(self, config: Settings = default_settings, client: Optional[httpx.AsyncClient] = None):
        self.key_id = config.razorpay_key_id
        self.key_secret = config.razorpay_key_secret
        self.webhook_secret = config.razorpay_webhook_secret
        self.currency = config.payment_currency
        self._client = client or httpx.AsyncClient(
            base_url=config.razorpay_base_url,
            auth=(self.key_id, self.key_secret),
            timeout=config.gateway_timeout_seconds,
        )

        if not self.is_configured():
            logger.warning("Razorpay credentials not configured. Online payments will be unavailable.")

    def is_configured(self) -> bool:
        return bool(self.key_id and self.key_secret)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        if not self.is_configured():
            raise GatewayError("Payment gateway is not configured")

        response = await self._client.request(method, path, **kwargs)
        if response.is_error:
            try:
                body = response.json()
            except ValueError:
                body = response.text
            logger.error(
                "Gateway call failed",
                extra={"path": path, "status_code": response.status_code, "body": body},
            )
            raise GatewayError(
                f"Gateway returned {response.status_code}",
                status_code=response.status_code,
                body=body,
            )
        return response.json()

    async def create_order(self, amount_minor: int, receipt: str, notes: Dict[str, str]) -> Dict[str, Any]:
        """Create a gateway order (pending payment intent)."""
        payload = {
            "amount": amount_minor,
            "currency": self.currency,
            "receipt": receipt,
            "notes": notes,
        }
        try:
            return await self._request("POST", "/orders", json=payload)
        except httpx.HTTPError as e:
            raise GatewayError(f"Gateway unreachable: {e}") from e

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    async def _fetch_payment(self, payment_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/payments/{payment_id}")

    async def fetch_payment(self, payment_id: str) -> Dict[str, Any]:
        try:
            return await self._fetch_payment(payment_id)
        except httpx.HTTPError as e:
            raise GatewayError(f"Gateway unreachable: {e}") from e

    async def refund(self, payment_id: str, amount_minor: Optional[int] = None) -> Dict[str, Any]:
        """Refund a captured payment; no amount means a full refund."""
        payload: Dict[str, Any] = {}
        if amount_minor is not None:
            payload["amount"] = amount_minor
        try:
            return await self._request("POST", f"/payments/{payment_id}/refund", json=payload)
        except httpx.HTTPError as e:
            raise GatewayError(f"Gateway unreachable: {e}") from e
