"""
Test doubles and request helpers shared by the unit and integration suites.
"""
import json
import os
from typing import Any, Dict, List, Optional, Tuple

from homeserve.lib.jwt import create_access_token
from homeserve.models.users import User
from homeserve.services.notification_service import NotificationEvent, NotificationPayload
from homeserve.services.payment_gateway import GatewayError, compute_hmac_sha256


KEY_SECRET = os.environ.get("RAZORPAY_KEY_SECRET", "test_key_secret")
WEBHOOK_SECRET = os.environ.get("RAZORPAY_WEBHOOK_SECRET", "test_webhook_secret")


class RecordingQueue:
    """Notification queue that keeps every enqueued event."""

    def __init__(self):
        self.events: List[Tuple[NotificationEvent, NotificationPayload]] = []

    def enqueue(self, event: NotificationEvent, payload: NotificationPayload) -> None:
        self.events.append((event, payload))

    def of(self, event: NotificationEvent) -> List[NotificationPayload]:
        return [p for e, p in self.events if e == event]


class FakeGateway:
    """In-memory stand-in for RazorpayGateway."""

    key_id = "rzp_test_key"
    key_secret = KEY_SECRET
    webhook_secret = WEBHOOK_SECRET
    currency = "INR"

    def __init__(self):
        self.orders: List[Dict[str, Any]] = []
        self.refunds: List[Tuple[str, Optional[int]]] = []
        self.payments: Dict[str, Dict[str, Any]] = {}
        self.fail_with: Optional[GatewayError] = None

    def is_configured(self) -> bool:
        return True

    async def aclose(self) -> None:
        pass

    async def create_order(self, amount_minor: int, receipt: str, notes: Dict[str, str]) -> Dict[str, Any]:
        if self.fail_with is not None:
            raise self.fail_with
        order = {
            "id": f"order_test{len(self.orders) + 1}",
            "amount": amount_minor,
            "currency": self.currency,
            "receipt": receipt,
            "notes": notes,
        }
        self.orders.append(order)
        return order

    async def fetch_payment(self, payment_id: str) -> Dict[str, Any]:
        if self.fail_with is not None:
            raise self.fail_with
        return self.payments.get(payment_id, {"id": payment_id, "status": "captured"})

    async def refund(self, payment_id: str, amount_minor: Optional[int] = None) -> Dict[str, Any]:
        if self.fail_with is not None:
            raise self.fail_with
        self.refunds.append((payment_id, amount_minor))
        return {"id": "rfnd_test1", "payment_id": payment_id, "amount": amount_minor}


def payment_signature(order_id: str, payment_id: str, secret: str = KEY_SECRET) -> str:
    return compute_hmac_sha256(secret, f"{order_id}|{payment_id}".encode("utf-8"))


def webhook_body(event: str, payment_id: str, order_id: str, booking_id: Optional[str] = None,
                 method: str = "upi") -> bytes:
    notes = {"bookingId": booking_id} if booking_id else {}
    return json.dumps({
        "event": event,
        "payload": {
            "payment": {
                "entity": {
                    "id": payment_id,
                    "order_id": order_id,
                    "method": method,
                    "status": "captured" if event == "payment.captured" else "failed",
                    "notes": notes,
                }
            }
        },
    }).encode("utf-8")


def webhook_signature(body: bytes, secret: str = WEBHOOK_SECRET) -> str:
    return compute_hmac_sha256(secret, body)


def auth_headers(user: User) -> Dict[str, str]:
    token = create_access_token(str(user.id), user.role.value)
    return {"Authorization": f"Bearer {token}"}


ADDRESS = {"address_line1": "12 MG Road", "city": "Bengaluru", "pincode": "560001"}
