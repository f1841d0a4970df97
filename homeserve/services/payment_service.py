"""Payment reconciliation.

Bridges the booking ledger and the Razorpay gateway. A payment is only
considered successful after one of two independent checks:

- client verify: HMAC over "order_id|payment_id" with the key secret
- gateway webhook: HMAC over the raw body with the webhook secret

All ledger mutations go through BookingService's payment hooks.
"""
import json
from typing import Any, Dict, Optional
from uuid import UUID

from sqlalchemy import select

from homeserve.api.middleware.error_handler import (
    BadRequestException,
    ForbiddenException,
    InvalidTransitionException,
    NotFoundException,
    SignatureInvalidException,
    UpstreamFailureException,
)
from homeserve.lib.logging import get_logger
from homeserve.lib.metrics import get_metrics_collector
from homeserve.models.bookings import Booking
from homeserve.models.users import User
from homeserve.services.booking_service import BookingService
from homeserve.services.payment_gateway import (
    GatewayError,
    RazorpayGateway,
    to_minor_units,
    verify_payment_signature,
    verify_webhook_signature,
)


logger = get_logger(__name__)

EVENT_PAYMENT_CAPTURED = "payment.captured"
EVENT_PAYMENT_FAILED = "payment.failed"


def _payment_entity(event: Dict[str, Any]) -> Dict[str, Any]:
    """payload.payment.entity of a webhook event; every level must be an object."""
    node: Any = event
    for key in ("payload", "payment", "entity"):
        node = node.get(key) if isinstance(node, dict) else None
        if not isinstance(node, dict):
            raise BadRequestException("Webhook body has no payment entity", details={"missing": key})
    return node


class PaymentService:
    """Payment operations on top of a booking ledger and a gateway client."""

    def __init__(self, ledger: BookingService, gateway: RazorpayGateway):
        self.ledger = ledger
        self.gateway = gateway
        self.session = ledger.session

    async def create_order(self, booking_id: UUID, caller: User) -> Dict[str, Any]:
        """Create a gateway order for the booking's total and remember its id."""
        booking = self.ledger.get_owned_booking(booking_id, caller)

        if booking.is_paid:
            raise InvalidTransitionException(
                "Booking is already paid",
                current_status=booking.status.value,
                action="create_order",
            )

        amount = to_minor_units(booking.total_amount)
        try:
            order = await self.gateway.create_order(
                amount_minor=amount,
                receipt=booking.booking_number,
                notes={"bookingId": str(booking.id), "userId": str(caller.id)},
            )
        except GatewayError as e:
            raise UpstreamFailureException(
                "Failed to create payment order",
                details={"reason": str(e)},
            ) from e

        # Persisted before responding so a webhook can correlate without the client
        self.ledger.record_payment_order(booking, order["id"])

        logger.info(
            "Payment order created",
            extra={"booking_id": str(booking.id), "order_id": order["id"], "amount": amount},
        )

        return {
            "key_id": self.gateway.key_id,
            "order_id": order["id"],
            "amount": order.get("amount", amount),
            "currency": order.get("currency", self.gateway.currency),
            "receipt": booking.booking_number,
            "booking_id": booking.id,
        }

    def verify_payment(
        self,
        order_id: str,
        payment_id: str,
        signature: str,
        booking_id: UUID,
        caller: User,
    ) -> Booking:
        """Check the client-reported payment signature and settle on success."""
        booking = self.ledger.get_owned_booking(booking_id, caller)

        if booking.payment_order_id and booking.payment_order_id != order_id:
            logger.warning(
                "Order id does not match booking",
                extra={"booking_id": str(booking.id), "order_id": order_id},
            )
            raise SignatureInvalidException("Order does not belong to this booking")

        if not verify_payment_signature(order_id, payment_id, signature, self.gateway.key_secret):
            logger.warning(
                "Payment signature mismatch",
                extra={"booking_id": str(booking.id), "order_id": order_id},
            )
            raise SignatureInvalidException()

        self.ledger.settle_payment(booking, payment_id, method=None, source="verify")
        return booking

    def handle_webhook(self, raw_body: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """Apply a gateway-initiated payment event.

        Raises on anything that should make the gateway retry.
        """
        if not signature or not verify_webhook_signature(raw_body, signature, self.gateway.webhook_secret):
            get_metrics_collector().increment_webhook_rejected()
            logger.warning("Rejected webhook with invalid signature")
            raise SignatureInvalidException("Invalid webhook signature")

        try:
            event = json.loads(raw_body)
        except ValueError as e:
            raise BadRequestException("Malformed webhook body") from e
        if not isinstance(event, dict):
            raise BadRequestException("Malformed webhook body")

        event_type = event.get("event")

        if event_type not in (EVENT_PAYMENT_CAPTURED, EVENT_PAYMENT_FAILED):
            logger.info("Ignoring webhook event", extra={"event": event_type})
            return {"status": "ignored", "event": event_type}

        entity = _payment_entity(event)
        payment_id = entity.get("id")
        if event_type == EVENT_PAYMENT_CAPTURED and not (isinstance(payment_id, str) and payment_id):
            raise BadRequestException("Captured payment has no id")

        booking = self._find_booking_for_payment(entity)
        if booking is None:
            notes = entity.get("notes")
            raise NotFoundException("Booking", notes.get("bookingId") if isinstance(notes, dict) else None)

        if event_type == EVENT_PAYMENT_CAPTURED:
            applied = self.ledger.settle_payment(
                booking,
                payment_id,
                method=entity.get("method"),
                source="webhook",
            )
        else:
            applied = self.ledger.mark_payment_failed(booking, source="webhook")

        logger.info(
            "Webhook processed",
            extra={"event": event_type, "booking_id": str(booking.id), "applied": applied},
        )
        return {"status": "ok", "event": event_type, "applied": applied}

    def _find_booking_for_payment(self, entity: Dict[str, Any]) -> Optional[Booking]:
        notes = entity.get("notes") or {}
        raw_id = notes.get("bookingId") if isinstance(notes, dict) else None
        if raw_id:
            try:
                booking = self.session.get(Booking, UUID(str(raw_id)))
            except ValueError:
                booking = None
            if booking is not None:
                return booking

        order_id = entity.get("order_id")
        if isinstance(order_id, str) and order_id:
            stmt = select(Booking).where(Booking.payment_order_id == order_id)
            return self.session.execute(stmt).scalars().first()
        return None

    async def get_payment_detail(self, payment_id: str, caller: User) -> Dict[str, Any]:
        """Gateway payment detail for admins or the paying customer."""
        if not caller.is_admin:
            stmt = select(Booking).where(
                Booking.payment_id == payment_id,
                Booking.customer_id == caller.id,
            )
            if self.session.execute(stmt).scalars().first() is None:
                raise ForbiddenException("Access denied")

        try:
            return await self.gateway.fetch_payment(payment_id)
        except GatewayError as e:
            raise UpstreamFailureException("Failed to fetch payment", details={"reason": str(e)}) from e

    async def refund(self, payment_id: str, amount: Optional[float], admin: User) -> Dict[str, Any]:
        """Refund through the gateway. Booking payment status is not changed here."""
        if not admin.is_admin:
            raise ForbiddenException("Admin access required")

        amount_minor = to_minor_units(amount) if amount is not None else None
        try:
            refund = await self.gateway.refund(payment_id, amount_minor)
        except GatewayError as e:
            raise UpstreamFailureException("Refund failed", details={"reason": str(e)}) from e

        logger.warning(
            "Refund issued",
            extra={"audit": True, "admin_id": str(admin.id), "payment_id": payment_id, "amount": amount_minor},
        )
        return refund
