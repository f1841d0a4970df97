"""Booking ledger.

Sole writer of booking status, payment status and worker assignment.
Every operation loads one booking, checks its precondition, writes and
commits. There is no row locking: concurrent writers on the same booking
resolve last-write-wins.

Customer operations:  create, get, cancel, confirm cash-on-delivery, list
Worker operations:    assign, update location
Admin operations:     override_status, list_all
Payment hooks:        record_payment_order, settle_payment, mark_payment_failed
"""
import secrets
import string
from datetime import datetime, timezone
from typing import List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from homeserve.api.middleware.error_handler import (
    ForbiddenException,
    InvalidTransitionException,
    NotFoundException,
)
from homeserve.lib.logging import get_logger
from homeserve.lib.metrics import get_metrics_collector
from homeserve.lib.settings import settings
from homeserve.models.bookings import (
    CANCELLABLE_STATUSES,
    TERMINAL_STATUSES,
    Booking,
    BookingStatus,
    PaymentMethod,
    PaymentStatus,
)
from homeserve.models.services import Service
from homeserve.models.users import User
from homeserve.services.location_relay import LocationRelay
from homeserve.services.notification_service import (
    NotificationEvent,
    NotificationPayload,
    NotificationQueue,
)


logger = get_logger(__name__)

BOOKING_CODE_ALPHABET = string.digits + string.ascii_uppercase
BOOKING_CODE_LENGTH = 6


def generate_booking_number(prefix: Optional[str] = None, now: Optional[datetime] = None) -> str:
    """Build `<prefix>YYMMDD` + 6 random base-36 characters.

    Collisions are not re-checked; the unique index is the backstop.
    """
    now = now or datetime.now(timezone.utc)
    prefix = settings.booking_number_prefix if prefix is None else prefix
    suffix = "".join(secrets.choice(BOOKING_CODE_ALPHABET) for _ in range(BOOKING_CODE_LENGTH))
    return f"{prefix}{now:%y%m%d}{suffix}"


def generate_otp() -> str:
    """Uniform 4-digit code in [1000, 9999]."""
    return str(1000 + secrets.randbelow(9000))


class BookingService:
    """Booking ledger operations bound to one database session."""

    def __init__(
        self,
        session: Session,
        notifier: NotificationQueue,
        relay: Optional[LocationRelay] = None,
    ):
        self.session = session
        self.notifier = notifier
        self.relay = relay
        self.metrics = get_metrics_collector()

    # ----- helpers -----

    def _load(self, booking_id: UUID) -> Booking:
        booking = self.session.get(Booking, booking_id)
        if booking is None:
            raise NotFoundException("Booking", str(booking_id))
        return booking

    def get_owned_booking(self, booking_id: UUID, caller: User) -> Booking:
        """Load a booking the caller owns; NotFound, then AccessDenied."""
        booking = self._load(booking_id)
        if booking.customer_id != caller.id:
            raise ForbiddenException("Access denied")
        return booking

    def _commit(self, booking: Booking, action: str) -> Booking:
        self.session.commit()
        self.session.refresh(booking)
        self.metrics.increment_transition(action, booking.status.value)
        logger.info(
            f"Booking {action}",
            extra={"booking_id": str(booking.id), "status": booking.status.value},
        )
        return booking

    def _notify(self, event: NotificationEvent, booking: Booking, **extra: str) -> None:
        # Enqueueing must never fail the operation that requested it
        try:
            customer = self.session.get(User, booking.customer_id)
            self.notifier.enqueue(event, NotificationPayload.from_booking(booking, customer, **extra))
        except Exception as e:
            logger.error(
                f"Failed to enqueue notification: {e}",
                extra={"event": event.value, "booking_id": str(booking.id)},
                exc_info=True,
            )

    # ----- customer operations -----

    def create_booking(
        self,
        customer: User,
        service_id: UUID,
        scheduled_date: datetime,
        service_address: dict,
        name: Optional[str] = None,
        phone: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Booking:
        """Create a pending booking priced from the catalog at this instant."""
        service = self.session.get(Service, service_id)
        if service is None or not service.is_active:
            raise NotFoundException("Service", str(service_id))

        booking = Booking(
            booking_number=generate_booking_number(),
            customer_id=customer.id,
            service_id=service.id,
            contact_name=name or customer.name,
            contact_phone=phone or customer.phone or "",
            service_address=service_address,
            notes=notes,
            scheduled_date=scheduled_date,
            status=BookingStatus.PENDING,
            total_amount=service.price,
            payment_status=PaymentStatus.PENDING,
        )
        self.session.add(booking)
        self.session.commit()
        self.session.refresh(booking)

        self.metrics.increment_bookings_created()
        logger.info(
            "Booking created",
            extra={
                "booking_id": str(booking.id),
                "booking_number": booking.booking_number,
                "customer_id": str(customer.id),
            },
        )

        self._notify(NotificationEvent.BOOKING_CONFIRMATION, booking)
        return booking

    def get_booking(self, booking_id: UUID, caller: User) -> Booking:
        booking = self._load(booking_id)
        if booking.customer_id != caller.id and not caller.is_admin:
            raise ForbiddenException("Access denied")
        return booking

    def list_for_customer(self, caller: User) -> List[Booking]:
        stmt = (
            select(Booking)
            .where(Booking.customer_id == caller.id)
            .order_by(Booking.created_at.desc())
        )
        return list(self.session.execute(stmt).scalars().all())

    def cancel_booking(self, booking_id: UUID, caller: User) -> Booking:
        booking = self.get_owned_booking(booking_id, caller)

        if booking.status not in CANCELLABLE_STATUSES:
            raise InvalidTransitionException(
                "Booking cannot be cancelled",
                current_status=booking.status.value,
                action="cancel",
            )

        # No automatic refund; that is a separate, explicit admin step
        booking.status = BookingStatus.CANCELLED
        return self._commit(booking, "cancel")

    def confirm_cash_on_delivery(self, booking_id: UUID, caller: User) -> Booking:
        booking = self.get_owned_booking(booking_id, caller)

        if booking.status != BookingStatus.PENDING:
            raise InvalidTransitionException(
                "Booking is not in pending state",
                current_status=booking.status.value,
                action="confirm_cod",
            )

        booking.status = BookingStatus.CONFIRMED
        booking.payment_method = PaymentMethod.COD
        booking.payment_status = PaymentStatus.PENDING
        self._commit(booking, "confirm_cod")

        self._notify(NotificationEvent.BOOKING_CONFIRMATION, booking)
        return booking

    # ----- worker operations -----

    def assign_worker(self, booking_id: UUID, worker: User) -> Booking:
        """Assign a worker and issue a fresh OTP.

        Any current status is accepted, terminal ones included.
        """
        booking = self._load(booking_id)

        booking.status = BookingStatus.ASSIGNED
        booking.worker_id = worker.id
        booking.otp = generate_otp()
        self._commit(booking, "assign_worker")

        self._notify(NotificationEvent.WORKER_ASSIGNED, booking, worker_name=worker.name)
        return booking

    async def update_worker_location(self, booking_id: UUID, lat: float, lng: float) -> Booking:
        """Persist the worker's position, move to on_the_way and relay it."""
        booking = self._load(booking_id)

        booking.status = BookingStatus.ON_THE_WAY
        booking.worker_lat = lat
        booking.worker_lng = lng
        booking.worker_location_updated_at = datetime.now(timezone.utc)
        self._commit(booking, "update_location")

        if self.relay is not None:
            try:
                await self.relay.publish_location(str(booking.id), lat, lng, source="http")
            except Exception as e:
                logger.warning(
                    f"Location relay failed: {e}",
                    extra={"booking_id": str(booking.id)},
                )
        return booking

    # ----- admin operations -----

    def override_status(self, booking_id: UUID, new_status: BookingStatus, admin: User) -> Booking:
        """Set any status without predecessor checks. Admin only, audit-logged."""
        if not admin.is_admin:
            raise ForbiddenException("Admin access required")

        booking = self._load(booking_id)
        previous = booking.status

        booking.status = new_status
        self._commit(booking, "override")

        logger.warning(
            "Admin status override",
            extra={
                "audit": True,
                "admin_id": str(admin.id),
                "booking_id": str(booking.id),
                "previous_status": previous.value,
                "new_status": new_status.value,
            },
        )

        self._notify(NotificationEvent.STATUS_UPDATE, booking)
        return booking

    def list_all(self, limit: int = 0, status: Optional[BookingStatus] = None) -> List[Booking]:
        stmt = select(Booking).order_by(Booking.created_at.desc())
        if status is not None:
            stmt = stmt.where(Booking.status == status)
        if limit > 0:
            stmt = stmt.limit(limit)
        return list(self.session.execute(stmt).scalars().all())

    # ----- payment hooks (called by PaymentService only) -----

    def record_payment_order(self, booking: Booking, order_id: str) -> Booking:
        booking.payment_order_id = order_id
        self.session.commit()
        self.session.refresh(booking)
        return booking

    def settle_payment(
        self,
        booking: Booking,
        payment_id: str,
        method: Optional[str],
        source: str,
    ) -> bool:
        """Mark paid; a pending booking also moves to confirmed.

        Status never moves backwards here: a capture that lands after the
        booking progressed, or after it reached a terminal status, only
        records the payment.

        Returns False (and changes nothing) when this payment was already
        applied, so repeated deliveries stay a no-op.
        """
        if booking.payment_status == PaymentStatus.PAID and booking.payment_id == payment_id:
            logger.info(
                "Payment already settled",
                extra={"booking_id": str(booking.id), "payment_id": payment_id, "source": source},
            )
            return False

        if booking.status in TERMINAL_STATUSES:
            logger.warning(
                "Payment captured for closed booking, refund may be required",
                extra={
                    "booking_id": str(booking.id),
                    "status": booking.status.value,
                    "payment_id": payment_id,
                    "source": source,
                },
            )

        booking.payment_status = PaymentStatus.PAID
        if booking.status == BookingStatus.PENDING:
            booking.status = BookingStatus.CONFIRMED
        booking.payment_id = payment_id
        booking.paid_at = datetime.now(timezone.utc)
        if method in PaymentMethod._value2member_map_ and method != PaymentMethod.COD.value:
            booking.payment_method = PaymentMethod(method)
        self._commit(booking, f"settle_{source}")

        self.metrics.increment_payment_settled(source)
        self._notify(NotificationEvent.PAYMENT_SUCCESS, booking)
        return True

    def mark_payment_failed(self, booking: Booking, source: str) -> bool:
        """Mark the payment failed; booking status is untouched.

        A settled payment is never reverted by a late failure event.
        """
        if booking.payment_status == PaymentStatus.PAID:
            logger.info(
                "Ignoring failure event for settled payment",
                extra={"booking_id": str(booking.id), "source": source},
            )
            return False

        booking.payment_status = PaymentStatus.FAILED
        self.session.commit()
        self.session.refresh(booking)
        self.metrics.increment_payment_failed(source)
        logger.info("Payment failed", extra={"booking_id": str(booking.id), "source": source})
        return True
