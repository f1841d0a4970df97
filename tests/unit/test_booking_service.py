"""
Unit tests for the booking ledger (BookingService).
"""
import re
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock
from uuid import uuid4

import pytest

from homeserve.api.middleware.error_handler import (
    ForbiddenException,
    InvalidTransitionException,
    NotFoundException,
)
from homeserve.lib.metrics import get_metrics_collector
from homeserve.models.bookings import BookingStatus, PaymentMethod, PaymentStatus
from homeserve.services.booking_service import generate_booking_number, generate_otp
from homeserve.services.notification_service import NotificationEvent

from tests.helpers import ADDRESS


# ----- identifiers -----

@pytest.mark.unit
def test_booking_number_format():
    number = generate_booking_number(now=datetime(2025, 3, 7, 23, 59, tzinfo=timezone.utc))
    assert re.fullmatch(r"BK250307[0-9A-Z]{6}", number)


@pytest.mark.unit
def test_booking_number_custom_prefix():
    number = generate_booking_number(prefix="HS", now=datetime(2024, 12, 31, tzinfo=timezone.utc))
    assert number.startswith("HS241231")
    assert len(number) == 14


@pytest.mark.unit
def test_booking_numbers_are_random():
    numbers = {generate_booking_number() for _ in range(50)}
    assert len(numbers) == 50


@pytest.mark.unit
def test_otp_is_four_digits_in_range():
    for _ in range(500):
        otp = generate_otp()
        assert len(otp) == 4
        assert 1000 <= int(otp) <= 9999


# ----- create -----

@pytest.mark.unit
def test_create_booking_prices_from_catalog(booking, service, customer, queue):
    assert booking.status == BookingStatus.PENDING
    assert booking.payment_status == PaymentStatus.PENDING
    assert booking.total_amount == Decimal("2999.00")
    assert booking.customer_id == customer.id
    assert booking.service_id == service.id
    assert booking.contact_name == customer.name
    assert booking.contact_phone == customer.phone
    assert booking.service_address["city"] == "Bengaluru"
    assert booking.otp is None
    assert re.fullmatch(r"BK\d{6}[0-9A-Z]{6}", booking.booking_number)

    assert len(queue.of(NotificationEvent.BOOKING_CONFIRMATION)) == 1
    assert get_metrics_collector().get_counter_value("bookings_created_total", {}) == 1


@pytest.mark.unit
def test_create_booking_uses_given_contact(ledger, customer, service, scheduled_date):
    booking = ledger.create_booking(
        customer=customer,
        service_id=service.id,
        scheduled_date=scheduled_date,
        service_address=dict(ADDRESS),
        name="Someone Else",
        phone="+911234567890",
        notes="Gate code 42",
    )
    assert booking.contact_name == "Someone Else"
    assert booking.contact_phone == "+911234567890"
    assert booking.notes == "Gate code 42"


@pytest.mark.unit
def test_create_booking_unknown_service(ledger, customer, scheduled_date):
    with pytest.raises(NotFoundException):
        ledger.create_booking(customer, uuid4(), scheduled_date, dict(ADDRESS))


@pytest.mark.unit
def test_create_booking_inactive_service(ledger, customer, inactive_service, scheduled_date):
    with pytest.raises(NotFoundException):
        ledger.create_booking(customer, inactive_service.id, scheduled_date, dict(ADDRESS))


@pytest.mark.unit
def test_price_is_snapshot_not_live(ledger, booking, customer, service, db_session):
    service.price = Decimal("4999.00")
    db_session.commit()

    reloaded = ledger.get_booking(booking.id, customer)
    assert reloaded.total_amount == Decimal("2999.00")


@pytest.mark.unit
def test_total_amount_is_write_once(booking):
    with pytest.raises(ValueError):
        booking.total_amount = Decimal("1.00")


@pytest.mark.unit
def test_booking_number_is_write_once(booking):
    with pytest.raises(ValueError):
        booking.booking_number = "BK000000AAAAAA"


# ----- read -----

@pytest.mark.unit
def test_get_booking_owner_and_admin(ledger, booking, customer, admin):
    assert ledger.get_booking(booking.id, customer).id == booking.id
    assert ledger.get_booking(booking.id, admin).id == booking.id


@pytest.mark.unit
def test_get_booking_other_customer_denied(ledger, booking, other_customer):
    with pytest.raises(ForbiddenException):
        ledger.get_booking(booking.id, other_customer)


@pytest.mark.unit
def test_get_booking_not_found(ledger, customer):
    with pytest.raises(NotFoundException):
        ledger.get_booking(uuid4(), customer)


@pytest.mark.unit
def test_list_for_customer_only_own(ledger, booking, customer, other_customer, service, scheduled_date):
    ledger.create_booking(other_customer, service.id, scheduled_date, dict(ADDRESS))

    own = ledger.list_for_customer(customer)
    assert [b.id for b in own] == [booking.id]


@pytest.mark.unit
def test_list_all_with_limit_and_status(ledger, booking, customer, service, scheduled_date):
    second = ledger.create_booking(customer, service.id, scheduled_date, dict(ADDRESS))
    ledger.cancel_booking(second.id, customer)

    assert len(ledger.list_all()) == 2
    assert len(ledger.list_all(limit=1)) == 1
    cancelled = ledger.list_all(status=BookingStatus.CANCELLED)
    assert [b.id for b in cancelled] == [second.id]


# ----- cancel -----

@pytest.mark.unit
def test_cancel_pending(ledger, booking, customer):
    cancelled = ledger.cancel_booking(booking.id, customer)
    assert cancelled.status == BookingStatus.CANCELLED
    assert get_metrics_collector().get_counter_value(
        "booking_transitions_total", {"action": "cancel", "status": "cancelled"}
    ) == 1


@pytest.mark.unit
def test_cancel_after_cod_confirmation(ledger, booking, customer):
    confirmed = ledger.confirm_cash_on_delivery(booking.id, customer)
    assert confirmed.status == BookingStatus.CONFIRMED
    assert confirmed.payment_method == PaymentMethod.COD
    assert confirmed.payment_status == PaymentStatus.PENDING

    cancelled = ledger.cancel_booking(booking.id, customer)
    assert cancelled.status == BookingStatus.CANCELLED


@pytest.mark.unit
@pytest.mark.parametrize(
    "status",
    [
        BookingStatus.ASSIGNED,
        BookingStatus.ON_THE_WAY,
        BookingStatus.IN_PROGRESS,
        BookingStatus.COMPLETED,
        BookingStatus.CANCELLED,
    ],
)
def test_cancel_rejected_outside_pending_or_confirmed(ledger, booking, customer, admin, status):
    ledger.override_status(booking.id, status, admin)

    with pytest.raises(InvalidTransitionException) as exc_info:
        ledger.cancel_booking(booking.id, customer)

    assert exc_info.value.details["current_status"] == status.value
    assert exc_info.value.details["action"] == "cancel"
    assert ledger.get_booking(booking.id, customer).status == status


@pytest.mark.unit
def test_cancel_by_non_owner_denied(ledger, booking, other_customer, customer):
    with pytest.raises(ForbiddenException):
        ledger.cancel_booking(booking.id, other_customer)
    assert ledger.get_booking(booking.id, customer).status == BookingStatus.PENDING


# ----- cash on delivery -----

@pytest.mark.unit
def test_confirm_cod_notifies(ledger, booking, customer, queue):
    ledger.confirm_cash_on_delivery(booking.id, customer)
    assert len(queue.of(NotificationEvent.BOOKING_CONFIRMATION)) == 2


@pytest.mark.unit
def test_confirm_cod_requires_pending(ledger, booking, customer):
    ledger.confirm_cash_on_delivery(booking.id, customer)
    with pytest.raises(InvalidTransitionException):
        ledger.confirm_cash_on_delivery(booking.id, customer)


# ----- worker operations -----

@pytest.mark.unit
def test_assign_worker_issues_otp(ledger, booking, worker, queue):
    assigned = ledger.assign_worker(booking.id, worker)

    assert assigned.status == BookingStatus.ASSIGNED
    assert assigned.worker_id == worker.id
    assert 1000 <= int(assigned.otp) <= 9999

    pushes = queue.of(NotificationEvent.WORKER_ASSIGNED)
    assert len(pushes) == 1
    assert pushes[0].extra["worker_name"] == worker.name


@pytest.mark.unit
def test_assign_worker_accepts_any_status(ledger, booking, customer, worker):
    ledger.cancel_booking(booking.id, customer)
    assigned = ledger.assign_worker(booking.id, worker)
    assert assigned.status == BookingStatus.ASSIGNED


@pytest.mark.unit
def test_assign_worker_unknown_booking(ledger, worker):
    with pytest.raises(NotFoundException):
        ledger.assign_worker(uuid4(), worker)


@pytest.mark.unit
async def test_update_location_persists_and_relays(ledger, booking, relay):
    connection = AsyncMock()
    await relay.join_room(str(booking.id), connection)

    updated = await ledger.update_worker_location(booking.id, 12.9716, 77.5946)

    assert updated.status == BookingStatus.ON_THE_WAY
    assert updated.worker_location["lat"] == 12.9716
    assert updated.worker_location["lng"] == 77.5946
    assert updated.worker_location["updated_at"] is not None
    connection.send_json.assert_awaited_once_with(
        {"event": "location_update", "data": {"bookingId": str(booking.id), "lat": 12.9716, "lng": 77.5946}}
    )


@pytest.mark.unit
async def test_update_location_survives_relay_failure(ledger, booking, relay, monkeypatch):
    monkeypatch.setattr(relay, "publish_location", AsyncMock(side_effect=RuntimeError("socket down")))

    updated = await ledger.update_worker_location(booking.id, 1.0, 2.0)
    assert updated.status == BookingStatus.ON_THE_WAY
    assert updated.worker_lat == 1.0


# ----- admin override -----

@pytest.mark.unit
def test_override_sets_any_status(ledger, booking, admin, queue):
    updated = ledger.override_status(booking.id, BookingStatus.COMPLETED, admin)
    assert updated.status == BookingStatus.COMPLETED

    updated = ledger.override_status(booking.id, BookingStatus.PENDING, admin)
    assert updated.status == BookingStatus.PENDING
    assert len(queue.of(NotificationEvent.STATUS_UPDATE)) == 2


@pytest.mark.unit
def test_override_requires_admin(ledger, booking, customer):
    with pytest.raises(ForbiddenException):
        ledger.override_status(booking.id, BookingStatus.COMPLETED, customer)


@pytest.mark.unit
def test_override_is_audit_logged(ledger, booking, admin, caplog):
    with caplog.at_level("WARNING"):
        ledger.override_status(booking.id, BookingStatus.IN_PROGRESS, admin)

    audit = [r for r in caplog.records if getattr(r, "audit", False)]
    assert len(audit) == 1
    assert audit[0].previous_status == "pending"
    assert audit[0].new_status == "in_progress"
    assert audit[0].admin_id == str(admin.id)


# ----- payment hooks -----

@pytest.mark.unit
def test_settle_payment_is_idempotent(ledger, booking, queue):
    assert ledger.settle_payment(booking, "pay_1", method="upi", source="webhook") is True
    assert ledger.settle_payment(booking, "pay_1", method="upi", source="webhook") is False

    assert booking.payment_status == PaymentStatus.PAID
    assert booking.status == BookingStatus.CONFIRMED
    assert booking.payment_method == PaymentMethod.UPI
    assert booking.paid_at is not None
    assert len(queue.of(NotificationEvent.PAYMENT_SUCCESS)) == 1


@pytest.mark.unit
def test_settle_payment_ignores_unknown_method(ledger, booking):
    ledger.settle_payment(booking, "pay_2", method="emi", source="verify")
    assert booking.payment_method is None


@pytest.mark.unit
def test_mark_failed_keeps_booking_status(ledger, booking):
    assert ledger.mark_payment_failed(booking, source="webhook") is True
    assert booking.payment_status == PaymentStatus.FAILED
    assert booking.status == BookingStatus.PENDING


@pytest.mark.unit
def test_mark_failed_never_reverts_paid(ledger, booking):
    ledger.settle_payment(booking, "pay_3", method="card", source="webhook")
    assert ledger.mark_payment_failed(booking, source="webhook") is False
    assert booking.payment_status == PaymentStatus.PAID


@pytest.mark.unit
def test_notification_enqueue_failure_does_not_fail_operation(db_session, customer, service, scheduled_date):
    from homeserve.services.booking_service import BookingService

    class BrokenQueue:
        def enqueue(self, event, payload):
            raise RuntimeError("queue unavailable")

    ledger = BookingService(db_session, BrokenQueue())
    booking = ledger.create_booking(customer, service.id, scheduled_date, dict(ADDRESS))
    assert booking.status == BookingStatus.PENDING


@pytest.mark.unit
async def test_late_capture_keeps_progressed_status(ledger, booking, worker):
    ledger.assign_worker(booking.id, worker)
    await ledger.update_worker_location(booking.id, 12.97, 77.59)

    assert ledger.settle_payment(booking, "pay_late", method="upi", source="webhook") is True

    assert booking.status == BookingStatus.ON_THE_WAY
    assert booking.payment_status == PaymentStatus.PAID
    assert booking.payment_id == "pay_late"
    assert booking.paid_at is not None


@pytest.mark.unit
def test_capture_on_cancelled_booking_records_payment_only(ledger, booking, customer, caplog):
    ledger.cancel_booking(booking.id, customer)

    with caplog.at_level("WARNING"):
        ledger.settle_payment(booking, "pay_after_cancel", method="card", source="webhook")

    assert booking.status == BookingStatus.CANCELLED
    assert booking.payment_status == PaymentStatus.PAID
    assert any("refund" in r.getMessage() for r in caplog.records if r.levelname == "WARNING")
