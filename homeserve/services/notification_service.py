"""
Notification dispatcher for booking and payment events.

Delivery is best-effort: the booking ledger and payment services only
enqueue an event, the web layer runs the dispatch after the response is
sent, and every provider failure is logged and counted, never raised.
Supports SMS (Twilio or console), email (SMTP) and push (log-only stub).
"""
import asyncio
import enum
import smtplib
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from email.mime.text import MIMEText
from typing import Dict, Optional, Protocol

from fastapi import BackgroundTasks
from twilio.rest import Client as TwilioClient

from homeserve.lib.logging import get_logger
from homeserve.lib.metrics import get_metrics_collector
from homeserve.lib.settings import Settings, settings as default_settings
from homeserve.models.bookings import Booking
from homeserve.models.users import User


logger = get_logger(__name__)


class NotificationEvent(str, enum.Enum):
    """Event kinds the ledger can request."""
    BOOKING_CONFIRMATION = "booking_confirmation"
    PAYMENT_SUCCESS = "payment_success"
    WORKER_ASSIGNED = "worker_assigned"
    STATUS_UPDATE = "status_update"


class NotificationChannel(str, enum.Enum):
    SMS = "sms"
    EMAIL = "email"
    PUSH = "push"


@dataclass(frozen=True)
class NotificationPayload:
    """
    Snapshot of everything a notification needs, taken at enqueue time so
    dispatch never touches the request's database session.
    """
    booking_id: str
    booking_number: str
    status: str
    total_amount: str
    user_id: str
    name: str
    phone: Optional[str] = None
    email: Optional[str] = None
    push_token: Optional[str] = None
    extra: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_booking(cls, booking: Booking, user: Optional[User], **extra: str) -> "NotificationPayload":
        return cls(
            booking_id=str(booking.id),
            booking_number=booking.booking_number,
            status=booking.status.value,
            total_amount=f"{booking.total_amount:.2f}",
            user_id=str(booking.customer_id),
            name=booking.contact_name,
            phone=booking.contact_phone or (user.phone if user else None),
            email=user.email if user else None,
            push_token=user.fcm_token if user else None,
            extra=dict(extra),
        )


class NotificationProvider(ABC):
    """
    Abstract base class for notification delivery providers.
    """

    @abstractmethod
    async def send(self, to: str, message: str, **kwargs) -> bool:
        """
        Send notification via this provider.

        Args:
            to: Recipient identifier (phone number, email, device token)
            message: Message content to send
            **kwargs: Provider-specific parameters (title, subject, data)

        Returns:
            True if sent successfully, False otherwise
        """

    @property
    @abstractmethod
    def channel(self) -> NotificationChannel:
        """Return the channel this provider supports."""


class TwilioSMSProvider(NotificationProvider):
    """
    Twilio SMS provider for sending text messages.
    """

    def __init__(self, config: Settings = default_settings):
        self.from_number = config.twilio_from_number
        self.client = TwilioClient(config.twilio_account_sid, config.twilio_auth_token)
        logger.info("Twilio SMS provider initialized")

    @property
    def channel(self) -> NotificationChannel:
        return NotificationChannel.SMS

    async def send(self, to: str, message: str, **kwargs) -> bool:
        # The Twilio SDK is blocking
        msg = await asyncio.to_thread(
            self.client.messages.create,
            body=message,
            from_=self.from_number,
            to=to,
        )
        logger.info(f"SMS sent via Twilio: {msg.sid}", extra={"to": to})
        return True


class ConsoleSMSProvider(NotificationProvider):
    """
    Console SMS provider for development/testing.
    Logs messages instead of sending.
    """

    @property
    def channel(self) -> NotificationChannel:
        return NotificationChannel.SMS

    async def send(self, to: str, message: str, **kwargs) -> bool:
        logger.info(f"SMS (console): {message}", extra={"to": to})
        return True


class SMTPEmailProvider(NotificationProvider):
    """
    Email provider over SMTP with STARTTLS.
    """

    def __init__(self, config: Settings = default_settings):
        self.config = config

    @property
    def channel(self) -> NotificationChannel:
        return NotificationChannel.EMAIL

    def _send_blocking(self, to: str, subject: str, body: str) -> None:
        msg = MIMEText(body, "plain", "utf-8")
        msg["Subject"] = subject
        msg["From"] = f"{self.config.smtp_from_name} <{self.config.smtp_from_email}>"
        msg["To"] = to

        with smtplib.SMTP(self.config.smtp_host, self.config.smtp_port, timeout=10) as server:
            server.starttls()
            if self.config.smtp_username:
                server.login(self.config.smtp_username, self.config.smtp_password)
            server.send_message(msg)

    async def send(self, to: str, message: str, **kwargs) -> bool:
        subject = kwargs.get("subject", self.config.app_name)
        await asyncio.to_thread(self._send_blocking, to, subject, message)
        logger.info("Email sent", extra={"to": to, "subject": subject})
        return True


class PushNotificationProvider(NotificationProvider):
    """
    Push notification provider stub; logs the notification it would send.
    """

    @property
    def channel(self) -> NotificationChannel:
        return NotificationChannel.PUSH

    async def send(self, to: str, message: str, **kwargs) -> bool:
        logger.info(
            "Push notification stub called",
            extra={"to": to, "title": kwargs.get("title"), "data": kwargs.get("data")},
        )
        return True


# title, body per event; formatted with NotificationPayload fields
_TEMPLATES: Dict[NotificationEvent, tuple] = {
    NotificationEvent.BOOKING_CONFIRMATION: (
        "Booking Confirmed!",
        "Hi {name}, your booking #{booking_number} has been confirmed.",
    ),
    NotificationEvent.PAYMENT_SUCCESS: (
        "Payment Successful!",
        "We received your payment of ₹{total_amount} for booking #{booking_number}.",
    ),
    NotificationEvent.WORKER_ASSIGNED: (
        "Worker Assigned",
        "A professional has been assigned to your booking #{booking_number}.",
    ),
    NotificationEvent.STATUS_UPDATE: (
        "Booking Update",
        "Your booking #{booking_number} is now {status}.",
    ),
}

# Worker assignment is push-only, like the mobile app expects
_EVENT_CHANNELS: Dict[NotificationEvent, tuple] = {
    NotificationEvent.BOOKING_CONFIRMATION: (NotificationChannel.EMAIL, NotificationChannel.SMS, NotificationChannel.PUSH),
    NotificationEvent.PAYMENT_SUCCESS: (NotificationChannel.EMAIL, NotificationChannel.SMS, NotificationChannel.PUSH),
    NotificationEvent.WORKER_ASSIGNED: (NotificationChannel.PUSH,),
    NotificationEvent.STATUS_UPDATE: (NotificationChannel.EMAIL, NotificationChannel.PUSH),
}


class NotificationDispatcher:
    """
    Fans an event out to every configured channel that has a recipient.

    `dispatch` never raises: provider errors are logged and counted.
    """

    def __init__(self, providers: Dict[NotificationChannel, NotificationProvider]):
        self._providers = providers
        logger.info(f"NotificationDispatcher initialized with {len(providers)} providers")

    def _recipient(self, channel: NotificationChannel, payload: NotificationPayload) -> Optional[str]:
        if channel == NotificationChannel.SMS:
            return payload.phone
        if channel == NotificationChannel.EMAIL:
            return payload.email
        return payload.push_token

    async def dispatch(self, event: NotificationEvent, payload: NotificationPayload) -> Dict[str, str]:
        """
        Deliver one event on its channels.

        Returns:
            Mapping of channel -> outcome (sent, failed, skipped)
        """
        metrics = get_metrics_collector()
        title, template = _TEMPLATES[event]
        message = template.format(**payload.__dict__)
        results: Dict[str, str] = {}

        for channel in _EVENT_CHANNELS[event]:
            provider = self._providers.get(channel)
            to = self._recipient(channel, payload)
            if provider is None or not to:
                results[channel.value] = "skipped"
                continue

            try:
                sent = await provider.send(
                    to,
                    message,
                    title=title,
                    subject=title,
                    data={"bookingId": payload.booking_id, "type": event.value},
                )
                outcome = "sent" if sent else "failed"
            except Exception as e:
                logger.error(
                    f"Notification delivery failed: {e}",
                    extra={"event": event.value, "channel": channel.value, "booking_id": payload.booking_id},
                    exc_info=True,
                )
                outcome = "failed"

            results[channel.value] = outcome
            metrics.increment_notification(event.value, outcome)

        logger.info(
            "Notification dispatched",
            extra={"event": event.value, "booking_id": payload.booking_id, "results": results},
        )
        return results


class NotificationQueue(Protocol):
    """What the ledger and payment services depend on."""

    def enqueue(self, event: NotificationEvent, payload: NotificationPayload) -> None:
        ...


class BackgroundTaskQueue:
    """
    Schedules dispatch on FastAPI background tasks: it runs after the
    response has been sent and its result is never awaited by the caller.
    """

    def __init__(self, background_tasks: BackgroundTasks, dispatcher: NotificationDispatcher):
        self.background_tasks = background_tasks
        self.dispatcher = dispatcher

    def enqueue(self, event: NotificationEvent, payload: NotificationPayload) -> None:
        self.background_tasks.add_task(self.dispatcher.dispatch, event, payload)


def build_notification_dispatcher(config: Settings = default_settings) -> NotificationDispatcher:
    """
    Build the dispatcher from settings.

    Twilio is used when selected and configured; otherwise SMS goes to the log.
    """
    providers: Dict[NotificationChannel, NotificationProvider] = {}

    if config.notification_sms_provider == "twilio" and config.twilio_account_sid:
        providers[NotificationChannel.SMS] = TwilioSMSProvider(config)
    else:
        providers[NotificationChannel.SMS] = ConsoleSMSProvider()
        logger.info("Using console SMS provider (dev mode)")

    if config.email_enabled:
        providers[NotificationChannel.EMAIL] = SMTPEmailProvider(config)

    providers[NotificationChannel.PUSH] = PushNotificationProvider()

    return NotificationDispatcher(providers)
