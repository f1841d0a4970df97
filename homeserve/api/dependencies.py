"""
API dependencies for FastAPI dependency injection.

Provides database sessions, the authenticated caller, and the
process-wide collaborators (location relay, notification dispatcher,
payment gateway) that the application builds once at startup and keeps
on `app.state`.
"""
from uuid import UUID

import jwt
from fastapi import BackgroundTasks, Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from homeserve.api.middleware.error_handler import ForbiddenException, UnauthorizedException
from homeserve.lib.db import get_db as get_db_session
from homeserve.lib.jwt import verify_token
from homeserve.models.users import User
from homeserve.services.analytics_service import AnalyticsService
from homeserve.services.booking_service import BookingService
from homeserve.services.location_relay import LocationRelay
from homeserve.services.notification_service import (
    BackgroundTaskQueue,
    NotificationDispatcher,
    NotificationQueue,
)
from homeserve.services.payment_gateway import RazorpayGateway
from homeserve.services.payment_service import PaymentService
from homeserve.services.review_service import ReviewService


# Re-export get_db for convenience
get_db = get_db_session


# HTTP Bearer token security scheme
security = HTTPBearer()


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    """
    Resolve the bearer token to an active user.

    Raises:
        UnauthorizedException: token invalid or user not found
    """
    try:
        payload = verify_token(credentials.credentials)
        user_id = UUID(str(payload.get("sub")))
    except (jwt.InvalidTokenError, ValueError) as e:
        raise UnauthorizedException(f"Could not validate credentials: {e}")

    user = db.get(User, user_id)
    if user is None or not user.is_active:
        raise UnauthorizedException("User not found")
    return user


def require_admin(user: User = Depends(get_current_user)) -> User:
    """Dependency that only lets admins through."""
    if not user.is_admin:
        raise ForbiddenException("Admin access required")
    return user


def get_location_relay(request: Request) -> LocationRelay:
    return request.app.state.location_relay


def get_notification_dispatcher(request: Request) -> NotificationDispatcher:
    return request.app.state.notification_dispatcher


def get_payment_gateway(request: Request) -> RazorpayGateway:
    return request.app.state.payment_gateway


def get_notification_queue(
    background_tasks: BackgroundTasks,
    dispatcher: NotificationDispatcher = Depends(get_notification_dispatcher),
) -> NotificationQueue:
    """Notifications run after the response; their outcome never reaches the caller."""
    return BackgroundTaskQueue(background_tasks, dispatcher)


def get_booking_service(
    db: Session = Depends(get_db),
    notifier: NotificationQueue = Depends(get_notification_queue),
    relay: LocationRelay = Depends(get_location_relay),
) -> BookingService:
    return BookingService(db, notifier, relay)


def get_payment_service(
    ledger: BookingService = Depends(get_booking_service),
    gateway: RazorpayGateway = Depends(get_payment_gateway),
) -> PaymentService:
    return PaymentService(ledger, gateway)


def get_review_service(db: Session = Depends(get_db)) -> ReviewService:
    return ReviewService(db)


def get_analytics_service(db: Session = Depends(get_db)) -> AnalyticsService:
    return AnalyticsService(db)
