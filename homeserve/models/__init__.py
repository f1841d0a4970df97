"""
SQLAlchemy models package.
Import all models here to ensure they're registered with Base.metadata.
"""
from homeserve.models.users import User, UserRole
from homeserve.models.services import Service
from homeserve.models.bookings import Booking, BookingStatus, PaymentStatus, PaymentMethod
from homeserve.models.reviews import Review, ReviewStatus

__all__ = [
    "User",
    "UserRole",
    "Service",
    "Booking",
    "BookingStatus",
    "PaymentStatus",
    "PaymentMethod",
    "Review",
    "ReviewStatus",
]
