"""
AnalyticsService - booking and revenue aggregates for the admin dashboard.

Provides:
- Headline counters (today's bookings, status counts, revenue, users, providers, services)
- Revenue chart: completed-booking revenue grouped by creation date
- Service distribution: the five most-booked services

Revenue only counts completed bookings.
"""
from collections import OrderedDict
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from dateutil.relativedelta import relativedelta
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from homeserve.lib.logging import get_logger
from homeserve.models.bookings import Booking, BookingStatus
from homeserve.models.services import Service
from homeserve.models.users import User, UserRole


logger = get_logger(__name__)

REVENUE_PERIODS = {
    "7days": relativedelta(days=7),
    "30days": relativedelta(days=30),
    "6months": relativedelta(months=6),
    "12months": relativedelta(months=12),
}
DEFAULT_REVENUE_PERIOD = "30days"
TOP_SERVICES = 5


class AnalyticsService:
    """
    Aggregate queries over bookings, users and services.
    """

    def __init__(self, db: Session):
        self.db = db

    def _count(self, *conditions) -> int:
        stmt = select(func.count(Booking.id))
        if conditions:
            stmt = stmt.where(*conditions)
        return self.db.execute(stmt).scalar_one()

    def get_metrics(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Headline dashboard numbers.

        Returns:
            {
                'today_bookings', 'total_bookings', 'pending_bookings',
                'completed_bookings', 'cancelled_bookings', 'total_revenue',
                'active_providers', 'total_users', 'active_services'
            }
        """
        now = now or datetime.now(timezone.utc)
        start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)

        revenue = self.db.execute(
            select(func.coalesce(func.sum(Booking.total_amount), 0))
            .where(Booking.status == BookingStatus.COMPLETED)
        ).scalar_one()

        active_providers = self.db.execute(
            select(func.count(User.id)).where(User.role == UserRole.PROVIDER, User.is_active == True)  # noqa: E712
        ).scalar_one()
        customers = self.db.execute(
            select(func.count(User.id)).where(User.role == UserRole.USER)
        ).scalar_one()
        active_services = self.db.execute(
            select(func.count(Service.id)).where(Service.is_active == True)  # noqa: E712
        ).scalar_one()

        metrics = {
            "today_bookings": self._count(Booking.created_at >= start_of_day),
            "total_bookings": self._count(),
            "pending_bookings": self._count(Booking.status == BookingStatus.PENDING),
            "completed_bookings": self._count(Booking.status == BookingStatus.COMPLETED),
            "cancelled_bookings": self._count(Booking.status == BookingStatus.CANCELLED),
            "total_revenue": float(Decimal(revenue)),
            "active_providers": active_providers,
            "total_users": customers + active_providers,
            "active_services": active_services,
        }
        logger.info("Calculated dashboard metrics", extra={"total_bookings": metrics["total_bookings"]})
        return metrics

    def get_revenue_chart(self, period: str = DEFAULT_REVENUE_PERIOD, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        """
        Completed-booking revenue per creation day, oldest first.

        Unknown periods fall back to 30 days.
        """
        now = now or datetime.now(timezone.utc)
        start_date = now - REVENUE_PERIODS.get(period, REVENUE_PERIODS[DEFAULT_REVENUE_PERIOD])

        rows = self.db.execute(
            select(Booking.created_at, Booking.total_amount)
            .where(
                Booking.status == BookingStatus.COMPLETED,
                Booking.created_at >= start_date,
            )
            .order_by(Booking.created_at)
        ).all()

        # Grouped in Python so the query stays portable across dialects
        buckets: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
        for created_at, amount in rows:
            day = created_at.strftime("%Y-%m-%d")
            bucket = buckets.setdefault(day, {"name": day, "revenue": Decimal("0"), "bookings": 0})
            bucket["revenue"] += Decimal(amount)
            bucket["bookings"] += 1

        return [
            {"name": b["name"], "revenue": float(b["revenue"]), "bookings": b["bookings"]}
            for b in buckets.values()
        ]

    def get_service_distribution(self, limit: int = TOP_SERVICES) -> List[Dict[str, Any]]:
        """
        Most-booked services, all booking statuses counted.

        Returns:
            [{'name': service name, 'value': booking count}], highest first
        """
        booking_count = func.count(Booking.id).label("booking_count")
        rows = self.db.execute(
            select(Service.name, booking_count)
            .join(Booking, Booking.service_id == Service.id)
            .group_by(Service.id, Service.name)
            .order_by(booking_count.desc(), Service.name)
            .limit(limit)
        ).all()
        return [{"name": name, "value": count} for name, count in rows]
