"""
Admin analytics routes.

- GET /analytics/metrics    headline dashboard counters
- GET /analytics/revenue    completed-booking revenue per day
- GET /analytics/services-distribution    top five services by bookings
"""
from typing import List, Literal

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from homeserve.api.dependencies import get_analytics_service, require_admin
from homeserve.lib.logging import get_logger
from homeserve.models.users import User
from homeserve.services.analytics_service import DEFAULT_REVENUE_PERIOD, AnalyticsService


logger = get_logger(__name__)
router = APIRouter(prefix="/analytics", tags=["admin", "analytics"])


class DashboardMetrics(BaseModel):
    today_bookings: int
    total_bookings: int
    pending_bookings: int
    completed_bookings: int
    cancelled_bookings: int
    total_revenue: float
    active_providers: int
    total_users: int
    active_services: int


class RevenuePoint(BaseModel):
    name: str
    revenue: float
    bookings: int


@router.get("/metrics", response_model=DashboardMetrics)
def get_dashboard_metrics(
    admin: User = Depends(require_admin),
    analytics: AnalyticsService = Depends(get_analytics_service),
) -> DashboardMetrics:
    return DashboardMetrics(**analytics.get_metrics())


@router.get("/revenue", response_model=List[RevenuePoint])
def get_revenue_chart(
    period: Literal["7days", "30days", "6months", "12months"] = Query(DEFAULT_REVENUE_PERIOD),
    admin: User = Depends(require_admin),
    analytics: AnalyticsService = Depends(get_analytics_service),
) -> List[RevenuePoint]:
    return [RevenuePoint(**point) for point in analytics.get_revenue_chart(period)]


class ServiceShare(BaseModel):
    name: str
    value: int


@router.get("/services-distribution", response_model=List[ServiceShare])
def get_service_distribution(
    admin: User = Depends(require_admin),
    analytics: AnalyticsService = Depends(get_analytics_service),
) -> List[ServiceShare]:
    """Top five services by booking count."""
    return [ServiceShare(**row) for row in analytics.get_service_distribution()]
