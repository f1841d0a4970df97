"""Booking routes.

Thin handlers over the booking ledger:
- POST   /bookings                         create (customer)
- GET    /bookings/my-bookings             own bookings
- GET    /bookings/{id}                    owner or admin
- PATCH  /bookings/{id}/status             admin override
- PATCH  /bookings/{id}/assign-worker      assign caller as worker
- PATCH  /bookings/{id}/update-location    push worker coordinates
- PATCH  /bookings/{id}/cancel             customer cancellation
- POST   /bookings/{id}/confirm-cod        cash on delivery
- GET    /bookings                         all bookings (admin)
"""
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from homeserve.api.dependencies import get_booking_service, get_current_user, require_admin
from homeserve.lib.logging import get_logger
from homeserve.models.bookings import Booking, BookingStatus
from homeserve.models.users import User
from homeserve.services.booking_service import BookingService


logger = get_logger(__name__)
router = APIRouter(prefix="/bookings", tags=["bookings"])


# Request/Response Models
class ServiceAddress(BaseModel):
    """Address the work happens at; stored as a copy on the booking."""
    address_line1: str = Field(..., min_length=1, description="Street address")
    address_line2: Optional[str] = None
    city: str = Field(..., min_length=1)
    state: Optional[str] = None
    pincode: str = Field(..., min_length=1)


class CreateBookingRequest(BaseModel):
    service_id: UUID
    scheduled_date: datetime = Field(..., description="ISO-8601 timestamp")
    service_address: ServiceAddress
    name: Optional[str] = Field(None, description="Contact name (defaults to profile)")
    phone: Optional[str] = Field(None, description="Contact phone (defaults to profile)")
    notes: Optional[str] = Field(None, max_length=1000)


class StatusUpdateRequest(BaseModel):
    status: BookingStatus


class LocationUpdateRequest(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class ServiceSummary(BaseModel):
    id: UUID
    name: str
    price: float
    duration_minutes: int


class WorkerLocation(BaseModel):
    lat: float
    lng: float
    updated_at: Optional[datetime] = None


class BookingResponse(BaseModel):
    id: UUID
    booking_number: str
    customer_id: UUID
    service: ServiceSummary
    contact_name: str
    contact_phone: str
    service_address: dict
    notes: Optional[str] = None
    scheduled_date: datetime
    status: BookingStatus
    total_amount: float
    worker_id: Optional[UUID] = None
    worker_location: Optional[WorkerLocation] = None
    otp: Optional[str] = None
    payment_status: str
    payment_method: Optional[str] = None
    payment_order_id: Optional[str] = None
    payment_id: Optional[str] = None
    paid_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class BookingListResponse(BaseModel):
    count: int
    bookings: List[BookingResponse]


def to_response(booking: Booking) -> BookingResponse:
    return BookingResponse(
        id=booking.id,
        booking_number=booking.booking_number,
        customer_id=booking.customer_id,
        service=ServiceSummary(
            id=booking.service.id,
            name=booking.service.name,
            price=float(booking.service.price),
            duration_minutes=booking.service.duration_minutes,
        ),
        contact_name=booking.contact_name,
        contact_phone=booking.contact_phone,
        service_address=booking.service_address,
        notes=booking.notes,
        scheduled_date=booking.scheduled_date,
        status=booking.status,
        total_amount=float(booking.total_amount),
        worker_id=booking.worker_id,
        worker_location=booking.worker_location,
        otp=booking.otp,
        payment_status=booking.payment_status.value,
        payment_method=booking.payment_method.value if booking.payment_method else None,
        payment_order_id=booking.payment_order_id,
        payment_id=booking.payment_id,
        paid_at=booking.paid_at,
        created_at=booking.created_at,
        updated_at=booking.updated_at,
    )


def to_list_response(bookings: List[Booking]) -> BookingListResponse:
    return BookingListResponse(count=len(bookings), bookings=[to_response(b) for b in bookings])


# Routes
@router.post("", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
def create_booking(
    request: CreateBookingRequest,
    user: User = Depends(get_current_user),
    bookings: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    """Create a pending booking priced from the catalog."""
    booking = bookings.create_booking(
        customer=user,
        service_id=request.service_id,
        scheduled_date=request.scheduled_date,
        service_address=request.service_address.model_dump(),
        name=request.name,
        phone=request.phone,
        notes=request.notes,
    )
    return to_response(booking)


@router.get("/my-bookings", response_model=BookingListResponse)
def list_my_bookings(
    user: User = Depends(get_current_user),
    bookings: BookingService = Depends(get_booking_service),
) -> BookingListResponse:
    return to_list_response(bookings.list_for_customer(user))


@router.get("/{booking_id}", response_model=BookingResponse)
def get_booking(
    booking_id: UUID,
    user: User = Depends(get_current_user),
    bookings: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    return to_response(bookings.get_booking(booking_id, user))


@router.patch("/{booking_id}/status", response_model=BookingResponse)
def override_status(
    booking_id: UUID,
    request: StatusUpdateRequest,
    admin: User = Depends(require_admin),
    bookings: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    """Administrative override: sets any status without transition checks."""
    return to_response(bookings.override_status(booking_id, request.status, admin))


@router.patch("/{booking_id}/assign-worker", response_model=BookingResponse)
def assign_worker(
    booking_id: UUID,
    user: User = Depends(get_current_user),
    bookings: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    """Assign the calling user as the booking's worker and issue an OTP."""
    return to_response(bookings.assign_worker(booking_id, user))


@router.patch("/{booking_id}/update-location", response_model=BookingResponse)
async def update_location(
    booking_id: UUID,
    request: LocationUpdateRequest,
    user: User = Depends(get_current_user),
    bookings: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    booking = await bookings.update_worker_location(booking_id, request.lat, request.lng)
    return to_response(booking)


@router.patch("/{booking_id}/cancel", response_model=BookingResponse)
def cancel_booking(
    booking_id: UUID,
    user: User = Depends(get_current_user),
    bookings: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    return to_response(bookings.cancel_booking(booking_id, user))


@router.post("/{booking_id}/confirm-cod", response_model=BookingResponse)
def confirm_cash_on_delivery(
    booking_id: UUID,
    user: User = Depends(get_current_user),
    bookings: BookingService = Depends(get_booking_service),
) -> BookingResponse:
    return to_response(bookings.confirm_cash_on_delivery(booking_id, user))


@router.get("", response_model=BookingListResponse)
def list_all_bookings(
    limit: int = Query(0, ge=0, description="Maximum results (0 = no cap)"),
    status_filter: Optional[BookingStatus] = Query(None, alias="status"),
    admin: User = Depends(require_admin),
    bookings: BookingService = Depends(get_booking_service),
) -> BookingListResponse:
    return to_list_response(bookings.list_all(limit=limit, status=status_filter))
