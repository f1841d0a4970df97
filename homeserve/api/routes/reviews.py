"""
Review routes.

- POST  /reviews                          review a completed booking
- GET   /reviews/service/{service_id}     public list with average rating
- GET   /reviews/my-reviews                caller's own reviews
- POST  /reviews/{id}/report               report a review (3 reports flag it)
- PATCH /reviews/{id}/moderate            admin moderation
- GET   /reviews/admin/reviews             admin list (filters, paging)
- GET   /reviews/admin/reviews/stats       admin counters
- GET   /reviews/admin/reviews/{id}        admin detail
- POST  /reviews/admin/reviews/{id}/respond  admin reply
- DELETE /reviews/admin/reviews/{id}       admin delete
"""
import math
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status
from pydantic import BaseModel, Field, model_validator

from homeserve.api.dependencies import get_current_user, get_review_service, require_admin
from homeserve.models.reviews import ReviewStatus
from homeserve.models.users import User
from homeserve.services.review_service import ReviewService


router = APIRouter(prefix="/reviews", tags=["reviews"])


class DetailedRatings(BaseModel):
    quality: Optional[int] = Field(None, ge=1, le=5)
    punctuality: Optional[int] = Field(None, ge=1, le=5)
    professionalism: Optional[int] = Field(None, ge=1, le=5)
    value_for_money: Optional[int] = Field(None, ge=1, le=5)


class CreateReviewRequest(BaseModel):
    booking_id: Optional[UUID] = None
    service_id: Optional[UUID] = None
    rating: int = Field(..., ge=1, le=5)
    comment: str = Field(..., min_length=10, max_length=1000)
    detailed_ratings: Optional[DetailedRatings] = None

    @model_validator(mode="after")
    def require_target(self) -> "CreateReviewRequest":
        if self.booking_id is None and self.service_id is None:
            raise ValueError("Either booking_id or service_id is required")
        return self


class ModerateReviewRequest(BaseModel):
    status: ReviewStatus
    admin_response: Optional[str] = Field(None, max_length=1000)
    moderation_note: Optional[str] = Field(None, max_length=500)


class ReportReviewRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)


class RespondReviewRequest(BaseModel):
    message: str = Field(..., min_length=10, max_length=500)


class ReviewResponse(BaseModel):
    id: UUID
    booking_id: UUID
    user_id: UUID
    service_id: UUID
    rating: int
    comment: str
    detailed_ratings: Optional[Dict[str, Optional[int]]] = None
    status: ReviewStatus
    admin_response: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class AdminReviewResponse(ReviewResponse):
    moderation_note: Optional[str] = None
    moderated_by: Optional[UUID] = None
    moderated_at: Optional[datetime] = None
    responded_by: Optional[UUID] = None
    responded_at: Optional[datetime] = None
    report_count: int = 0
    report_reasons: Optional[List[Dict[str, Any]]] = None


class MyReviewsResponse(BaseModel):
    count: int
    reviews: List[ReviewResponse]


class AdminReviewListResponse(BaseModel):
    reviews: List[AdminReviewResponse]
    total: int
    page: int
    page_size: int
    pages: int


class ReviewStatsResponse(BaseModel):
    total_reviews: int
    average_rating: float
    approved_reviews: int
    pending_reviews: int
    rejected_reviews: int
    flagged_reviews: int
    five_star_count: int
    one_star_count: int
    recent_reviews_count: int
    status_breakdown: Dict[str, int]


class ReviewListResponse(BaseModel):
    reviews: List[ReviewResponse]
    total: int
    page: int
    page_size: int
    average_rating: Optional[float] = None


@router.post("", response_model=ReviewResponse, status_code=status.HTTP_201_CREATED)
def create_review(
    request: CreateReviewRequest,
    user: User = Depends(get_current_user),
    reviews: ReviewService = Depends(get_review_service),
) -> ReviewResponse:
    review = reviews.create_review(
        caller=user,
        rating=request.rating,
        comment=request.comment,
        booking_id=request.booking_id,
        service_id=request.service_id,
        detailed_ratings=(
            request.detailed_ratings.model_dump(exclude_none=True) if request.detailed_ratings else None
        ),
    )
    return ReviewResponse.model_validate(review)


@router.get("/service/{service_id}", response_model=ReviewListResponse)
def list_service_reviews(
    service_id: UUID,
    rating: Optional[int] = Query(None, ge=1, le=5),
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    reviews: ReviewService = Depends(get_review_service),
) -> ReviewListResponse:
    """Approved reviews for a service, newest first."""
    items, total, average = reviews.list_for_service(
        service_id, rating=rating, page=page, page_size=page_size
    )
    return ReviewListResponse(
        reviews=[ReviewResponse.model_validate(r) for r in items],
        total=total,
        page=page,
        page_size=page_size,
        average_rating=average,
    )


@router.get("/my-reviews", response_model=MyReviewsResponse)
def list_my_reviews(
    user: User = Depends(get_current_user),
    reviews: ReviewService = Depends(get_review_service),
) -> MyReviewsResponse:
    """Every review the caller wrote, whatever its moderation status."""
    items = reviews.list_for_user(user)
    return MyReviewsResponse(count=len(items), reviews=[ReviewResponse.model_validate(r) for r in items])


@router.post("/{review_id}/report")
def report_review(
    review_id: UUID,
    request: ReportReviewRequest,
    user: User = Depends(get_current_user),
    reviews: ReviewService = Depends(get_review_service),
) -> Dict[str, Any]:
    reviews.report(review_id, user, request.reason)
    return {"success": True, "message": "Review reported successfully"}


@router.patch("/{review_id}/moderate", response_model=AdminReviewResponse)
def moderate_review(
    review_id: UUID,
    request: ModerateReviewRequest,
    admin: User = Depends(require_admin),
    reviews: ReviewService = Depends(get_review_service),
) -> AdminReviewResponse:
    review = reviews.moderate(
        review_id,
        request.status,
        admin,
        admin_response=request.admin_response,
        moderation_note=request.moderation_note,
    )
    return AdminReviewResponse.model_validate(review)


# ----- admin -----

@router.get("/admin/reviews", response_model=AdminReviewListResponse)
def list_reviews_admin(
    status_filter: Optional[ReviewStatus] = Query(None, alias="status"),
    rating: Optional[int] = Query(None, ge=1, le=5),
    search: Optional[str] = Query(None, max_length=100),
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    sort_order: Literal["asc", "desc"] = Query("desc"),
    admin: User = Depends(require_admin),
    reviews: ReviewService = Depends(get_review_service),
) -> AdminReviewListResponse:
    items, total = reviews.list_admin(
        status=status_filter,
        rating=rating,
        search=search,
        page=page,
        page_size=page_size,
        newest_first=sort_order == "desc",
    )
    return AdminReviewListResponse(
        reviews=[AdminReviewResponse.model_validate(r) for r in items],
        total=total,
        page=page,
        page_size=page_size,
        pages=math.ceil(total / page_size),
    )


@router.get("/admin/reviews/stats", response_model=ReviewStatsResponse)
def review_stats(
    admin: User = Depends(require_admin),
    reviews: ReviewService = Depends(get_review_service),
) -> ReviewStatsResponse:
    return ReviewStatsResponse(**reviews.platform_stats())


@router.get("/admin/reviews/{review_id}", response_model=AdminReviewResponse)
def get_review_admin(
    review_id: UUID,
    admin: User = Depends(require_admin),
    reviews: ReviewService = Depends(get_review_service),
) -> AdminReviewResponse:
    return AdminReviewResponse.model_validate(reviews.get_review(review_id))


@router.post("/admin/reviews/{review_id}/respond", response_model=AdminReviewResponse)
def respond_to_review(
    review_id: UUID,
    request: RespondReviewRequest,
    admin: User = Depends(require_admin),
    reviews: ReviewService = Depends(get_review_service),
) -> AdminReviewResponse:
    return AdminReviewResponse.model_validate(reviews.respond(review_id, admin, request.message))


@router.delete("/admin/reviews/{review_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_review(
    review_id: UUID,
    admin: User = Depends(require_admin),
    reviews: ReviewService = Depends(get_review_service),
) -> Response:
    reviews.delete(review_id, admin)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
