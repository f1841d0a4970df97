"""Review service.

Reviews attach 1:1 to completed bookings and go through admin moderation
before they are shown on a service page.
"""
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from homeserve.api.middleware.error_handler import (
    BadRequestException,
    ConflictException,
    ForbiddenException,
    InvalidTransitionException,
    NotFoundException,
)
from homeserve.lib.logging import get_logger
from homeserve.models.bookings import Booking, BookingStatus
from homeserve.models.reviews import Review, ReviewStatus
from homeserve.models.users import User


logger = get_logger(__name__)

# Reports after which a review is pulled back for moderation
AUTO_FLAG_REPORTS = 3
RECENT_DAYS = 30


class ReviewService:
    """Create, list and moderate reviews."""

    def __init__(self, session: Session):
        self.session = session

    def _load(self, review_id: UUID) -> Review:
        review = self.session.get(Review, review_id)
        if review is None:
            raise NotFoundException("Review", str(review_id))
        return review

    def _latest_completed_booking(self, caller: User, service_id: UUID) -> Optional[Booking]:
        stmt = (
            select(Booking)
            .where(
                Booking.customer_id == caller.id,
                Booking.service_id == service_id,
                Booking.status == BookingStatus.COMPLETED,
            )
            .order_by(Booking.created_at.desc())
        )
        return self.session.execute(stmt).scalars().first()

    def create_review(
        self,
        caller: User,
        rating: int,
        comment: str,
        booking_id: Optional[UUID] = None,
        service_id: Optional[UUID] = None,
        detailed_ratings: Optional[Dict[str, int]] = None,
    ) -> Review:
        """Review a completed booking the caller owns.

        Without a booking id, the caller's latest completed booking of
        `service_id` is used.
        """
        if booking_id is None:
            if service_id is None:
                raise BadRequestException("Either booking_id or service_id is required")
            booking = self._latest_completed_booking(caller, service_id)
            if booking is None:
                raise InvalidTransitionException(
                    "No completed booking for this service",
                    current_status="none",
                    action="review",
                )
        else:
            booking = self.session.get(Booking, booking_id)
            if booking is None:
                raise NotFoundException("Booking", str(booking_id))

        if booking.customer_id != caller.id:
            raise ForbiddenException("Access denied")

        if booking.status != BookingStatus.COMPLETED:
            raise InvalidTransitionException(
                "Can only review completed bookings",
                current_status=booking.status.value,
                action="review",
            )

        existing = self.session.execute(
            select(Review).where(Review.booking_id == booking.id)
        ).scalars().first()
        if existing is not None:
            raise ConflictException(
                "Booking has already been reviewed",
                details={"review_id": str(existing.id)},
            )

        review = Review(
            booking_id=booking.id,
            user_id=caller.id,
            service_id=booking.service_id,
            rating=rating,
            comment=comment,
            detailed_ratings=detailed_ratings,
            status=ReviewStatus.PENDING,
        )
        self.session.add(review)
        self.session.commit()
        self.session.refresh(review)

        logger.info(
            "Review created",
            extra={"review_id": str(review.id), "booking_id": str(booking.id), "rating": rating},
        )
        return review

    def list_for_service(
        self,
        service_id: UUID,
        status: ReviewStatus = ReviewStatus.APPROVED,
        rating: Optional[int] = None,
        page: int = 1,
        page_size: int = 10,
    ) -> Tuple[List[Review], int, Optional[float]]:
        """
        Returns:
            (reviews on this page, total matching, average rating of all matching)
        """
        conditions = [Review.service_id == service_id, Review.status == status]
        if rating is not None:
            conditions.append(Review.rating == rating)

        total, average = self.session.execute(
            select(func.count(Review.id), func.avg(Review.rating)).where(*conditions)
        ).one()

        stmt = (
            select(Review)
            .where(*conditions)
            .order_by(Review.created_at.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        reviews = list(self.session.execute(stmt).scalars().all())

        return reviews, total, round(float(average), 2) if average is not None else None

    def moderate(
        self,
        review_id: UUID,
        status: ReviewStatus,
        admin: User,
        admin_response: Optional[str] = None,
        moderation_note: Optional[str] = None,
    ) -> Review:
        if not admin.is_admin:
            raise ForbiddenException("Admin access required")

        review = self._load(review_id)

        now = datetime.now(timezone.utc)
        review.status = status
        review.moderation_note = moderation_note
        review.moderated_by = admin.id
        review.moderated_at = now
        if admin_response is not None:
            review.admin_response = admin_response
            review.responded_by = admin.id
            review.responded_at = now
        self.session.commit()
        self.session.refresh(review)

        logger.info(
            "Review moderated",
            extra={"review_id": str(review.id), "status": status.value, "admin_id": str(admin.id)},
        )
        return review

    # ----- customer: own reviews and reports -----

    def list_for_user(self, caller: User) -> List[Review]:
        stmt = (
            select(Review)
            .where(Review.user_id == caller.id)
            .order_by(Review.created_at.desc())
        )
        return list(self.session.execute(stmt).scalars().all())

    def report(self, review_id: UUID, caller: User, reason: str) -> Review:
        """Record a report; the third one flags the review for moderation."""
        review = self._load(review_id)

        reports = list(review.report_reasons or [])
        reports.append({
            "reason": reason,
            "reported_by": str(caller.id),
            "reported_at": datetime.now(timezone.utc).isoformat(),
        })
        # Reassigned so the JSON column is seen as changed
        review.report_reasons = reports
        review.report_count = (review.report_count or 0) + 1

        if review.report_count >= AUTO_FLAG_REPORTS and review.status != ReviewStatus.FLAGGED:
            review.status = ReviewStatus.FLAGGED
            logger.warning(
                "Review auto-flagged",
                extra={"review_id": str(review.id), "report_count": review.report_count},
            )

        self.session.commit()
        self.session.refresh(review)
        logger.info("Review reported", extra={"review_id": str(review.id), "reported_by": str(caller.id)})
        return review

    # ----- admin -----

    def list_admin(
        self,
        status: Optional[ReviewStatus] = None,
        rating: Optional[int] = None,
        search: Optional[str] = None,
        page: int = 1,
        page_size: int = 10,
        newest_first: bool = True,
    ) -> Tuple[List[Review], int]:
        """All reviews, any moderation status, filtered and paged."""
        conditions = []
        if status is not None:
            conditions.append(Review.status == status)
        if rating is not None:
            conditions.append(Review.rating == rating)
        if search:
            conditions.append(Review.comment.ilike(f"%{search}%"))

        total = self.session.execute(
            select(func.count(Review.id)).where(*conditions)
        ).scalar_one()

        order = Review.created_at.desc() if newest_first else Review.created_at.asc()
        stmt = (
            select(Review)
            .where(*conditions)
            .order_by(order)
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        return list(self.session.execute(stmt).scalars().all()), total

    def get_review(self, review_id: UUID) -> Review:
        return self._load(review_id)

    def platform_stats(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Counts by status and rating, plus reviews created in the last 30 days."""
        now = now or datetime.now(timezone.utc)

        total, average = self.session.execute(
            select(func.count(Review.id), func.avg(Review.rating))
        ).one()

        breakdown = {
            row_status.value: count
            for row_status, count in self.session.execute(
                select(Review.status, func.count(Review.id)).group_by(Review.status)
            ).all()
        }
        ratings = dict(
            self.session.execute(
                select(Review.rating, func.count(Review.id))
                .where(Review.rating.in_((1, 5)))
                .group_by(Review.rating)
            ).all()
        )
        recent = self.session.execute(
            select(func.count(Review.id)).where(Review.created_at >= now - timedelta(days=RECENT_DAYS))
        ).scalar_one()

        return {
            "total_reviews": total,
            "average_rating": round(float(average), 2) if average is not None else 0.0,
            "approved_reviews": breakdown.get(ReviewStatus.APPROVED.value, 0),
            "pending_reviews": breakdown.get(ReviewStatus.PENDING.value, 0),
            "rejected_reviews": breakdown.get(ReviewStatus.REJECTED.value, 0),
            "flagged_reviews": breakdown.get(ReviewStatus.FLAGGED.value, 0),
            "five_star_count": ratings.get(5, 0),
            "one_star_count": ratings.get(1, 0),
            "recent_reviews_count": recent,
            "status_breakdown": breakdown,
        }

    def respond(self, review_id: UUID, admin: User, message: str) -> Review:
        """Attach (or replace) the public admin reply."""
        if not admin.is_admin:
            raise ForbiddenException("Admin access required")

        review = self._load(review_id)
        review.admin_response = message
        review.responded_by = admin.id
        review.responded_at = datetime.now(timezone.utc)
        self.session.commit()
        self.session.refresh(review)

        logger.info("Review response added", extra={"review_id": str(review.id), "admin_id": str(admin.id)})
        return review

    def delete(self, review_id: UUID, admin: User) -> None:
        if not admin.is_admin:
            raise ForbiddenException("Admin access required")

        review = self._load(review_id)
        self.session.delete(review)
        self.session.commit()

        logger.warning(
            "Review deleted",
            extra={"audit": True, "review_id": str(review_id), "admin_id": str(admin.id)},
        )
