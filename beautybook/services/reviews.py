"""Customer reviews of completed appointments."""
from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..errors import AlreadyReviewed, Forbidden, InvalidInput, InvalidStateTransition
from ..extensions import db
from ..models import Review
from .appointments import get_appointment
from .availability import get_provider


def create_review(appointment_id: int, customer_id: int, rating, comment: str | None) -> Review:
    appointment = get_appointment(appointment_id)
    if appointment.customer_id != customer_id:
        raise Forbidden("You can only review your own appointments")
    if appointment.status != "completed":
        raise InvalidStateTransition("Only completed appointments can be reviewed")

    # bool is an int subclass
    if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
        raise InvalidInput("Rating must be an integer between 1 and 5")

    comment = (comment or "").strip()
    min_length = current_app.config.get("REVIEW_MIN_COMMENT_LENGTH", 10)
    if len(comment) < min_length:
        raise InvalidInput(f"Comment must be at least {min_length} characters")

    if Review.query.filter_by(appointment_id=appointment_id).first() is not None:
        raise AlreadyReviewed()

    review = Review(
        appointment_id=appointment_id,
        provider_id=appointment.provider_id,
        customer_id=customer_id,
        rating=rating,
        comment=comment,
    )
    try:
        db.session.add(review)
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise AlreadyReviewed()
    return review


def list_reviews(provider_id: int) -> dict[str, object]:
    get_provider(provider_id)
    reviews = (
        Review.query.filter_by(provider_id=provider_id)
        .order_by(Review.created_at.desc(), Review.review_id.desc())
        .all()
    )
    average = round(sum(review.rating for review in reviews) / len(reviews), 2) if reviews else None
    return {
        "reviews": [review.to_dict() for review in reviews],
        "count": len(reviews),
        "average_rating": average,
    }
