"""Tests for reviews of completed appointments."""
from __future__ import annotations

from datetime import time

import pytest

from conftest import MONDAY, add_appointment
from beautybook.errors import AlreadyReviewed, Forbidden, InvalidInput, InvalidStateTransition
from beautybook.services.reviews import create_review, list_reviews


def test_review_completed_appointment(app, salon) -> None:
    with app.app_context():
        appointment_id = add_appointment(salon, MONDAY, time(10, 0), status="completed")

        review = create_review(appointment_id, salon.customer_id, 5, "  Lovely cut, very friendly.  ")

        assert review.rating == 5
        assert review.comment == "Lovely cut, very friendly."
        assert review.provider_id == salon.provider_id


def test_only_one_review_per_appointment(app, salon) -> None:
    with app.app_context():
        appointment_id = add_appointment(salon, MONDAY, time(10, 0), status="completed")
        create_review(appointment_id, salon.customer_id, 4, "Great service overall")

        with pytest.raises(AlreadyReviewed):
            create_review(appointment_id, salon.customer_id, 1, "Changed my mind about it")


@pytest.mark.parametrize("rating", [0, 6, "5", 4.5, True, None])
def test_rating_must_be_an_integer_from_one_to_five(app, salon, rating) -> None:
    with app.app_context():
        appointment_id = add_appointment(salon, MONDAY, time(10, 0), status="completed")
        with pytest.raises(InvalidInput):
            create_review(appointment_id, salon.customer_id, rating, "Perfectly fine visit")


def test_comment_minimum_length(app, salon) -> None:
    with app.app_context():
        appointment_id = add_appointment(salon, MONDAY, time(10, 0), status="completed")
        with pytest.raises(InvalidInput):
            create_review(appointment_id, salon.customer_id, 5, "Nice")


def test_review_requires_completed_appointment_of_the_customer(app, salon) -> None:
    with app.app_context():
        confirmed = add_appointment(salon, MONDAY, time(10, 0))
        completed = add_appointment(salon, MONDAY, time(13, 0), status="completed")

        with pytest.raises(InvalidStateTransition):
            create_review(confirmed, salon.customer_id, 5, "Not even there yet")
        with pytest.raises(Forbidden):
            create_review(completed, salon.other_id, 5, "I was never a customer")


def test_list_reviews_newest_first_with_average(app, salon) -> None:
    with app.app_context():
        first = add_appointment(salon, MONDAY, time(10, 0), status="completed")
        second = add_appointment(salon, MONDAY, time(13, 0), status="completed")
        create_review(first, salon.customer_id, 5, "Absolutely wonderful")
        create_review(second, salon.customer_id, 2, "Running late this time")

        listing = list_reviews(salon.provider_id)

    assert listing["count"] == 2
    assert listing["average_rating"] == 3.5
    assert [review["rating"] for review in listing["reviews"]] == [2, 5]
