"""Tests for cancellation and refund computation."""
from __future__ import annotations

from datetime import datetime, time, timedelta
from unittest.mock import MagicMock, patch

import pytest

from conftest import MONDAY, NOW, add_appointment
from beautybook.errors import Forbidden, InvalidStateTransition
from beautybook.extensions import db
from beautybook.models import Appointment, CancellationTier, Notification, SlotClaim, Transaction
from beautybook.services.booking import book_appointment, update_status
from beautybook.services.cancellation import (
    DEFAULT_TIERS,
    RefundTier,
    cancel_appointment,
    compute_refund,
    select_refund_percentage,
)

APPOINTMENT_START = datetime.combine(MONDAY, time(10, 0))


@pytest.fixture
def stripe_mock(app):
    app.config["STRIPE_SECRET_KEY"] = "sk_test_123"
    with patch("beautybook.services.payments.stripe") as mock_stripe:
        mock_refund = MagicMock()
        mock_refund.id = "re_test123"
        mock_stripe.Refund.create.return_value = mock_refund
        mock_stripe.PaymentIntent.capture.return_value.latest_charge = "ch_test123"
        mock_stripe.StripeError = Exception
        yield mock_stripe


@pytest.mark.parametrize(
    "hours, expected",
    [
        (48, 100),
        (24, 100),
        (23 + 59 / 60, 50),
        (2, 50),
        (1, 0),
        (0, 0),
        (-3, 0),
    ],
)
def test_default_tiers(hours, expected) -> None:
    assert select_refund_percentage(hours, DEFAULT_TIERS) == expected


def test_tier_order_does_not_matter() -> None:
    tiers = [RefundTier(2, 50), RefundTier(0, 0), RefundTier(24, 100)]
    assert select_refund_percentage(30, tiers) == 100
    assert select_refund_percentage(5, tiers) == 50


def test_no_matching_tier_means_no_refund() -> None:
    assert select_refund_percentage(10, [RefundTier(12, 100)]) == 0
    assert select_refund_percentage(10, []) == 0


def test_refund_amount_rounds_down() -> None:
    assert compute_refund(5000, 50) == 2500
    assert compute_refund(999, 50) == 499
    assert compute_refund(999, 0) == 0


def test_cancel_well_ahead_releases_the_hold(app, salon, stripe_mock) -> None:
    with app.app_context():
        appointment_id = add_appointment(salon, MONDAY, time(10, 0), payment_reference="pi_abc")

        result = cancel_appointment(
            appointment_id, salon.customer_id, reason="Sick", now=APPOINTMENT_START - timedelta(hours=30)
        )

        assert result.refund_percentage == 100
        assert result.refund_cents == 5000
        appointment = db.session.get(Appointment, appointment_id)
        assert appointment.status == "cancelled"
        assert appointment.cancellation_reason == "Sick"
        assert appointment.cancelled_by == salon.customer_id
        assert appointment.payment_status == "released"
        assert SlotClaim.query.filter_by(appointment_id=appointment_id).count() == 0
        release = Transaction.query.filter_by(appointment_id=appointment_id, kind="release").one()
        assert release.amount_cents == 5000
        assert Notification.query.filter_by(appointment_id=appointment_id, event_type="booking_cancelled").count() == 1

    stripe_mock.PaymentIntent.cancel.assert_called_once_with(
        "pi_abc", cancellation_reason="requested_by_customer", idempotency_key=f"release-{appointment_id}"
    )
    stripe_mock.PaymentIntent.capture.assert_not_called()
    stripe_mock.Refund.create.assert_not_called()


def test_cancel_just_inside_a_day_captures_the_kept_half(app, salon, stripe_mock) -> None:
    with app.app_context():
        appointment_id = add_appointment(salon, MONDAY, time(10, 0), payment_reference="pi_abc")

        result = cancel_appointment(
            appointment_id, salon.owner_id, now=APPOINTMENT_START - timedelta(hours=23, minutes=59)
        )

        assert result.refund_percentage == 50
        assert result.refund_cents == 2500
        assert db.session.get(Appointment, appointment_id).payment_status == "partially_refunded"
        capture = Transaction.query.filter_by(appointment_id=appointment_id, kind="capture").one()
        assert capture.amount_cents == 2500
        assert capture.gateway_payment_id == "ch_test123"

    stripe_mock.PaymentIntent.capture.assert_called_once_with(
        "pi_abc", amount_to_capture=2500, idempotency_key=f"capture-{appointment_id}"
    )
    stripe_mock.Refund.create.assert_not_called()


def test_late_cancellation_captures_the_full_price(app, salon, stripe_mock) -> None:
    with app.app_context():
        appointment_id = add_appointment(salon, MONDAY, time(10, 0), payment_reference="pi_abc")

        result = cancel_appointment(appointment_id, salon.customer_id, now=APPOINTMENT_START - timedelta(hours=1))

        assert result.refund_percentage == 0
        assert result.refund_cents == 0
        assert db.session.get(Appointment, appointment_id).payment_status == "captured"

    assert stripe_mock.PaymentIntent.capture.call_args.kwargs["amount_to_capture"] == 5000
    stripe_mock.Refund.create.assert_not_called()


def test_cancel_after_capture_refunds_the_charge(app, salon, stripe_mock) -> None:
    with app.app_context():
        appointment_id = add_appointment(salon, MONDAY, time(10, 0), payment_reference="pi_abc")
        db.session.get(Appointment, appointment_id).payment_status = "captured"
        db.session.commit()

        cancel_appointment(appointment_id, salon.customer_id, now=APPOINTMENT_START - timedelta(hours=30))

        appointment = db.session.get(Appointment, appointment_id)
        assert appointment.payment_status == "refunded"
        assert appointment.refund_reference == "re_test123"
        refund = Transaction.query.filter_by(appointment_id=appointment_id, kind="refund").one()
        assert refund.amount_cents == 5000

    kwargs = stripe_mock.Refund.create.call_args.kwargs
    assert kwargs["payment_intent"] == "pi_abc"
    assert kwargs["idempotency_key"] == f"refund-{appointment_id}"
    stripe_mock.PaymentIntent.cancel.assert_not_called()


def test_provider_tiers_override_defaults(app, salon) -> None:
    with app.app_context():
        db.session.add_all(
            [
                CancellationTier(provider_id=salon.provider_id, hours_before=48, refund_percentage=100),
                CancellationTier(provider_id=salon.provider_id, hours_before=12, refund_percentage=25),
            ]
        )
        db.session.commit()
        appointment_id = add_appointment(salon, MONDAY, time(10, 0))

        result = cancel_appointment(appointment_id, salon.customer_id, now=APPOINTMENT_START - timedelta(hours=30))

        assert result.refund_percentage == 25
        assert result.refund_cents == 1250


def test_cancelling_a_completed_appointment_changes_nothing(app, salon, stripe_mock) -> None:
    with app.app_context():
        appointment_id = add_appointment(salon, MONDAY, time(10, 0), status="completed", payment_reference="pi_abc")

        with pytest.raises(InvalidStateTransition):
            cancel_appointment(appointment_id, salon.customer_id, now=NOW)

        appointment = db.session.get(Appointment, appointment_id)
        assert appointment.status == "completed"
        assert appointment.payment_status == "authorized"
        assert appointment.refund_cents is None
        assert Transaction.query.count() == 0

    stripe_mock.Refund.create.assert_not_called()
    stripe_mock.PaymentIntent.capture.assert_not_called()


def test_second_cancel_is_rejected(app, salon) -> None:
    with app.app_context():
        appointment_id = add_appointment(salon, MONDAY, time(10, 0))
        cancel_appointment(appointment_id, salon.customer_id, now=NOW)

        with pytest.raises(InvalidStateTransition):
            cancel_appointment(appointment_id, salon.customer_id, now=NOW)


def test_strangers_cannot_cancel(app, salon) -> None:
    with app.app_context():
        appointment_id = add_appointment(salon, MONDAY, time(10, 0))

        with pytest.raises(Forbidden):
            cancel_appointment(appointment_id, salon.other_id, now=NOW)


def test_release_failure_keeps_the_cancellation(app, salon, stripe_mock) -> None:
    stripe_mock.PaymentIntent.cancel.side_effect = Exception("gateway timeout")
    with app.app_context():
        appointment_id = add_appointment(salon, MONDAY, time(10, 0), payment_reference="pi_abc")

        result = cancel_appointment(appointment_id, salon.customer_id, now=NOW)

        assert result.refund_percentage == 100
        appointment = db.session.get(Appointment, appointment_id)
        assert appointment.status == "cancelled"
        assert appointment.payment_status == "refund_failed"
        failed = Transaction.query.filter_by(appointment_id=appointment_id, kind="release").one()
        assert failed.status == "failed"


def test_cancelled_slot_can_be_booked_again(app, salon) -> None:
    with app.app_context():
        appointment, _ = book_appointment(
            salon.provider_id, salon.haircut_id, salon.customer_id, MONDAY, time(10, 0), "first", now=NOW
        )
        cancel_appointment(appointment.appointment_id, salon.customer_id, now=NOW)

        _, created = book_appointment(
            salon.provider_id, salon.haircut_id, salon.other_id, MONDAY, time(10, 0), "second", now=NOW
        )
        assert created is True


def test_cancel_through_status_update(app, salon) -> None:
    with app.app_context():
        appointment_id = add_appointment(salon, MONDAY, time(10, 0))

        appointment = update_status(appointment_id, "cancelled", salon.owner_id, now=NOW)

        assert appointment.status == "cancelled"
        assert appointment.refund_percentage == 100
