"""Stripe adapter for charge authorizations, captures, releases and refunds.

A booking places a manual-capture hold. The hold is captured when the visit is
settled (completed, no-show or a cancellation that keeps part of the price) and
released when the whole price goes back to the customer.
"""
from __future__ import annotations

import stripe
from flask import current_app

from ..errors import DependencyUnavailable


def authorize_payment(
    amount_cents: int,
    *,
    appointment_id: int,
    customer_id: int,
    provider_id: int,
    idempotency_key: str,
) -> str | None:
    """Place a manual-capture PaymentIntent for the booking and return its id.

    Returns ``None`` when no processor is configured; the caller then keeps the
    appointment in the ``pending`` payment state.
    """
    stripe_key = current_app.config.get("STRIPE_SECRET_KEY")
    if not stripe_key:
        current_app.logger.warning("Stripe secret key not configured, appointment %s left payment pending", appointment_id)
        return None

    stripe.api_key = stripe_key
    try:
        intent = stripe.PaymentIntent.create(
            amount=int(amount_cents),
            currency=current_app.config.get("PAYMENT_CURRENCY", "usd"),
            capture_method="manual",
            metadata={
                "appointment_id": str(appointment_id),
                "customer_id": str(customer_id),
                "provider_id": str(provider_id),
            },
            idempotency_key=f"authorize-{idempotency_key}",
        )
    except stripe.StripeError as exc:
        current_app.logger.exception("Stripe API error while authorizing appointment %s", appointment_id, exc_info=exc)
        raise DependencyUnavailable("Payment authorization failed, please retry") from exc

    return intent.id


def capture_payment(payment_reference: str, amount_cents: int, *, appointment_id: int) -> str | None:
    """Capture ``amount_cents`` of the held PaymentIntent; the rest of the hold is released.

    Returns the id of the resulting charge.
    """
    stripe_key = current_app.config.get("STRIPE_SECRET_KEY")
    if not stripe_key:
        raise DependencyUnavailable("Payments are not currently available")

    stripe.api_key = stripe_key
    try:
        intent = stripe.PaymentIntent.capture(
            payment_reference,
            amount_to_capture=int(amount_cents),
            idempotency_key=f"capture-{appointment_id}",
        )
    except stripe.StripeError as exc:
        current_app.logger.exception("Stripe API error while capturing appointment %s", appointment_id, exc_info=exc)
        raise DependencyUnavailable("Payment could not be captured") from exc

    return intent.latest_charge


def release_payment(payment_reference: str, *, appointment_id: int) -> None:
    """Cancel the uncaptured PaymentIntent so nothing is charged."""
    stripe_key = current_app.config.get("STRIPE_SECRET_KEY")
    if not stripe_key:
        raise DependencyUnavailable("Payments are not currently available")

    stripe.api_key = stripe_key
    try:
        stripe.PaymentIntent.cancel(
            payment_reference,
            cancellation_reason="requested_by_customer",
            idempotency_key=f"release-{appointment_id}",
        )
    except stripe.StripeError as exc:
        current_app.logger.exception("Stripe API error while releasing appointment %s", appointment_id, exc_info=exc)
        raise DependencyUnavailable("Payment hold could not be released") from exc


def refund_payment(
    payment_reference: str,
    amount_cents: int,
    *,
    appointment_id: int,
    reason: str | None = None,
) -> str:
    """Send a refund instruction for ``amount_cents`` against a captured PaymentIntent."""
    stripe_key = current_app.config.get("STRIPE_SECRET_KEY")
    if not stripe_key:
        raise DependencyUnavailable("Payments are not currently available")

    stripe.api_key = stripe_key
    try:
        refund = stripe.Refund.create(
            payment_intent=payment_reference,
            amount=int(amount_cents),
            reason="requested_by_customer",
            metadata={
                "appointment_id": str(appointment_id),
                "cancellation_reason": reason or "No reason provided",
            },
            idempotency_key=f"refund-{appointment_id}",
        )
    except stripe.StripeError as exc:
        current_app.logger.exception("Stripe API error while refunding appointment %s", appointment_id, exc_info=exc)
        raise DependencyUnavailable("Refund could not be issued") from exc

    return refund.id
