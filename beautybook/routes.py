"""HTTP routes for the BeautyBook booking API."""
from __future__ import annotations

import hmac
import random

import stripe
from flask import Blueprint, current_app, jsonify, request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from .auth import get_jwt_identity, require_identity
from .errors import CustomerUnauthenticated, Forbidden, InvalidInput
from .extensions import db
from .models import Appointment, Service, StaffMember
from .services.appointments import get_appointment
from .services.availability import generate_slots, get_provider
from .services.booking import APPOINTMENT_STATUSES, book_appointment, reschedule_appointment, update_status
from .services.cancellation import cancel_appointment, policy_tiers_for
from .services.notifications import send_pending_notifications
from .services.preferences import get_preferences, set_preferences
from .services.providers import (
    add_blocked_date,
    create_service,
    create_staff,
    remove_blocked_date,
    replace_cancellation_tiers,
    replace_working_hours,
    require_owner,
    update_booking_settings,
    update_service,
    update_staff,
)
from .services.reviews import create_review, list_reviews
from .services.settlement import apply_payment_event
from .services.staff_assignment import assign_appointment, assign_staff, staff_metrics
from .services.time_grid import parse_date, parse_time_of_day
from .services.waitlist import join_waitlist, leave_waitlist, list_waitlist

bp = Blueprint("api", __name__)


def _json_body() -> dict:
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise InvalidInput("Request body must be a JSON object")
    return payload


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _int_arg(name: str) -> int:
    value = request.args.get(name, type=int)
    if value is None:
        raise InvalidInput(f"{name} query parameter is required and must be an integer", field=name)
    return value


def _database_error(message: str, exc: SQLAlchemyError):
    db.session.rollback()
    current_app.logger.exception(message, exc_info=exc)
    return jsonify({"error": "database_error"}), 500


@bp.get("/health")
def health_check() -> tuple[dict[str, str], int]:
    """
    Expose a simple uptime check endpoint.
    ---
    tags:
      - Health
    responses:
      200:
        description: Service is healthy and running.
    """
    return jsonify({"status": "ok"}), 200


@bp.get("/db-health")
def database_health_check() -> tuple[dict[str, str], int]:
    """Verify the database connection."""
    try:
        db.session.execute(text("SELECT 1"))
        return jsonify({"database": "ok"}), 200
    except SQLAlchemyError as exc:
        return _database_error("Database health check failed", exc)


# Availability and booking


@bp.get("/providers/<int:provider_id>")
def get_provider_details(provider_id: int):
    return jsonify({"provider": get_provider(provider_id).to_dict()}), 200


@bp.get("/providers/<int:provider_id>/availability")
def provider_availability(provider_id: int):
    """Return the slot grid of a date, each slot marked available or not.
    ---
    tags:
      - Availability
    parameters:
      - in: path
        name: provider_id
        required: true
        schema:
          type: integer
      - in: query
        name: date
        required: true
        schema:
          type: string
          format: date
      - in: query
        name: service_id
        required: true
        schema:
          type: integer
    responses:
      200:
        description: Slots for the date
      400:
        description: Invalid query parameters
      404:
        description: Provider or service not found
      409:
        description: Service inactive
    """
    target_date = parse_date(request.args.get("date"), "date")
    service_id = _int_arg("service_id")
    try:
        slots = generate_slots(provider_id, target_date, service_id)
    except SQLAlchemyError as exc:
        return _database_error("Failed to load availability", exc)

    return (
        jsonify(
            {
                "provider_id": provider_id,
                "service_id": service_id,
                "date": target_date.isoformat(),
                "slots": [slot.to_dict() for slot in slots],
            }
        ),
        200,
    )


@bp.post("/appointments")
def create_appointment():
    """Book an appointment.
    ---
    tags:
      - Appointments
    parameters:
      - in: header
        name: Idempotency-Key
        required: false
        type: string
      - name: body
        in: body
        required: true
        schema:
          type: object
          properties:
            provider_id:
              type: integer
            service_id:
              type: integer
            date:
              type: string
              format: date
            start_time:
              type: string
              example: "10:30"
            notes:
              type: string
            idempotency_key:
              type: string
          required:
            - provider_id
            - service_id
            - date
            - start_time
    responses:
      201:
        description: Appointment created
      200:
        description: Replay of an earlier request with the same idempotency key
      401:
        description: Not authenticated
      409:
        description: Slot taken or service inactive
      422:
        description: Outside booking policy
      502:
        description: Payment processor unavailable
    """
    customer_id = require_identity()
    payload = _json_body()

    provider_id = payload.get("provider_id")
    service_id = payload.get("service_id")
    if not _is_int(provider_id) or not _is_int(service_id):
        raise InvalidInput("provider_id and service_id are required integers")

    appointment_date = parse_date(payload.get("date"), "date")
    start_time = parse_time_of_day(payload.get("start_time"), "start_time")
    idempotency_key = request.headers.get("Idempotency-Key") or payload.get("idempotency_key")
    notes = (payload.get("notes") or "").strip() or None

    try:
        appointment, created = book_appointment(
            provider_id,
            service_id,
            customer_id,
            appointment_date,
            start_time,
            idempotency_key,
            notes=notes,
        )
    except SQLAlchemyError as exc:
        return _database_error("Failed to create appointment", exc)

    return jsonify({"appointment": appointment.to_dict(), "created": created}), 201 if created else 200


@bp.get("/appointments")
def list_appointments():
    """List the caller's appointments, or a provider's when ``provider_id`` is given by its owner."""
    user_id = require_identity()
    try:
        provider_id = request.args.get("provider_id", type=int)
        if provider_id is not None:
            require_owner(provider_id, user_id)
            query = Appointment.query.filter(Appointment.provider_id == provider_id)
        else:
            query = Appointment.query.filter(Appointment.customer_id == user_id)

        status = request.args.get("status")
        if status:
            if status not in APPOINTMENT_STATUSES:
                raise InvalidInput(f"status must be one of: {', '.join(APPOINTMENT_STATUSES)}")
            query = query.filter(Appointment.status == status)
        date_arg = request.args.get("date")
        if date_arg:
            query = query.filter(Appointment.appointment_date == parse_date(date_arg, "date"))

        appointments = query.order_by(Appointment.appointment_date, Appointment.start_time).all()
        return jsonify({"appointments": [appointment.to_dict() for appointment in appointments]}), 200
    except SQLAlchemyError as exc:
        return _database_error("Failed to list appointments", exc)


@bp.get("/appointments/<int:appointment_id>")
def get_appointment_details(appointment_id: int):
    user_id = require_identity()
    try:
        appointment = get_appointment(appointment_id)
        staff_user_id = appointment.staff.user_id if appointment.staff else None
        if user_id not in (appointment.customer_id, appointment.provider.owner_id, staff_user_id):
            raise Forbidden("You do not have access to this appointment")
        return jsonify({"appointment": appointment.to_dict()}), 200
    except SQLAlchemyError as exc:
        return _database_error("Failed to load appointment", exc)


@bp.put("/appointments/<int:appointment_id>/reschedule")
def reschedule(appointment_id: int):
    """Move an appointment to a new date and start time.
    ---
    tags:
      - Appointments
    parameters:
      - in: body
        name: body
        required: true
        schema:
          properties:
            date:
              type: string
              format: date
            start_time:
              type: string
    responses:
      200:
        description: Appointment rescheduled
      404:
        description: Appointment not found
      409:
        description: Slot conflict or appointment not active
    """
    user_id = require_identity()
    payload = _json_body()
    new_date = parse_date(payload.get("date"), "date")
    new_start = parse_time_of_day(payload.get("start_time"), "start_time")
    try:
        appointment = reschedule_appointment(appointment_id, user_id, new_date, new_start)
    except SQLAlchemyError as exc:
        return _database_error("Failed to reschedule appointment", exc)
    return jsonify({"appointment": appointment.to_dict()}), 200


@bp.put("/appointments/<int:appointment_id>/status")
def change_status(appointment_id: int):
    user_id = require_identity()
    payload = _json_body()
    status = payload.get("status")
    if not isinstance(status, str) or not status:
        raise InvalidInput("status is required")
    try:
        appointment = update_status(appointment_id, status.strip().lower(), user_id)
    except SQLAlchemyError as exc:
        return _database_error("Failed to update appointment status", exc)
    return jsonify({"appointment": appointment.to_dict()}), 200


@bp.post("/appointments/<int:appointment_id>/cancel")
def cancel(appointment_id: int):
    """Cancel an appointment and issue the refund due under the provider's policy.
    ---
    tags:
      - Appointments
    parameters:
      - in: body
        name: body
        required: false
        schema:
          properties:
            reason:
              type: string
    responses:
      200:
        description: Cancelled, with refund percentage and amount
      403:
        description: Not the customer or provider
      409:
        description: Appointment already cancelled, completed or no-show
    """
    user_id = require_identity()
    payload = _json_body()
    reason = (payload.get("reason") or "").strip() or None
    try:
        result = cancel_appointment(appointment_id, user_id, reason=reason)
    except SQLAlchemyError as exc:
        return _database_error("Failed to cancel appointment", exc)
    return jsonify(result.to_dict()), 200


# Staff


@bp.post("/providers/<int:provider_id>/staff/assign")
def auto_assign_staff(provider_id: int):
    """Assign staff to every unassigned appointment of the provider.
    ---
    tags:
      - Staff
    parameters:
      - in: body
        name: body
        required: true
        schema:
          properties:
            strategy:
              type: string
              enum: [balanced, skill-based, workload, random]
            seed:
              type: integer
    responses:
      200:
        description: Assignment summary
      409:
        description: Provider has no active staff
    """
    user_id = require_identity()
    payload = _json_body()
    seed = payload.get("seed")
    rng = random.Random(seed) if _is_int(seed) else None
    try:
        require_owner(provider_id, user_id)
        result = assign_staff(provider_id, payload.get("strategy"), rng=rng)
    except SQLAlchemyError as exc:
        return _database_error("Failed to assign staff", exc)
    return jsonify(result.to_dict()), 200


@bp.patch("/appointments/<int:appointment_id>/assign")
def manual_assign(appointment_id: int):
    user_id = require_identity()
    payload = _json_body()
    staff_id = payload.get("staff_id")
    if staff_id is not None and not _is_int(staff_id):
        raise InvalidInput("staff_id must be an integer or null")
    try:
        appointment = assign_appointment(appointment_id, staff_id, user_id)
    except SQLAlchemyError as exc:
        return _database_error("Failed to assign staff member", exc)
    return jsonify({"appointment": appointment.to_dict()}), 200


@bp.get("/providers/<int:provider_id>/staff")
def list_staff(provider_id: int):
    try:
        get_provider(provider_id)
        query = StaffMember.query.filter_by(provider_id=provider_id)
        if request.args.get("include_inactive") != "true":
            query = query.filter_by(is_active=True)
        staff = query.order_by(StaffMember.staff_id).all()
        return jsonify({"staff": [member.to_dict() for member in staff]}), 200
    except SQLAlchemyError as exc:
        return _database_error("Failed to list staff", exc)


@bp.post("/providers/<int:provider_id>/staff")
def add_staff(provider_id: int):
    provider = require_owner(provider_id, require_identity())
    try:
        staff = create_staff(provider, _json_body())
    except SQLAlchemyError as exc:
        return _database_error("Failed to create staff member", exc)
    return jsonify({"staff": staff.to_dict()}), 201


@bp.put("/providers/<int:provider_id>/staff/<int:staff_id>")
def edit_staff(provider_id: int, staff_id: int):
    provider = require_owner(provider_id, require_identity())
    try:
        staff = update_staff(provider, staff_id, _json_body())
    except SQLAlchemyError as exc:
        return _database_error("Failed to update staff member", exc)
    return jsonify({"staff": staff.to_dict()}), 200


@bp.get("/providers/<int:provider_id>/staff/<int:staff_id>/metrics")
def get_staff_metrics(provider_id: int, staff_id: int):
    require_owner(provider_id, require_identity())
    start = parse_date(request.args.get("start"), "start")
    end = parse_date(request.args.get("end"), "end")
    staff = db.session.get(StaffMember, staff_id)
    if staff is None or staff.provider_id != provider_id:
        return jsonify({"error": "staff_not_found", "message": "Staff member not found"}), 404
    try:
        metrics = staff_metrics(staff_id, start, end)
    except SQLAlchemyError as exc:
        return _database_error("Failed to compute staff metrics", exc)
    return jsonify({"metrics": metrics}), 200


# Services


@bp.get("/providers/<int:provider_id>/services")
def list_services(provider_id: int):
    try:
        provider = get_provider(provider_id)
        query = Service.query.filter_by(provider_id=provider.provider_id)
        include_inactive = request.args.get("include_inactive") == "true" and get_jwt_identity() == provider.owner_id
        if not include_inactive:
            query = query.filter_by(is_active=True)
        services = query.order_by(Service.name).all()
        return jsonify({"services": [service.to_dict() for service in services]}), 200
    except SQLAlchemyError as exc:
        return _database_error("Failed to list services", exc)


@bp.post("/providers/<int:provider_id>/services")
def add_service(provider_id: int):
    provider = require_owner(provider_id, require_identity())
    try:
        service = create_service(provider, _json_body())
    except SQLAlchemyError as exc:
        return _database_error("Failed to create service", exc)
    return jsonify({"service": service.to_dict()}), 201


@bp.put("/providers/<int:provider_id>/services/<int:service_id>")
def edit_service(provider_id: int, service_id: int):
    provider = require_owner(provider_id, require_identity())
    try:
        service = update_service(provider, service_id, _json_body())
    except SQLAlchemyError as exc:
        return _database_error("Failed to update service", exc)
    return jsonify({"service": service.to_dict()}), 200


# Provider schedule and policy


@bp.get("/providers/<int:provider_id>/working-hours")
def get_working_hours(provider_id: int):
    provider = get_provider(provider_id)
    return jsonify({"working_hours": [rule.to_dict() for rule in provider.working_hours]}), 200


@bp.put("/providers/<int:provider_id>/working-hours")
def put_working_hours(provider_id: int):
    """Replace the weekly working hours.
    ---
    tags:
      - Providers
    parameters:
      - in: body
        name: body
        required: true
        schema:
          properties:
            working_hours:
              type: array
              items:
                type: object
                properties:
                  day_of_week:
                    type: integer
                    description: 0=Monday ... 6=Sunday
                  open_time:
                    type: string
                  close_time:
                    type: string
                  is_closed:
                    type: boolean
    responses:
      200:
        description: Working hours replaced
    """
    provider = require_owner(provider_id, require_identity())
    try:
        rows = replace_working_hours(provider, _json_body().get("working_hours"))
    except SQLAlchemyError as exc:
        return _database_error("Failed to update working hours", exc)
    return jsonify({"working_hours": [row.to_dict() for row in rows]}), 200


@bp.get("/providers/<int:provider_id>/blocked-dates")
def get_blocked_dates(provider_id: int):
    provider = get_provider(provider_id)
    return jsonify({"blocked_dates": [block.to_dict() for block in provider.blocked_dates]}), 200


@bp.post("/providers/<int:provider_id>/blocked-dates")
def post_blocked_date(provider_id: int):
    provider = require_owner(provider_id, require_identity())
    try:
        block = add_blocked_date(provider, _json_body())
    except SQLAlchemyError as exc:
        return _database_error("Failed to add blocked date", exc)
    return jsonify({"blocked_date": block.to_dict()}), 201


@bp.delete("/providers/<int:provider_id>/blocked-dates/<int:blocked_date_id>")
def delete_blocked_date(provider_id: int, blocked_date_id: int):
    provider = require_owner(provider_id, require_identity())
    try:
        remove_blocked_date(provider, blocked_date_id)
    except SQLAlchemyError as exc:
        return _database_error("Failed to remove blocked date", exc)
    return jsonify({"message": "Blocked date removed"}), 200


@bp.get("/providers/<int:provider_id>/booking-settings")
def get_booking_settings(provider_id: int):
    provider = get_provider(provider_id)
    return jsonify({"booking_settings": provider.to_dict()["booking_settings"]}), 200


@bp.put("/providers/<int:provider_id>/booking-settings")
def put_booking_settings(provider_id: int):
    provider = require_owner(provider_id, require_identity())
    try:
        provider = update_booking_settings(provider, _json_body())
    except SQLAlchemyError as exc:
        return _database_error("Failed to update booking settings", exc)
    return jsonify({"booking_settings": provider.to_dict()["booking_settings"]}), 200


@bp.get("/providers/<int:provider_id>/cancellation-policy")
def get_cancellation_policy(provider_id: int):
    provider = get_provider(provider_id)
    tiers = sorted(policy_tiers_for(provider), key=lambda tier: tier.hours_before, reverse=True)
    return (
        jsonify(
            {
                "is_default": not provider.cancellation_tiers,
                "tiers": [
                    {"hours_before": tier.hours_before, "refund_percentage": tier.refund_percentage}
                    for tier in tiers
                ],
            }
        ),
        200,
    )


@bp.put("/providers/<int:provider_id>/cancellation-policy")
def put_cancellation_policy(provider_id: int):
    provider = require_owner(provider_id, require_identity())
    try:
        rows = replace_cancellation_tiers(provider, _json_body().get("tiers"))
    except SQLAlchemyError as exc:
        return _database_error("Failed to update cancellation policy", exc)
    return jsonify({"is_default": not rows, "tiers": [row.to_dict() for row in rows]}), 200


# Reviews


@bp.post("/appointments/<int:appointment_id>/review")
def review_appointment(appointment_id: int):
    """Leave a review for a completed appointment.
    ---
    tags:
      - Reviews
    parameters:
      - in: body
        name: body
        required: true
        schema:
          properties:
            rating:
              type: integer
              minimum: 1
              maximum: 5
            comment:
              type: string
    responses:
      201:
        description: Review created
      409:
        description: Appointment not completed or already reviewed
    """
    customer_id = require_identity()
    payload = _json_body()
    try:
        review = create_review(appointment_id, customer_id, payload.get("rating"), payload.get("comment"))
    except SQLAlchemyError as exc:
        return _database_error("Failed to create review", exc)
    return jsonify({"review": review.to_dict()}), 201


@bp.get("/providers/<int:provider_id>/reviews")
def provider_reviews(provider_id: int):
    try:
        return jsonify(list_reviews(provider_id)), 200
    except SQLAlchemyError as exc:
        return _database_error("Failed to list reviews", exc)


# Preferences


@bp.get("/users/me/preferences")
def my_preferences():
    user_id = require_identity()
    return jsonify({"preferences": get_preferences(user_id)}), 200


@bp.put("/users/me/preferences")
def update_my_preferences():
    user_id = require_identity()
    payload = _json_body()
    values = payload.get("preferences", payload)
    try:
        preferences = set_preferences(user_id, values)
    except SQLAlchemyError as exc:
        return _database_error("Failed to save preferences", exc)
    return jsonify({"preferences": preferences}), 200


# Waitlist


@bp.post("/waitlist")
def join_waitlist_endpoint():
    """Join the waitlist for a provider's service on a date.
    ---
    tags:
      - Waitlist
    parameters:
      - in: body
        name: body
        required: true
        schema:
          properties:
            provider_id:
              type: integer
            service_id:
              type: integer
            date:
              type: string
              format: date
            start_time:
              type: string
              description: Optional start of the preferred window
            end_time:
              type: string
              description: Optional end of the preferred window
            notes:
              type: string
          required:
            - provider_id
            - service_id
            - date
    responses:
      201:
        description: Added to the waitlist
      400:
        description: Invalid input or past date
      409:
        description: Already waiting for this service on this date
    """
    customer_id = require_identity()
    payload = _json_body()

    provider_id = payload.get("provider_id")
    service_id = payload.get("service_id")
    if not _is_int(provider_id) or not _is_int(service_id):
        raise InvalidInput("provider_id and service_id are required integers")

    waitlist_date = parse_date(payload.get("date"), "date")
    start_time = payload.get("start_time")
    end_time = payload.get("end_time")
    notes = (payload.get("notes") or "").strip() or None

    try:
        entry = join_waitlist(
            customer_id,
            provider_id,
            service_id,
            waitlist_date,
            start_time=parse_time_of_day(start_time, "start_time") if start_time else None,
            end_time=parse_time_of_day(end_time, "end_time") if end_time else None,
            notes=notes,
        )
    except SQLAlchemyError as exc:
        return _database_error("Failed to join waitlist", exc)
    return (
        jsonify(
            {
                "waitlist_entry": entry.to_dict(),
                "message": "Added to waitlist. We will notify you when a slot becomes available.",
            }
        ),
        201,
    )


@bp.get("/waitlist")
def my_waitlist():
    customer_id = require_identity()
    try:
        entries = list_waitlist(customer_id)
    except SQLAlchemyError as exc:
        return _database_error("Failed to load waitlist", exc)
    return jsonify({"waitlist_entries": [entry.to_dict() for entry in entries]}), 200


@bp.delete("/waitlist/<int:waitlist_id>")
def leave_waitlist_endpoint(waitlist_id: int):
    customer_id = require_identity()
    try:
        entry = leave_waitlist(waitlist_id, customer_id)
    except SQLAlchemyError as exc:
        return _database_error("Failed to cancel waitlist entry", exc)
    return jsonify({"waitlist_entry": entry.to_dict(), "message": "Waitlist entry cancelled"}), 200


# Scheduled jobs


@bp.get("/cron/send-reminders")
def cron_send_reminders():
    """Deliver due reminders and retry failed notifications.

    When ``CRON_SECRET`` is configured the caller must send it as a bearer token.
    """
    secret = current_app.config.get("CRON_SECRET")
    if secret:
        supplied = request.headers.get("Authorization", "")
        if not hmac.compare_digest(supplied.encode(), f"Bearer {secret}".encode()):
            raise CustomerUnauthenticated("Invalid cron secret")

    try:
        summary = send_pending_notifications()
    except SQLAlchemyError as exc:
        return _database_error("Notification sweep failed", exc)
    return jsonify({"success": True, **summary}), 200



# Payments


@bp.post("/webhooks/stripe")
def stripe_webhook():
    """Stripe webhook endpoint for changes to payment holds made on Stripe's side.
    ---
    tags:
      - Payments
    parameters:
      - name: Stripe-Signature
        in: header
        required: true
        type: string
        description: Stripe signature for webhook verification
      - name: body
        in: body
        required: true
        description: Stripe webhook event payload
    responses:
      200:
        description: Webhook event received
      400:
        description: Invalid payload or signature
    """
    payload = request.get_data()
    sig_header = request.headers.get("Stripe-Signature")
    webhook_secret = current_app.config.get("STRIPE_WEBHOOK_SECRET")

    if not webhook_secret:
        current_app.logger.error("Stripe webhook secret not configured, event ignored")
        # 200 stops Stripe from retrying a configuration problem
        return jsonify({"received": True}), 200

    try:
        event = stripe.Webhook.construct_event(payload, sig_header, webhook_secret)
    except ValueError:
        current_app.logger.warning("Invalid webhook payload")
        return jsonify({"error": "invalid_payload"}), 400
    except stripe.SignatureVerificationError:
        current_app.logger.warning("Invalid signature for webhook")
        return jsonify({"error": "invalid_signature"}), 400

    try:
        apply_payment_event(event)
    except SQLAlchemyError as exc:
        return _database_error("Failed to apply payment event", exc)
    return jsonify({"received": True}), 200
