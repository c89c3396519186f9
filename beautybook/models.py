"""Database models for the BeautyBook booking engine."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

from .extensions import db


def utc_now() -> datetime:
    """Return a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def utc_naive(value: datetime | None = None) -> datetime:
    """Return ``value`` (default: now) as a naive UTC datetime for storage and comparison."""
    value = value or utc_now()
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


ACTIVE_STATUSES = ("scheduled", "confirmed")
TERMINAL_STATUSES = ("completed", "cancelled", "no-show")


class User(db.Model):
    __tablename__ = "users"

    user_id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    email = db.Column(db.String(255), unique=True, nullable=False)
    role = db.Column(
        db.Enum(
            "customer",
            "provider",
            "staff",
            "admin",
            name="user_role",
            native_enum=False,
            validate_strings=True,
        ),
        nullable=False,
        server_default="customer",
    )
    phone = db.Column(db.String(30))
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(
        db.DateTime,
        nullable=False,
        default=utc_now,
        onupdate=utc_now,
    )

    providers = db.relationship("Provider", back_populates="owner", lazy="dynamic")
    preferences = db.relationship("UserPreference", back_populates="user", lazy="dynamic")

    def to_dict_basic(self) -> dict[str, object]:
        return {
            "id": self.user_id,
            "name": self.name,
            "email": self.email,
            "role": self.role,
            "phone": self.phone,
        }


class Provider(db.Model):
    """A business taking bookings, with its booking constraints."""

    __tablename__ = "providers"
    __table_args__ = (
        db.CheckConstraint("buffer_minutes >= 0", name="ck_provider_buffer"),
        db.CheckConstraint("min_notice_minutes >= 0", name="ck_provider_notice"),
        db.CheckConstraint("max_advance_days > 0", name="ck_provider_advance"),
    )

    provider_id = db.Column(db.Integer, primary_key=True)
    owner_id = db.Column(db.Integer, db.ForeignKey("users.user_id"), nullable=False)
    name = db.Column(db.String(150), nullable=False)
    description = db.Column(db.Text)
    timezone = db.Column(db.String(64), nullable=False, default="UTC")
    address = db.Column(db.String(255))
    phone = db.Column(db.String(30))
    buffer_minutes = db.Column(db.Integer, nullable=False, default=0)
    min_notice_minutes = db.Column(db.Integer, nullable=False, default=120)
    max_advance_days = db.Column(db.Integer, nullable=False, default=90)
    auto_confirm = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(
        db.DateTime,
        nullable=False,
        default=utc_now,
        onupdate=utc_now,
    )

    owner = db.relationship("User", back_populates="providers")
    working_hours = db.relationship(
        "WorkingHours",
        back_populates="provider",
        order_by="WorkingHours.day_of_week",
        cascade="all, delete-orphan",
    )
    blocked_dates = db.relationship(
        "BlockedDate",
        back_populates="provider",
        order_by="BlockedDate.blocked_on",
        cascade="all, delete-orphan",
    )
    cancellation_tiers = db.relationship(
        "CancellationTier",
        back_populates="provider",
        cascade="all, delete-orphan",
    )

    def hours_for_weekday(self, day_of_week: int) -> "WorkingHours | None":
        for rule in self.working_hours:
            if rule.day_of_week == day_of_week:
                return rule
        return None

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.provider_id,
            "owner_id": self.owner_id,
            "name": self.name,
            "description": self.description,
            "timezone": self.timezone,
            "address": self.address,
            "phone": self.phone,
            "booking_settings": {
                "buffer_minutes": self.buffer_minutes,
                "min_notice_minutes": self.min_notice_minutes,
                "max_advance_days": self.max_advance_days,
                "auto_confirm": bool(self.auto_confirm),
            },
            "working_hours": [rule.to_dict() for rule in self.working_hours],
        }


class WorkingHours(db.Model):
    """Opening hours of a provider for one weekday (0=Monday ... 6=Sunday)."""

    __tablename__ = "working_hours"
    __table_args__ = (
        db.UniqueConstraint("provider_id", "day_of_week", name="uq_working_hours_day"),
        db.CheckConstraint("day_of_week BETWEEN 0 AND 6", name="ck_working_hours_day"),
    )

    working_hours_id = db.Column(db.Integer, primary_key=True)
    provider_id = db.Column(db.Integer, db.ForeignKey("providers.provider_id"), nullable=False)
    day_of_week = db.Column(db.Integer, nullable=False)
    open_time = db.Column(db.Time)
    close_time = db.Column(db.Time)
    is_closed = db.Column(db.Boolean, nullable=False, default=False)

    provider = db.relationship("Provider", back_populates="working_hours")

    def to_dict(self) -> dict[str, object]:
        return {
            "day_of_week": self.day_of_week,
            "is_closed": bool(self.is_closed),
            "open_time": self.open_time.strftime("%H:%M") if self.open_time else None,
            "close_time": self.close_time.strftime("%H:%M") if self.close_time else None,
        }


class BlockedDate(db.Model):
    """A full-day or partial block on a provider's calendar."""

    __tablename__ = "blocked_dates"

    blocked_date_id = db.Column(db.Integer, primary_key=True)
    provider_id = db.Column(db.Integer, db.ForeignKey("providers.provider_id"), nullable=False)
    blocked_on = db.Column(db.Date, nullable=False, index=True)
    start_time = db.Column(db.Time)
    end_time = db.Column(db.Time)
    reason = db.Column(db.String(255))
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)

    provider = db.relationship("Provider", back_populates="blocked_dates")

    @property
    def is_full_day(self) -> bool:
        return self.start_time is None or self.end_time is None

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.blocked_date_id,
            "provider_id": self.provider_id,
            "date": self.blocked_on.isoformat(),
            "start_time": self.start_time.strftime("%H:%M") if self.start_time else None,
            "end_time": self.end_time.strftime("%H:%M") if self.end_time else None,
            "full_day": self.is_full_day,
            "reason": self.reason,
        }


class CancellationTier(db.Model):
    """One refund tier of a provider's cancellation policy."""

    __tablename__ = "cancellation_tiers"
    __table_args__ = (
        db.UniqueConstraint("provider_id", "hours_before", name="uq_cancellation_tier"),
        db.CheckConstraint("hours_before >= 0", name="ck_tier_hours"),
        db.CheckConstraint("refund_percentage BETWEEN 0 AND 100", name="ck_tier_percentage"),
    )

    tier_id = db.Column(db.Integer, primary_key=True)
    provider_id = db.Column(db.Integer, db.ForeignKey("providers.provider_id"), nullable=False)
    hours_before = db.Column(db.Float, nullable=False)
    refund_percentage = db.Column(db.Integer, nullable=False)

    provider = db.relationship("Provider", back_populates="cancellation_tiers")

    def to_dict(self) -> dict[str, object]:
        return {
            "hours_before": self.hours_before,
            "refund_percentage": self.refund_percentage,
        }


class Service(db.Model):
    """Services offered by a provider."""

    __tablename__ = "services"
    __table_args__ = (
        db.CheckConstraint("price_cents > 0", name="ck_service_price"),
        db.CheckConstraint("duration_minutes > 0", name="ck_service_duration"),
    )

    service_id = db.Column(db.Integer, primary_key=True)
    provider_id = db.Column(db.Integer, db.ForeignKey("providers.provider_id"), nullable=False)
    name = db.Column(db.String(150), nullable=False)
    description = db.Column(db.Text)
    category = db.Column(db.String(100))
    price_cents = db.Column(db.Integer, nullable=False)
    duration_minutes = db.Column(db.Integer, nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(
        db.DateTime,
        nullable=False,
        default=utc_now,
        onupdate=utc_now,
    )

    provider = db.relationship("Provider")

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.service_id,
            "provider_id": self.provider_id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "price_cents": self.price_cents,
            "price_dollars": self.price_cents / 100.0,
            "duration_minutes": self.duration_minutes,
            "is_active": bool(self.is_active),
        }


class StaffMember(db.Model):
    __tablename__ = "staff"

    staff_id = db.Column(db.Integer, primary_key=True)
    provider_id = db.Column(db.Integer, db.ForeignKey("providers.provider_id"), nullable=False)
    user_id = db.Column(db.Integer, db.ForeignKey("users.user_id"), nullable=True)
    name = db.Column(db.String(100), nullable=False)
    title = db.Column(db.String(100))
    specialties = db.Column(db.JSON, nullable=False, default=list)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    # Generalist used when no specialty matches.
    is_default = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(
        db.DateTime,
        nullable=False,
        default=utc_now,
        onupdate=utc_now,
    )

    provider = db.relationship("Provider")
    user = db.relationship("User")

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.staff_id,
            "provider_id": self.provider_id,
            "user_id": self.user_id,
            "name": self.name,
            "title": self.title,
            "specialties": list(self.specialties or []),
            "is_active": bool(self.is_active),
            "is_default": bool(self.is_default),
        }


class Appointment(db.Model):
    """A customer booking; duration, price and buffer are snapshotted at booking time."""

    __tablename__ = "appointments"

    appointment_id = db.Column(db.Integer, primary_key=True)
    provider_id = db.Column(db.Integer, db.ForeignKey("providers.provider_id"), nullable=False)
    service_id = db.Column(db.Integer, db.ForeignKey("services.service_id"), nullable=False)
    customer_id = db.Column(db.Integer, db.ForeignKey("users.user_id"), nullable=False)
    staff_id = db.Column(db.Integer, db.ForeignKey("staff.staff_id"), nullable=True)
    appointment_date = db.Column(db.Date, nullable=False, index=True)
    start_time = db.Column(db.Time, nullable=False)
    end_time = db.Column(db.Time, nullable=False)
    duration_minutes = db.Column(db.Integer, nullable=False)
    price_cents = db.Column(db.Integer, nullable=False)
    buffer_minutes = db.Column(db.Integer, nullable=False, default=0)
    status = db.Column(
        db.Enum(
            "scheduled",
            "confirmed",
            "completed",
            "cancelled",
            "no-show",
            name="appointment_status",
            native_enum=False,
            validate_strings=True,
        ),
        nullable=False,
        server_default="scheduled",
    )
    payment_status = db.Column(
        db.Enum(
            "pending",
            "authorized",
            "captured",
            "released",
            "expired",
            "refunded",
            "partially_refunded",
            "capture_failed",
            "refund_failed",
            name="payment_status",
            native_enum=False,
            validate_strings=True,
        ),
        nullable=False,
        server_default="pending",
    )
    payment_reference = db.Column(db.String(255))
    refund_cents = db.Column(db.Integer)
    refund_percentage = db.Column(db.Integer)
    refund_reference = db.Column(db.String(255))
    cancellation_reason = db.Column(db.Text)
    cancelled_by = db.Column(db.Integer, db.ForeignKey("users.user_id"), nullable=True)
    cancelled_at = db.Column(db.DateTime)
    idempotency_key = db.Column(db.String(128), unique=True, nullable=False)
    notes = db.Column(db.Text)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)
    updated_at = db.Column(
        db.DateTime,
        nullable=False,
        default=utc_now,
        onupdate=utc_now,
    )

    provider = db.relationship("Provider")
    service = db.relationship("Service")
    customer = db.relationship("User", foreign_keys=[customer_id])
    staff = db.relationship("StaffMember")

    @property
    def starts_at(self) -> datetime:
        return datetime.combine(self.appointment_date, self.start_time)

    @property
    def ends_at(self) -> datetime:
        return self.starts_at + timedelta(minutes=self.duration_minutes)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.appointment_id,
            "provider_id": self.provider_id,
            "provider_name": self.provider.name if self.provider else None,
            "service_id": self.service_id,
            "service": {
                "id": self.service.service_id,
                "name": self.service.name,
            } if self.service else None,
            "customer_id": self.customer_id,
            "customer": self.customer.to_dict_basic() if self.customer else None,
            "staff_id": self.staff_id,
            "staff_name": self.staff.name if self.staff else None,
            "date": self.appointment_date.isoformat(),
            "start_time": self.start_time.strftime("%H:%M"),
            "end_time": self.end_time.strftime("%H:%M"),
            "starts_at": self.starts_at.isoformat(),
            "ends_at": self.ends_at.isoformat(),
            "duration_minutes": self.duration_minutes,
            "price_cents": self.price_cents,
            "amount_dollars": self.price_cents / 100.0,
            "status": self.status,
            "payment_status": self.payment_status,
            "refund_cents": self.refund_cents,
            "refund_percentage": self.refund_percentage,
            "cancellation_reason": self.cancellation_reason,
            "cancelled_at": self.cancelled_at.isoformat() if self.cancelled_at else None,
            "notes": self.notes,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class SlotClaim(db.Model):
    """One minute of a provider's day held by an active appointment.

    An appointment claims every minute of ``[start, end + buffer)``. The unique
    constraint makes two overlapping bookings impossible to commit together.
    """

    __tablename__ = "slot_claims"
    __table_args__ = (
        db.UniqueConstraint("provider_id", "claim_date", "minute", name="uq_slot_claim"),
    )

    claim_id = db.Column(db.Integer, primary_key=True)
    provider_id = db.Column(db.Integer, db.ForeignKey("providers.provider_id"), nullable=False)
    appointment_id = db.Column(
        db.Integer,
        db.ForeignKey("appointments.appointment_id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    claim_date = db.Column(db.Date, nullable=False)
    minute = db.Column(db.Integer, nullable=False)


class Review(db.Model):
    """Rating left by a customer for a completed appointment."""

    __tablename__ = "reviews"
    __table_args__ = (
        db.CheckConstraint("rating BETWEEN 1 AND 5", name="ck_review_rating"),
    )

    review_id = db.Column(db.Integer, primary_key=True)
    appointment_id = db.Column(
        db.Integer, db.ForeignKey("appointments.appointment_id"), unique=True, nullable=False
    )
    provider_id = db.Column(db.Integer, db.ForeignKey("providers.provider_id"), nullable=False)
    customer_id = db.Column(db.Integer, db.ForeignKey("users.user_id"), nullable=False)
    rating = db.Column(db.Integer, nullable=False)
    comment = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)

    appointment = db.relationship("Appointment")
    customer = db.relationship("User")

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.review_id,
            "appointment_id": self.appointment_id,
            "provider_id": self.provider_id,
            "customer_id": self.customer_id,
            "customer_name": self.customer.name if self.customer else "Anonymous",
            "rating": self.rating,
            "comment": self.comment,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class Transaction(db.Model):
    """Payment collaborator calls made for an appointment."""

    __tablename__ = "transactions"

    transaction_id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.user_id"), nullable=False)
    appointment_id = db.Column(db.Integer, db.ForeignKey("appointments.appointment_id"), nullable=False)
    kind = db.Column(
        db.Enum(
            "authorization",
            "capture",
            "release",
            "refund",
            name="transaction_kind",
            native_enum=False,
            validate_strings=True,
        ),
        nullable=False,
    )
    amount_cents = db.Column(db.Integer, nullable=False)
    # Payment gateway identifier (Stripe payment intent, charge or refund id)
    gateway_payment_id = db.Column(db.String(255), nullable=True, unique=True)
    status = db.Column(db.String(50), nullable=False, default="succeeded")  # succeeded, failed
    error = db.Column(db.Text)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)

    appointment = db.relationship("Appointment")

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.transaction_id,
            "user_id": self.user_id,
            "appointment_id": self.appointment_id,
            "kind": self.kind,
            "amount_cents": self.amount_cents,
            "amount_dollars": self.amount_cents / 100.0,
            "status": self.status,
            "gateway_payment_id": self.gateway_payment_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class Notification(db.Model):
    """Outbound email/SMS message and its delivery bookkeeping."""

    __tablename__ = "notifications"

    notification_id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.user_id"), nullable=False)
    appointment_id = db.Column(db.Integer, db.ForeignKey("appointments.appointment_id"), nullable=True)
    event_type = db.Column(
        db.Enum(
            "booking_created",
            "booking_cancelled",
            "booking_rescheduled",
            "reminder_due",
            "waitlist_slot_available",
            name="notification_event",
            native_enum=False,
            validate_strings=True,
        ),
        nullable=False,
    )
    channel = db.Column(
        db.Enum("email", "sms", name="notification_channel", native_enum=False, validate_strings=True),
        nullable=False,
    )
    locale = db.Column(db.String(10), nullable=False, default="en")
    destination = db.Column(db.String(255), nullable=False)
    subject = db.Column(db.String(255))
    body_html = db.Column(db.Text)
    body_text = db.Column(db.Text, nullable=False)
    status = db.Column(
        db.Enum(
            "pending",
            "sent",
            "failed",
            "skipped",
            name="notification_status",
            native_enum=False,
            validate_strings=True,
        ),
        nullable=False,
        server_default="pending",
    )
    attempts = db.Column(db.Integer, nullable=False, default=0)
    last_error = db.Column(db.Text)
    delivery_id = db.Column(db.String(255))
    scheduled_for = db.Column(db.DateTime, nullable=False, default=utc_naive, index=True)
    sent_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)

    user = db.relationship("User")
    appointment = db.relationship("Appointment")

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.notification_id,
            "user_id": self.user_id,
            "appointment_id": self.appointment_id,
            "event_type": self.event_type,
            "channel": self.channel,
            "locale": self.locale,
            "destination": self.destination,
            "subject": self.subject,
            "status": self.status,
            "attempts": self.attempts,
            "last_error": self.last_error,
            "delivery_id": self.delivery_id,
            "scheduled_for": self.scheduled_for.isoformat() if self.scheduled_for else None,
            "sent_at": self.sent_at.isoformat() if self.sent_at else None,
        }


class UserPreference(db.Model):
    """Per-user key/value preference (locale, channels, UI flags)."""

    __tablename__ = "user_preferences"
    __table_args__ = (
        db.UniqueConstraint("user_id", "key", name="uq_user_preference_key"),
    )

    preference_id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.user_id"), nullable=False)
    key = db.Column(db.String(64), nullable=False)
    value = db.Column(db.JSON)
    updated_at = db.Column(
        db.DateTime,
        nullable=False,
        default=utc_now,
        onupdate=utc_now,
    )

    user = db.relationship("User", back_populates="preferences")


class WaitlistEntry(db.Model):
    """A customer waiting for a slot with a provider on a given date."""

    __tablename__ = "waitlist_entries"

    waitlist_id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("users.user_id"), nullable=False)
    provider_id = db.Column(db.Integer, db.ForeignKey("providers.provider_id"), nullable=False)
    service_id = db.Column(db.Integer, db.ForeignKey("services.service_id"), nullable=False)
    waitlist_date = db.Column(db.Date, nullable=False, index=True)
    # Optional preferred window; both null means any time that day
    start_time = db.Column(db.Time)
    end_time = db.Column(db.Time)
    notes = db.Column(db.Text)
    status = db.Column(
        db.Enum(
            "active",
            "notified",
            "cancelled",
            name="waitlist_status",
            native_enum=False,
            validate_strings=True,
        ),
        nullable=False,
        server_default="active",
    )
    notified_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, nullable=False, default=utc_now)

    customer = db.relationship("User")
    provider = db.relationship("Provider")
    service = db.relationship("Service")

    @property
    def flexible(self) -> bool:
        return self.start_time is None or self.end_time is None

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.waitlist_id,
            "customer_id": self.customer_id,
            "provider_id": self.provider_id,
            "provider_name": self.provider.name if self.provider else None,
            "service_id": self.service_id,
            "service_name": self.service.name if self.service else None,
            "date": self.waitlist_date.isoformat(),
            "start_time": self.start_time.strftime("%H:%M") if self.start_time else None,
            "end_time": self.end_time.strftime("%H:%M") if self.end_time else None,
            "flexible": self.flexible,
            "notes": self.notes,
            "status": self.status,
            "notified_at": self.notified_at.isoformat() if self.notified_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
