"""Per-user preference map (locale, notification channels, reminder opt-outs)."""
from __future__ import annotations

from flask import current_app

from ..errors import InvalidInput
from ..extensions import db
from ..models import UserPreference
from .notification_templates import SUPPORTED_LOCALES

MAX_KEY_LENGTH = 64

BOOLEAN_KEYS = ("email_enabled", "sms_enabled", "reminder_before_24h", "reminder_before_2h")


def default_preferences() -> dict[str, object]:
    return {
        "locale": current_app.config.get("DEFAULT_LOCALE", "en"),
        "email_enabled": True,
        "sms_enabled": False,
        "reminder_before_24h": True,
        "reminder_before_2h": True,
    }


def get_preferences(user_id: int) -> dict[str, object]:
    preferences = default_preferences()
    for row in UserPreference.query.filter_by(user_id=user_id).all():
        preferences[row.key] = row.value
    return preferences


def _validate(values) -> None:
    if not isinstance(values, dict) or not values:
        raise InvalidInput("Preferences must be a non-empty object")
    for key, value in values.items():
        if not isinstance(key, str) or not key.strip() or len(key) > MAX_KEY_LENGTH:
            raise InvalidInput(f"Preference keys must be 1-{MAX_KEY_LENGTH} characters", key=str(key)[:80])
        if key == "locale" and value not in SUPPORTED_LOCALES:
            raise InvalidInput(f"locale must be one of: {', '.join(SUPPORTED_LOCALES)}", key=key)
        if key in BOOLEAN_KEYS and not isinstance(value, bool):
            raise InvalidInput(f"{key} must be true or false", key=key)


def set_preferences(user_id: int, values: dict[str, object]) -> dict[str, object]:
    """Upsert ``values`` for the user and return the merged preference map."""
    _validate(values)

    existing = {
        row.key: row
        for row in UserPreference.query.filter(
            UserPreference.user_id == user_id,
            UserPreference.key.in_(list(values)),
        ).all()
    }
    for key, value in values.items():
        row = existing.get(key)
        if row is None:
            db.session.add(UserPreference(user_id=user_id, key=key, value=value))
        else:
            row.value = value

    db.session.commit()
    return get_preferences(user_id)
