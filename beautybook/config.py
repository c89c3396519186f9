"""Environment-driven configuration for the BeautyBook backend."""
from __future__ import annotations

import os


def _flag(name: str, default: str = "false") -> bool:
    return os.environ.get(name, default).strip().lower() in {"1", "true", "yes", "on"}


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key")

    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL", "sqlite:///beautybook.db")
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Upper bound for lock waits while booking or cancelling.
    BOOKING_TIMEOUT_SECONDS = float(os.environ.get("BOOKING_TIMEOUT_SECONDS", "5"))

    STRIPE_SECRET_KEY = os.environ.get("STRIPE_SECRET_KEY")
    STRIPE_WEBHOOK_SECRET = os.environ.get("STRIPE_WEBHOOK_SECRET")
    PAYMENT_CURRENCY = os.environ.get("PAYMENT_CURRENCY", "usd")

    SENDGRID_API_KEY = os.environ.get("SENDGRID_API_KEY")
    EMAIL_FROM_ADDRESS = os.environ.get("EMAIL_FROM_ADDRESS", "noreply@beautybook.com")
    EMAIL_FROM_NAME = os.environ.get("EMAIL_FROM_NAME", "BeautyBook")
    ENABLE_EMAIL_NOTIFICATIONS = _flag("ENABLE_EMAIL_NOTIFICATIONS")

    TWILIO_ACCOUNT_SID = os.environ.get("TWILIO_ACCOUNT_SID")
    TWILIO_AUTH_TOKEN = os.environ.get("TWILIO_AUTH_TOKEN")
    TWILIO_PHONE_NUMBER = os.environ.get("TWILIO_PHONE_NUMBER")
    ENABLE_SMS_NOTIFICATIONS = _flag("ENABLE_SMS_NOTIFICATIONS")

    NOTIFICATION_MAX_ATTEMPTS = int(os.environ.get("NOTIFICATION_MAX_ATTEMPTS", "5"))
    NOTIFICATION_RETRY_BASE_SECONDS = int(os.environ.get("NOTIFICATION_RETRY_BASE_SECONDS", "60"))
    NOTIFICATION_BATCH_SIZE = int(os.environ.get("NOTIFICATION_BATCH_SIZE", "100"))
    NOTIFICATION_SWEEP_INTERVAL_SECONDS = int(os.environ.get("NOTIFICATION_SWEEP_INTERVAL_SECONDS", "60"))
    CRON_SECRET = os.environ.get("CRON_SECRET")

    DEFAULT_LOCALE = os.environ.get("DEFAULT_LOCALE", "en")
    APP_URL = os.environ.get("APP_URL", "http://localhost:3000")
    REVIEW_MIN_COMMENT_LENGTH = int(os.environ.get("REVIEW_MIN_COMMENT_LENGTH", "10"))

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    CORS_ORIGINS = os.environ.get("CORS_ORIGINS", "*")


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    STRIPE_SECRET_KEY = None
    STRIPE_WEBHOOK_SECRET = None
    ENABLE_EMAIL_NOTIFICATIONS = False
    ENABLE_SMS_NOTIFICATIONS = False
    CRON_SECRET = None
