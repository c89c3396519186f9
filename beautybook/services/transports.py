"""
Email and SMS transmission through SendGrid and Twilio.

Both senders return a DeliveryResult instead of raising so the dispatch gate
can record the outcome and retry later.
"""
from __future__ import annotations

import re
from dataclasses import dataclass

import httpx
from flask import current_app

SENDGRID_URL = "https://api.sendgrid.com/v3/mail/send"
TWILIO_URL = "https://api.twilio.com/2010-04-01/Accounts/{account_sid}/Messages.json"
REQUEST_TIMEOUT_SECONDS = 10.0


@dataclass(frozen=True)
class DeliveryResult:
    success: bool
    delivery_id: str | None = None
    error: str | None = None


def send_email(to: str, subject: str, html: str | None, text: str) -> DeliveryResult:
    config = current_app.config
    if not config.get("ENABLE_EMAIL_NOTIFICATIONS"):
        current_app.logger.info("Email skipped (disabled): %s", subject)
        return DeliveryResult(success=True, delivery_id="skipped")

    api_key = config.get("SENDGRID_API_KEY")
    if not api_key:
        current_app.logger.error("SendGrid API key not configured")
        return DeliveryResult(success=False, error="Email service not configured")

    content = [{"type": "text/plain", "value": text}]
    if html:
        content.append({"type": "text/html", "value": html})

    payload = {
        "personalizations": [{"to": [{"email": to}]}],
        "from": {
            "email": config.get("EMAIL_FROM_ADDRESS"),
            "name": config.get("EMAIL_FROM_NAME"),
        },
        "subject": subject,
        "content": content,
    }

    try:
        response = httpx.post(
            SENDGRID_URL,
            json=payload,
            headers={"Authorization": f"Bearer {api_key}"},
            timeout=REQUEST_TIMEOUT_SECONDS,
        )
    except httpx.HTTPError as exc:
        current_app.logger.warning("Email to %s failed: %s", to, exc)
        return DeliveryResult(success=False, error=str(exc) or exc.__class__.__name__)

    if response.status_code in (200, 202):
        return DeliveryResult(success=True, delivery_id=response.headers.get("X-Message-Id") or "sent")

    current_app.logger.warning("SendGrid rejected email to %s with status %s", to, response.status_code)
    return DeliveryResult(success=False, error=f"SendGrid returned {response.status_code}: {response.text[:200]}")


def normalize_phone(value: str) -> str:
    return re.sub(r"[^0-9+]", "", value or "")


def send_sms(to: str, body: str) -> DeliveryResult:
    config = current_app.config
    if not config.get("ENABLE_SMS_NOTIFICATIONS"):
        current_app.logger.info("SMS skipped (disabled): %s", body[:50])
        return DeliveryResult(success=True, delivery_id="skipped")

    account_sid = config.get("TWILIO_ACCOUNT_SID")
    auth_token = config.get("TWILIO_AUTH_TOKEN")
    from_number = config.get("TWILIO_PHONE_NUMBER")
    if not (account_sid and auth_token and from_number):
        current_app.logger.error("Twilio not configured")
        return DeliveryResult(success=False, error="SMS service not configured")

    phone_number = normalize_phone(to)
    if not phone_number.startswith("+"):
        return DeliveryResult(success=False, error="Phone number must include country code (e.g., +1)")

    try:
        response = httpx.post(
            TWILIO_URL.format(account_sid=account_sid),
            auth=(account_sid, auth_token),
            data={"To": phone_number, "From": from_number, "Body": body},
            timeout=REQUEST_TIMEOUT_SECONDS,
        )
    except httpx.HTTPError as exc:
        current_app.logger.warning("SMS to %s failed: %s", phone_number, exc)
        return DeliveryResult(success=False, error=str(exc) or exc.__class__.__name__)

    if response.status_code in (200, 201):
        return DeliveryResult(success=True, delivery_id=response.json().get("sid"))

    current_app.logger.warning("Twilio rejected SMS to %s with status %s", phone_number, response.status_code)
    return DeliveryResult(success=False, error=f"Twilio returned {response.status_code}: {response.text[:200]}")
