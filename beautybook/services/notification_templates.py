"""Fixed message templates per event type and locale."""
from __future__ import annotations

from dataclasses import dataclass

from markupsafe import escape

SUPPORTED_LOCALES = ("en", "zh")

TEMPLATES: dict[str, dict[str, dict[str, str]]] = {
    "booking_created": {
        "en": {
            "heading": "Booking received",
            "subject": "Your {service_name} appointment on {date} at {time}",
            "text": (
                "Hi {customer_name},\n\n"
                "Your {service_name} appointment with {provider_name} is booked for {date} at {time}.\n\n"
                "Location: {address}\nAmount: ${amount}\n\n"
                "Need to change plans? Cancel at least 24 hours in advance for a full refund.\n\n"
                "View details: {app_url}/appointments"
            ),
            "sms": "Booked! {service_name} with {provider_name} on {date} at {time}.",
        },
        "zh": {
            "heading": "预约成功",
            "subject": "您的{service_name}预约：{date} {time}",
            "text": (
                "{customer_name}，您好：\n\n"
                "您已成功预约{provider_name}的{service_name}，时间为{date} {time}。\n\n"
                "地址：{address}\n金额：${amount}\n\n"
                "24小时前取消：全额退款。\n\n"
                "查看详情：{app_url}/appointments"
            ),
            "sms": "预约成功！{provider_name} {service_name}，{date} {time}。",
        },
    },
    "booking_cancelled": {
        "en": {
            "heading": "Appointment cancelled",
            "subject": "Your {service_name} appointment on {date} was cancelled",
            "text": (
                "Hi {customer_name},\n\n"
                "Your {service_name} appointment with {provider_name} on {date} at {time} has been cancelled.\n\n"
                "Refund: ${refund_amount} ({refund_percentage}%)\n\n"
                "Book again any time at {app_url}"
            ),
            "sms": "Cancelled: {service_name} with {provider_name} on {date} at {time}. Refund ${refund_amount}.",
        },
        "zh": {
            "heading": "预约已取消",
            "subject": "您{date}的{service_name}预约已取消",
            "text": (
                "{customer_name}，您好：\n\n"
                "您在{provider_name}的{service_name}预约（{date} {time}）已取消。\n\n"
                "退款：${refund_amount}（{refund_percentage}%）\n\n"
                "欢迎再次预约：{app_url}"
            ),
            "sms": "已取消：{provider_name} {service_name}，{date} {time}。退款${refund_amount}。",
        },
    },
    "booking_rescheduled": {
        "en": {
            "heading": "Appointment rescheduled",
            "subject": "Your {service_name} appointment moved to {date} at {time}",
            "text": (
                "Hi {customer_name},\n\n"
                "Your {service_name} appointment with {provider_name} moved from {old_date} at {old_time} "
                "to {date} at {time}.\n\n"
                "View details: {app_url}/appointments"
            ),
            "sms": "Rescheduled: {service_name} with {provider_name} is now {date} at {time}.",
        },
        "zh": {
            "heading": "预约已改期",
            "subject": "您的{service_name}预约已改至{date} {time}",
            "text": (
                "{customer_name}，您好：\n\n"
                "您在{provider_name}的{service_name}预约已由{old_date} {old_time}改至{date} {time}。\n\n"
                "查看详情：{app_url}/appointments"
            ),
            "sms": "已改期：{provider_name} {service_name}，新时间{date} {time}。",
        },
    },
    "reminder_due": {
        "en": {
            "heading": "Appointment reminder",
            "subject": "Reminder: {service_name} on {date} at {time}",
            "text": (
                "Hi {customer_name},\n\n"
                "This is a friendly reminder about your {service_name} appointment with {provider_name} "
                "on {date} at {time}.\n\n"
                "Location: {address}\n\n"
                "Please arrive 10 minutes early."
            ),
            "sms": "Hi {customer_name}! Reminder: {service_name} with {provider_name} on {date} at {time}. {address}",
        },
        "zh": {
            "heading": "预约提醒",
            "subject": "提醒：{date} {time} {service_name}",
            "text": (
                "{customer_name}，您好：\n\n"
                "温馨提醒：您在{provider_name}的{service_name}预约时间为{date} {time}。\n\n"
                "地址：{address}\n\n"
                "请提前10分钟到达。"
            ),
            "sms": "{customer_name}您好！提醒：{date} {time} {provider_name} {service_name}。{address}",
        },
    },
    "waitlist_slot_available": {
        "en": {
            "heading": "A slot just opened up",
            "subject": "{provider_name} has an opening on {date} at {time}",
            "text": (
                "Hi {customer_name},\n\n"
                "Good news: a time you were waiting for is now free.\n\n"
                "{service_name} with {provider_name}\n{date}, {time} - {end_time}\nAmount: ${amount}\n\n"
                "Slots go to whoever books first: {app_url}/book"
            ),
            "sms": "Slot open! {service_name} at {provider_name}, {date} {time}-{end_time}. First come, first served: {app_url}/book",
        },
        "zh": {
            "heading": "时间段可用",
            "subject": "{provider_name}在{date} {time}有空位了",
            "text": (
                "{customer_name}，好消息！\n\n"
                "您等待的时间段现在可以预约了。\n\n"
                "{provider_name} {service_name}\n{date} {time} - {end_time}\n金额：${amount}\n\n"
                "先到先得，请尽快预约：{app_url}/book"
            ),
            "sms": "时间段可用！{provider_name} {service_name}，{date} {time}-{end_time}。先到先得：{app_url}/book",
        },
    },
}

LAYOUT_HTML = """<!DOCTYPE html>
<html>
  <head><meta charset="utf-8"></head>
  <body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
    <div style="max-width: 600px; margin: 0 auto; padding: 20px;">
      <h1 style="color: #ec4899;">{heading}</h1>
      {body}
      <p style="color: #666; font-size: 12px;">BeautyBook</p>
    </div>
  </body>
</html>"""


@dataclass(frozen=True)
class RenderedMessage:
    subject: str | None
    html: str | None
    text: str


def resolve_locale(locale: str | None, default: str = "en") -> str:
    if locale in SUPPORTED_LOCALES:
        return locale
    return default if default in SUPPORTED_LOCALES else "en"


def render(event_type: str, channel: str, locale: str, context: dict[str, object]) -> RenderedMessage:
    """Render the ``channel`` payload of ``event_type`` in ``locale``.

    Raises ``KeyError`` for an unknown event type or a context missing a field
    used by the template.
    """
    template = TEMPLATES[event_type][resolve_locale(locale)]

    if channel == "sms":
        return RenderedMessage(subject=None, html=None, text=template["sms"].format(**context))

    text = template["text"].format(**context)
    escaped = {key: escape(value) for key, value in context.items()}
    body = "\n      ".join(
        "<p>{}</p>".format(str(escape(paragraph)).replace("\n", "<br>"))
        for paragraph in text.split("\n\n")
    )
    html = LAYOUT_HTML.format(heading=escape(template["heading"].format(**escaped)), body=body)
    return RenderedMessage(subject=template["subject"].format(**context), html=html, text=text)
