from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from urllib.parse import quote

import httpx

from ..config import get_settings
from ..db import models
from .http_client import HttpClientConfig, build_client
from .recurrence import utc_to_local

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class EmailMessage:
    to: str
    subject: str
    text: str
    idempotency_key: str | None = None


def _organization_timezone(instance: models.SessionInstance) -> str | None:
    organization = instance.template.organization if instance.template else None
    if organization is not None and organization.timezone:
        return organization.timezone
    return get_settings().timezone


def format_session_time(starts_at: datetime, ends_at: datetime | None, tz_name: str | None) -> str:
    local_start = utc_to_local(starts_at, tz_name)
    formatted = local_start.strftime("%A %d %B %Y %H:%M")
    if ends_at is not None:
        formatted += f" - {utc_to_local(ends_at, tz_name).strftime('%H:%M')}"
    return formatted


def build_spot_available_message(entry: models.WaitingListEntry) -> EmailMessage:
    settings = get_settings()
    instance = entry.instance
    template = instance.template
    when = format_session_time(instance.start_time, instance.end_time, _organization_timezone(instance))
    start_param = quote(instance.start_time.isoformat())
    booking_url = f"{settings.app_url}/sessions/{template.id}?start={start_param}"
    greeting = entry.first_name or "there"
    return EmailMessage(
        to=entry.email,
        subject=f"A spot opened up for {template.name}",
        text=(
            f"Hi {greeting},\n\n"
            f"{entry.requested_spots} spot(s) are now available for {template.name} on {when}.\n"
            f"Spots are first come, first served: {booking_url}\n"
        ),
        idempotency_key=f"waiting-list-notification/{entry.id}",
    )


def build_booking_cancelled_message(
    booking: models.Booking, *, refunded: bool, reason: str | None = None
) -> EmailMessage:
    instance = booking.instance
    template = instance.template
    when = format_session_time(instance.start_time, instance.end_time, _organization_timezone(instance))
    lines = [f"Your booking for {template.name} on {when} has been cancelled."]
    if reason:
        lines.append(f"Reason: {reason}.")
    if refunded:
        lines.append(
            "A refund has been processed and should appear in your account within 5-10 business days."
        )
    return EmailMessage(
        to=booking.user.email,
        subject=f"Booking cancelled: {template.name}",
        text="\n".join(lines) + "\n",
        idempotency_key=f"booking-cancelled/{booking.id}",
    )


def send_emails(messages: list[EmailMessage]) -> int:
    """Deliver messages, returning how many were accepted by the provider."""
    if not messages:
        return 0

    settings = get_settings()
    if not settings.email_api_key:
        logger.warning("E-mail API key is not configured; skipping %d notification(s)", len(messages))
        return 0

    config = HttpClientConfig(
        base_url=settings.email_provider_url,
        headers={"Authorization": f"Bearer {settings.email_api_key}"},
        timeout=settings.http_timeout_seconds,
    )
    sent = 0
    try:
        with build_client(config) as client:
            for message in messages:
                headers = {}
                if message.idempotency_key:
                    headers["Idempotency-Key"] = message.idempotency_key
                try:
                    response = client.post(
                        "/emails",
                        json={
                            "from": settings.email_from,
                            "to": [message.to],
                            "subject": message.subject,
                            "text": message.text,
                        },
                        headers=headers,
                    )
                    response.raise_for_status()
                    sent += 1
                except httpx.HTTPError:
                    logger.exception(
                        "Failed to send notification e-mail",
                        extra={"to": message.to, "subject": message.subject},
                    )
    except Exception:
        logger.exception("E-mail delivery aborted", extra={"pending": len(messages) - sent})
    return sent


def notify_waitlist_spot_available(entry: models.WaitingListEntry) -> bool:
    return send_emails([build_spot_available_message(entry)]) == 1


def notify_booking_cancelled(
    booking: models.Booking, *, refunded: bool, reason: str | None = None
) -> bool:
    return send_emails(
        [build_booking_cancelled_message(booking, refunded=refunded, reason=reason)]
    ) == 1
