from datetime import datetime
from html import escape
from typing import Optional

from .config import settings
from .models import Event, Registration, User


def _format_date(dt: Optional[datetime]) -> str:
    if not dt:
        return ""
    return dt.strftime("%A, %d %B %Y")


def _frontend_hint() -> str:
    origins = getattr(settings, "allowed_origins", None) or []
    if not origins:
        return ""
    return str(origins[0]).rstrip("/")


def render_registration_email(
    event: Event,
    user: User,
    registration: Registration,
    *,
    reactivated: bool = False,
) -> tuple[str, str, str]:
    name = user.name or user.email
    when = " ".join(part for part in [_format_date(event.date), event.time or ""] if part)
    location = event.location or "-"
    frontend = _frontend_hint()
    ticket_link = f"{frontend}/my-events/{registration.id}" if frontend else ""

    verb = "is active again" if reactivated else "is confirmed"
    subject = f"Registration confirmed: {event.title}"
    body = (
        f"Hi {name},\n\n"
        f"Your registration for '{event.title}' {verb}.\n"
        f"When: {when}\n"
        f"Where: {location}\n"
        f"Ticket number: {registration.id}\n"
    )
    if ticket_link:
        body += f"Your QR ticket: {ticket_link}\n"
    body += "\nSee you there!"

    html = (
        f"<p>Hi {escape(name)},</p>"
        f"<p>Your registration for <strong>{escape(event.title)}</strong> {verb}.</p>"
        f"<p><strong>When:</strong> {escape(when)}<br>"
        f"<strong>Where:</strong> {escape(location)}<br>"
        f"<strong>Ticket number:</strong> {registration.id}</p>"
    )
    if ticket_link:
        html += f'<p><a href="{ticket_link}">Open your QR ticket</a></p>'
    html += "<p>See you there!</p>"
    return subject, body, html


def render_cancellation_email(event: Event, user: User) -> tuple[str, str, str]:
    name = user.name or user.email
    subject = f"Registration cancelled: {event.title}"
    body = (
        f"Hi {name},\n\n"
        f"Your registration for '{event.title}' on {_format_date(event.date)} has been cancelled.\n"
        "You can register again at any time while seats are available."
    )
    html = (
        f"<p>Hi {escape(name)},</p>"
        f"<p>Your registration for <strong>{escape(event.title)}</strong> on "
        f"{escape(_format_date(event.date))} has been cancelled.</p>"
        "<p>You can register again at any time while seats are available.</p>"
    )
    return subject, body, html
