"""Outgoing notification email over SMTP."""
import smtplib
import time
from dataclasses import dataclass, field
from email.message import EmailMessage
from typing import Any, Dict, Optional

from fastapi import BackgroundTasks

from .config import settings
from .logging_utils import log_event, log_warning

delivery_stats = {"sent": 0, "failed": 0, "skipped": 0}


@dataclass
class OutgoingEmail:
    to: str
    subject: str
    body_text: str
    body_html: Optional[str] = None
    context: Dict[str, Any] = field(default_factory=dict)

    def to_message(self, sender: str) -> EmailMessage:
        message = EmailMessage()
        message["From"] = sender
        message["To"] = self.to
        message["Subject"] = self.subject
        message.set_content(self.body_text)
        if self.body_html:
            message.add_alternative(self.body_html, subtype="html")
        return message


def _smtp_ready() -> Optional[str]:
    if not settings.email_enabled:
        return "email_disabled"
    if not settings.smtp_host or not settings.smtp_sender:
        return "email_smtp_not_configured"
    return None


def _deliver_once(message: EmailMessage) -> None:
    with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=settings.smtp_timeout_seconds) as server:
        if settings.smtp_use_tls:
            server.starttls()
        if settings.smtp_username:
            server.login(settings.smtp_username, settings.smtp_password or "")
        server.send_message(message)


def deliver(email: OutgoingEmail) -> bool:
    """Send with linear backoff between attempts. Returns whether the message went out."""
    skip_reason = _smtp_ready()
    if skip_reason:
        delivery_stats["skipped"] += 1
        log_warning(skip_reason, to=email.to, subject=email.subject, **email.context)
        return False

    message = email.to_message(settings.smtp_sender)
    attempts = settings.smtp_max_attempts
    for attempt in range(1, attempts + 1):
        try:
            _deliver_once(message)
        except (smtplib.SMTPException, OSError) as exc:
            log_warning(
                "email_send_failed_attempt",
                to=email.to,
                subject=email.subject,
                attempt=attempt,
                error=str(exc),
                smtp_host=settings.smtp_host,
                **email.context,
            )
            if attempt < attempts:
                time.sleep(0.5 * attempt)
            continue
        delivery_stats["sent"] += 1
        log_event("email_sent", to=email.to, subject=email.subject, attempt=attempt, **email.context)
        return True

    delivery_stats["failed"] += 1
    log_warning("email_send_gave_up", to=email.to, subject=email.subject, attempts=attempts, **email.context)
    return False


def send_email_async(
    background_tasks: BackgroundTasks | None,
    to_email: str,
    subject: str,
    body_text: str,
    body_html: Optional[str] = None,
    context: Dict[str, Any] | None = None,
) -> None:
    """Queue the email after the response is sent; without a task list, send inline."""
    email = OutgoingEmail(to_email, subject, body_text, body_html, dict(context or {}))
    if background_tasks is None:
        deliver(email)
        return
    background_tasks.add_task(deliver, email)
