import json
from datetime import datetime, timezone
from io import BytesIO
from typing import Optional

import qrcode

from .models import Event, Registration


def build_ticket_payload(registration: Registration, event: Event, issued_at: Optional[datetime] = None) -> str:
    """Serialized ticket stored on the registration and encoded into its QR code."""
    issued_at = issued_at or datetime.now(timezone.utc)
    payload = {
        "registration_id": registration.id,
        "user_id": registration.user_id,
        "event_id": event.id,
        "event_title": event.title,
        "timestamp": issued_at.isoformat(),
    }
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False)


def render_ticket_png(payload_text: str) -> bytes:
    img = qrcode.make(payload_text)
    buf = BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()
