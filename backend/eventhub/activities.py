"""Admin activity feed: recording entries and rendering their age."""
import math
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from . import models
from .recommendation_store import normalize_dt


def record_activity(
    db: Session,
    *,
    actor_id: int,
    action: str,
    target_type: str,
    target_name: str,
    target_id: Optional[object] = None,
    link: Optional[str] = None,
) -> models.Activity:
    """Add an activity row to the session; the caller commits."""
    activity = models.Activity(
        user_id=actor_id,
        action=action,
        target_type=target_type,
        target_id=str(target_id) if target_id is not None else None,
        target_name=target_name,
        link=link,
    )
    db.add(activity)
    return activity


def _plural(value: int, unit: str) -> str:
    return f"{value} {unit if value == 1 else unit + 's'} ago"


def relative_time(created_at: datetime, now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    created_at = normalize_dt(created_at)
    seconds = math.floor((now - created_at).total_seconds())

    if seconds < 60:
        return "Just now"
    if seconds < 3600:
        return _plural(seconds // 60, "minute")
    if seconds < 86400:
        return _plural(seconds // 3600, "hour")
    if seconds < 172800:
        return "Yesterday"
    if seconds < 604800:
        return _plural(seconds // 86400, "day")
    if seconds < 2419200:
        return _plural(seconds // 604800, "week")
    return f"{created_at.strftime('%b')} {created_at.day}"
