"""Admin dashboard assistant backed by an OpenAI-compatible chat completions API."""
from typing import Any, Dict, List, Sequence

import httpx
from sqlalchemy import func
from sqlalchemy.orm import Session

from . import models
from .config import settings
from .logging_utils import log_event, log_warning
from .models import ACTIVE_REGISTRATION_STATUSES


class AssistantNotConfigured(RuntimeError):
    pass


class AssistantError(RuntimeError):
    pass


def gather_statistics(db: Session, limit: int = 5) -> Dict[str, Any]:
    recent = (
        db.query(models.Event)
        .order_by(models.Event.created_at.desc(), models.Event.id.desc())
        .limit(limit)
        .all()
    )
    popular_rows = (
        db.query(models.Event, func.count(models.Registration.id).label("registrations"))
        .outerjoin(
            models.Registration,
            (models.Registration.event_id == models.Event.id)
            & (models.Registration.status.in_(ACTIVE_REGISTRATION_STATUSES)),
        )
        .group_by(models.Event.id)
        .order_by(func.count(models.Registration.id).desc(), models.Event.id)
        .limit(limit)
        .all()
    )
    return {
        "users": db.query(func.count(models.User.id)).scalar() or 0,
        "events": db.query(func.count(models.Event.id)).scalar() or 0,
        "registrations": db.query(func.count(models.Registration.id)).scalar() or 0,
        "recent_events": [
            {"title": event.title, "category": event.category, "date": event.date.date().isoformat()}
            for event in recent
        ],
        "popular_events": [
            {"title": event.title, "category": event.category, "registrations": int(count or 0)}
            for event, count in popular_rows
        ],
    }


def _context_block(stats: Dict[str, Any]) -> str:
    lines = [
        "Current dashboard statistics:",
        f"- Total users: {stats['users']}",
        f"- Total events: {stats['events']}",
        f"- Total registrations: {stats['registrations']}",
    ]
    if stats["recent_events"]:
        lines.append("Recently created events:")
        lines.extend(
            f"- {item['title']} ({item['category']}, {item['date']})" for item in stats["recent_events"]
        )
    if stats["popular_events"]:
        lines.append("Most popular events:")
        lines.extend(
            f"- {item['title']} ({item['category']}): {item['registrations']} registrations"
            for item in stats["popular_events"]
        )
    return "\n".join(lines)


def build_messages(history: Sequence[Dict[str, str]], stats: Dict[str, Any]) -> List[Dict[str, str]]:
    system_prompt = f"{settings.assistant_system_prompt}\n\n{_context_block(stats)}"
    return [{"role": "system", "content": system_prompt}, *history]


def _http_client() -> httpx.Client:
    return httpx.Client(timeout=settings.assistant_timeout_seconds)


def complete_chat(db: Session, history: Sequence[Dict[str, str]]) -> str:
    if not settings.assistant_api_url or not settings.assistant_api_key:
        raise AssistantNotConfigured("Assistant is not configured")

    payload = {
        "model": settings.assistant_model,
        "messages": build_messages(history, gather_statistics(db)),
        "temperature": 0.7,
        "max_tokens": 500,
    }
    headers = {"Authorization": f"Bearer {settings.assistant_api_key}"}
    try:
        with _http_client() as client:
            response = client.post(settings.assistant_api_url, json=payload, headers=headers)
            response.raise_for_status()
            data = response.json()
        reply = data["choices"][0]["message"]["content"]
    except (httpx.HTTPError, ValueError, KeyError, IndexError, TypeError) as exc:
        log_warning("assistant_request_failed", error=str(exc), model=settings.assistant_model)
        raise AssistantError("Assistant provider request failed") from exc

    log_event("assistant_reply", model=settings.assistant_model, turns=len(history))
    return (reply or "").strip()
