"""Read-only queries the recommendation engine runs against the database.

The engine only sees the small row types defined here, never a Session, so
it can be exercised against in-memory fakes as well as SQLAlchemy.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, Optional, Sequence

from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

from . import models
from .models import ACTIVE_REGISTRATION_STATUSES, RegistrationStatus


def normalize_dt(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize datetimes to timezone-aware UTC instances."""
    if not value:
        return value
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class RegistrationRow:
    user_id: int
    event_id: int
    status: RegistrationStatus
    created_at: datetime


@dataclass(frozen=True)
class HistoryItem:
    event_id: int
    category: str
    location: Optional[str]
    date: datetime
    time: Optional[str]
    status: RegistrationStatus
    created_at: datetime


@dataclass
class EventRecord:
    event: models.Event
    attendees: int

    @property
    def id(self) -> int:
        return self.event.id

    @property
    def category(self) -> str:
        return self.event.category

    @property
    def date(self) -> datetime:
        return normalize_dt(self.event.date)

    @property
    def time(self) -> Optional[str]:
        return self.event.time

    @property
    def location(self) -> Optional[str]:
        return self.event.location


def _registration_row(reg: models.Registration) -> RegistrationRow:
    return RegistrationRow(
        user_id=reg.user_id,
        event_id=reg.event_id,
        status=reg.status,
        created_at=normalize_dt(reg.created_at),
    )


class UserStore:
    def __init__(self, db: Session):
        self.db = db

    def get_user(self, user_id: int) -> Optional[models.User]:
        return self.db.query(models.User).filter(models.User.id == user_id).first()

    def registration_history(self, user_id: int) -> list[HistoryItem]:
        """Active registrations joined with their events, newest first."""
        rows = (
            self.db.query(models.Registration)
            .options(joinedload(models.Registration.event))
            .filter(
                models.Registration.user_id == user_id,
                models.Registration.status.in_(ACTIVE_REGISTRATION_STATUSES),
            )
            .order_by(models.Registration.created_at.desc(), models.Registration.id.desc())
            .all()
        )
        return [
            HistoryItem(
                event_id=reg.event_id,
                category=reg.event.category,
                location=reg.event.location,
                date=normalize_dt(reg.event.date),
                time=reg.event.time,
                status=reg.status,
                created_at=normalize_dt(reg.created_at),
            )
            for reg in rows
        ]


class RegistrationStore:
    def __init__(self, db: Session):
        self.db = db

    def by_user(
        self,
        user_id: int,
        statuses: Optional[Sequence[RegistrationStatus]] = None,
    ) -> list[RegistrationRow]:
        query = self.db.query(models.Registration).filter(models.Registration.user_id == user_id)
        if statuses:
            query = query.filter(models.Registration.status.in_(list(statuses)))
        query = query.order_by(models.Registration.created_at.desc(), models.Registration.id.desc())
        return [_registration_row(reg) for reg in query.all()]

    def by_events(
        self,
        event_ids: Iterable[int],
        *,
        exclude_user_id: Optional[int] = None,
        statuses: Optional[Sequence[RegistrationStatus]] = None,
    ) -> list[RegistrationRow]:
        event_ids = sorted(set(event_ids))
        if not event_ids:
            return []
        query = self.db.query(models.Registration).filter(models.Registration.event_id.in_(event_ids))
        if exclude_user_id is not None:
            query = query.filter(models.Registration.user_id != exclude_user_id)
        if statuses:
            query = query.filter(models.Registration.status.in_(list(statuses)))
        return [_registration_row(reg) for reg in query.order_by(models.Registration.id).all()]

    def future_by_users(
        self,
        user_ids: Iterable[int],
        *,
        now: datetime,
        statuses: Optional[Sequence[RegistrationStatus]] = None,
        exclude_event_ids: Iterable[int] = (),
    ) -> list[RegistrationRow]:
        user_ids = sorted(set(user_ids))
        if not user_ids:
            return []
        query = (
            self.db.query(models.Registration)
            .join(models.Event, models.Event.id == models.Registration.event_id)
            .filter(models.Registration.user_id.in_(user_ids), models.Event.date >= now)
        )
        if statuses:
            query = query.filter(models.Registration.status.in_(list(statuses)))
        excluded = sorted(set(exclude_event_ids))
        if excluded:
            query = query.filter(~models.Registration.event_id.in_(excluded))
        return [_registration_row(reg) for reg in query.order_by(models.Registration.id).all()]


def events_with_attendees(db: Session, base_query=None):
    """Add an `attendees` column (seats held by REGISTERED and ATTENDED rows) to an Event query.

    Returns the query and the per-event count subquery so callers can order by it.
    """
    if base_query is None:
        base_query = db.query(models.Event)
    seats_subquery = (
        db.query(
            models.Registration.event_id,
            func.count(models.Registration.id).label("attendees"),
        )
        .filter(models.Registration.status.in_(ACTIVE_REGISTRATION_STATUSES))
        .group_by(models.Registration.event_id)
        .subquery()
    )
    query = base_query.outerjoin(seats_subquery, models.Event.id == seats_subquery.c.event_id).add_columns(
        func.coalesce(seats_subquery.c.attendees, 0).label("attendees")
    )
    return query, seats_subquery


class EventStore:
    def __init__(self, db: Session):
        self.db = db

    def _records(self, base_query, limit: Optional[int] = None) -> list[EventRecord]:
        query, _ = events_with_attendees(self.db, base_query)
        if limit is not None:
            query = query.limit(limit)
        return [EventRecord(event=event, attendees=int(attendees or 0)) for event, attendees in query.all()]

    def _not_registered(self, query, user_id: int):
        return query.filter(~models.Event.registrations.any(models.Registration.user_id == user_id))

    def upcoming_by_categories(self, categories: Sequence[str], *, now: datetime, limit: int) -> list[EventRecord]:
        if not categories:
            return []
        base_query = (
            self.db.query(models.Event)
            .filter(models.Event.date >= now, models.Event.category.in_(list(categories)))
            .order_by(models.Event.date, models.Event.id)
        )
        return self._records(base_query, limit=limit)

    def upcoming_for_user(self, user_id: int, *, now: datetime, limit: int) -> list[EventRecord]:
        """Nearest upcoming events the user has never registered for."""
        base_query = self._not_registered(
            self.db.query(models.Event).filter(models.Event.date >= now), user_id
        ).order_by(models.Event.date, models.Event.id)
        return self._records(base_query, limit=limit)

    def candidates_for_user(
        self,
        user_id: int,
        event_ids: Sequence[int],
        *,
        now: datetime,
        limit: int,
        padding_categories: Sequence[str] = (),
    ) -> list[EventRecord]:
        """Load candidate events in `event_ids` order, then pad with same-category events."""
        base_query = self._not_registered(
            self.db.query(models.Event).filter(models.Event.id.in_(list(event_ids)), models.Event.date >= now),
            user_id,
        )
        by_id = {record.id: record for record in self._records(base_query)}
        records = [by_id[event_id] for event_id in event_ids if event_id in by_id][:limit]

        remaining = limit - len(records)
        if padding_categories and remaining > 0:
            padding_query = self._not_registered(
                self.db.query(models.Event).filter(
                    models.Event.date >= now,
                    models.Event.category.in_(list(padding_categories)),
                    ~models.Event.id.in_(list(event_ids)),
                ),
                user_id,
            ).order_by(models.Event.date, models.Event.id)
            records.extend(self._records(padding_query, limit=remaining))
        return records
