"""Personalized event recommendations.

A per-request :class:`UserProfile` is built from registration history, two
candidate generators (co-registration collaborative filtering and
category-based content filtering) propose event ids, and every candidate is
re-scored against the full profile.
"""
from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from pydantic import ValidationError
from sqlalchemy.orm import Session

from .config import settings
from .geo import Coordinates, Geocoder, distance_km, get_geocoder
from .logging_utils import log_event, log_warning
from .models import ACTIVE_REGISTRATION_STATUSES, RegistrationStatus
from .recommendation_store import EventRecord, EventStore, RegistrationStore, UserStore
from .schemas import WEEKDAYS, UserPreferences

_HOUR_PATTERN = re.compile(r"(\d+):")
_SECONDS_PER_DAY = 86400


def load_preferences(raw: object) -> UserPreferences:
    if not raw:
        return UserPreferences()
    try:
        return UserPreferences.model_validate(raw)
    except ValidationError as exc:
        log_warning("preferences_invalid", error=str(exc))
        return UserPreferences()


def parse_hour(time_text: Optional[str], default: int) -> int:
    """Extract the hour from strings like "18:00" or "6:30 PM"."""
    if not time_text:
        return default
    match = _HOUR_PATTERN.search(time_text)
    if not match:
        return default
    hour = int(match.group(1))
    if "pm" in time_text.lower() and hour < 12:
        hour += 12
    return hour


def weekday_name(value: datetime) -> str:
    return WEEKDAYS[value.weekday()]


def whole_days(later: datetime, earlier: datetime) -> int:
    return math.floor((later - earlier).total_seconds() / _SECONDS_PER_DAY)


def recency_factor(event_date: datetime, now: datetime) -> float:
    if event_date > now:
        return 1.0
    return max(0.1, 1.0 - whole_days(now, event_date) / 365)


def engagement_score(registrations, now: datetime) -> float:
    """Blend of attendance rate and activity recency, newest registration first."""
    if not registrations:
        return 0.5
    attended = sum(1 for reg in registrations if reg.status == RegistrationStatus.attended)
    attendance_rate = attended / len(registrations)
    days_since_last_activity = whole_days(now, registrations[0].created_at)
    recency = max(0.1, 1 - days_since_last_activity / 90)
    return attendance_rate * 0.7 + recency * 0.3


def proximity_multiplier(distance: float, max_distance: float) -> float:
    if distance <= max_distance:
        return 1.0 + (max_distance - distance) / max_distance
    return 0.5


def nearby_multiplier(distance: float) -> float:
    if distance < 10:
        return 1.5
    if distance < 30:
        return 1.2
    return 1.0


@dataclass
class TimePatterns:
    preferred_days: dict[str, int] = field(default_factory=dict)
    preferred_hours: dict[int, int] = field(default_factory=dict)


@dataclass
class UserProfile:
    preferences: UserPreferences
    past_categories: list[str]
    category_weights: dict[str, float]
    user_location: Optional[str]
    user_coordinates: Optional[Coordinates]
    time_patterns: TimePatterns
    social_score: dict[int, int]
    engagement_level: float
    last_active: datetime

    @classmethod
    def default(cls, now: datetime) -> "UserProfile":
        return cls(
            preferences=UserPreferences(),
            past_categories=[],
            category_weights={},
            user_location=None,
            user_coordinates=None,
            time_patterns=TimePatterns(),
            social_score={},
            engagement_level=0.5,
            last_active=now,
        )


class RecommendationEngine:
    def __init__(
        self,
        users: UserStore,
        events: EventStore,
        registrations: RegistrationStore,
        geocoder: Geocoder,
        *,
        candidate_limit: int = 20,
        similar_users_limit: int = 10,
        default_max_distance_km: float = 50.0,
    ):
        self.users = users
        self.events = events
        self.registrations = registrations
        self.geocoder = geocoder
        self.candidate_limit = candidate_limit
        self.similar_users_limit = similar_users_limit
        self.default_max_distance_km = default_max_distance_km

    @classmethod
    def from_session(cls, db: Session) -> "RecommendationEngine":
        return cls(
            UserStore(db),
            EventStore(db),
            RegistrationStore(db),
            get_geocoder(),
            candidate_limit=settings.recommendations_candidate_limit,
            similar_users_limit=settings.recommendations_similar_users,
            default_max_distance_km=settings.recommendations_max_distance_km,
        )

    # -- profile ---------------------------------------------------------

    def build_profile(self, user_id: int, now: datetime) -> UserProfile:
        user = self.users.get_user(user_id)
        if user is None:
            return UserProfile.default(now)

        history = self.users.registration_history(user_id)

        category_weights: dict[str, float] = {}
        preferred_days = {day: 0 for day in WEEKDAYS}
        preferred_hours = {hour: 0 for hour in range(24)}
        for item in history:
            status_factor = 1.2 if item.status == RegistrationStatus.attended else 1.0
            weight = recency_factor(item.date, now) * status_factor
            category_weights[item.category] = category_weights.get(item.category, 0) + weight

            preferred_days[weekday_name(item.date)] += 1
            hour = parse_hour(item.time, default=0)
            preferred_hours[hour] = preferred_hours.get(hour, 0) + 1

        past_categories = [
            category for category, _ in sorted(category_weights.items(), key=lambda kv: kv[1], reverse=True)
        ]

        return UserProfile(
            preferences=load_preferences(user.preferences),
            past_categories=past_categories,
            category_weights=category_weights,
            user_location=user.location,
            user_coordinates=self.geocoder.geocode(user.location) if user.location else None,
            time_patterns=TimePatterns(preferred_days=preferred_days, preferred_hours=preferred_hours),
            social_score=self._social_scores(user_id, now),
            engagement_level=engagement_score(self.registrations.by_user(user_id), now),
            last_active=history[0].created_at if history else now,
        )

    def _social_scores(self, user_id: int, now: datetime) -> dict[int, int]:
        """Future events mapped to how many of the user's co-attendees registered for them."""
        own_event_ids = [
            row.event_id for row in self.registrations.by_user(user_id, statuses=ACTIVE_REGISTRATION_STATUSES)
        ]
        network_user_ids = {
            row.user_id
            for row in self.registrations.by_events(
                own_event_ids, exclude_user_id=user_id, statuses=ACTIVE_REGISTRATION_STATUSES
            )
        }
        scores: dict[int, int] = {}
        for row in self.registrations.future_by_users(
            network_user_ids, now=now, statuses=ACTIVE_REGISTRATION_STATUSES
        ):
            scores[row.event_id] = scores.get(row.event_id, 0) + 1
        return scores

    # -- candidate generation --------------------------------------------

    def collaborative_candidates(self, user_id: int, now: datetime, limit: int = 20) -> list[int]:
        """Events favoured by users who registered for the same events (co-occurrence counts)."""
        own_rows = self.registrations.by_user(user_id)
        own_active_ids = [row.event_id for row in own_rows if row.status in ACTIVE_REGISTRATION_STATUSES]
        if not own_active_ids:
            return []

        similarity: dict[int, int] = {}
        for row in self.registrations.by_events(
            own_active_ids, exclude_user_id=user_id, statuses=ACTIVE_REGISTRATION_STATUSES
        ):
            similarity[row.user_id] = similarity.get(row.user_id, 0) + 1

        top_users = sorted(similarity.items(), key=lambda kv: kv[1], reverse=True)[: self.similar_users_limit]
        if not top_users:
            return []

        event_scores: dict[int, int] = {}
        for row in self.registrations.future_by_users(
            [uid for uid, _ in top_users],
            now=now,
            statuses=ACTIVE_REGISTRATION_STATUSES,
            exclude_event_ids=[row.event_id for row in own_rows],
        ):
            event_scores[row.event_id] = event_scores.get(row.event_id, 0) + similarity[row.user_id]

        ranked = sorted(event_scores.items(), key=lambda kv: kv[1], reverse=True)
        return [event_id for event_id, _ in ranked[:limit]]

    def content_based_candidates(self, profile: UserProfile, now: datetime, limit: int = 20) -> list[int]:
        if not profile.past_categories:
            return []

        records = self.events.upcoming_by_categories(profile.past_categories, now=now, limit=limit * 2)
        scored: list[tuple[int, float]] = []
        for record in records:
            score = 1.0 + profile.category_weights.get(record.category, 0)

            day_pref, hour_pref = self._time_preference(profile, record)
            score *= 1 + day_pref * 0.2 + hour_pref * 0.2

            distance = self._distance(profile, record)
            if distance is not None:
                score *= nearby_multiplier(distance)

            score *= 1 + math.log10(1 + record.attendees) * 0.1
            scored.append((record.id, score))

        scored.sort(key=lambda item: item[1], reverse=True)
        return [event_id for event_id, _ in scored[:limit]]

    # -- scoring ---------------------------------------------------------

    def _time_preference(self, profile: UserProfile, record: EventRecord) -> tuple[int, int]:
        patterns = profile.time_patterns
        day_pref = patterns.preferred_days.get(weekday_name(record.date), 0)
        hour_pref = patterns.preferred_hours.get(parse_hour(record.time, default=12), 0)
        return day_pref, hour_pref

    def _distance(self, profile: UserProfile, record: EventRecord) -> Optional[float]:
        if profile.user_coordinates is None:
            return None
        event_coordinates = self.geocoder.geocode(record.location)
        if event_coordinates is None:
            return None
        return distance_km(profile.user_coordinates, event_coordinates)

    def score_event(self, record: EventRecord, profile: UserProfile, now: datetime) -> float:
        preferences = profile.preferences
        max_distance = preferences.max_distance_km or self.default_max_distance_km
        score = 1.0

        if record.category in preferences.categories:
            score *= 2.0

        score *= 1 + profile.category_weights.get(record.category, 0)

        distance = self._distance(profile, record)
        if distance is not None:
            score *= proximity_multiplier(distance, max_distance)

        day_pref, hour_pref = self._time_preference(profile, record)
        score *= 1 + day_pref * 0.1 + hour_pref * 0.1

        if record.attendees > 0:
            score *= 1 + math.log10(record.attendees) * 0.2

        social = profile.social_score.get(record.id, 0)
        if social > 0:
            score *= 1 + social * 0.3

        if profile.engagement_level > 0.7:
            if record.attendees < 10:
                score *= 1.2
        elif profile.engagement_level < 0.3:
            if record.attendees > 20:
                score *= 1.2

        days_until = whole_days(record.date, now)
        if 0 <= days_until <= 7:
            score *= 1.3

        if whole_days(now, profile.last_active) > 14 and days_until > 14:
            score *= 1.2

        return score

    def rank(self, records: list[EventRecord], profile: UserProfile, now: datetime) -> list[tuple[EventRecord, float]]:
        scored = [(record, self.score_event(record, profile, now)) for record in records]
        return sorted(scored, key=lambda item: item[1], reverse=True)

    # -- orchestration ---------------------------------------------------

    def recommend(self, user_id: int, *, limit: int, now: Optional[datetime] = None) -> list[EventRecord]:
        now = now or datetime.now(timezone.utc)
        profile = self.build_profile(user_id, now)

        # Both generators are read-only passes over the same session.
        collaborative_ids = self.collaborative_candidates(user_id, now, self.candidate_limit)
        content_ids = self.content_based_candidates(profile, now, self.candidate_limit)
        candidate_ids = list(dict.fromkeys([*collaborative_ids, *content_ids]))

        if not candidate_ids:
            return self.events.upcoming_for_user(user_id, now=now, limit=limit)

        records = self.events.candidates_for_user(
            user_id,
            candidate_ids,
            now=now,
            limit=limit * 3,
            padding_categories=profile.past_categories if len(candidate_ids) < limit else (),
        )
        ranked = self.rank(records, profile, now)
        log_event(
            "recommendations_ranked",
            user_id=user_id,
            collaborative=len(collaborative_ids),
            content_based=len(content_ids),
            scored=len(ranked),
        )
        return [record for record, _ in ranked[:limit]]


def get_recommended_events(
    db: Session,
    user_id: int,
    *,
    limit: int,
    now: Optional[datetime] = None,
    engine: Optional[RecommendationEngine] = None,
) -> list[EventRecord]:
    """Best-effort recommendations; any failure yields an empty list."""
    try:
        engine = engine or RecommendationEngine.from_session(db)
        return engine.recommend(user_id, limit=limit, now=now)
    except Exception as exc:  # noqa: BLE001
        db.rollback()
        log_warning("recommendations_failed", user_id=user_id, error=str(exc))
        return []
