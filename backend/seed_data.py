#!/usr/bin/env python3
"""
Seed script for the Community Event Hub database.
Creates sample users, events, registrations and admin activity for local development.

Usage:
    cd backend
    python seed_data.py
"""

import random
from datetime import datetime, timedelta, timezone

from sqlalchemy.orm import Session

from eventhub.auth import get_password_hash
from eventhub.database import SessionLocal
from eventhub.models import Activity, Event, Registration, RegistrationStatus, User, UserRole

# Locations carry "(lat,lng)" suffixes so distance scoring works with the embedded geocoder.
LOCATIONS = [
    "Innovation Hub, Cluj-Napoca (46.7712,23.6236)",
    "Central Park Amphitheatre, Cluj-Napoca (46.7690,23.5780)",
    "Old Town Hall, Bucharest (44.4268,26.1025)",
    "Riverside Arena, Iasi (47.1585,27.6014)",
    "Library Auditorium, Timisoara (45.7489,21.2087)",
    "Online",
]

TIMES = ["09:00", "10:30", "14:00", "6:00 PM", "19:30", "21:00"]

SAMPLE_EVENTS = [
    ("Python for Data Science", "Tech", "Hands-on introduction to pandas and notebooks.", 30),
    ("Cloud Native Meetup", "Tech", "Talks about containers, Kubernetes and observability.", 80),
    ("Jazz by the River", "Music", "An evening of live jazz from local bands.", 150),
    ("Indie Rock Night", "Music", "Three indie bands, one stage.", 200),
    ("City Half Marathon", "Sports", "21 km through the historic center.", 500),
    ("Sunday Yoga in the Park", "Health", "Beginner friendly outdoor yoga.", 40),
    ("Street Food Festival", "Food", "Local vendors and live cooking shows.", 400),
    ("Watercolor Workshop", "Art", "Learn the basics of watercolor landscapes.", 20),
    ("Startup Pitch Night", "Business", "Early stage founders pitch to local investors.", 120),
    ("Public Speaking Bootcamp", "Education", "Practical exercises for confident speaking.", 25),
    ("AI Ethics Panel", "Tech", "Researchers discuss responsible machine learning.", 100),
    ("Community Football Cup", "Sports", "Five-a-side tournament for amateur teams.", 60),
]

USERS = [
    {"email": "ana@eventhub.dev", "name": "Ana Pop", "location": LOCATIONS[0], "categories": ["Tech", "Music"]},
    {"email": "mihai@eventhub.dev", "name": "Mihai Ionescu", "location": LOCATIONS[1], "categories": ["Sports"]},
    {"email": "ioana@eventhub.dev", "name": "Ioana Radu", "location": LOCATIONS[2], "categories": ["Art", "Food"]},
    {"email": "vlad@eventhub.dev", "name": "Vlad Stan", "location": LOCATIONS[3], "categories": []},
    {"email": "elena@eventhub.dev", "name": "Elena Marin", "location": None, "categories": ["Business"]},
]

ADMINS = [
    {"email": "admin@eventhub.dev", "name": "Event Hub Admin", "location": LOCATIONS[0]},
]

DEFAULT_PASSWORD = "password123"


def clear_database(db: Session) -> None:
    for model in (Activity, Registration, Event, User):
        db.query(model).delete(synchronize_session=False)
    db.commit()


def seed(db: Session, rng: random.Random | None = None, now: datetime | None = None) -> dict:
    """Populate an empty database and return how many rows of each kind were created."""
    rng = rng or random.Random(42)
    now = now or datetime.now(timezone.utc)
    password_hash = get_password_hash(DEFAULT_PASSWORD)

    admins = []
    for data in ADMINS:
        admin = User(
            email=data["email"],
            password_hash=password_hash,
            role=UserRole.admin,
            name=data["name"],
            location=data["location"],
        )
        db.add(admin)
        admins.append(admin)

    users = []
    for data in USERS:
        user = User(
            email=data["email"],
            password_hash=password_hash,
            role=UserRole.user,
            name=data["name"],
            location=data["location"],
            preferences={"categories": data["categories"]} if data["categories"] else None,
        )
        db.add(user)
        users.append(user)
    db.flush()

    events = []
    for index, (title, category, description, capacity) in enumerate(SAMPLE_EVENTS):
        # First third of the events already happened.
        if index < len(SAMPLE_EVENTS) // 3:
            date = now - timedelta(days=rng.randint(5, 60))
        else:
            date = now + timedelta(days=rng.randint(2, 60))
        event = Event(
            title=title,
            description=description,
            category=category,
            date=date.replace(minute=0, second=0, microsecond=0),
            time=rng.choice(TIMES),
            location=rng.choice(LOCATIONS),
            capacity=capacity,
            created_by=rng.choice(admins).id,
        )
        db.add(event)
        events.append(event)
    db.flush()

    registrations = 0
    for event in events:
        is_past = event.date < now
        for user in rng.sample(users, rng.randint(0, len(users))):
            if is_past:
                status = RegistrationStatus.attended if rng.random() > 0.2 else RegistrationStatus.registered
            else:
                status = RegistrationStatus.cancelled if rng.random() < 0.1 else RegistrationStatus.registered
            db.add(Registration(user_id=user.id, event_id=event.id, status=status))
            registrations += 1
    db.flush()

    for event in events:
        db.add(
            Activity(
                user_id=event.created_by,
                action="Created event",
                target_type="event",
                target_id=str(event.id),
                target_name=event.title,
                link=f"/events/{event.id}",
            )
        )

    db.commit()
    return {
        "users": len(users) + len(admins),
        "events": len(events),
        "registrations": registrations,
        "activities": len(events),
    }


def seed_database():
    """Seed the database with sample data."""
    print("Starting database seeding...")
    session = SessionLocal()
    try:
        if session.query(User).count() > 0:
            print("Database already has data. Clearing existing data...")
            clear_database(session)
        counts = seed(session)
        print(
            f"Created {counts['users']} users, {counts['events']} events, "
            f"{counts['registrations']} registrations"
        )
        print(f"\nTest accounts (password: {DEFAULT_PASSWORD}):")
        for data in [*ADMINS, *USERS]:
            print(f"   - {data['email']}")
    except Exception as e:
        session.rollback()
        print(f"\nError during seeding: {e}")
        raise
    finally:
        session.close()


if __name__ == "__main__":
    seed_database()
