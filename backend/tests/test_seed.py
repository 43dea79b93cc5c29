import random

from eventhub import models
from eventhub.recommender import get_recommended_events
from seed_data import ADMINS, SAMPLE_EVENTS, USERS, clear_database, seed


def test_seed_creates_sample_data(db_session):
    counts = seed(db_session, random.Random(1))

    assert counts["users"] == len(USERS) + len(ADMINS)
    assert counts["events"] == len(SAMPLE_EVENTS)
    assert counts["activities"] == len(SAMPLE_EVENTS)
    assert db_session.query(models.Registration).count() == counts["registrations"]
    assert db_session.query(models.User).filter(models.User.role == models.UserRole.admin).count() == len(ADMINS)

    clear_database(db_session)
    assert db_session.query(models.Event).count() == 0


def test_seeded_users_get_bounded_recommendations(db_session):
    seed(db_session, random.Random(7))
    users = db_session.query(models.User).filter(models.User.role == models.UserRole.user).all()
    for user in users:
        records = get_recommended_events(db_session, user.id, limit=3)
        assert len(records) <= 3
        assert len({record.id for record in records}) == len(records)
