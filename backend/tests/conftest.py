import os
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("SECRET_KEY", "test-secret")
os.environ.setdefault("EMAIL_ENABLED", "false")
os.environ.setdefault("GEOCODER_BACKEND", "embedded")

from eventhub import auth, geo, models
from eventhub import api as api_module
from eventhub.api import app
from eventhub.database import Base, engine, get_db, SessionLocal


@pytest.fixture(scope="session", autouse=True)
def schema():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture()
def db_session():
    with SessionLocal() as db:
        with db.begin():
            for table in reversed(Base.metadata.sorted_tables):
                db.execute(table.delete())
        yield db


@pytest.fixture(autouse=True)
def _fresh_module_state(monkeypatch):
    monkeypatch.setattr(geo, "_geocoder", None)
    api_module._RATE_LIMIT_STORE.clear()
    yield
    api_module._RATE_LIMIT_STORE.clear()


@pytest.fixture()
def client(db_session):
    app.dependency_overrides[get_db] = lambda: db_session
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.pop(get_db, None)


@pytest.fixture()
def helpers(client, db_session):
    def register_user(email: str, name: str = "Test User", location: str | None = None) -> str:
        payload = {
            "email": email,
            "name": name,
            "password": "password123",
            "confirm_password": "password123",
        }
        if location:
            payload["location"] = location
        resp = client.post("/register", json=payload)
        assert resp.status_code == 200, resp.text
        return resp.json()["access_token"]

    def login(email: str, password: str) -> str:
        resp = client.post("/login", json={"email": email, "password": password})
        assert resp.status_code == 200, resp.text
        return resp.json()["access_token"]

    def make_admin(email: str = "admin@test.ro", password: str = "admin123") -> None:
        admin = models.User(
            email=email,
            password_hash=auth.get_password_hash(password),
            role=models.UserRole.admin,
            name="Admin",
        )
        db_session.add(admin)
        db_session.commit()

    def admin_token(email: str = "admin@test.ro") -> str:
        make_admin(email)
        return login(email, "admin123")

    def future_time(days: int = 1) -> str:
        return (datetime.now(timezone.utc) + timedelta(days=days)).isoformat()

    def auth_header(token: str) -> dict:
        return {"Authorization": f"Bearer {token}"}

    def create_event(token: str, **overrides) -> dict:
        payload = {
            "title": "Community Meetup",
            "description": "Monthly meetup",
            "category": "Tech",
            "date": future_time(3),
            "time": "18:00",
            "location": "Innovation Hub (46.7712,23.6236)",
            "capacity": 10,
        }
        payload.update(overrides)
        resp = client.post("/api/events", json=payload, headers=auth_header(token))
        assert resp.status_code == 201, resp.text
        return resp.json()

    def user_id(email: str) -> int:
        return db_session.query(models.User).filter(models.User.email == email).one().id

    return {
        "client": client,
        "db": db_session,
        "register_user": register_user,
        "login": login,
        "make_admin": make_admin,
        "admin_token": admin_token,
        "future_time": future_time,
        "auth_header": auth_header,
        "create_event": create_event,
        "user_id": user_id,
    }
