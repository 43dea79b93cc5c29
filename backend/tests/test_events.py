from datetime import datetime, timedelta, timezone

from eventhub import models


def test_only_admin_can_create_events(helpers):
    client = helpers["client"]
    user_token = helpers["register_user"]("user@test.ro")
    payload = {
        "title": "Nope",
        "description": "Desc",
        "category": "Tech",
        "date": helpers["future_time"](),
        "time": "18:00",
        "location": "Hall",
        "capacity": 5,
    }
    resp = client.post("/api/events", json=payload, headers=helpers["auth_header"](user_token))
    assert resp.status_code == 403

    anonymous = client.post("/api/events", json=payload)
    assert anonymous.status_code == 401


def test_create_event_validates_fields(helpers):
    client = helpers["client"]
    token = helpers["admin_token"]()
    base = {
        "title": "Event",
        "description": "Desc",
        "category": "Tech",
        "date": helpers["future_time"](),
        "time": "18:00",
        "location": "Hall",
        "capacity": 5,
    }
    for field, value in [("title", "   "), ("capacity", 0), ("location", ""), ("date", None)]:
        payload = {**base, field: value}
        resp = client.post("/api/events", json=payload, headers=helpers["auth_header"](token))
        assert resp.status_code == 422, field


def test_create_event_logs_activity_and_returns_creator(helpers):
    client = helpers["client"]
    token = helpers["admin_token"]()
    event = helpers["create_event"](token, title="Launch Party")
    assert event["creator_name"] == "Admin"
    assert event["attendees"] == 0

    activities = helpers["db"].query(models.Activity).all()
    assert [(a.action, a.target_name, a.target_id) for a in activities] == [
        ("Created event", "Launch Party", str(event["id"]))
    ]


def test_list_events_filters_and_paginates(helpers):
    client = helpers["client"]
    token = helpers["admin_token"]()
    helpers["create_event"](token, title="Python Night", category="Tech", date=helpers["future_time"](2))
    helpers["create_event"](token, title="Jazz Evening", category="Music", description="Live python-free jazz",
                            date=helpers["future_time"](1))
    helpers["create_event"](token, title="Old Talk", category="Tech",
                            date=(datetime.now(timezone.utc) - timedelta(days=3)).isoformat())

    listing = client.get("/api/events").json()
    assert [item["title"] for item in listing["items"]] == ["Jazz Evening", "Python Night"]
    assert listing["total"] == 2
    assert listing["pages"] == 1

    with_past = client.get("/api/events", params={"include_past": True}).json()
    assert [item["title"] for item in with_past["items"]] == ["Old Talk", "Jazz Evening", "Python Night"]

    by_category = client.get("/api/events", params={"category": "music"}).json()
    assert [item["title"] for item in by_category["items"]] == ["Jazz Evening"]

    search = client.get("/api/events", params={"search": "PYTHON"}).json()
    assert {item["title"] for item in search["items"]} == {"Python Night", "Jazz Evening"}

    paged = client.get("/api/events", params={"page": 2, "page_size": 1}).json()
    assert [item["title"] for item in paged["items"]] == ["Python Night"]
    assert paged["pages"] == 2

    assert client.get("/api/events", params={"page": 0}).status_code == 400
    assert client.get("/api/events", params={"page_size": 101}).status_code == 400


def test_categories_are_distinct(helpers):
    client = helpers["client"]
    token = helpers["admin_token"]()
    helpers["create_event"](token, category="Tech")
    helpers["create_event"](token, category="Music")
    helpers["create_event"](token, category="Tech")

    resp = client.get("/api/categories")
    assert resp.json()["items"] == ["Music", "Tech"]


def test_event_detail_reports_registration_for_caller(helpers):
    client = helpers["client"]
    admin = helpers["admin_token"]()
    event = helpers["create_event"](admin, capacity=3)
    user_token = helpers["register_user"]("detail@test.ro")

    anonymous = client.get(f"/api/events/{event['id']}").json()
    assert anonymous["is_registered"] is False
    assert anonymous["registration_status"] is None
    assert anonymous["available_seats"] == 3

    client.post(f"/api/events/{event['id']}/register", headers=helpers["auth_header"](user_token))
    detail = client.get(f"/api/events/{event['id']}", headers=helpers["auth_header"](user_token)).json()
    assert detail["is_registered"] is True
    assert detail["registration_status"] == "REGISTERED"
    assert detail["attendees"] == 1
    assert detail["available_seats"] == 2

    assert client.get("/api/events/9999").status_code == 404


def test_update_and_delete_event(helpers):
    client = helpers["client"]
    token = helpers["admin_token"]()
    event = helpers["create_event"](token, title="Draft")

    update = {
        "title": "Final",
        "description": "Updated",
        "category": "Art",
        "date": helpers["future_time"](5),
        "time": "10:00",
        "location": "Gallery",
        "capacity": 20,
    }
    resp = client.put(f"/api/events/{event['id']}", json=update, headers=helpers["auth_header"](token))
    assert resp.status_code == 200
    assert resp.json()["title"] == "Final"
    assert resp.json()["category"] == "Art"

    missing = client.put("/api/events/9999", json=update, headers=helpers["auth_header"](token))
    assert missing.status_code == 404

    deleted = client.delete(f"/api/events/{event['id']}", headers=helpers["auth_header"](token))
    assert deleted.status_code == 204
    assert client.get(f"/api/events/{event['id']}").status_code == 404

    actions = [a.action for a in helpers["db"].query(models.Activity).order_by(models.Activity.id).all()]
    assert actions == ["Created event", "Updated event", "Deleted event"]


def test_update_rejects_capacity_below_attendees(helpers):
    client = helpers["client"]
    token = helpers["admin_token"]()
    event = helpers["create_event"](token, capacity=5)
    for email in ("a@test.ro", "b@test.ro"):
        user_token = helpers["register_user"](email)
        client.post(f"/api/events/{event['id']}/register", headers=helpers["auth_header"](user_token))

    update = {
        "title": event["title"],
        "description": event["description"],
        "category": event["category"],
        "date": helpers["future_time"](3),
        "time": "18:00",
        "location": event["location"],
        "capacity": 1,
    }
    resp = client.put(f"/api/events/{event['id']}", json=update, headers=helpers["auth_header"](token))
    assert resp.status_code == 400


def test_health_check(client):
    resp = client.get("/api/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "database": "ok"}
