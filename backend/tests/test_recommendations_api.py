from datetime import datetime, timedelta, timezone

from eventhub.recommender import RecommendationEngine


def _titles(resp):
    assert resp.status_code == 200, resp.text
    return [event["title"] for event in resp.json()["events"]]


def test_anonymous_gets_empty_list(helpers):
    client = helpers["client"]
    admin = helpers["admin_token"]()
    helpers["create_event"](admin)
    assert client.get("/api/recommendations").json() == {"events": []}

    out_of_range = client.get("/api/recommendations", params={"limit": 0})
    assert out_of_range.status_code == 200
    assert out_of_range.json() == {"events": []}


def test_limit_bounds(helpers):
    client = helpers["client"]
    headers = helpers["auth_header"](helpers["register_user"]("limits@test.ro"))
    assert client.get("/api/recommendations", params={"limit": 0}, headers=headers).status_code == 400
    assert client.get("/api/recommendations", params={"limit": 51}, headers=headers).status_code == 400
    assert client.get("/api/recommendations", params={"limit": 50}, headers=headers).status_code == 200


def test_fallback_lists_nearest_unregistered_events(helpers):
    client = helpers["client"]
    admin = helpers["admin_token"]()
    helpers["create_event"](admin, title="Later", date=helpers["future_time"](5))
    helpers["create_event"](admin, title="Sooner", date=helpers["future_time"](2))
    helpers["create_event"](
        admin, title="Finished", date=(datetime.now(timezone.utc) - timedelta(days=1)).isoformat()
    )
    dropped = helpers["create_event"](admin, title="Dropped", date=helpers["future_time"](1))

    token = helpers["register_user"]("newbie@test.ro")
    headers = helpers["auth_header"](token)
    client.post(f"/api/events/{dropped['id']}/register", headers=headers)
    client.delete(f"/api/events/{dropped['id']}/register", headers=headers)

    assert _titles(client.get("/api/recommendations", headers=headers)) == ["Sooner", "Later"]
    assert _titles(client.get("/api/recommendations", params={"limit": 1}, headers=headers)) == ["Sooner"]


def test_content_based_keeps_to_history_categories(helpers):
    client = helpers["client"]
    admin = helpers["admin_token"]()
    joined = helpers["create_event"](admin, title="Python Night", category="Tech", date=helpers["future_time"](2))
    helpers["create_event"](admin, title="Rust Workshop", category="Tech", date=helpers["future_time"](6))
    helpers["create_event"](admin, title="Jazz Night", category="Music", date=helpers["future_time"](4))

    headers = helpers["auth_header"](helpers["register_user"]("coder@test.ro"))
    client.post(f"/api/events/{joined['id']}/register", headers=headers)

    assert _titles(client.get("/api/recommendations", headers=headers)) == ["Rust Workshop"]


def test_collaborative_surfaces_events_of_similar_users(helpers):
    client = helpers["client"]
    admin = helpers["admin_token"]()
    shared = helpers["create_event"](admin, title="Python Night", category="Tech", date=helpers["future_time"](2))
    jazz = helpers["create_event"](admin, title="Jazz Night", category="Music", date=helpers["future_time"](4))
    helpers["create_event"](admin, title="Pottery", category="Art", date=helpers["future_time"](3))

    me = helpers["auth_header"](helpers["register_user"]("me@test.ro"))
    peer = helpers["auth_header"](helpers["register_user"]("peer@test.ro"))
    client.post(f"/api/events/{shared['id']}/register", headers=me)
    client.post(f"/api/events/{shared['id']}/register", headers=peer)
    client.post(f"/api/events/{jazz['id']}/register", headers=peer)

    first = client.get("/api/recommendations", headers=me)
    assert _titles(first) == ["Jazz Night"]
    assert first.json()["events"][0]["attendees"] == 1
    assert client.get("/api/recommendations", headers=me).json() == first.json()


def test_engine_failure_degrades_to_empty_list(helpers, monkeypatch):
    client = helpers["client"]
    admin = helpers["admin_token"]()
    helpers["create_event"](admin)
    headers = helpers["auth_header"](helpers["register_user"]("unlucky@test.ro"))

    def _boom(self, user_id, *, limit, now=None):
        raise RuntimeError("store offline")

    monkeypatch.setattr(RecommendationEngine, "recommend", _boom)
    resp = client.get("/api/recommendations", headers=headers)
    assert resp.status_code == 200
    assert resp.json() == {"events": []}
