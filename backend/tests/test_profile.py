from eventhub import models


def test_profile_defaults_and_update(helpers):
    client = helpers["client"]
    token = helpers["register_user"]("profile@test.ro", name="Ana", location="Cluj (46.77,23.59)")
    headers = helpers["auth_header"](token)

    profile = client.get("/api/me/profile", headers=headers).json()
    assert profile["name"] == "Ana"
    assert profile["location"] == "Cluj (46.77,23.59)"
    assert profile["preferences"]["categories"] == []
    assert profile["preferences"]["max_distance_km"] is None
    assert profile["preferences"]["notifications"]["email_notifications"] is True

    updated = client.put(
        "/api/me/profile",
        json={
            "name": "Ana Pop",
            "location": "Bucharest (44.43,26.10)",
            "preferences": {
                "categories": ["Tech", " Music ", "Tech"],
                "max_distance_km": 25,
                "time_preferences": {"preferred_days": ["friday"], "preferred_time_of_day": ["evening"]},
            },
        },
        headers=headers,
    )
    assert updated.status_code == 200
    body = updated.json()
    assert body["name"] == "Ana Pop"
    assert body["preferences"]["categories"] == ["Tech", "Music"]
    assert body["preferences"]["max_distance_km"] == 25
    assert body["preferences"]["time_preferences"]["preferred_days"] == ["Friday"]

    stored = helpers["db"].query(models.User).filter(models.User.email == "profile@test.ro").one()
    assert stored.preferences["categories"] == ["Tech", "Music"]


def test_profile_rejects_unknown_preference_keys(helpers):
    client = helpers["client"]
    token = helpers["register_user"]("strict@test.ro")
    resp = client.put(
        "/api/me/profile",
        json={"name": "Strict", "preferences": {"categoreis": ["Tech"]}},
        headers=helpers["auth_header"](token),
    )
    assert resp.status_code == 422

    negative = client.put(
        "/api/me/profile",
        json={"name": "Strict", "preferences": {"max_distance_km": -1}},
        headers=helpers["auth_header"](token),
    )
    assert negative.status_code == 422


def test_invalid_stored_preferences_fall_back_to_defaults(helpers):
    client = helpers["client"]
    token = helpers["register_user"]("legacy@test.ro")
    user = helpers["db"].query(models.User).filter(models.User.email == "legacy@test.ro").one()
    user.preferences = {"categories": "Tech", "unknown": True}
    helpers["db"].commit()

    profile = client.get("/api/me/profile", headers=helpers["auth_header"](token)).json()
    assert profile["preferences"]["categories"] == []


def test_change_password(helpers):
    client = helpers["client"]
    token = helpers["register_user"]("pwd@test.ro")
    headers = helpers["auth_header"](token)

    wrong = client.put(
        "/api/me/password",
        json={"current_password": "nope", "new_password": "newpass123", "confirm_password": "newpass123"},
        headers=headers,
    )
    assert wrong.status_code == 400

    mismatch = client.put(
        "/api/me/password",
        json={"current_password": "password123", "new_password": "newpass123", "confirm_password": "other123"},
        headers=headers,
    )
    assert mismatch.status_code == 422

    ok = client.put(
        "/api/me/password",
        json={"current_password": "password123", "new_password": "newpass123", "confirm_password": "newpass123"},
        headers=headers,
    )
    assert ok.status_code == 200
    helpers["login"]("pwd@test.ro", "newpass123")
    assert client.post("/login", json={"email": "pwd@test.ro", "password": "password123"}).status_code == 401
