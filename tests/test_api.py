"""
Direct CRUD endpoints and authentication.
"""
from twokaj.services.sync_service import change_listing_status

from conftest import make_listing, make_message, make_user


def _register(client, user_id="u-1", pseudo="jean", **extra):
    r = client.post("/auth/register", json=make_user(user_id, pseudo, **extra))
    assert r.status_code == 201, r.text
    return r.json()


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "healthy"}


def test_root_lists_endpoints(client):
    data = client.get("/").json()
    assert data["endpoints"]["sync"] == "/sync-batch"


# ---------------------------------------------------------------------------
# auth
# ---------------------------------------------------------------------------

def test_register_returns_tokens_and_keeps_client_id(client):
    data = _register(client, email="jean@example.ht")

    assert data["token_type"] == "bearer"
    assert data["user"]["id"] == "u-1"
    assert data["user"]["email"] == "jean@example.ht"
    assert "password" not in data["user"]


def test_register_duplicate_pseudo_conflicts(client):
    _register(client)
    r = client.post("/auth/register", json=make_user("u-2", "jean"))
    assert r.status_code == 409


def test_login_with_pseudo_or_email(client):
    _register(client, email="jean@example.ht")

    r = client.post("/auth/login", json={"pseudo": "jean", "password": "secret"})
    assert r.status_code == 200
    assert r.json()["user"]["pseudo"] == "jean"

    r = client.post("/auth/login", json={"email": "jean@example.ht", "password": "secret"})
    assert r.status_code == 200


def test_login_rejects_wrong_password(client):
    _register(client)
    r = client.post("/auth/login", json={"pseudo": "jean", "password": "nope"})
    assert r.status_code == 401


def test_login_needs_an_identifier(client):
    r = client.post("/auth/login", json={"password": "secret"})
    assert r.status_code == 400


def test_me_requires_valid_access_token(client):
    tokens = _register(client)

    r = client.get("/auth/me", headers={"Authorization": f"Bearer {tokens['access_token']}"})
    assert r.status_code == 200
    assert r.json()["pseudo"] == "jean"

    # a refresh token is not an access token
    r = client.get("/auth/me", headers={"Authorization": f"Bearer {tokens['refresh_token']}"})
    assert r.status_code == 401


def test_refresh_issues_new_access_token(client):
    tokens = _register(client)

    r = client.post("/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert r.status_code == 200
    access = r.json()["access_token"]

    r = client.get("/auth/me", headers={"Authorization": f"Bearer {access}"})
    assert r.json()["id"] == "u-1"


def test_refresh_rejects_access_token(client):
    tokens = _register(client)
    r = client.post("/auth/refresh", json={"refresh_token": tokens["access_token"]})
    assert r.status_code == 401


# ---------------------------------------------------------------------------
# listings
# ---------------------------------------------------------------------------

def test_create_listing_includes_owner_fields(client):
    _register(client)

    r = client.post("/listings", json=make_listing(location="Jacmel, Sud-Est"))
    assert r.status_code == 201
    data = r.json()
    assert data["id"] == "abc-123"
    assert data["pseudo"] == "jean"
    assert data["user_city"] == "Jacmel"
    assert data["status"] == "open"


def test_create_listing_unknown_owner(client):
    r = client.post("/listings", json=make_listing(user_id="ghost"))
    assert r.status_code == 404


def test_create_listing_duplicate_id_conflicts(client):
    _register(client)
    client.post("/listings", json=make_listing())
    r = client.post("/listings", json=make_listing())
    assert r.status_code == 409


def test_create_listing_rejects_unknown_type(client):
    _register(client)
    r = client.post("/listings", json=make_listing(type="gift"))
    assert r.status_code == 422


def test_browse_filters_and_order(client):
    _register(client)
    client.post("/listings", json=make_listing(
        "l-1", category="outils", location="Jacmel", created_at="2024-01-01T10:00:00"))
    client.post("/listings", json=make_listing(
        "l-2", type="request", category="outils", location="Cap-Haïtien",
        created_at="2024-01-02T10:00:00"))
    client.post("/listings", json=make_listing(
        "l-3", category="semences", location="jacmel centre", created_at="2024-01-03T10:00:00"))

    assert [l["id"] for l in client.get("/listings").json()] == ["l-3", "l-2", "l-1"]
    assert [l["id"] for l in client.get("/listings", params={"category": "outils"}).json()] == ["l-2", "l-1"]
    assert [l["id"] for l in client.get("/listings", params={"type": "request"}).json()] == ["l-2"]
    assert [l["id"] for l in client.get("/listings", params={"location": "JACMEL"}).json()] == ["l-3", "l-1"]
    assert [l["id"] for l in client.get("/listings", params={"limit": 1, "offset": 1}).json()] == ["l-2"]


def test_browse_hides_closed_unless_asked(client):
    _register(client)
    client.post("/listings", json=make_listing("l-1"))
    client.post("/listings", json=make_listing("l-2", status="closed"))

    assert [l["id"] for l in client.get("/listings").json()] == ["l-1"]
    assert [l["id"] for l in client.get("/listings", params={"status": "closed"}).json()] == ["l-2"]
    assert {l["id"] for l in client.get("/listings", params={"status": "all"}).json()} == {"l-1", "l-2"}


def test_get_listing_not_found(client):
    assert client.get("/listings/missing").status_code == 404


def test_close_listing_then_reopen_conflicts(client):
    _register(client)
    client.post("/listings", json=make_listing())

    r = client.patch("/listings/abc-123/status", json={"status": "closed"})
    assert r.status_code == 200
    assert r.json()["status"] == "closed"

    # closing again is harmless
    assert client.patch("/listings/abc-123/status", json={"status": "closed"}).status_code == 200

    r = client.patch("/listings/abc-123/status", json={"status": "open"})
    assert r.status_code == 409
    assert client.get("/listings/abc-123").json()["status"] == "closed"


def test_close_unknown_listing(client):
    r = client.patch("/listings/missing/status", json={"status": "closed"})
    assert r.status_code == 404


def test_status_change_is_guarded_by_the_stored_row(client, db_session):
    _register(client)
    client.post("/listings", json=make_listing())
    client.patch("/listings/abc-123/status", json={"status": "closed"})

    assert change_listing_status(db_session, "abc-123", "open") is False
    assert change_listing_status(db_session, "abc-123", "closed") is True
    assert change_listing_status(db_session, "missing", "closed") is False
    db_session.commit()

    assert client.get("/listings/abc-123").json()["status"] == "closed"


# ---------------------------------------------------------------------------
# messages
# ---------------------------------------------------------------------------

def test_send_and_list_messages(client):
    _register(client)
    _register(client, "u-2", "marie")
    client.post("/listings", json=make_listing())

    r = client.post("/messages", json=make_message(created_at="2024-01-01T10:00:00"))
    assert r.status_code == 201
    assert r.json()["sender_pseudo"] == "marie"
    assert r.json()["ad_title"] == "5kg rice for labor"

    client.post("/messages", json=make_message(
        "m-2", sender_id="u-1", receiver_id="u-2", type="deal", created_at="2024-01-01T11:00:00"))

    for user_id in ("u-1", "u-2"):
        messages = client.get("/messages", params={"user_id": user_id}).json()
        assert [m["id"] for m in messages] == ["m-1", "m-2"]

    assert client.get("/messages", params={"user_id": "u-3"}).json() == []


def test_message_to_unknown_listing(client):
    _register(client)
    _register(client, "u-2", "marie")
    r = client.post("/messages", json=make_message(ad_id="missing"))
    assert r.status_code == 404


def test_message_from_unknown_user(client):
    _register(client)
    client.post("/listings", json=make_listing())
    r = client.post("/messages", json=make_message(sender_id="ghost"))
    assert r.status_code == 404


def test_duplicate_message_conflicts(client):
    _register(client)
    _register(client, "u-2", "marie")
    client.post("/listings", json=make_listing())
    client.post("/messages", json=make_message())
    assert client.post("/messages", json=make_message()).status_code == 409


# ---------------------------------------------------------------------------
# gallery
# ---------------------------------------------------------------------------

def test_gallery(client):
    client.post("/gallery", json={"id": "g-1", "photo_url": "http://img/1.jpg",
                                  "created_at": "2024-01-01T10:00:00"})
    client.post("/gallery", json={"id": "g-2", "photo_url": "http://img/2.jpg",
                                  "description": "Lakou", "created_at": "2024-01-02T10:00:00"})

    items = client.get("/gallery").json()
    assert [g["id"] for g in items] == ["g-2", "g-1"]
    assert items[0]["description"] == "Lakou"

    r = client.post("/gallery", json={"id": "g-1", "photo_url": "http://img/1.jpg"})
    assert r.status_code == 409
