# tests/test_auth_api.py
import pytest

from music_portal.core.config import settings

from .utils import PASSWORD

pytestmark = pytest.mark.anyio


async def _login(client, email="admin@harmony-music.com", password=PASSWORD, **extra):
    return await client.post("/api/v1/auth/login", json={"email": email, "password": password, **extra})


async def test_create_school_and_login(client):
    response = await client.post("/api/v1/schools/", json={
        "name": "Crescendo Academy",
        "slug": "crescendo",
        "admin": {"email": "Owner@Crescendo-music.com", "password": PASSWORD, "first_name": "Olive", "last_name": "Owner"},
    })
    assert response.status_code == 201
    assert response.json()["slug"] == "crescendo"

    login = await _login(client, email="owner@crescendo-music.com")
    assert login.status_code == 200
    body = login.json()
    assert body["token_type"] == "bearer"
    assert body["user"]["role"] == "ADMIN"
    assert body["user"]["school"]["slug"] == "crescendo"


async def test_duplicate_school_slug_conflicts(client, school):
    response = await client.post("/api/v1/schools/", json={
        "name": "Another Harmony",
        "slug": "harmony",
        "admin": {"email": "x@harmony-music.com", "password": PASSWORD, "first_name": "X", "last_name": "Y"},
    })
    assert response.status_code == 409


async def test_school_creation_requires_bootstrap_token_when_configured(client, monkeypatch):
    monkeypatch.setattr(settings, "bootstrap_token", "let-me-in")
    payload = {
        "name": "Tempo School",
        "slug": "tempo",
        "admin": {"email": "a@tempo-music.com", "password": PASSWORD, "first_name": "A", "last_name": "B"},
    }
    denied = await client.post("/api/v1/schools/", json=payload)
    assert denied.status_code == 403

    allowed = await client.post("/api/v1/schools/", json=payload, headers={"X-Bootstrap-Token": "let-me-in"})
    assert allowed.status_code == 201


async def test_wrong_password_is_generic(client, school):
    response = await _login(client, password="Wrong-pass1!")
    assert response.status_code == 401
    assert response.json()["message"] == "Invalid email or password."

    unknown = await _login(client, email="nobody@harmony-music.com")
    assert unknown.json()["message"] == "Invalid email or password."


async def test_login_is_rate_limited(client, school):
    for _ in range(settings.login_max_attempts):
        response = await _login(client, password="Wrong-pass1!")
        assert response.status_code == 401

    blocked = await _login(client)
    assert blocked.status_code == 429
    assert "Retry-After" in blocked.headers


async def test_refresh_rotates_tokens(client, school):
    tokens = (await _login(client)).json()

    rotated = await client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert rotated.status_code == 200
    assert rotated.json()["refresh_token"] != tokens["refresh_token"]

    # The old refresh token is spent
    reused = await client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert reused.status_code == 401


async def test_logout_revokes_refresh_token(client, school):
    tokens = (await _login(client)).json()
    response = await client.post("/api/v1/auth/logout", json={"refresh_token": tokens["refresh_token"]})
    assert response.status_code == 204

    again = await client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert again.status_code == 401


async def test_me_requires_token(client, school, admin_headers):
    assert (await client.get("/api/v1/auth/me")).status_code == 401

    response = await client.get("/api/v1/auth/me", headers=admin_headers)
    assert response.status_code == 200
    assert response.json()["email"] == "admin@harmony-music.com"


async def test_change_password(client, school, admin_headers):
    weak = await client.post("/api/v1/auth/change-password", headers=admin_headers, json={
        "current_password": PASSWORD, "new_password": "alllowercase",
    })
    assert weak.status_code == 400

    response = await client.post("/api/v1/auth/change-password", headers=admin_headers, json={
        "current_password": PASSWORD, "new_password": "N3w-Melody!",
    })
    assert response.status_code == 204
    assert (await _login(client, password="N3w-Melody!")).status_code == 200


async def test_school_settings(client, school, admin_headers, teacher_headers):
    response = await client.put("/api/v1/schools/settings", headers=admin_headers, json={
        "phone": "02 9999 0000",
        "settings": {"invoice_footer": "Thank you"},
    })
    assert response.status_code == 200
    assert response.json()["settings"]["invoice_footer"] == "Thank you"

    denied = await client.put("/api/v1/schools/settings", headers=teacher_headers, json={"phone": "1"})
    assert denied.status_code == 403

    bad_zone = await client.put("/api/v1/schools/settings", headers=admin_headers, json={"timezone": "Nowhere/Land"})
    assert bad_zone.status_code == 400
