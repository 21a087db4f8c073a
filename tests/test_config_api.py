# tests/test_config_api.py
from datetime import date, timedelta
from decimal import Decimal

import pytest

pytestmark = pytest.mark.anyio

BASE = "/api/v1/config"


async def test_terms_cannot_overlap(client, admin_headers):
    start = date.today() + timedelta(days=30)
    first = await client.post(f"{BASE}/terms", headers=admin_headers, json={
        "name": "Term 1", "start_date": start.isoformat(), "end_date": (start + timedelta(weeks=10)).isoformat(),
    })
    assert first.status_code == 201
    assert first.json()["lesson_count"] == 0

    overlapping = await client.post(f"{BASE}/terms", headers=admin_headers, json={
        "name": "Term 2",
        "start_date": (start + timedelta(weeks=9)).isoformat(),
        "end_date": (start + timedelta(weeks=19)).isoformat(),
    })
    assert overlapping.status_code == 400
    assert "overlap" in overlapping.json()["message"]

    backwards = await client.post(f"{BASE}/terms", headers=admin_headers, json={
        "name": "Term 3",
        "start_date": (start + timedelta(weeks=30)).isoformat(),
        "end_date": (start + timedelta(weeks=20)).isoformat(),
    })
    assert backwards.status_code == 400


async def test_current_and_upcoming_terms(client, admin_headers, setup):
    current = await client.get(f"{BASE}/terms/current", headers=admin_headers)
    assert current.status_code == 200
    assert current.json() is None

    upcoming = await client.get(f"{BASE}/terms/upcoming", headers=admin_headers)
    assert [term["name"] for term in upcoming.json()] == ["Term 1"]


async def test_term_with_lessons_is_deactivated_not_deleted(client, admin_headers, setup, lesson_payload):
    lesson = await client.post("/api/v1/lessons/", headers=admin_headers, json=lesson_payload())
    assert lesson.status_code == 201

    terms = await client.get(f"{BASE}/terms", headers=admin_headers)
    assert terms.json()[0]["lesson_count"] == 1

    removed = await client.delete(f"{BASE}/terms/{setup['term'].id}", headers=admin_headers)
    assert removed.json()["status"] == "deactivated"


async def test_rooms_are_unique_per_location(client, admin_headers, setup):
    location_id = str(setup["location"].id)
    duplicate = await client.post(f"{BASE}/rooms", headers=admin_headers, json={
        "location_id": location_id, "name": "studio a",
    })
    assert duplicate.status_code == 409

    other = await client.post(f"{BASE}/locations", headers=admin_headers, json={"name": "North Campus"})
    moved = await client.post(f"{BASE}/rooms", headers=admin_headers, json={
        "location_id": other.json()["id"], "name": "Studio A", "capacity": 4,
    })
    assert moved.status_code == 201

    rooms = await client.get(f"{BASE}/rooms", headers=admin_headers, params={"location_id": location_id})
    assert [room["name"] for room in rooms.json()] == ["Studio A"]

    locations = await client.get(f"{BASE}/locations", headers=admin_headers)
    assert {loc["name"]: len(loc["rooms"]) for loc in locations.json()} == {"Main Campus": 1, "North Campus": 1}


async def test_instruments_get_next_sort_order(client, admin_headers, setup):
    response = await client.post(f"{BASE}/instruments", headers=admin_headers, json={"name": "Violin"})
    assert response.status_code == 201
    assert response.json()["sort_order"] == setup["instrument"].sort_order + 1

    unused = await client.delete(f"{BASE}/instruments/{response.json()['id']}", headers=admin_headers)
    assert unused.json()["status"] == "deleted"


async def test_duration_range_and_uniqueness(client, admin_headers):
    assert (await client.post(f"{BASE}/durations", headers=admin_headers, json={"minutes": 10})).status_code == 400
    assert (await client.post(f"{BASE}/durations", headers=admin_headers, json={"minutes": 30})).status_code == 201
    assert (await client.post(f"{BASE}/durations", headers=admin_headers, json={"minutes": 30})).status_code == 409


async def test_pricing_package_lifecycle(client, admin_headers):
    empty = await client.post(f"{BASE}/pricing-packages", headers=admin_headers, json={
        "name": "Starter", "price": "120.00", "items": [],
    })
    assert empty.status_code == 400

    created = await client.post(f"{BASE}/pricing-packages", headers=admin_headers, json={
        "name": "Starter", "description": "Ten private lessons", "price": "450.00",
        "items": [{"lesson_type": "INDIVIDUAL", "count": 10}],
    })
    assert created.status_code == 201
    package_id = created.json()["id"]
    assert Decimal(str(created.json()["price"])) == Decimal("450.00")

    toggled = await client.patch(f"{BASE}/pricing-packages/{package_id}/toggle", headers=admin_headers)
    assert toggled.json()["is_active"] is False

    active = await client.get(f"{BASE}/pricing-packages", headers=admin_headers, params={"active_only": True})
    assert active.json() == []

    found = await client.get(f"{BASE}/pricing-packages", headers=admin_headers, params={"search": "private"})
    assert [p["name"] for p in found.json()] == ["Starter"]


async def test_teachers_read_but_cannot_write_config(client, teacher_headers, setup):
    assert (await client.get(f"{BASE}/instruments", headers=teacher_headers)).status_code == 200
    denied = await client.post(f"{BASE}/instruments", headers=teacher_headers, json={"name": "Cello"})
    assert denied.status_code == 403


async def test_config_is_isolated_per_school(client, admin_headers, setup):
    other = await client.post("/api/v1/schools/", json={
        "name": "Other School",
        "slug": "other",
        "admin": {"email": "admin@other-music.com", "password": "Tr3ble-Clef!", "first_name": "O", "last_name": "A"},
    })
    assert other.status_code == 201
    login = await client.post("/api/v1/auth/login", json={"email": "admin@other-music.com", "password": "Tr3ble-Clef!"})
    other_headers = {"Authorization": f"Bearer {login.json()['access_token']}"}

    assert (await client.get(f"{BASE}/instruments", headers=other_headers)).json() == []
    missing = await client.get(f"{BASE}/terms/{setup['term'].id}", headers=other_headers)
    assert missing.status_code == 404
