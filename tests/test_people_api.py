# tests/test_people_api.py
import pytest

from .utils import PASSWORD

pytestmark = pytest.mark.anyio


async def test_create_teacher_with_instruments(client, admin_headers, setup):
    violin = await client.post("/api/v1/config/instruments", headers=admin_headers, json={"name": "Violin"})
    response = await client.post("/api/v1/teachers/", headers=admin_headers, json={
        "email": "vera@harmony-music.com",
        "password": PASSWORD,
        "first_name": "Vera",
        "last_name": "Strings",
        "instrument_ids": [str(setup["instrument"].id)],
        "primary_instrument_id": violin.json()["id"],
    })
    assert response.status_code == 201
    instruments = response.json()["instruments"]
    assert [(i["name"], i["is_primary"]) for i in instruments] == [("Violin", True), ("Piano", False)]


async def test_teacher_email_must_be_unique(client, admin_headers, teacher):
    response = await client.post("/api/v1/teachers/", headers=admin_headers, json={
        "email": "TINA@harmony-music.com", "password": PASSWORD, "first_name": "T", "last_name": "Two",
    })
    assert response.status_code == 409


async def test_primary_instrument_moves_when_removed(client, admin_headers, teacher, setup):
    base = f"/api/v1/teachers/{teacher.id}/instruments"
    cello = await client.post("/api/v1/config/instruments", headers=admin_headers, json={"name": "Cello"})
    first = await client.post(base, headers=admin_headers, json={"instrument_id": str(setup["instrument"].id)})
    assert first.json()["instruments"][0]["is_primary"] is True
    await client.post(base, headers=admin_headers, json={"instrument_id": cello.json()["id"]})

    duplicate = await client.post(base, headers=admin_headers, json={"instrument_id": cello.json()["id"]})
    assert duplicate.status_code == 409

    removed = await client.delete(f"{base}/{setup['instrument'].id}", headers=admin_headers)
    assert removed.json()["instruments"] == [{"id": cello.json()["id"], "name": "Cello", "is_primary": True}]


async def test_teacher_profile_endpoint(client, teacher_headers, teacher):
    response = await client.get("/api/v1/teachers/me", headers=teacher_headers)
    assert response.status_code == 200
    assert response.json()["id"] == str(teacher.id)


async def test_deleted_teacher_cannot_sign_in(client, admin_headers, teacher):
    assert (await client.delete(f"/api/v1/teachers/{teacher.id}", headers=admin_headers)).status_code == 204
    login = await client.post("/api/v1/auth/login", json={"email": "tina@harmony-music.com", "password": PASSWORD})
    assert login.status_code == 401


async def test_first_parent_becomes_primary(client, admin_headers, family):
    response = await client.post("/api/v1/parents/", headers=admin_headers, json={
        "email": "pat@smith-music.com", "password": PASSWORD, "first_name": "Pat", "last_name": "Smith",
        "family_id": str(family.id), "emergency_name": "Grandma Smith",
    })
    assert response.status_code == 201
    assert response.json()["is_primary"] is True
    assert response.json()["emergency_name"] == "Grandma Smith"

    second = await client.post("/api/v1/parents/", headers=admin_headers, json={
        "email": "lee@smith-music.com", "password": PASSWORD, "first_name": "Lee", "last_name": "Smith",
        "family_id": str(family.id),
    })
    assert second.json()["is_primary"] is False


async def test_family_membership(client, admin_headers, family, parent, student):
    detail = await client.get(f"/api/v1/families/{family.id}", headers=admin_headers)
    body = detail.json()
    assert body["primary_parent_id"] == str(parent.id)
    assert [s["first_name"] for s in body["students"]] == ["Mia"]

    # A family with members cannot be deleted
    blocked = await client.delete(f"/api/v1/families/{family.id}", headers=admin_headers)
    assert blocked.status_code == 400

    last_parent = await client.delete(f"/api/v1/families/{family.id}/parents/{parent.id}", headers=admin_headers)
    assert last_parent.status_code == 400

    moved = await client.delete(f"/api/v1/families/{family.id}/students/{student.id}", headers=admin_headers)
    assert moved.json()["student_count"] == 0


async def test_family_names_are_unique(client, admin_headers, family):
    response = await client.post("/api/v1/families/", headers=admin_headers, json={"name": "Smith Family"})
    assert response.status_code == 409


async def test_student_age_group_and_future_birth_date(client, admin_headers, family):
    response = await client.post("/api/v1/students/", headers=admin_headers, json={
        "first_name": "Leo", "last_name": "Smith", "birth_date": "1990-04-02", "family_id": str(family.id),
    })
    assert response.status_code == 201
    assert response.json()["age_group"] == "ADULT"

    future = await client.post("/api/v1/students/", headers=admin_headers, json={
        "first_name": "Future", "last_name": "Kid", "birth_date": "2999-01-01",
    })
    assert future.status_code == 400

    adults = await client.get("/api/v1/students/", headers=admin_headers, params={"age_group": "ADULT"})
    assert [s["first_name"] for s in adults.json()["items"]] == ["Leo"]


async def test_parent_sees_only_own_children(client, admin_headers, parent_headers, student):
    other_family = await client.post("/api/v1/families/", headers=admin_headers, json={"name": "Jones Family"})
    stranger = await client.post("/api/v1/students/", headers=admin_headers, json={
        "first_name": "Ned", "last_name": "Jones", "birth_date": "2014-03-03",
        "family_id": other_family.json()["id"],
    })

    children = await client.get("/api/v1/parents/me/children", headers=parent_headers)
    assert [c["id"] for c in children.json()] == [str(student.id)]

    own = await client.get(f"/api/v1/students/{student.id}", headers=parent_headers)
    assert own.status_code == 200
    other = await client.get(f"/api/v1/students/{stranger.json()['id']}", headers=parent_headers)
    assert other.status_code == 403

    listing = await client.get("/api/v1/students/", headers=parent_headers)
    assert listing.status_code == 403
