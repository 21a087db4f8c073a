# tests/test_meet_and_greet_api.py
from uuid import UUID

import pytest
from sqlalchemy import select

from music_portal.models.tenant_specific.meet_and_greet import MeetAndGreet

pytestmark = pytest.mark.anyio


def _form(**overrides):
    form = {
        "student_first_name": "Lily",
        "student_last_name": "Nguyen",
        "student_age": 9,
        "instrument_interest": "Violin",
        "contact_1_name": "Hanh <b>Nguyen</b>",
        "contact_1_email": "Hanh@Example.com",
        "contact_1_phone": "0400 111 222",
        "preferred_time": "15:30",
    }
    form.update(overrides)
    return form


async def _submit_and_verify(client, db, **overrides):
    created = await client.post("/api/v1/meet-and-greet/public/harmony", json=_form(**overrides))
    assert created.status_code == 201
    token = (await db.execute(
        select(MeetAndGreet.verification_token).where(MeetAndGreet.id == UUID(created.json()["id"]))
    )).scalar()
    verified = await client.post(f"/api/v1/meet-and-greet/public/verify/{token}")
    assert verified.json()["status"] == "PENDING_APPROVAL"
    return created.json()["id"]


async def test_public_form_creates_unverified_request(client, admin_headers, school):
    response = await client.post("/api/v1/meet-and-greet/public/harmony", json=_form())
    assert response.status_code == 201
    assert response.json()["status"] == "PENDING_VERIFICATION"

    item = (await client.get(f"/api/v1/meet-and-greet/{response.json()['id']}", headers=admin_headers)).json()
    assert item["contact_1_name"] == "Hanh Nguyen"
    assert item["contact_1_email"] == "hanh@example.com"

    duplicate = await client.post("/api/v1/meet-and-greet/public/harmony", json=_form())
    assert duplicate.status_code == 400

    unknown = await client.post("/api/v1/meet-and-greet/public/nowhere", json=_form(contact_1_email="x@example.com"))
    assert unknown.status_code == 404


async def test_verification_token_is_single_use(client, db, school):
    created = await client.post("/api/v1/meet-and-greet/public/harmony", json=_form())
    token = (await db.execute(
        select(MeetAndGreet.verification_token).where(MeetAndGreet.id == UUID(created.json()["id"]))
    )).scalar()
    assert (await client.post(f"/api/v1/meet-and-greet/public/verify/{token}")).status_code == 200
    assert (await client.post(f"/api/v1/meet-and-greet/public/verify/{token}")).status_code == 404


async def test_public_form_is_rate_limited(client, school):
    for index in range(10):
        await client.post("/api/v1/meet-and-greet/public/harmony", json=_form(contact_1_email=f"p{index}@example.com"))
    blocked = await client.post("/api/v1/meet-and-greet/public/harmony", json=_form(contact_1_email="late@example.com"))
    assert blocked.status_code == 429
    assert "Retry-After" in blocked.headers


async def test_approval_workflow(client, db, admin_headers, teacher):
    item_id = await _submit_and_verify(client, db)
    base = f"/api/v1/meet-and-greet/{item_id}"

    assigned = await client.put(base, headers=admin_headers, json={
        "assigned_teacher_id": str(teacher.id), "scheduled_date_time": "2030-02-01T10:00:00",
    })
    assert assigned.json()["assigned_teacher_name"] == "Tina Teacher"

    early_convert = await client.post(f"{base}/convert", headers=admin_headers)
    assert early_convert.status_code == 400

    approved = await client.post(f"{base}/approve", headers=admin_headers)
    assert approved.json()["meet_and_greet"]["status"] == "APPROVED"
    assert "/register?token=" in approved.json()["registration_url"]

    converted = await client.post(f"{base}/convert", headers=admin_headers)
    assert converted.json()["status"] == "CONVERTED"
    assert (await client.post(f"{base}/cancel", headers=admin_headers)).status_code == 400

    counts = (await client.get("/api/v1/meet-and-greet/counts", headers=admin_headers)).json()
    assert counts["CONVERTED"] == 1
    assert counts["total"] == 1


async def test_reject_and_filter(client, db, admin_headers, teacher_headers):
    first = await _submit_and_verify(client, db)
    await _submit_and_verify(client, db, contact_1_email="other@example.com", student_first_name="Omar")

    rejected = await client.post(f"/api/v1/meet-and-greet/{first}/reject", headers=admin_headers, json={"reason": "Full"})
    assert rejected.json()["rejection_reason"] == "Full"

    pending = await client.get("/api/v1/meet-and-greet/", headers=admin_headers, params={"status": "PENDING_APPROVAL"})
    assert [item["student_first_name"] for item in pending.json()] == ["Omar"]
    searched = await client.get("/api/v1/meet-and-greet/", headers=admin_headers, params={"search": "lily"})
    assert [item["id"] for item in searched.json()] == [first]

    assert (await client.get("/api/v1/meet-and-greet/", headers=teacher_headers)).status_code == 403
