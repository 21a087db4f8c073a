# tests/test_hybrid_bookings_api.py
from datetime import date, datetime, timedelta, timezone
from uuid import UUID

import pytest

from music_portal.core.exceptions import ValidationException
from music_portal.services.hybrid_booking_service import HybridBookingService

pytestmark = pytest.mark.anyio


@pytest.fixture
async def hybrid_lesson(client, admin_headers, lesson_payload, setup, student):
    response = await client.post("/api/v1/lessons/", headers=admin_headers, json=lesson_payload(
        name="Piano Plus",
        lesson_type_id=str(setup["hybrid"].id),
        hybrid_pattern={"individual_slot_duration": 30, "booking_deadline_hours": 48},
    ))
    lesson = response.json()
    await client.post(
        f"/api/v1/lessons/{lesson['id']}/enroll", headers=admin_headers, json={"student_id": str(student.id)}
    )
    return lesson


async def _open(client, headers, lesson_id, value=True):
    return await client.put(
        f"/api/v1/hybrid-bookings/lessons/{lesson_id}/bookings-open", headers=headers, json={"bookings_open": value}
    )


async def _book(client, headers, lesson_id, student_id, week=2, start_time="16:00"):
    return await client.post("/api/v1/hybrid-bookings/", headers=headers, json={
        "lesson_id": lesson_id, "student_id": str(student_id), "week_number": week, "start_time": start_time,
    })


async def test_slots_require_open_individual_week(client, admin_headers, parent_headers, hybrid_lesson):
    slots_url = f"/api/v1/hybrid-bookings/lessons/{hybrid_lesson['id']}/slots"
    closed = await client.get(slots_url, headers=parent_headers, params={"week": 2})
    assert closed.status_code == 400

    opened = await _open(client, admin_headers, hybrid_lesson["id"])
    assert opened.json()["bookings_open"] is True

    group_week = await client.get(slots_url, headers=parent_headers, params={"week": 1})
    assert group_week.status_code == 400

    slots = (await client.get(slots_url, headers=parent_headers, params={"week": 2})).json()
    assert [(s["start_time"], s["end_time"]) for s in slots] == [("16:00", "16:30"), ("16:30", "17:00")]
    assert all(s["is_available"] for s in slots)


async def test_parent_books_a_slot(client, admin_headers, parent_headers, hybrid_lesson, student, setup):
    await _open(client, admin_headers, hybrid_lesson["id"])
    response = await _book(client, parent_headers, hybrid_lesson["id"], student.id)
    assert response.status_code == 201
    booking = response.json()
    assert booking["status"] == "CONFIRMED"
    assert booking["end_time"] == "16:30"
    scheduled = date.fromisoformat(booking["scheduled_date"])
    assert (scheduled - setup["term"].start_date).days // 7 == 1
    assert (scheduled.isoweekday() % 7) == 2

    slots = (await client.get(
        f"/api/v1/hybrid-bookings/lessons/{hybrid_lesson['id']}/slots", headers=parent_headers, params={"week": 2}
    )).json()
    assert [s["is_available"] for s in slots] == [False, True]

    mine = await client.get("/api/v1/hybrid-bookings/my-bookings", headers=parent_headers)
    assert [b["id"] for b in mine.json()] == [booking["id"]]


async def test_booking_rules(client, admin_headers, parent_headers, hybrid_lesson, student, family):
    await _open(client, admin_headers, hybrid_lesson["id"])
    sibling = await client.post("/api/v1/students/", headers=admin_headers, json={
        "first_name": "Max", "last_name": "Smith", "birth_date": "2013-09-09", "family_id": str(family.id),
    })
    sibling_id = sibling.json()["id"]

    not_enrolled = await _book(client, parent_headers, hybrid_lesson["id"], sibling_id)
    assert not_enrolled.status_code == 400

    await client.post(
        f"/api/v1/lessons/{hybrid_lesson['id']}/enroll", headers=admin_headers, json={"student_id": sibling_id}
    )
    bad_slot = await _book(client, parent_headers, hybrid_lesson["id"], sibling_id, start_time="16:15")
    assert bad_slot.status_code == 400

    assert (await _book(client, parent_headers, hybrid_lesson["id"], student.id)).status_code == 201
    twice = await _book(client, parent_headers, hybrid_lesson["id"], student.id, start_time="16:30")
    assert twice.status_code == 409
    taken = await _book(client, parent_headers, hybrid_lesson["id"], sibling_id)
    assert taken.status_code == 409
    assert taken.json()["message"] == "This time slot is already booked."


async def test_parent_cannot_book_for_other_families(client, admin_headers, hybrid_lesson):
    await _open(client, admin_headers, hybrid_lesson["id"])
    other_family = await client.post("/api/v1/families/", headers=admin_headers, json={"name": "Jones Family"})
    await client.post("/api/v1/parents/", headers=admin_headers, json={
        "email": "jo@jones-music.com", "password": "Tr3ble-Clef!", "first_name": "Jo", "last_name": "Jones",
        "family_id": other_family.json()["id"],
    })
    login = await client.post("/api/v1/auth/login", json={"email": "jo@jones-music.com", "password": "Tr3ble-Clef!"})
    jones_headers = {"Authorization": f"Bearer {login.json()['access_token']}"}

    enrolled = (await client.get(f"/api/v1/lessons/{hybrid_lesson['id']}/enrollments", headers=admin_headers)).json()
    response = await _book(client, jones_headers, hybrid_lesson["id"], enrolled[0]["student_id"])
    assert response.status_code == 403


async def test_reschedule_and_cancel(client, admin_headers, parent_headers, teacher_headers, hybrid_lesson, student):
    await _open(client, admin_headers, hybrid_lesson["id"])
    booking = (await _book(client, parent_headers, hybrid_lesson["id"], student.id)).json()

    moved = await client.put(
        f"/api/v1/hybrid-bookings/{booking['id']}/reschedule",
        headers=parent_headers,
        json={"week_number": 4, "start_time": "16:30"},
    )
    assert moved.status_code == 200
    assert (moved.json()["week_number"], moved.json()["start_time"]) == (4, "16:30")

    teacher_cancel = await client.post(f"/api/v1/hybrid-bookings/{booking['id']}/cancel", headers=teacher_headers, json={})
    assert teacher_cancel.status_code == 403

    cancelled = await client.post(
        f"/api/v1/hybrid-bookings/{booking['id']}/cancel", headers=parent_headers, json={"reason": "Holiday"}
    )
    assert cancelled.json()["status"] == "CANCELLED"
    assert cancelled.json()["cancellation_reason"] == "Holiday"

    again = await client.post(f"/api/v1/hybrid-bookings/{booking['id']}/cancel", headers=admin_headers, json={})
    assert again.status_code == 400


async def test_students_cannot_read_or_cancel_bookings(
    client, admin_headers, parent_headers, student_headers, hybrid_lesson, student
):
    await _open(client, admin_headers, hybrid_lesson["id"])
    booking = (await _book(client, parent_headers, hybrid_lesson["id"], student.id)).json()
    url = f"/api/v1/hybrid-bookings/{booking['id']}"

    assert (await client.get(url, headers=student_headers)).status_code == 403
    assert (await client.post(f"{url}/cancel", headers=student_headers, json={})).status_code == 403

    unchanged = await client.get(url, headers=parent_headers)
    assert unchanged.json()["status"] == "CONFIRMED"
    cancelled = await client.post(f"{url}/cancel", headers=admin_headers, json={})
    assert cancelled.json()["status"] == "CANCELLED"


async def test_cancellation_deadline_applies_to_parents_only(
    client, admin_headers, parent_headers, hybrid_lesson, student, parent, db, school
):
    await _open(client, admin_headers, hybrid_lesson["id"])
    booking = (await _book(client, parent_headers, hybrid_lesson["id"], student.id)).json()
    lesson_start = datetime.combine(
        date.fromisoformat(booking["scheduled_date"]), datetime.min.time(), tzinfo=timezone.utc
    ) + timedelta(hours=16)

    late = HybridBookingService(db, school["id"], now=lesson_start - timedelta(hours=2))
    with pytest.raises(ValidationException):
        await late.cancel_booking(UUID(booking["id"]), parent)

    cancelled = await late.cancel_booking(UUID(booking["id"]), None, "Teacher unwell")
    assert cancelled.status.value == "CANCELLED"


async def test_stats_and_unbooked_students(client, admin_headers, parent_headers, hybrid_lesson, student):
    await _open(client, admin_headers, hybrid_lesson["id"])
    base = f"/api/v1/hybrid-bookings/lessons/{hybrid_lesson['id']}"

    unbooked = (await client.get(f"{base}/unbooked", headers=admin_headers, params={"week": 2})).json()
    assert unbooked[0]["student_id"] == str(student.id)
    assert unbooked[0]["parent"]["email"] == "sam@smith-music.com"

    await _book(client, parent_headers, hybrid_lesson["id"], student.id)
    stats = (await client.get(f"{base}/stats", headers=admin_headers, params={"week": 2})).json()
    assert stats["total_students"] == 1
    assert stats["booked"] == 1
    assert stats["completion_rate"] == 100.0
    assert (await client.get(f"{base}/unbooked", headers=admin_headers, params={"week": 2})).json() == []
