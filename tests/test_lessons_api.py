# tests/test_lessons_api.py
from datetime import timedelta

import pytest

pytestmark = pytest.mark.anyio


async def _add_students(client, headers, count):
    ids = []
    for index in range(count):
        response = await client.post("/api/v1/students/", headers=headers, json={
            "first_name": f"Kid{index}", "last_name": "Extra", "birth_date": "2016-02-02",
        })
        ids.append(response.json()["id"])
    return ids


async def test_create_lesson(client, admin_headers, lesson_payload):
    response = await client.post("/api/v1/lessons/", headers=admin_headers, json=lesson_payload())
    assert response.status_code == 201
    body = response.json()
    assert body["duration_mins"] == 60
    assert body["lesson_type"]["type"] == "GROUP"
    assert body["room"]["name"] == "Studio A"
    assert body["hybrid_pattern"] is None


async def test_invalid_references_are_reported_together(client, admin_headers, lesson_payload):
    missing = "00000000-0000-0000-0000-000000000000"
    response = await client.post("/api/v1/lessons/", headers=admin_headers, json=lesson_payload(
        room_id=missing, teacher_id=missing,
    ))
    assert response.status_code == 400
    assert "Invalid teacher." in response.json()["message"]
    assert "Invalid room." in response.json()["message"]


async def test_end_time_must_follow_start(client, admin_headers, lesson_payload):
    response = await client.post("/api/v1/lessons/", headers=admin_headers, json=lesson_payload(
        start_time="17:00", end_time="16:00",
    ))
    assert response.status_code == 400
    malformed = await client.post("/api/v1/lessons/", headers=admin_headers, json=lesson_payload(start_time="4pm"))
    assert malformed.status_code == 400


async def test_room_and_teacher_conflicts(client, admin_headers, lesson_payload, setup):
    await client.post("/api/v1/lessons/", headers=admin_headers, json=lesson_payload())

    room_clash = await client.post("/api/v1/lessons/", headers=admin_headers, json=lesson_payload(
        start_time="16:30", end_time="17:30",
    ))
    assert room_clash.status_code == 409
    assert room_clash.json()["message"].startswith("Room is not available")

    other_room = await client.post(
        "/api/v1/config/rooms",
        headers=admin_headers,
        json={"location_id": str(setup["location"].id), "name": "Studio B", "capacity": 4},
    )
    teacher_clash = await client.post("/api/v1/lessons/", headers=admin_headers, json=lesson_payload(
        room_id=other_room.json()["id"], start_time="16:30", end_time="17:30",
    ))
    assert teacher_clash.status_code == 409
    assert teacher_clash.json()["message"].startswith("Teacher is not available")

    # Back to back lessons touch but do not overlap
    back_to_back = await client.post("/api/v1/lessons/", headers=admin_headers, json=lesson_payload(
        start_time="17:00", end_time="18:00",
    ))
    assert back_to_back.status_code == 201


async def test_hybrid_lesson_needs_pattern(client, admin_headers, lesson_payload, setup):
    hybrid_type = str(setup["hybrid"].id)
    missing = await client.post("/api/v1/lessons/", headers=admin_headers, json=lesson_payload(
        lesson_type_id=hybrid_type,
    ))
    assert missing.status_code == 400

    created = await client.post("/api/v1/lessons/", headers=admin_headers, json=lesson_payload(
        lesson_type_id=hybrid_type, hybrid_pattern={},
    ))
    assert created.status_code == 201
    pattern = created.json()["hybrid_pattern"]
    assert pattern["group_weeks"] == [1, 3, 5, 7, 9]
    assert pattern["individual_weeks"] == [2, 4, 6, 8, 10]
    assert pattern["bookings_open"] is False


async def test_updates_keep_hybrid_pattern_valid(client, admin_headers, lesson_payload, setup):
    hybrid_type = str(setup["hybrid"].id)
    lesson = (await client.post("/api/v1/lessons/", headers=admin_headers, json=lesson_payload())).json()
    url = f"/api/v1/lessons/{lesson['id']}"

    bare = await client.put(url, headers=admin_headers, json={"lesson_type_id": hybrid_type})
    assert bare.status_code == 400
    assert bare.json()["message"] == "Hybrid lessons require a hybrid pattern configuration."

    converted = await client.put(url, headers=admin_headers, json={"lesson_type_id": hybrid_type, "hybrid_pattern": {}})
    assert converted.status_code == 200
    assert converted.json()["hybrid_pattern"]["individual_weeks"] == [2, 4, 6, 8, 10]
    assert (await client.put(url, headers=admin_headers, json={"hybrid_pattern": None})).status_code == 400

    start = setup["term"].end_date + timedelta(days=30)
    short = (await client.post("/api/v1/config/terms", headers=admin_headers, json={
        "name": "Short Term",
        "start_date": start.isoformat(),
        "end_date": (start + timedelta(weeks=4, days=-1)).isoformat(),
    })).json()
    too_long = await client.put(url, headers=admin_headers, json={"term_id": short["id"]})
    assert too_long.status_code == 400
    assert too_long.json()["message"] == "Week numbers must be within the term (1-4)."

    unchanged = (await client.get(url, headers=admin_headers)).json()
    assert unchanged["term"]["id"] == str(setup["term"].id)

    moved = await client.put(url, headers=admin_headers, json={
        "term_id": short["id"], "hybrid_pattern": {"pattern_type": "CUSTOM", "group_weeks": [1, 3], "individual_weeks": [2, 4]},
    })
    assert moved.status_code == 200
    assert moved.json()["term"]["id"] == short["id"]
    assert moved.json()["hybrid_pattern"]["individual_weeks"] == [2, 4]


async def test_custom_pattern_rejects_overlapping_weeks(client, admin_headers, lesson_payload, setup):
    response = await client.post("/api/v1/lessons/", headers=admin_headers, json=lesson_payload(
        lesson_type_id=str(setup["hybrid"].id),
        hybrid_pattern={"pattern_type": "CUSTOM", "group_weeks": [1, 2], "individual_weeks": [2, 3]},
    ))
    assert response.status_code == 400


async def test_enrollment_capacity(client, admin_headers, lesson_payload, student):
    lesson = (await client.post("/api/v1/lessons/", headers=admin_headers, json=lesson_payload(max_students=2))).json()
    base = f"/api/v1/lessons/{lesson['id']}"

    first = await client.post(f"{base}/enroll", headers=admin_headers, json={"student_id": str(student.id)})
    assert first.status_code == 201
    again = await client.post(f"{base}/enroll", headers=admin_headers, json={"student_id": str(student.id)})
    assert again.status_code == 409

    extra = await _add_students(client, admin_headers, 2)
    await client.post(f"{base}/enroll", headers=admin_headers, json={"student_id": extra[0]})
    full = await client.post(f"{base}/enroll", headers=admin_headers, json={"student_id": extra[1]})
    assert full.status_code == 409
    assert full.json()["message"] == "Lesson is full."

    capacity = await client.get(f"{base}/capacity", headers=admin_headers)
    assert capacity.json() == {"current": 2, "max": 2, "available": 0}

    shrink = await client.put(base, headers=admin_headers, json={"max_students": 1})
    assert shrink.status_code == 400

    assert (await client.delete(f"{base}/enroll/{student.id}", headers=admin_headers)).status_code == 204
    reenrolled = await client.post(f"{base}/enroll", headers=admin_headers, json={"student_id": extra[1]})
    assert reenrolled.status_code == 201


async def test_bulk_enroll(client, admin_headers, lesson_payload, student):
    lesson = (await client.post("/api/v1/lessons/", headers=admin_headers, json=lesson_payload(max_students=3))).json()
    base = f"/api/v1/lessons/{lesson['id']}"
    await client.post(f"{base}/enroll", headers=admin_headers, json={"student_id": str(student.id)})

    extra = await _add_students(client, admin_headers, 3)
    too_many = await client.post(f"{base}/enroll/bulk", headers=admin_headers, json={
        "student_ids": [str(student.id)] + extra,
    })
    assert too_many.status_code == 409

    response = await client.post(f"{base}/enroll/bulk", headers=admin_headers, json={
        "student_ids": [str(student.id)] + extra[:2],
    })
    body = response.json()
    assert body["already_enrolled"] == [str(student.id)]
    assert sorted(body["enrolled"]) == sorted(extra[:2])
    assert body["capacity"]["available"] == 0


async def test_reschedule_checks_conflicts(client, admin_headers, lesson_payload, student):
    first = (await client.post("/api/v1/lessons/", headers=admin_headers, json=lesson_payload())).json()
    second = (await client.post("/api/v1/lessons/", headers=admin_headers, json=lesson_payload(
        name="Theory", day_of_week=3,
    ))).json()
    await client.post(f"/api/v1/lessons/{second['id']}/enroll", headers=admin_headers, json={"student_id": str(student.id)})

    preview = await client.post(f"/api/v1/lessons/{second['id']}/check-conflicts", headers=admin_headers, json={
        "new_day_of_week": 2, "new_start_time": "16:30",
    })
    body = preview.json()
    assert body["has_conflicts"] is True
    assert body["teacher_conflict"]["lesson_id"] == first["id"]
    assert body["affected_students"] == 1

    blocked = await client.post(f"/api/v1/lessons/{second['id']}/reschedule", headers=admin_headers, json={
        "new_day_of_week": 2, "new_start_time": "16:30",
    })
    assert blocked.status_code == 409

    moved = await client.post(f"/api/v1/lessons/{second['id']}/reschedule", headers=admin_headers, json={
        "new_day_of_week": 4, "new_start_time": "09:15", "reason": "Room refit",
    })
    assert moved.status_code == 200
    assert (moved.json()["day_of_week"], moved.json()["start_time"], moved.json()["end_time"]) == (4, "09:15", "10:15")
    assert moved.json()["enrolled_count"] == 1


async def test_teacher_sees_only_own_lessons(client, admin_headers, teacher_headers, lesson_payload, setup):
    own = (await client.post("/api/v1/lessons/", headers=admin_headers, json=lesson_payload())).json()
    other_teacher = await client.post("/api/v1/teachers/", headers=admin_headers, json={
        "email": "otto@harmony-music.com", "password": "Tr3ble-Clef!", "first_name": "Otto", "last_name": "Other",
    })
    other = (await client.post("/api/v1/lessons/", headers=admin_headers, json=lesson_payload(
        name="Otto's class", teacher_id=other_teacher.json()["id"], day_of_week=5,
    ))).json()

    listing = await client.get("/api/v1/lessons/", headers=teacher_headers)
    assert [item["id"] for item in listing.json()["items"]] == [own["id"]]
    forbidden = await client.get(f"/api/v1/lessons/{other['id']}", headers=teacher_headers)
    assert forbidden.status_code == 403

    create = await client.post("/api/v1/lessons/", headers=teacher_headers, json=lesson_payload(day_of_week=6))
    assert create.status_code == 403


async def test_deleted_lesson_is_deactivated(client, admin_headers, lesson_payload):
    lesson = (await client.post("/api/v1/lessons/", headers=admin_headers, json=lesson_payload())).json()
    assert (await client.delete(f"/api/v1/lessons/{lesson['id']}", headers=admin_headers)).status_code == 204

    active = await client.get("/api/v1/lessons/", headers=admin_headers)
    assert active.json()["total"] == 0
    inactive = await client.get("/api/v1/lessons/", headers=admin_headers, params={"is_active": "false"})
    assert inactive.json()["items"][0]["is_active"] is False

    # The freed slot can be reused
    replacement = await client.post("/api/v1/lessons/", headers=admin_headers, json=lesson_payload())
    assert replacement.status_code == 201
