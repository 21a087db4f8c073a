# tests/test_attendance_notes_api.py
import pytest

pytestmark = pytest.mark.anyio

LESSON_DAY = "2030-03-05"


@pytest.fixture
async def class_lesson(client, admin_headers, lesson_payload, student):
    lesson = (await client.post("/api/v1/lessons/", headers=admin_headers, json=lesson_payload())).json()
    await client.post(
        f"/api/v1/lessons/{lesson['id']}/enroll", headers=admin_headers, json={"student_id": str(student.id)}
    )
    return lesson


async def _second_student(client, headers, lesson_id):
    created = await client.post("/api/v1/students/", headers=headers, json={
        "first_name": "Zoe", "last_name": "Adams", "birth_date": "2012-12-12",
    })
    student_id = created.json()["id"]
    await client.post(f"/api/v1/lessons/{lesson_id}/enroll", headers=headers, json={"student_id": student_id})
    return student_id


async def test_absence_needs_reason(client, teacher_headers, class_lesson, student):
    payload = {"lesson_id": class_lesson["id"], "student_id": str(student.id), "date": LESSON_DAY, "status": "ABSENT"}
    missing = await client.post("/api/v1/attendance/", headers=teacher_headers, json=payload)
    assert missing.status_code == 400
    assert missing.json()["message"] == "Absence reason is required for ABSENT or EXCUSED status"

    marked = await client.post("/api/v1/attendance/", headers=teacher_headers, json={**payload, "absence_reason": "Sick"})
    assert marked.status_code == 201
    assert marked.json()["absence_reason"] == "Sick"

    # Marking again replaces the record and drops the stale reason
    present = await client.post("/api/v1/attendance/", headers=teacher_headers, json={
        **payload, "status": "PRESENT", "absence_reason": "Sick",
    })
    assert present.json()["id"] == marked.json()["id"]
    assert present.json()["absence_reason"] is None


async def test_only_enrolled_students_can_be_marked(client, admin_headers, class_lesson):
    outsider = await client.post("/api/v1/students/", headers=admin_headers, json={
        "first_name": "Out", "last_name": "Sider", "birth_date": "2011-01-01",
    })
    response = await client.post("/api/v1/attendance/", headers=admin_headers, json={
        "lesson_id": class_lesson["id"], "student_id": outsider.json()["id"], "date": LESSON_DAY, "status": "PRESENT",
    })
    assert response.status_code == 400


async def test_batch_is_all_or_nothing(client, admin_headers, class_lesson, student):
    zoe = await _second_student(client, admin_headers, class_lesson["id"])
    batch = {"lesson_id": class_lesson["id"], "date": LESSON_DAY}

    invalid = await client.post("/api/v1/attendance/batch", headers=admin_headers, json={**batch, "records": [
        {"student_id": str(student.id), "status": "PRESENT"},
        {"student_id": zoe, "status": "EXCUSED"},
    ]})
    assert invalid.status_code == 400
    stored = await client.get(f"/api/v1/attendance/lesson/{class_lesson['id']}", headers=admin_headers)
    assert stored.json() == []

    saved = await client.post("/api/v1/attendance/batch", headers=admin_headers, json={**batch, "records": [
        {"student_id": str(student.id), "status": "PRESENT"},
        {"student_id": zoe, "status": "LATE", "notes": "Bus delay"},
    ]})
    assert [(r["student_name"], r["status"]) for r in saved.json()] == [("Zoe Adams", "LATE"), ("Mia Smith", "PRESENT")]

    roll_call = await client.get(
        f"/api/v1/attendance/lesson/{class_lesson['id']}/students", headers=admin_headers, params={"date": LESSON_DAY}
    )
    assert all(entry["attendance"] is not None for entry in roll_call.json())


async def test_report_and_student_stats(client, admin_headers, parent_headers, class_lesson, student):
    base = {"lesson_id": class_lesson["id"], "student_id": str(student.id)}
    for day, status in (("2030-03-05", "PRESENT"), ("2030-03-12", "LATE"), ("2030-03-19", "ABSENT"),
                        ("2030-03-26", "CANCELLED")):
        await client.post("/api/v1/attendance/", headers=admin_headers, json={
            **base, "date": day, "status": status, "absence_reason": "Away",
        })

    report = (await client.get(f"/api/v1/attendance/lesson/{class_lesson['id']}/report", headers=admin_headers)).json()
    assert report["total_sessions"] == 4
    assert report["students"][0]["attendance_rate"] == 66.7

    stats = await client.get(f"/api/v1/attendance/student/{student.id}/stats", headers=parent_headers)
    assert stats.status_code == 200
    assert (stats.json()["present"], stats.json()["late"], stats.json()["absent"]) == (1, 1, 1)
    assert stats.json()["attendance_rate"] == 66.7


async def test_teacher_limited_to_own_lessons(client, admin_headers, teacher_headers, lesson_payload, student):
    other = await client.post("/api/v1/teachers/", headers=admin_headers, json={
        "email": "otto@harmony-music.com", "password": "Tr3ble-Clef!", "first_name": "Otto", "last_name": "Other",
    })
    lesson = (await client.post("/api/v1/lessons/", headers=admin_headers, json=lesson_payload(
        teacher_id=other.json()["id"], day_of_week=4,
    ))).json()
    await client.post(f"/api/v1/lessons/{lesson['id']}/enroll", headers=admin_headers, json={"student_id": str(student.id)})

    response = await client.post("/api/v1/attendance/", headers=teacher_headers, json={
        "lesson_id": lesson["id"], "student_id": str(student.id), "date": LESSON_DAY, "status": "PRESENT",
    })
    assert response.status_code == 403

    await client.post("/api/v1/attendance/", headers=admin_headers, json={
        "lesson_id": lesson["id"], "student_id": str(student.id), "date": LESSON_DAY, "status": "PRESENT",
    })
    records = await client.get(f"/api/v1/attendance/lesson/{lesson['id']}", headers=teacher_headers)
    assert records.status_code == 403
    report = await client.get(f"/api/v1/attendance/lesson/{lesson['id']}/report", headers=teacher_headers)
    assert report.status_code == 403
    assert len((await client.get(f"/api/v1/attendance/lesson/{lesson['id']}", headers=admin_headers)).json()) == 1


async def test_notes_completion(client, teacher_headers, admin_headers, class_lesson, student):
    zoe = await _second_student(client, admin_headers, class_lesson["id"])
    completion_url = f"/api/v1/notes/lesson/{class_lesson['id']}/completion"

    empty = await client.get(completion_url, headers=teacher_headers, params={"date": LESSON_DAY})
    assert empty.json()["status"] == "PENDING"

    await client.post("/api/v1/notes/", headers=teacher_headers, json={
        "lesson_id": class_lesson["id"], "date": LESSON_DAY, "content": "Scales in C major", "status": "COMPLETE",
    })
    partial = await client.get(completion_url, headers=teacher_headers, params={"date": LESSON_DAY})
    assert partial.json()["status"] == "PARTIAL"
    assert partial.json()["class_note"]["content"] == "Scales in C major"

    for student_id in (str(student.id), zoe):
        await client.post("/api/v1/notes/", headers=teacher_headers, json={
            "lesson_id": class_lesson["id"], "student_id": student_id, "date": LESSON_DAY,
            "content": "Good progress", "status": "COMPLETE",
        })
    complete = await client.get(completion_url, headers=teacher_headers, params={"date": LESSON_DAY})
    assert complete.json()["status"] == "COMPLETE"


async def test_note_upsert_and_ownership(client, teacher_headers, admin_headers, class_lesson):
    payload = {"lesson_id": class_lesson["id"], "date": LESSON_DAY, "content": "Draft"}
    first = await client.post("/api/v1/notes/", headers=teacher_headers, json=payload)
    replaced = await client.post("/api/v1/notes/", headers=teacher_headers, json={**payload, "content": "Final"})
    assert replaced.json()["id"] == first.json()["id"]
    assert replaced.json()["content"] == "Final"

    other = await client.post("/api/v1/teachers/", headers=admin_headers, json={
        "email": "otto@harmony-music.com", "password": "Tr3ble-Clef!", "first_name": "Otto", "last_name": "Other",
    })
    login = await client.post("/api/v1/auth/login", json={"email": "otto@harmony-music.com", "password": "Tr3ble-Clef!"})
    otto_headers = {"Authorization": f"Bearer {login.json()['access_token']}"}
    assert other.status_code == 201

    forbidden = await client.put(f"/api/v1/notes/{first.json()['id']}", headers=otto_headers, json={"content": "Mine"})
    assert forbidden.status_code == 403
    assert (await client.delete(f"/api/v1/notes/{first.json()['id']}", headers=admin_headers)).status_code == 204


async def test_private_notes_hidden_from_parents(client, teacher_headers, parent_headers, student):
    await client.post("/api/v1/notes/", headers=teacher_headers, json={
        "student_id": str(student.id), "date": LESSON_DAY, "content": "Needs a new book",
    })
    await client.post("/api/v1/notes/", headers=teacher_headers, json={
        "student_id": str(student.id), "date": "2030-03-06", "content": "Discuss fees", "is_private": True,
    })
    visible = await client.get(f"/api/v1/notes/student/{student.id}", headers=parent_headers, params={"include_private": "true"})
    assert [note["content"] for note in visible.json()] == ["Needs a new book"]

    unlinked = await client.post("/api/v1/notes/", headers=teacher_headers, json={"date": LESSON_DAY, "content": "?"})
    assert unlinked.status_code == 400
