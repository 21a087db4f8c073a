# tests/test_dashboard_calendar_api.py
from datetime import timedelta

import pytest

from music_portal.services.dashboard_service import DashboardService, sync_health

from .utils import connect_drive

pytestmark = pytest.mark.anyio


@pytest.fixture
async def enrolled_lesson(client, admin_headers, lesson_payload, student):
    lesson = (await client.post("/api/v1/lessons/", headers=admin_headers, json=lesson_payload())).json()
    await client.post(
        f"/api/v1/lessons/{lesson['id']}/enroll", headers=admin_headers, json={"student_id": str(student.id)}
    )
    return lesson


def test_sync_health_levels():
    assert sync_health(False, 0, None) == "disconnected"
    assert sync_health(True, 0, None) == "warning"
    assert sync_health(True, 0, "2026-01-01") == "healthy"
    assert sync_health(True, 2, "2026-01-01") == "warning"
    assert sync_health(True, 6, "2026-01-01") == "error"


async def test_health_endpoints(client):
    assert (await client.get("/health")).json()["status"] == "healthy"
    assert (await client.get("/")).json()["docs"] == "/docs"


async def test_admin_dashboard(client, admin_headers, parent, enrolled_lesson):
    stats = (await client.get("/api/v1/dashboard/admin", headers=admin_headers)).json()
    assert stats["total_active_students"] == 1
    assert stats["total_active_families"] == 1
    assert stats["total_active_teachers"] == 1
    assert stats["total_outstanding_payments"] == 0.0
    assert stats["drive_sync_status"]["status"] == "disconnected"


async def test_lessons_counted_in_term_weeks(db, school, setup, enrolled_lesson):
    term_start = setup["term"].start_date
    during = await DashboardService(db, school["id"], today=term_start).admin_stats()
    assert during["total_lessons_this_week"] == 1
    before = await DashboardService(db, school["id"], today=term_start - timedelta(days=30)).admin_stats()
    assert before["total_lessons_this_week"] == 0


async def test_teacher_and_parent_dashboards(
    db, client, school, setup, teacher_headers, parent_headers, parent, enrolled_lesson
):
    teacher_stats = (await client.get("/api/v1/dashboard/teacher", headers=teacher_headers)).json()
    assert teacher_stats["total_students"] == 1
    assert teacher_stats["recently_uploaded_files"] == 0

    parent_stats = (await client.get("/api/v1/dashboard/parent", headers=parent_headers)).json()
    assert parent_stats["children_count"] == 1
    assert parent_stats["outstanding_invoices"] == 0

    in_term = await DashboardService(db, school["id"], today=setup["term"].start_date).parent_stats(parent)
    assert in_term["upcoming_lessons"] == 1

    assert (await client.get("/api/v1/dashboard/admin", headers=parent_headers)).status_code == 403
    assert (await client.get("/api/v1/dashboard/teacher", headers=parent_headers)).status_code == 403


async def test_drive_status_and_activity(db, client, school, admin_headers, enrolled_lesson):
    await connect_drive(db, school["id"])
    drive = (await client.get("/api/v1/dashboard/drive-status", headers=admin_headers)).json()
    assert drive["is_connected"] is True
    assert drive["status"] == "warning"

    activity = (await client.get("/api/v1/dashboard/activity", headers=admin_headers)).json()
    assert activity[0]["type"] == "enrollment"
    assert activity[0]["description"] == "Mia Smith enrolled in Piano Basics"


async def test_calendar_weekly_occurrences(client, admin_headers, enrolled_lesson):
    first_page = (await client.get("/api/v1/calendar/events", headers=admin_headers, params={"limit": 4})).json()
    assert first_page["pagination"]["total"] == 10
    assert first_page["pagination"]["has_more"] is True
    events = first_page["events"]
    assert [event["week_number"] for event in events] == [1, 2, 3, 4]
    assert events[0]["type"] == "GROUP"
    assert events[0]["start"].endswith("T16:00")
    assert events[0]["enrolled_count"] == 1


async def test_calendar_hybrid_weeks(client, admin_headers, lesson_payload, setup):
    await client.post("/api/v1/lessons/", headers=admin_headers, json=lesson_payload(
        lesson_type_id=str(setup["hybrid"].id), hybrid_pattern={},
    ))
    events = (await client.get("/api/v1/calendar/events", headers=admin_headers)).json()["events"]
    assert [event["type"] for event in events[:2]] == ["HYBRID_GROUP", "HYBRID_PLACEHOLDER"]
    assert events[1]["bookings_open"] is False


async def test_calendar_rules(client, admin_headers, teacher_headers, parent_headers, enrolled_lesson):
    backwards = await client.get("/api/v1/calendar/events", headers=admin_headers, params={
        "start_date": "2030-02-01", "end_date": "2030-01-01",
    })
    assert backwards.status_code == 400
    assert (await client.get("/api/v1/calendar/events", headers=parent_headers)).status_code == 403

    own = (await client.get("/api/v1/calendar/events", headers=teacher_headers)).json()
    assert own["pagination"]["total"] == 10
