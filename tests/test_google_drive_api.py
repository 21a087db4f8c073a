# tests/test_google_drive_api.py
import pytest

from music_portal.core.exceptions import ExternalServiceError
from music_portal.services.drive_sync_service import SYNC_FAILED_MESSAGE, sync_all_schools
from music_portal.services.google_drive_service import DriveClient

from .utils import connect_drive, drive_file

pytestmark = pytest.mark.anyio


@pytest.fixture
async def lesson(client, admin_headers, lesson_payload):
    return (await client.post("/api/v1/lessons/", headers=admin_headers, json=lesson_payload())).json()


@pytest.fixture
async def connected(db, school, drive_client):
    await connect_drive(db, school["id"])
    drive_client.folders = [
        {"id": "fold-piano", "name": "Piano Basics", "parents": ["root"], "webViewLink": "https://drive/fold-piano"},
        {"id": "fold-mia", "name": "Mia Smith", "parents": ["root"], "webViewLink": "https://drive/fold-mia"},
    ]
    return drive_client


async def _link(client, headers, **target):
    drive_folder_id = "fold-piano" if "lesson_id" in target else "fold-mia"
    return await client.post("/api/v1/google-drive/mappings", headers=headers, json={
        "drive_folder_id": drive_folder_id, "folder_name": drive_folder_id, **target,
    })


async def test_status_and_browsing_need_connection(client, admin_headers, school):
    status = await client.get("/api/v1/google-drive/status", headers=admin_headers)
    assert status.json()["connected"] is False
    browse = await client.get("/api/v1/google-drive/folders", headers=admin_headers)
    assert browse.status_code == 401


async def test_browse_folders(client, admin_headers, connected):
    folders = await client.get("/api/v1/google-drive/folders", headers=admin_headers, params={"query": "piano"})
    assert folders.json() == [
        {"id": "fold-piano", "name": "Piano Basics", "parent_id": "root", "web_view_link": "https://drive/fold-piano"},
    ]
    status = await client.get("/api/v1/google-drive/status", headers=admin_headers)
    assert status.json()["connected"] is True


async def test_folder_links_are_exclusive(client, admin_headers, connected, lesson, student):
    linked = await _link(client, admin_headers, lesson_id=lesson["id"])
    assert linked.status_code == 201
    assert linked.json()["lesson_name"] == "Piano Basics"
    assert linked.json()["sync_status"] == "PENDING"

    again = await _link(client, admin_headers, lesson_id=lesson["id"])
    assert again.status_code == 409

    reused = await client.post("/api/v1/google-drive/mappings", headers=admin_headers, json={
        "drive_folder_id": "fold-piano", "folder_name": "Piano", "student_id": str(student.id),
    })
    assert reused.status_code == 409

    both = await client.post("/api/v1/google-drive/mappings", headers=admin_headers, json={
        "drive_folder_id": "fold-x", "folder_name": "X", "student_id": str(student.id), "lesson_id": lesson["id"],
    })
    assert both.status_code == 400


async def test_sync_mirrors_drive(client, admin_headers, connected, lesson):
    mapping = (await _link(client, admin_headers, lesson_id=lesson["id"])).json()
    connected.files["fold-piano"] = [drive_file("f1", "Scales.pdf"), drive_file("f2", "Arpeggios.pdf")]

    first = (await client.post(f"/api/v1/google-drive/sync/{mapping['id']}", headers=admin_headers)).json()
    assert (first["success"], first["files_added"]) == (True, 2)

    connected.files["fold-piano"] = [drive_file("f1", "Scales v2.pdf", modified="2026-02-01T10:00:00Z")]
    second = (await client.post("/api/v1/google-drive/sync", headers=admin_headers)).json()
    assert second["synced_folders"] == 1
    result = second["results"][0]
    assert (result["files_added"], result["files_updated"], result["files_deleted"]) == (0, 1, 1)

    files = (await client.get(f"/api/v1/resources/lesson/{lesson['id']}", headers=admin_headers)).json()
    assert [file["file_name"] for file in files] == ["Scales v2.pdf"]

    status = (await client.get("/api/v1/google-drive/sync/status", headers=admin_headers)).json()
    assert status["folders"][0]["sync_status"] == "SYNCED"
    assert status["folders"][0]["file_count"] == 1


async def test_failed_sync_marks_folder_error(client, admin_headers, connected, lesson):
    mapping = (await _link(client, admin_headers, lesson_id=lesson["id"])).json()

    async def broken(folder_id):
        raise ExternalServiceError("Google Drive request failed. Please try again.")
    connected.list_files = broken

    result = (await client.post(f"/api/v1/google-drive/sync/{mapping['id']}", headers=admin_headers)).json()
    assert result["success"] is False
    detail = (await client.get(f"/api/v1/google-drive/mappings/{mapping['id']}", headers=admin_headers)).json()
    assert detail["sync_status"] == "ERROR"
    assert detail["sync_error"] == "Google Drive request failed. Please try again."

    reset = await client.post(f"/api/v1/google-drive/sync/{mapping['id']}/reset", headers=admin_headers)
    assert reset.json()["sync_status"] == "PENDING"
    assert reset.json()["sync_error"] is None


async def test_unexpected_sync_error_still_marks_folder(db, client, admin_headers, connected, lesson):
    mapping = (await _link(client, admin_headers, lesson_id=lesson["id"])).json()

    async def timed_out(folder_id):
        raise TimeoutError("read timed out")
    connected.list_files = timed_out

    results = await sync_all_schools(db, lambda credentials: connected)
    assert [(r["synced_folders"], r["failed_folders"]) for r in results] == [(0, 1)]
    assert results[0]["results"][0]["error"] == SYNC_FAILED_MESSAGE

    detail = (await client.get(f"/api/v1/google-drive/mappings/{mapping['id']}", headers=admin_headers)).json()
    assert detail["sync_status"] == "ERROR"
    assert detail["sync_error"] == SYNC_FAILED_MESSAGE

    manual = (await client.post(f"/api/v1/google-drive/sync/{mapping['id']}", headers=admin_headers)).json()
    assert manual["success"] is False


async def test_scheduled_sync_covers_connected_schools(db, client, admin_headers, connected, lesson):
    await _link(client, admin_headers, lesson_id=lesson["id"])
    connected.files["fold-piano"] = [drive_file("f1", "Scales.pdf")]

    results = await sync_all_schools(db, lambda credentials: connected)
    assert [(r["synced_folders"], r["failed_folders"]) for r in results] == [(1, 0)]


async def test_upload_visibility_and_delete(
    client, admin_headers, teacher_headers, parent_headers, connected, lesson, student
):
    await _link(client, admin_headers, lesson_id=lesson["id"])
    await _link(client, admin_headers, student_id=str(student.id))

    uploaded = await client.post(
        "/api/v1/resources/upload",
        headers=teacher_headers,
        files={"file": ("practice.pdf", b"%PDF-1.4 practice", "application/pdf")},
        data={"student_id": str(student.id), "tags": "scales, scales,theory", "visibility": "TEACHERS_AND_PARENTS"},
    )
    assert uploaded.status_code == 201
    body = uploaded.json()
    assert body["tags"] == ["scales", "theory"]
    assert body["uploaded_via"] == "PORTAL"
    assert connected.uploaded[0]["name"] == "practice.pdf"

    private = await client.post(
        "/api/v1/resources/upload",
        headers=admin_headers,
        files={"file": ("marks.pdf", b"%PDF-1.4 marks", "application/pdf")},
        data={"student_id": str(student.id), "visibility": "TEACHERS_ONLY"},
    )
    assert private.status_code == 201

    parent_view = await client.get(f"/api/v1/resources/student/{student.id}", headers=parent_headers)
    assert [file["file_name"] for file in parent_view.json()] == ["practice.pdf"]
    hidden = await client.get(f"/api/v1/resources/{private.json()['id']}", headers=parent_headers)
    assert hidden.status_code == 404

    tagged = await client.get("/api/v1/resources/", headers=admin_headers, params={"tags": "theory"})
    assert [file["id"] for file in tagged.json()["items"]] == [body["id"]]

    not_owner = await client.delete(f"/api/v1/resources/{private.json()['id']}", headers=teacher_headers)
    assert not_owner.status_code == 403
    assert (await client.delete(f"/api/v1/resources/{body['id']}", headers=teacher_headers)).status_code == 204
    assert connected.deleted == [body["drive_file_id"]]


async def test_upload_needs_linked_folder(client, teacher_headers, connected, lesson):
    response = await client.post(
        "/api/v1/resources/upload",
        headers=teacher_headers,
        files={"file": ("notes.pdf", b"data", "application/pdf")},
        data={"lesson_id": lesson["id"]},
    )
    assert response.status_code == 400


async def test_unlink_keeps_file_history(client, admin_headers, connected, lesson):
    mapping = (await _link(client, admin_headers, lesson_id=lesson["id"])).json()
    connected.files["fold-piano"] = [drive_file("f1", "Scales.pdf")]
    await client.post(f"/api/v1/google-drive/sync/{mapping['id']}", headers=admin_headers)

    assert (await client.delete(f"/api/v1/google-drive/mappings/{mapping['id']}", headers=admin_headers)).status_code == 204
    assert (await client.get("/api/v1/google-drive/mappings", headers=admin_headers)).json() == []
    stats = (await client.get("/api/v1/resources/stats", headers=admin_headers)).json()
    assert stats["total_files"] == 0


async def test_parents_only_see_their_own_childrens_files(
    client, admin_headers, parent_headers, connected, lesson, student
):
    other = (await client.post("/api/v1/students/", headers=admin_headers, json={
        "first_name": "Otto", "last_name": "Other", "birth_date": "2012-02-02",
    })).json()
    connected.folders.append(
        {"id": "fold-otto", "name": "Otto Other", "parents": ["root"], "webViewLink": "https://drive/fold-otto"}
    )
    await client.post("/api/v1/google-drive/mappings", headers=admin_headers, json={
        "drive_folder_id": "fold-otto", "folder_name": "Otto Other", "student_id": other["id"],
    })
    await _link(client, admin_headers, student_id=str(student.id))
    await _link(client, admin_headers, lesson_id=lesson["id"])

    async def upload(name, **target):
        response = await client.post(
            "/api/v1/resources/upload",
            headers=admin_headers,
            files={"file": (name, b"%PDF-1.4", "application/pdf")},
            data={**target, "visibility": "TEACHERS_AND_PARENTS"},
        )
        return response.json()

    otto_file = await upload("otto.pdf", student_id=other["id"])
    mia_file = await upload("mia.pdf", student_id=str(student.id))
    await upload("lesson.pdf", lesson_id=lesson["id"])

    listing = await client.get("/api/v1/resources/", headers=parent_headers)
    assert [file["id"] for file in listing.json()["items"]] == [mia_file["id"]]
    filtered = await client.get("/api/v1/resources/", headers=parent_headers, params={"student_id": other["id"]})
    assert filtered.json()["items"] == []
    assert (await client.get(f"/api/v1/resources/{otto_file['id']}", headers=parent_headers)).status_code == 404
    assert (await client.get(f"/api/v1/resources/student/{other['id']}", headers=parent_headers)).status_code == 403
    assert (await client.get(f"/api/v1/resources/{mia_file['id']}", headers=parent_headers)).status_code == 200

    not_enrolled = await client.get(f"/api/v1/resources/lesson/{lesson['id']}", headers=parent_headers)
    assert not_enrolled.json() == []
    await client.post(f"/api/v1/lessons/{lesson['id']}/enroll", headers=admin_headers, json={"student_id": str(student.id)})
    enrolled = await client.get(f"/api/v1/resources/lesson/{lesson['id']}", headers=parent_headers)
    assert [file["file_name"] for file in enrolled.json()] == ["lesson.pdf"]

    everything = await client.get("/api/v1/resources/", headers=admin_headers)
    assert everything.json()["total"] == 3


class _PagedFiles:
    """Stands in for service.files() and hands out one page per list() call"""

    def __init__(self, pages):
        self.pages = pages
        self.calls = []

    def list(self, **kwargs):
        self.calls.append(kwargs)
        page = self.pages[len(self.calls) - 1]
        return type("Request", (), {"execute": lambda _self: page})()


async def test_drive_listings_follow_page_tokens():
    files = _PagedFiles([
        {"files": [drive_file("f1", "One.pdf")], "nextPageToken": "page-2"},
        {"files": [drive_file("f2", "Two.pdf")]},
    ])
    client = DriveClient.__new__(DriveClient)
    client.service = type("Service", (), {"files": lambda _self: files})()

    listed = await client.list_files("fold-piano")
    assert [file["id"] for file in listed] == ["f1", "f2"]
    assert [call["pageToken"] for call in files.calls] == [None, "page-2"]
    assert files.calls[0]["fields"].startswith("nextPageToken, files(")
