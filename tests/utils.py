# tests/utils.py
from datetime import timedelta

from music_portal.core.security import create_access_token, encrypt
from music_portal.models import GoogleDriveAuth
from music_portal.utils.scheduling import utcnow

PASSWORD = "Tr3ble-Clef!"


def auth_headers(user) -> dict:
    token = create_access_token({
        "sub": str(user.id),
        "school_id": str(user.school_id),
        "role": user.role.value,
        "email": user.email,
    })
    return {"Authorization": f"Bearer {token}"}


def drive_file(file_id: str, name: str, modified: str = "2026-01-10T10:00:00Z") -> dict:
    """A file as the Drive v3 API returns it"""
    return {
        "id": file_id,
        "name": name,
        "mimeType": "application/pdf",
        "size": "2048",
        "webViewLink": f"https://drive.google.com/file/d/{file_id}/view",
        "modifiedTime": modified,
        "createdTime": "2026-01-01T09:00:00Z",
    }


async def connect_drive(db, school_id):
    """Store a Drive authorization that will not need refreshing"""
    auth = GoogleDriveAuth(
        school_id=school_id,
        access_token=encrypt("access-token"),
        refresh_token=encrypt("refresh-token"),
        expires_at=utcnow() + timedelta(hours=1),
        scope="https://www.googleapis.com/auth/drive.file",
    )
    db.add(auth)
    await db.commit()
    return auth


class FakeDriveClient:
    """In-memory Drive API keyed by folder id"""

    def __init__(self):
        self.folders = []
        self.files = {}
        self.uploaded = []
        self.deleted = []

    async def list_folders(self, parent_id=None, query=None):
        return [f for f in self.folders if not query or query.lower() in f["name"].lower()]

    async def get_folder(self, folder_id):
        return next(f for f in self.folders if f["id"] == folder_id)

    async def list_files(self, folder_id):
        return list(self.files.get(folder_id, []))

    async def upload_file(self, folder_id, name, mime_type, content):
        file_id = f"uploaded-{len(self.uploaded) + 1}"
        record = {**drive_file(file_id, name), "mimeType": mime_type, "size": str(len(content))}
        self.uploaded.append(record)
        self.files.setdefault(folder_id, []).append(record)
        return record

    async def delete_file(self, file_id):
        self.deleted.append(file_id)
