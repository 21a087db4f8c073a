# music_portal/services/google_drive_service.py
"""Google Drive connection, folder browsing and folder mappings.

Each school connects one Google account through OAuth. Tokens are kept
Fernet-encrypted in `google_drive_auths` and refreshed shortly before they
expire. Drive folders are then linked to a lesson or a student (a folder
mapping); files inside linked folders become portal resources.

The Google client libraries are blocking, so every Drive request runs on a
worker thread.
"""
import asyncio
import io
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional
from uuid import UUID

import httpx
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request as GoogleRequest
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import Flow
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from googleapiclient.http import MediaIoBaseUpload
from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.auth import CurrentUser
from ..core.cache import cache
from ..core.config import settings
from ..core.exceptions import (
    AuthenticationError, ConflictError, ExternalServiceError, NotFoundError, ValidationException,
)
from ..core.rate_limiter import RateLimiter
from ..core.security import create_state_token, decode_token, decrypt, encrypt
from ..models.tenant_specific.google_drive import GoogleDriveAuth, GoogleDriveFile, GoogleDriveFolder, SyncStatus
from ..models.tenant_specific.lesson import Lesson
from ..models.tenant_specific.student import Student
from ..utils.scheduling import as_utc, utcnow
from .base_service import BaseService

logger = logging.getLogger(__name__)

AUTH_URI = "https://accounts.google.com/o/oauth2/auth"
TOKEN_URI = "https://oauth2.googleapis.com/token"
REVOKE_URI = "https://oauth2.googleapis.com/revoke"
FOLDER_MIME = "application/vnd.google-apps.folder"
FOLDER_FIELDS = "id, name, parents, webViewLink"
FILE_FIELDS = "id, name, mimeType, size, webViewLink, webContentLink, thumbnailLink, modifiedTime, createdTime"
PAGE_SIZE = 100
REFRESH_BUFFER = timedelta(minutes=5)
EXPIRED_MESSAGE = "Google Drive authorization expired. Please re-authorize."

drive_limiter = RateLimiter(
    settings.drive_rate_limit,
    settings.drive_rate_window_seconds,
    "Google Drive rate limit exceeded.",
)


# ============================================================================
# GOOGLE CLIENT PLUMBING
# ============================================================================

def client_config() -> Dict[str, Any]:
    return {
        "web": {
            "client_id": settings.google_client_id,
            "client_secret": settings.google_client_secret,
            "redirect_uris": [settings.google_redirect_uri],
            "auth_uri": AUTH_URI,
            "token_uri": TOKEN_URI,
        }
    }


def build_flow() -> Flow:
    if not settings.google_client_id or not settings.google_client_secret:
        raise ValidationException("Google Drive integration is not configured.")
    # No PKCE: the callback runs on a fresh flow
    flow = Flow.from_client_config(
        client_config(), scopes=settings.google_drive_scopes, autogenerate_code_verifier=False
    )
    flow.redirect_uri = settings.google_redirect_uri
    return flow


async def exchange_code(code: str) -> Credentials:
    """Trade an OAuth authorization code for credentials"""
    flow = build_flow()
    try:
        await asyncio.to_thread(flow.fetch_token, code=code)
    except (GoogleAuthError, ValueError) as e:
        logger.error(f"Google token exchange failed: {e}")
        raise ValidationException("Failed to get access tokens from Google.")
    return flow.credentials


def parse_drive_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return as_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))


def escape_query(value: str) -> str:
    return value.replace("\\", "\\\\").replace("'", "\\'")


def normalize_folder(raw: Dict[str, Any]) -> Dict[str, Any]:
    parents = raw.get("parents") or []
    return {
        "id": raw["id"],
        "name": raw["name"],
        "parent_id": parents[0] if parents else None,
        "web_view_link": raw.get("webViewLink") or "",
    }


def normalize_file(raw: Dict[str, Any]) -> Dict[str, Any]:
    size = raw.get("size")
    return {
        "id": raw["id"],
        "name": raw["name"],
        "mime_type": raw.get("mimeType") or "application/octet-stream",
        "size": int(size) if size is not None else None,
        "web_view_link": raw.get("webViewLink") or "",
        "web_content_link": raw.get("webContentLink"),
        "thumbnail_link": raw.get("thumbnailLink"),
        "modified_time": raw.get("modifiedTime"),
        "created_time": raw.get("createdTime"),
    }


class DriveClient:
    """Async facade over the Drive v3 discovery client"""

    def __init__(self, credentials: Credentials):
        self.service = build("drive", "v3", credentials=credentials, cache_discovery=False)

    async def _run(self, request):
        try:
            return await asyncio.to_thread(request.execute)
        except HttpError as e:
            status = getattr(e.resp, "status", None)
            logger.warning(f"Drive API error {status}: {e}")
            if status == 404:
                raise NotFoundError("Drive item")
            if status in (401, 403):
                raise ExternalServiceError("Google Drive denied access to this item.", 403)
            raise ExternalServiceError("Google Drive request failed. Please try again.")

    async def _list_all(self, q: str, fields: str, order_by: str) -> List[Dict[str, Any]]:
        """Follow nextPageToken until Drive has returned every match"""
        items, page_token = [], None
        while True:
            response = await self._run(self.service.files().list(
                q=q, fields=f"nextPageToken, files({fields})", pageSize=PAGE_SIZE, orderBy=order_by, pageToken=page_token
            ))
            items.extend(response.get("files", []))
            page_token = response.get("nextPageToken")
            if not page_token:
                return items

    async def list_folders(self, parent_id: Optional[str] = None, query: Optional[str] = None) -> List[Dict[str, Any]]:
        q = f"mimeType='{FOLDER_MIME}' and trashed=false and '{escape_query(parent_id or 'root')}' in parents"
        if query:
            q += f" and name contains '{escape_query(query)}'"
        return await self._list_all(q, FOLDER_FIELDS, "name")

    async def get_folder(self, folder_id: str) -> Dict[str, Any]:
        return await self._run(self.service.files().get(fileId=folder_id, fields=FOLDER_FIELDS))

    async def list_files(self, folder_id: str) -> List[Dict[str, Any]]:
        q = f"'{escape_query(folder_id)}' in parents and trashed=false and mimeType!='{FOLDER_MIME}'"
        return await self._list_all(q, FILE_FIELDS, "modifiedTime desc")

    async def upload_file(self, folder_id: str, name: str, mime_type: str, content: bytes) -> Dict[str, Any]:
        media = MediaIoBaseUpload(io.BytesIO(content), mimetype=mime_type, resumable=False)
        return await self._run(self.service.files().create(
            body={"name": name, "parents": [folder_id]}, media_body=media, fields=FILE_FIELDS
        ))

    async def delete_file(self, file_id: str) -> None:
        await self._run(self.service.files().delete(fileId=file_id))


def build_drive_client(credentials: Credentials) -> DriveClient:
    return DriveClient(credentials)


def school_from_state(state: str) -> UUID:
    """Recover the school an OAuth callback belongs to from the signed state"""
    payload = decode_token(state, expected_type="oauth_state")
    try:
        return UUID(payload["school_id"])
    except (KeyError, ValueError):
        raise AuthenticationError("Invalid OAuth state.")


def folder_cache_key(school_id, parent_id: Optional[str], query: Optional[str]) -> str:
    return f"drive:{school_id}:folders:{parent_id or 'root'}:{(query or '').lower()}"


def file_cache_key(school_id, drive_folder_id: str) -> str:
    return f"drive:{school_id}:files:{drive_folder_id}"


def serialize_mapping(folder: GoogleDriveFolder, file_count: int = 0) -> Dict[str, Any]:
    return {
        "id": str(folder.id),
        "drive_folder_id": folder.drive_folder_id,
        "folder_name": folder.folder_name,
        "folder_url": folder.folder_url,
        "lesson_id": str(folder.lesson_id) if folder.lesson_id else None,
        "lesson_name": folder.lesson.name if folder.lesson else None,
        "student_id": str(folder.student_id) if folder.student_id else None,
        "student_name": folder.student.full_name if folder.student else None,
        "sync_enabled": folder.sync_enabled,
        "sync_status": folder.sync_status.value,
        "sync_error": folder.sync_error,
        "last_sync_at": folder.last_sync_at.isoformat() if folder.last_sync_at else None,
        "file_count": file_count,
        "created_at": folder.created_at.isoformat() if folder.created_at else None,
    }


# ============================================================================
# SERVICE
# ============================================================================

class GoogleDriveService(BaseService[GoogleDriveFolder]):
    resource_name = "Folder mapping"

    def __init__(
        self,
        db: AsyncSession,
        school_id: UUID,
        client_factory: Optional[Callable[[Credentials], Any]] = None,
    ):
        super().__init__(GoogleDriveFolder, db, school_id)
        self.client_factory = client_factory or build_drive_client

    # ------------------------------------------------------------------
    # OAuth
    # ------------------------------------------------------------------

    def get_auth_url(self, user: CurrentUser) -> str:
        flow = build_flow()
        state = create_state_token(str(self.school_id), str(user.id))
        auth_url, _ = flow.authorization_url(
            access_type="offline", include_granted_scopes="true", prompt="consent", state=state
        )
        return auth_url

    async def _get_auth(self) -> Optional[GoogleDriveAuth]:
        result = await self.db.execute(
            select(GoogleDriveAuth).where(GoogleDriveAuth.school_id == self.school_id)
        )
        return result.scalar_one_or_none()

    async def is_connected(self) -> bool:
        return await self._get_auth() is not None

    async def handle_callback(self, code: str, connected_by_id: Optional[UUID] = None) -> GoogleDriveAuth:
        credentials = await exchange_code(code)
        if not credentials.token or not credentials.refresh_token:
            raise ValidationException("Failed to get access tokens from Google.")

        expires_at = as_utc(credentials.expiry) or utcnow() + timedelta(hours=1)
        scope = " ".join(credentials.scopes or settings.google_drive_scopes)

        auth = await self._get_auth()
        if auth is None:
            auth = GoogleDriveAuth(school_id=self.school_id)
            self.db.add(auth)
        auth.access_token = encrypt(credentials.token)
        auth.refresh_token = encrypt(credentials.refresh_token)
        auth.expires_at = expires_at
        auth.scope = scope
        auth.token_type = "Bearer"
        auth.connected_by_id = connected_by_id
        await self.commit_or_conflict("Google Drive is already being connected for this school.")
        await self.invalidate_school_cache()
        logger.info(f"Google Drive connected for school {self.school_id}")
        return auth

    async def get_status(self) -> Dict[str, Any]:
        auth = await self._get_auth()
        if not auth:
            return {"connected": False, "expires_at": None, "scope": None, "connected_at": None, "folder_count": 0}
        folder_count = (await self.db.execute(
            self._scoped(select(func.count()).select_from(GoogleDriveFolder))
        )).scalar() or 0
        return {
            "connected": True,
            "expires_at": as_utc(auth.expires_at).isoformat(),
            "scope": auth.scope,
            "connected_at": auth.created_at.isoformat() if auth.created_at else None,
            "folder_count": folder_count,
        }

    async def disconnect(self) -> None:
        auth = await self._get_auth()
        if not auth:
            raise NotFoundError("Google Drive connection", "Google Drive not connected.")

        try:
            token = decrypt(auth.access_token)
            async with httpx.AsyncClient(timeout=10) as client:
                await client.post(REVOKE_URI, params={"token": token})
        except (httpx.HTTPError, AuthenticationError) as e:
            logger.warning(f"Failed to revoke Google credentials for school {self.school_id}: {e}")

        await self.db.delete(auth)
        await self.db.commit()
        await self.invalidate_school_cache()
        logger.info(f"Google Drive disconnected for school {self.school_id}")

    async def get_credentials(self) -> Credentials:
        """Decrypted credentials, refreshed when they expire within five minutes"""
        auth = await self._get_auth()
        if not auth:
            raise AuthenticationError("Google Drive not connected. Please authorize access.")

        expires_at = as_utc(auth.expires_at)
        credentials = Credentials(
            token=decrypt(auth.access_token),
            refresh_token=decrypt(auth.refresh_token),
            token_uri=TOKEN_URI,
            client_id=settings.google_client_id,
            client_secret=settings.google_client_secret,
            scopes=(auth.scope or "").split() or None,
            # google-auth compares against naive UTC
            expiry=expires_at.replace(tzinfo=None),
        )

        if expires_at < utcnow() + REFRESH_BUFFER:
            try:
                await asyncio.to_thread(credentials.refresh, GoogleRequest())
            except GoogleAuthError as e:
                logger.error(f"Token refresh failed for school {self.school_id}: {e}")
                raise AuthenticationError(EXPIRED_MESSAGE)
            auth.access_token = encrypt(credentials.token)
            auth.expires_at = as_utc(credentials.expiry) or utcnow() + timedelta(hours=1)
            await self.db.commit()
            logger.info(f"Refreshed Google Drive token for school {self.school_id}")

        return credentials

    async def get_client(self):
        """Rate-limited Drive client for this school"""
        drive_limiter.check(str(self.school_id))
        return self.client_factory(await self.get_credentials())

    # ------------------------------------------------------------------
    # Drive browsing
    # ------------------------------------------------------------------

    async def invalidate_school_cache(self) -> int:
        return await cache.delete_pattern(f"drive:{self.school_id}:*")

    async def invalidate_folder_cache(self, drive_folder_id: str) -> bool:
        return await cache.delete(file_cache_key(self.school_id, drive_folder_id))

    async def browse_folders(self, parent_id: Optional[str] = None, query: Optional[str] = None) -> List[Dict[str, Any]]:
        key = folder_cache_key(self.school_id, parent_id, query)
        cached = await cache.get(key)
        if cached is not None:
            return cached

        client = await self.get_client()
        folders = [normalize_folder(raw) for raw in await client.list_folders(parent_id, query)]
        await cache.set(key, folders, expire=settings.drive_cache_ttl_seconds)
        return folders

    async def get_folder_details(self, drive_folder_id: str) -> Dict[str, Any]:
        client = await self.get_client()
        return normalize_folder(await client.get_folder(drive_folder_id))

    async def list_drive_files(self, drive_folder_id: str, use_cache: bool = True) -> List[Dict[str, Any]]:
        key = file_cache_key(self.school_id, drive_folder_id)
        if use_cache:
            cached = await cache.get(key)
            if cached is not None:
                return cached

        client = await self.get_client()
        files = [normalize_file(raw) for raw in await client.list_files(drive_folder_id)]
        await cache.set(key, files, expire=settings.drive_cache_ttl_seconds)
        return files

    async def upload_to_drive(self, drive_folder_id: str, name: str, mime_type: str, content: bytes) -> Dict[str, Any]:
        client = await self.get_client()
        uploaded = normalize_file(await client.upload_file(drive_folder_id, name, mime_type, content))
        await self.invalidate_folder_cache(drive_folder_id)
        return uploaded

    async def delete_from_drive(self, drive_file_id: str) -> None:
        client = await self.get_client()
        await client.delete_file(drive_file_id)
        await self.invalidate_school_cache()

    # ------------------------------------------------------------------
    # Folder mappings
    # ------------------------------------------------------------------

    async def file_counts(self, folder_ids: List[UUID]) -> Dict[UUID, int]:
        if not folder_ids:
            return {}
        rows = (await self.db.execute(
            select(GoogleDriveFile.folder_id, func.count())
            .where(
                GoogleDriveFile.folder_id.in_(folder_ids),
                GoogleDriveFile.deleted_in_drive == False,  # noqa: E712
            )
            .group_by(GoogleDriveFile.folder_id)
        )).all()
        return dict(rows)

    async def _mapping_for(self, column, value) -> Optional[GoogleDriveFolder]:
        result = await self.db.execute(self._scoped(select(GoogleDriveFolder)).where(column == value))
        return result.unique().scalar_one_or_none()

    async def link_folder(self, data: Dict[str, Any]) -> GoogleDriveFolder:
        lesson_id = data.get("lesson_id")
        student_id = data.get("student_id")
        if bool(lesson_id) == bool(student_id):
            raise ValidationException("Must provide either lesson_id or student_id, but not both.")

        if lesson_id:
            found = (await self.db.execute(
                select(Lesson.id).where(Lesson.id == lesson_id, Lesson.school_id == self.school_id)
            )).first()
            if not found:
                raise NotFoundError("Lesson")
            if await self._mapping_for(GoogleDriveFolder.lesson_id, lesson_id):
                raise ConflictError("This lesson already has a Google Drive folder linked.")
        else:
            found = (await self.db.execute(
                select(Student.id).where(Student.id == student_id, Student.school_id == self.school_id)
            )).first()
            if not found:
                raise NotFoundError("Student")
            if await self._mapping_for(GoogleDriveFolder.student_id, student_id):
                raise ConflictError("This student already has a Google Drive folder linked.")

        if await self._mapping_for(GoogleDriveFolder.drive_folder_id, data["drive_folder_id"]):
            raise ConflictError("This Google Drive folder is already linked to another lesson or student.")

        folder = GoogleDriveFolder(
            school_id=self.school_id,
            drive_folder_id=data["drive_folder_id"],
            folder_name=data["folder_name"],
            folder_url=data.get("folder_url"),
            lesson_id=lesson_id,
            student_id=student_id,
            sync_enabled=data.get("sync_enabled", True),
            sync_status=SyncStatus.PENDING,
        )
        self.db.add(folder)
        await self.commit_or_conflict("This Google Drive folder is already linked.")
        logger.info(f"Linked Drive folder {folder.drive_folder_id} in school {self.school_id}")
        return await self.get(folder.id)

    async def list_mappings(self) -> List[Dict[str, Any]]:
        result = await self.db.execute(
            self._scoped(select(GoogleDriveFolder)).order_by(GoogleDriveFolder.created_at.desc())
        )
        folders = result.unique().scalars().all()
        counts = await self.file_counts([folder.id for folder in folders])
        return [serialize_mapping(folder, counts.get(folder.id, 0)) for folder in folders]

    async def get_mapping(self, folder_id: UUID) -> Dict[str, Any]:
        folder = await self.get_or_404(folder_id)
        counts = await self.file_counts([folder.id])
        return serialize_mapping(folder, counts.get(folder.id, 0))

    async def update_mapping(self, folder_id: UUID, sync_enabled: bool) -> Dict[str, Any]:
        folder = await self.get_or_404(folder_id)
        folder.sync_enabled = sync_enabled
        await self.db.commit()
        return await self.get_mapping(folder_id)

    async def unlink_folder(self, folder_id: UUID) -> None:
        """Remove a mapping; its files stay on record flagged as deleted"""
        folder = await self.get_or_404(folder_id)
        await self.db.execute(
            update(GoogleDriveFile)
            .where(GoogleDriveFile.folder_id == folder.id, GoogleDriveFile.school_id == self.school_id)
            .values(deleted_in_drive=True, deleted_at=utcnow(), folder_id=None)
        )
        await self.db.execute(delete(GoogleDriveFolder).where(GoogleDriveFolder.id == folder.id))
        await self.db.commit()
        await self.invalidate_school_cache()
        logger.info(f"Unlinked Drive folder {folder.drive_folder_id} in school {self.school_id}")
