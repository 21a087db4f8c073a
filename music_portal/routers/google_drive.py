# music_portal/routers/google_drive.py
"""Google Drive connection, folder mappings and sync."""
import logging
from typing import Callable, Optional
from urllib.parse import urlencode
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.auth import CurrentUser, require_admin, require_staff
from ..core.config import settings
from ..core.database import get_db
from ..core.exceptions import PortalException
from ..core.security import decode_token
from ..schemas.drive_schemas import FolderLinkCreate, FolderMappingUpdate
from ..services.drive_sync_service import DriveSyncService
from ..services.google_drive_service import GoogleDriveService, school_from_state, serialize_mapping
from .deps import get_drive_client_factory

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/google-drive", tags=["Google Drive"])


def _settings_redirect(**params) -> RedirectResponse:
    url = f"{settings.frontend_url.rstrip('/')}/settings/google-drive?{urlencode(params)}"
    return RedirectResponse(url, status_code=status.HTTP_302_FOUND)


# ============================================================================
# OAUTH
# ============================================================================

@router.get("/auth-url", response_model=dict)
async def get_auth_url(current: CurrentUser = Depends(require_admin), db: AsyncSession = Depends(get_db)):
    """Google consent URL; the signed state carries the school"""
    return {"auth_url": GoogleDriveService(db, current.school_id).get_auth_url(current)}


@router.get("/callback")
async def oauth_callback(
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    error: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
):
    """Google redirects here after consent; the browser is sent back to the portal"""
    if error or not code or not state:
        logger.warning(f"Google Drive authorization failed: {error or 'missing code or state'}")
        return _settings_redirect(error=error or "missing_code")

    try:
        school_id = school_from_state(state)
        user_id = UUID(decode_token(state, expected_type="oauth_state")["sub"])
        await GoogleDriveService(db, school_id).handle_callback(code, user_id)
    except PortalException as e:
        logger.warning(f"Google Drive callback rejected: {e.message}")
        return _settings_redirect(error=e.message)
    return _settings_redirect(connected="true")


@router.get("/status", response_model=dict)
async def connection_status(current: CurrentUser = Depends(require_staff), db: AsyncSession = Depends(get_db)):
    return await GoogleDriveService(db, current.school_id).get_status()


@router.delete("/disconnect", status_code=status.HTTP_204_NO_CONTENT)
async def disconnect(current: CurrentUser = Depends(require_admin), db: AsyncSession = Depends(get_db)):
    """Revoke the Google grant and forget the stored tokens"""
    await GoogleDriveService(db, current.school_id).disconnect()


# ============================================================================
# BROWSING
# ============================================================================

@router.get("/folders", response_model=list)
async def browse_folders(
    parent_id: Optional[str] = Query(None, max_length=200),
    query: Optional[str] = Query(None, max_length=200),
    current: CurrentUser = Depends(require_admin),
    client_factory: Callable = Depends(get_drive_client_factory),
    db: AsyncSession = Depends(get_db),
):
    return await GoogleDriveService(db, current.school_id, client_factory).browse_folders(parent_id, query)


@router.get("/folders/{drive_folder_id}", response_model=dict)
async def folder_details(
    drive_folder_id: str,
    current: CurrentUser = Depends(require_admin),
    client_factory: Callable = Depends(get_drive_client_factory),
    db: AsyncSession = Depends(get_db),
):
    return await GoogleDriveService(db, current.school_id, client_factory).get_folder_details(drive_folder_id)


# ============================================================================
# FOLDER MAPPINGS
# ============================================================================

@router.get("/mappings", response_model=list)
async def list_mappings(current: CurrentUser = Depends(require_staff), db: AsyncSession = Depends(get_db)):
    return await GoogleDriveService(db, current.school_id).list_mappings()


@router.post("/mappings", response_model=dict, status_code=status.HTTP_201_CREATED)
async def link_folder(
    payload: FolderLinkCreate,
    current: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Link a Drive folder to exactly one lesson or student"""
    folder = await GoogleDriveService(db, current.school_id).link_folder(payload.model_dump())
    return serialize_mapping(folder)


@router.get("/mappings/{folder_id}", response_model=dict)
async def get_mapping(folder_id: UUID, current: CurrentUser = Depends(require_staff), db: AsyncSession = Depends(get_db)):
    return await GoogleDriveService(db, current.school_id).get_mapping(folder_id)


@router.put("/mappings/{folder_id}", response_model=dict)
async def update_mapping(
    folder_id: UUID,
    payload: FolderMappingUpdate,
    current: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await GoogleDriveService(db, current.school_id).update_mapping(folder_id, payload.sync_enabled)


@router.delete("/mappings/{folder_id}", status_code=status.HTTP_204_NO_CONTENT)
async def unlink_folder(folder_id: UUID, current: CurrentUser = Depends(require_admin), db: AsyncSession = Depends(get_db)):
    await GoogleDriveService(db, current.school_id).unlink_folder(folder_id)


# ============================================================================
# SYNC
# ============================================================================

@router.post("/sync", response_model=dict)
async def sync_school(
    current: CurrentUser = Depends(require_admin),
    client_factory: Callable = Depends(get_drive_client_factory),
    db: AsyncSession = Depends(get_db),
):
    """Sync every enabled folder now"""
    return await DriveSyncService(db, current.school_id, client_factory).sync_school()


@router.get("/sync/status", response_model=dict)
async def sync_status(current: CurrentUser = Depends(require_staff), db: AsyncSession = Depends(get_db)):
    return await DriveSyncService(db, current.school_id).get_sync_status()


@router.post("/sync/{folder_id}", response_model=dict)
async def sync_folder(
    folder_id: UUID,
    current: CurrentUser = Depends(require_admin),
    client_factory: Callable = Depends(get_drive_client_factory),
    db: AsyncSession = Depends(get_db),
):
    return await DriveSyncService(db, current.school_id, client_factory).sync_folder_by_id(folder_id)


@router.post("/sync/{folder_id}/reset", response_model=dict)
async def reset_folder_sync(folder_id: UUID, current: CurrentUser = Depends(require_admin), db: AsyncSession = Depends(get_db)):
    """Clear an ERROR state so the folder is picked up again"""
    service = DriveSyncService(db, current.school_id)
    folder = await service.reset_folder(folder_id)
    return await service.drive.get_mapping(folder.id)
