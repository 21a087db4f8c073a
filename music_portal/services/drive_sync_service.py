# music_portal/services/drive_sync_service.py
"""Mirror linked Drive folders into the portal's file records."""
import logging
import time
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.exceptions import PortalException, ValidationException
from ..models.tenant_specific.google_drive import (
    FileVisibility, GoogleDriveAuth, GoogleDriveFile, GoogleDriveFolder, SyncStatus, UploadSource,
)
from ..utils.scheduling import as_utc, utcnow
from .base_service import BaseService
from .google_drive_service import GoogleDriveService, parse_drive_time

logger = logging.getLogger(__name__)

SYNC_INTERVAL = timedelta(minutes=15)
SYNC_FAILED_MESSAGE = "Sync failed unexpectedly. Please try again later."


def apply_drive_metadata(record: GoogleDriveFile, drive_file: Dict[str, Any]):
    record.file_name = drive_file["name"]
    record.mime_type = drive_file["mime_type"]
    record.file_size = drive_file["size"]
    record.web_view_link = drive_file["web_view_link"]
    record.web_content_link = drive_file["web_content_link"]
    record.thumbnail_link = drive_file["thumbnail_link"]
    record.modified_time = parse_drive_time(drive_file["modified_time"])


class DriveSyncService(BaseService[GoogleDriveFolder]):
    resource_name = "Folder mapping"

    def __init__(self, db: AsyncSession, school_id: UUID, client_factory: Optional[Callable] = None):
        super().__init__(GoogleDriveFolder, db, school_id)
        self.drive = GoogleDriveService(db, school_id, client_factory)

    async def _apply_changes(self, folder: GoogleDriveFolder, drive_files: List[Dict[str, Any]]) -> Dict[str, int]:
        """Drive is the source of truth: add new files, refresh changed ones, flag missing ones"""
        counts = {"files_added": 0, "files_updated": 0, "files_deleted": 0}
        drive_by_id = {item["id"]: item for item in drive_files}

        records = (await self.db.execute(
            select(GoogleDriveFile).where(
                GoogleDriveFile.folder_id == folder.id,
                GoogleDriveFile.school_id == self.school_id,
            )
        )).unique().scalars().all()
        known = {record.drive_file_id: record for record in records}

        for drive_id, drive_file in drive_by_id.items():
            record = known.get(drive_id)
            if record is None:
                record = GoogleDriveFile(
                    school_id=self.school_id,
                    folder_id=folder.id,
                    drive_file_id=drive_id,
                    created_time=parse_drive_time(drive_file["created_time"]),
                    visibility=FileVisibility.ALL,
                    tags=[],
                    uploaded_via=UploadSource.GOOGLE_DRIVE,
                )
                apply_drive_metadata(record, drive_file)
                self.db.add(record)
                counts["files_added"] += 1
            elif record.deleted_in_drive:
                # Back in Drive after being flagged
                record.deleted_in_drive = False
                record.deleted_at = None
                apply_drive_metadata(record, drive_file)
                counts["files_added"] += 1
            else:
                modified = parse_drive_time(drive_file["modified_time"])
                current = as_utc(record.modified_time)
                if modified and (current is None or modified > current):
                    apply_drive_metadata(record, drive_file)
                    counts["files_updated"] += 1

        for drive_id, record in known.items():
            if drive_id not in drive_by_id and not record.deleted_in_drive:
                record.deleted_in_drive = True
                record.deleted_at = utcnow()
                counts["files_deleted"] += 1

        return counts

    async def _mark_failed(self, folder_id: UUID, message: str) -> str:
        await self.db.rollback()
        folder = await self.get(folder_id)
        folder.sync_status = SyncStatus.ERROR
        folder.sync_error = message
        await self.db.commit()
        return message

    async def sync_folder(self, folder: GoogleDriveFolder) -> Dict[str, Any]:
        started = time.monotonic()
        folder_id = folder.id
        result = {
            "folder_id": str(folder.id),
            "folder_name": folder.folder_name,
            "success": False,
            "files_added": 0,
            "files_updated": 0,
            "files_deleted": 0,
            "error": None,
        }

        folder.sync_status = SyncStatus.SYNCING
        folder.sync_error = None
        await self.db.commit()

        try:
            drive_files = await self.drive.list_drive_files(folder.drive_folder_id, use_cache=False)
            result.update(await self._apply_changes(folder, drive_files))
            folder.sync_status = SyncStatus.SYNCED
            folder.last_sync_at = utcnow()
            await self.db.commit()
            result["success"] = True
            logger.info(
                f"Synced Drive folder {folder.folder_name}: {result['files_added']} added, "
                f"{result['files_updated']} updated, {result['files_deleted']} removed"
            )
        except PortalException as e:
            logger.error(f"Sync failed for Drive folder {folder_id}: {e.message}")
            result["error"] = await self._mark_failed(folder_id, e.message)
        except Exception:
            logger.exception(f"Unexpected error syncing Drive folder {folder_id}")
            result["error"] = await self._mark_failed(folder_id, SYNC_FAILED_MESSAGE)

        result["duration_ms"] = int((time.monotonic() - started) * 1000)
        return result

    async def sync_folder_by_id(self, folder_id: UUID) -> Dict[str, Any]:
        return await self.sync_folder(await self.get_or_404(folder_id))

    async def sync_school(self) -> Dict[str, Any]:
        """Sync every enabled folder of the school"""
        if not await self.drive.is_connected():
            raise ValidationException("Google Drive not connected.")

        started_at = utcnow()
        folders = (await self.db.execute(
            self._scoped(select(GoogleDriveFolder)).where(GoogleDriveFolder.sync_enabled == True)  # noqa: E712
        )).unique().scalars().all()
        folder_ids = [folder.id for folder in folders]
        # A failed folder rolls the session back, so each one is reloaded before syncing
        results = [await self.sync_folder(await self.get(folder_id)) for folder_id in folder_ids]
        return {
            "school_id": str(self.school_id),
            "total_folders": len(folders),
            "synced_folders": sum(1 for result in results if result["success"]),
            "failed_folders": sum(1 for result in results if not result["success"]),
            "results": results,
            "started_at": started_at.isoformat(),
            "completed_at": utcnow().isoformat(),
        }

    async def reset_folder(self, folder_id: UUID) -> GoogleDriveFolder:
        folder = await self.get_or_404(folder_id)
        folder.sync_status = SyncStatus.PENDING
        folder.sync_error = None
        await self.db.commit()
        return await self.get(folder_id)

    async def get_sync_status(self) -> Dict[str, Any]:
        if not await self.drive.is_connected():
            return {"is_connected": False, "last_sync_at": None, "next_sync_at": None, "folders": []}

        folders = (await self.db.execute(
            self._scoped(select(GoogleDriveFolder)).order_by(GoogleDriveFolder.created_at.desc())
        )).unique().scalars().all()
        counts = await self.drive.file_counts([folder.id for folder in folders])
        synced = [as_utc(folder.last_sync_at) for folder in folders if folder.last_sync_at]
        last_sync_at = max(synced) if synced else None
        next_sync_at = last_sync_at + SYNC_INTERVAL if last_sync_at else utcnow()
        return {
            "is_connected": True,
            "last_sync_at": last_sync_at.isoformat() if last_sync_at else None,
            "next_sync_at": next_sync_at.isoformat(),
            "folders": [
                {
                    "id": str(folder.id),
                    "folder_name": folder.folder_name,
                    "sync_status": folder.sync_status.value,
                    "last_sync_at": folder.last_sync_at.isoformat() if folder.last_sync_at else None,
                    "file_count": counts.get(folder.id, 0),
                    "sync_error": folder.sync_error,
                }
                for folder in folders
            ],
        }


def _school_failure(school_id) -> Dict[str, Any]:
    return {"school_id": str(school_id), "total_folders": 0, "synced_folders": 0, "failed_folders": 1, "results": []}


async def sync_all_schools(db: AsyncSession, client_factory: Optional[Callable] = None) -> List[Dict[str, Any]]:
    """Sync every school with a Drive connection; one school's failure does not stop the rest"""
    school_ids = (await db.execute(
        select(GoogleDriveAuth.school_id).where(GoogleDriveAuth.is_deleted == False)  # noqa: E712
    )).scalars().all()

    results = []
    for school_id in school_ids:
        try:
            result = await DriveSyncService(db, school_id, client_factory).sync_school()
        except PortalException as e:
            await db.rollback()
            logger.error(f"Failed to sync school {school_id}: {e.message}")
            result = _school_failure(school_id)
        except Exception:
            await db.rollback()
            logger.exception(f"Unexpected error syncing school {school_id}")
            result = _school_failure(school_id)
        if result["failed_folders"]:
            logger.warning(f"Drive sync for school {school_id} finished with {result['failed_folders']} failures")
        results.append(result)
    return results

