# music_portal/routers/resources.py
"""Shared teaching resources stored in linked Google Drive folders."""
from typing import Callable, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.auth import CurrentUser, get_current_user, require_admin, require_staff
from ..core.database import get_db
from ..models.tenant_specific.google_drive import FileVisibility
from ..schemas.drive_schemas import FileUpdate
from ..services.drive_file_service import DriveFileService, serialize_file
from .deps import get_drive_client_factory

router = APIRouter(prefix="/api/v1/resources", tags=["Resources"])


@router.get("/", response_model=dict)
async def list_files(
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    lesson_id: Optional[UUID] = Query(None),
    student_id: Optional[UUID] = Query(None),
    visibility: Optional[FileVisibility] = Query(None),
    tags: Optional[List[str]] = Query(None),
    search: Optional[str] = Query(None, max_length=200),
    current: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Files the caller's role may see, newest first"""
    filters = {
        "lesson_id": lesson_id,
        "student_id": student_id,
        "visibility": visibility,
        "tags": tags,
        "search": search,
    }
    return await DriveFileService(db, current.school_id).list_files(current, filters, page, size)


@router.get("/stats", response_model=dict)
async def storage_stats(current: CurrentUser = Depends(require_admin), db: AsyncSession = Depends(get_db)):
    return await DriveFileService(db, current.school_id).storage_stats()


@router.get("/lesson/{lesson_id}", response_model=list)
async def lesson_files(lesson_id: UUID, current: CurrentUser = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    files = await DriveFileService(db, current.school_id).files_for_lesson(lesson_id, current)
    return [serialize_file(file) for file in files]


@router.get("/student/{student_id}", response_model=list)
async def student_files(student_id: UUID, current: CurrentUser = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    """Parents only see their own children's files"""
    files = await DriveFileService(db, current.school_id).files_for_student(student_id, current)
    return [serialize_file(file) for file in files]


@router.post("/upload", response_model=dict, status_code=status.HTTP_201_CREATED)
async def upload_file(
    file: UploadFile = File(...),
    lesson_id: Optional[UUID] = Form(None),
    student_id: Optional[UUID] = Form(None),
    visibility: FileVisibility = Form(FileVisibility.ALL),
    tags: Optional[str] = Form(None, description="Comma-separated tags"),
    current: CurrentUser = Depends(require_staff),
    client_factory: Callable = Depends(get_drive_client_factory),
    db: AsyncSession = Depends(get_db),
):
    """Upload into the Drive folder linked to the lesson or student"""
    content = await file.read()
    record = await DriveFileService(db, current.school_id, client_factory).upload_file(
        current,
        file.filename or "upload",
        file.content_type or "application/octet-stream",
        content,
        {
            "lesson_id": lesson_id,
            "student_id": student_id,
            "visibility": visibility,
            "tags": [tag for tag in (tags or "").split(",") if tag.strip()],
        },
    )
    return serialize_file(record)


@router.get("/{file_id}", response_model=dict)
async def get_file(file_id: UUID, current: CurrentUser = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    return serialize_file(await DriveFileService(db, current.school_id).get_file(file_id, current))


@router.put("/{file_id}", response_model=dict)
async def update_file(
    file_id: UUID,
    payload: FileUpdate,
    current: CurrentUser = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    """Change visibility or tags; uploader or admin only"""
    file = await DriveFileService(db, current.school_id).update_file(file_id, current, payload.model_dump(exclude_unset=True))
    return serialize_file(file)


@router.delete("/{file_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_file(
    file_id: UUID,
    delete_from_drive: bool = Query(True),
    current: CurrentUser = Depends(require_staff),
    client_factory: Callable = Depends(get_drive_client_factory),
    db: AsyncSession = Depends(get_db),
):
    await DriveFileService(db, current.school_id, client_factory).delete_file(file_id, current, delete_from_drive)
