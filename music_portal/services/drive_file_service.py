# music_portal/services/drive_file_service.py
"""Shared resources: portal records of files living in linked Drive folders."""
import logging
from collections import Counter
from typing import Any, Callable, Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import false, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.auth import CurrentUser
from ..core.config import settings
from ..core.exceptions import NotFoundError, PermissionDenied, ValidationException
from ..core.security_utils import clean_text, like_pattern
from ..models.tenant_specific.family import Parent
from ..models.tenant_specific.google_drive import FileVisibility, GoogleDriveFile, GoogleDriveFolder, UploadSource
from ..models.tenant_specific.lesson import Lesson, LessonEnrollment
from ..models.tenant_specific.student import Student
from ..models.tenant_specific.user import UserRole
from ..utils.scheduling import utcnow
from .base_service import BaseService
from .google_drive_service import GoogleDriveService, parse_drive_time

logger = logging.getLogger(__name__)

ROLE_VISIBILITY = {
    UserRole.PARENT: (FileVisibility.ALL, FileVisibility.TEACHERS_AND_PARENTS),
    UserRole.STUDENT: (FileVisibility.ALL,),
}


def visible_to(role: UserRole) -> Optional[tuple]:
    """Visibilities a role may see; None means everything"""
    if role in (UserRole.ADMIN, UserRole.TEACHER):
        return None
    return ROLE_VISIBILITY.get(role, (FileVisibility.ALL,))


def normalize_tags(tags: Optional[List[str]]) -> List[str]:
    cleaned = []
    for tag in tags or []:
        tag = clean_text(tag, 50)
        if tag and tag not in cleaned:
            cleaned.append(tag)
    return cleaned


def serialize_file(file: GoogleDriveFile) -> Dict[str, Any]:
    folder = file.folder
    return {
        "id": str(file.id),
        "drive_file_id": file.drive_file_id,
        "file_name": file.file_name,
        "mime_type": file.mime_type,
        "file_size": file.file_size,
        "web_view_link": file.web_view_link,
        "web_content_link": file.web_content_link,
        "thumbnail_link": file.thumbnail_link,
        "visibility": file.visibility.value,
        "tags": file.tags or [],
        "uploaded_by_id": str(file.uploaded_by_id) if file.uploaded_by_id else None,
        "uploaded_via": file.uploaded_via.value,
        "modified_time": file.modified_time.isoformat() if file.modified_time else None,
        "created_time": file.created_time.isoformat() if file.created_time else None,
        "deleted_in_drive": file.deleted_in_drive,
        "folder": {
            "id": str(folder.id),
            "folder_name": folder.folder_name,
            "lesson_id": str(folder.lesson_id) if folder.lesson_id else None,
            "lesson_name": folder.lesson.name if folder.lesson else None,
            "student_id": str(folder.student_id) if folder.student_id else None,
            "student_name": folder.student.full_name if folder.student else None,
        } if folder else None,
        "created_at": file.created_at.isoformat() if file.created_at else None,
    }


class DriveFileService(BaseService[GoogleDriveFile]):
    resource_name = "File"

    def __init__(self, db: AsyncSession, school_id: UUID, client_factory: Optional[Callable] = None):
        super().__init__(GoogleDriveFile, db, school_id)
        self.drive = GoogleDriveService(db, school_id, client_factory)

    async def _audience(self, user: CurrentUser) -> Optional[Tuple[Any, Any]]:
        """Lesson and student id subqueries a family-side user may see files for; None means no restriction"""
        if user.is_parent:
            family_id = (await self.db.execute(
                select(Parent.family_id).where(Parent.user_id == user.id, Parent.school_id == self.school_id)
            )).scalar_one_or_none()
            if family_id is None:
                students = select(Student.id).where(false())
            else:
                students = select(Student.id).where(
                    Student.family_id == family_id,
                    Student.is_deleted == False,  # noqa: E712
                )
        elif user.role == UserRole.STUDENT:
            students = select(Student.id).where(Student.user_id == user.id)
        else:
            return None

        lessons = select(LessonEnrollment.lesson_id).where(
            LessonEnrollment.student_id.in_(students),
            LessonEnrollment.is_active == True,  # noqa: E712
        )
        return lessons, students

    def _filtered(self, role: UserRole, filters: Dict[str, Any], audience: Optional[Tuple[Any, Any]] = None):
        stmt = self._scoped(select(GoogleDriveFile))
        if not filters.get("include_deleted"):
            stmt = stmt.where(GoogleDriveFile.deleted_in_drive == False)  # noqa: E712

        allowed = visible_to(role)
        if allowed is not None:
            stmt = stmt.where(GoogleDriveFile.visibility.in_(allowed))
        if filters.get("visibility"):
            stmt = stmt.where(GoogleDriveFile.visibility == filters["visibility"])

        if filters.get("lesson_id") or filters.get("student_id") or audience is not None:
            stmt = stmt.join(GoogleDriveFolder, GoogleDriveFolder.id == GoogleDriveFile.folder_id)
            if filters.get("lesson_id"):
                stmt = stmt.where(GoogleDriveFolder.lesson_id == filters["lesson_id"])
            if filters.get("student_id"):
                stmt = stmt.where(GoogleDriveFolder.student_id == filters["student_id"])
            if audience is not None:
                lessons, students = audience
                stmt = stmt.where(or_(
                    GoogleDriveFolder.lesson_id.in_(lessons),
                    GoogleDriveFolder.student_id.in_(students),
                ))

        if filters.get("search"):
            stmt = stmt.where(GoogleDriveFile.file_name.ilike(like_pattern(filters["search"]), escape="\\"))
        return stmt.order_by(GoogleDriveFile.modified_time.desc(), GoogleDriveFile.created_at.desc())

    async def get_files(self, user: CurrentUser, filters: Optional[Dict[str, Any]] = None) -> List[GoogleDriveFile]:
        filters = filters or {}
        stmt = self._filtered(user.role, filters, await self._audience(user))
        files = (await self.db.execute(stmt)).unique().scalars().all()
        # Tags live in a JSON column, matched here to stay database agnostic
        tags = set(filters.get("tags") or [])
        if tags:
            files = [file for file in files if tags.intersection(file.tags or [])]
        return files

    async def list_files(
        self, user: CurrentUser, filters: Optional[Dict[str, Any]] = None, page: int = 1, size: int = 20
    ) -> Dict[str, Any]:
        files = await self.get_files(user, filters)
        total = len(files)
        items = files[(page - 1) * size:page * size]
        return {
            "items": [serialize_file(file) for file in items],
            "total": total,
            "page": page,
            "size": size,
            "total_pages": (total + size - 1) // size,
            "has_next": page * size < total,
            "has_previous": page > 1,
        }

    async def get_file(self, file_id: UUID, user: CurrentUser) -> GoogleDriveFile:
        """Hidden files and other families' files read as missing"""
        stmt = self._filtered(user.role, {"include_deleted": True}, await self._audience(user))
        file = (await self.db.execute(stmt.where(GoogleDriveFile.id == file_id))).unique().scalar_one_or_none()
        if not file:
            raise NotFoundError("File")
        return file

    async def upload_file(
        self,
        user: CurrentUser,
        file_name: str,
        mime_type: str,
        content: bytes,
        options: Dict[str, Any],
    ) -> GoogleDriveFile:
        lesson_id = options.get("lesson_id")
        student_id = options.get("student_id")
        if not lesson_id and not student_id:
            raise ValidationException("Must provide either lesson_id or student_id.")
        if not content:
            raise ValidationException("Uploaded file is empty.")
        if len(content) > settings.max_upload_bytes:
            limit_mb = settings.max_upload_bytes // (1024 * 1024)
            raise ValidationException(f"File exceeds the maximum upload size of {limit_mb} MB.")

        stmt = select(GoogleDriveFolder).where(
            GoogleDriveFolder.school_id == self.school_id,
            GoogleDriveFolder.is_deleted == False,  # noqa: E712
        )
        if lesson_id:
            stmt = stmt.where(GoogleDriveFolder.lesson_id == lesson_id)
        else:
            stmt = stmt.where(GoogleDriveFolder.student_id == student_id)
        folder = (await self.db.execute(stmt)).unique().scalar_one_or_none()
        if not folder:
            target = "lesson" if lesson_id else "student"
            raise ValidationException(f"No Google Drive folder linked to this {target}. Please link a folder first.")

        uploaded = await self.drive.upload_to_drive(folder.drive_folder_id, file_name, mime_type, content)
        record = GoogleDriveFile(
            school_id=self.school_id,
            folder_id=folder.id,
            drive_file_id=uploaded["id"],
            file_name=uploaded["name"],
            mime_type=uploaded["mime_type"],
            file_size=uploaded["size"] if uploaded["size"] is not None else len(content),
            web_view_link=uploaded["web_view_link"],
            web_content_link=uploaded["web_content_link"],
            thumbnail_link=uploaded["thumbnail_link"],
            modified_time=parse_drive_time(uploaded["modified_time"]) or utcnow(),
            created_time=parse_drive_time(uploaded["created_time"]) or utcnow(),
            visibility=FileVisibility(options.get("visibility") or FileVisibility.ALL),
            tags=normalize_tags(options.get("tags")),
            uploaded_by_id=user.id,
            uploaded_via=UploadSource.PORTAL,
        )
        self.db.add(record)
        await self.commit_or_conflict("This file is already recorded.")
        logger.info(f"User {user.id} uploaded {record.file_name} to Drive folder {folder.drive_folder_id}")
        return await self.get(record.id)

    def _check_owner(self, file: GoogleDriveFile, user: CurrentUser, action: str):
        if user.is_admin:
            return
        if user.is_teacher and file.uploaded_by_id == user.id:
            return
        if user.is_teacher:
            raise PermissionDenied(f"You can only {action} files you uploaded.")
        raise PermissionDenied(f"You do not have permission to {action} files.")

    async def update_file(self, file_id: UUID, user: CurrentUser, data: Dict[str, Any]) -> GoogleDriveFile:
        file = await self.get_or_404(file_id)
        self._check_owner(file, user, "update")
        if data.get("visibility") is not None:
            file.visibility = FileVisibility(data["visibility"])
        if data.get("tags") is not None:
            file.tags = normalize_tags(data["tags"])
        await self.db.commit()
        return await self.get(file_id)

    async def delete_file(self, file_id: UUID, user: CurrentUser, delete_from_drive: bool = True) -> None:
        file = await self.get_or_404(file_id)
        self._check_owner(file, user, "delete")

        # Files that came from Drive stay there; only portal uploads are removed
        if delete_from_drive and file.uploaded_via == UploadSource.PORTAL and not file.deleted_in_drive:
            try:
                await self.drive.delete_from_drive(file.drive_file_id)
            except NotFoundError:
                logger.info(f"Drive file {file.drive_file_id} was already gone")

        file.deleted_in_drive = True
        file.deleted_at = utcnow()
        await self.db.commit()
        logger.info(f"User {user.id} deleted file {file.file_name}")

    async def files_for_lesson(self, lesson_id: UUID, user: CurrentUser) -> List[GoogleDriveFile]:
        found = (await self.db.execute(
            select(Lesson.id).where(Lesson.id == lesson_id, Lesson.school_id == self.school_id)
        )).first()
        if not found:
            raise NotFoundError("Lesson")
        return await self.get_files(user, {"lesson_id": lesson_id})

    async def files_for_student(self, student_id: UUID, user: CurrentUser) -> List[GoogleDriveFile]:
        student = (await self.db.execute(
            select(Student).where(Student.id == student_id, Student.school_id == self.school_id)
        )).scalar_one_or_none()
        if not student:
            raise NotFoundError("Student")

        if user.is_parent:
            parent = (await self.db.execute(
                select(Parent).where(Parent.user_id == user.id, Parent.school_id == self.school_id)
            )).unique().scalar_one_or_none()
            if not parent or not parent.family_id or parent.family_id != student.family_id:
                raise PermissionDenied("You can only view files for your own children.")
        elif user.role == UserRole.STUDENT and student.user_id != user.id:
            raise PermissionDenied("You can only view your own files.")

        return await self.get_files(user, {"student_id": student_id})

    async def storage_stats(self) -> Dict[str, Any]:
        files = (await self.db.execute(
            self._scoped(select(GoogleDriveFile)).where(GoogleDriveFile.deleted_in_drive == False)  # noqa: E712
        )).unique().scalars().all()
        by_visibility = Counter(file.visibility for file in files)
        return {
            "total_files": len(files),
            "total_size_bytes": sum(file.file_size or 0 for file in files),
            "by_visibility": {visibility.value: by_visibility.get(visibility, 0) for visibility in FileVisibility},
        }

    async def recent_uploads(self, user_id: UUID, since) -> int:
        result = await self.db.execute(
            self._scoped(select(func.count()).select_from(GoogleDriveFile)).where(
                GoogleDriveFile.uploaded_by_id == user_id,
                GoogleDriveFile.created_at >= since,
                GoogleDriveFile.deleted_in_drive == False,  # noqa: E712
            )
        )
        return result.scalar() or 0
