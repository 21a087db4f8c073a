# music_portal/routers/deps.py
"""Dependencies shared by several routers."""
from typing import Callable, Optional
from uuid import UUID

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.auth import CurrentUser, get_current_user, require_parent
from ..core.database import get_db
from ..core.exceptions import PermissionDenied
from ..models.tenant_specific.family import Parent
from ..services.google_drive_service import build_drive_client
from ..services.parent_service import ParentService
from ..services.teacher_service import TeacherService


async def get_teacher_scope(
    current: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> Optional[UUID]:
    """Teacher id a teacher's queries are limited to; None for admins"""
    if not current.is_teacher:
        return None
    teacher = await TeacherService(db, current.school_id).get_by_user_id(current.id)
    if not teacher:
        raise PermissionDenied("Teacher profile not found.")
    return teacher.id


async def get_parent_profile(
    current: CurrentUser = Depends(require_parent),
    db: AsyncSession = Depends(get_db),
) -> Parent:
    return await ParentService(db, current.school_id).require_for_user(current.id)


def get_drive_client_factory() -> Callable:
    """Builds the Drive API client from credentials; overridden in tests"""
    return build_drive_client
