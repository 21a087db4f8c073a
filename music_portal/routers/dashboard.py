# music_portal/routers/dashboard.py
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.auth import CurrentUser, require_admin, require_roles, require_staff
from ..core.database import get_db
from ..core.exceptions import NotFoundError
from ..models.tenant_specific.family import Parent
from ..models.tenant_specific.user import UserRole
from ..services.dashboard_service import DashboardService
from ..services.teacher_service import TeacherService
from .deps import get_parent_profile

router = APIRouter(prefix="/api/v1/dashboard", tags=["Dashboard"])


@router.get("/admin", response_model=dict)
async def admin_stats(current: CurrentUser = Depends(require_admin), db: AsyncSession = Depends(get_db)):
    """School-wide figures for the admin home page"""
    return await DashboardService(db, current.school_id).admin_stats()


@router.get("/teacher", response_model=dict)
async def teacher_stats(
    current: CurrentUser = Depends(require_roles(UserRole.TEACHER)),
    db: AsyncSession = Depends(get_db),
):
    teacher = await TeacherService(db, current.school_id).get_by_user_id(current.id)
    if not teacher:
        raise NotFoundError("Teacher", "Teacher profile not found.")
    return await DashboardService(db, current.school_id).teacher_stats(teacher)


@router.get("/parent", response_model=dict)
async def parent_stats(parent: Parent = Depends(get_parent_profile), db: AsyncSession = Depends(get_db)):
    return await DashboardService(db, parent.school_id).parent_stats(parent)


@router.get("/drive-status", response_model=dict)
async def drive_sync_status(current: CurrentUser = Depends(require_staff), db: AsyncSession = Depends(get_db)):
    """Drive sync health: healthy, warning, error or disconnected"""
    return await DashboardService(db, current.school_id).drive_sync_status()


@router.get("/activity", response_model=list)
async def activity_feed(
    limit: int = Query(10, ge=1, le=50),
    current: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await DashboardService(db, current.school_id).activity_feed(limit)
