# music_portal/routers/teachers.py
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.auth import CurrentUser, require_admin, require_roles, require_staff
from ..core.database import get_db
from ..core.exceptions import NotFoundError
from ..models.tenant_specific.user import UserRole
from ..schemas.people_schemas import InstrumentAssign, TeacherCreate, TeacherUpdate
from ..services.teacher_service import TeacherService, serialize_teacher

router = APIRouter(prefix="/api/v1/teachers", tags=["Teachers"])


@router.get("/", response_model=dict)
async def list_teachers(
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    search: Optional[str] = Query(None, max_length=100),
    is_active: Optional[bool] = Query(None),
    instrument_id: Optional[UUID] = Query(None),
    current: CurrentUser = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    """Paginated list of teachers with their instruments"""
    return await TeacherService(db, current.school_id).list_teachers(page, size, search, is_active, instrument_id)


@router.get("/me", response_model=dict)
async def my_teacher_profile(
    current: CurrentUser = Depends(require_roles(UserRole.TEACHER)),
    db: AsyncSession = Depends(get_db),
):
    teacher = await TeacherService(db, current.school_id).get_by_user_id(current.id)
    if not teacher:
        raise NotFoundError("Teacher", "Teacher profile not found.")
    return serialize_teacher(teacher)


@router.get("/{teacher_id}", response_model=dict)
async def get_teacher(teacher_id: UUID, current: CurrentUser = Depends(require_staff), db: AsyncSession = Depends(get_db)):
    return serialize_teacher(await TeacherService(db, current.school_id).get_or_404(teacher_id))


@router.post("/", response_model=dict, status_code=status.HTTP_201_CREATED)
async def create_teacher(
    payload: TeacherCreate,
    current: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Create the teacher's login account and profile together"""
    teacher = await TeacherService(db, current.school_id).create_teacher(payload.model_dump())
    return serialize_teacher(teacher)


@router.put("/{teacher_id}", response_model=dict)
async def update_teacher(
    teacher_id: UUID,
    payload: TeacherUpdate,
    current: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    teacher = await TeacherService(db, current.school_id).update_teacher(teacher_id, payload.model_dump(exclude_unset=True))
    return serialize_teacher(teacher)


@router.delete("/{teacher_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_teacher(teacher_id: UUID, current: CurrentUser = Depends(require_admin), db: AsyncSession = Depends(get_db)):
    """Deactivate the teacher and their login"""
    await TeacherService(db, current.school_id).delete_teacher(teacher_id)


# Instruments

@router.post("/{teacher_id}/instruments", response_model=dict)
async def assign_instrument(
    teacher_id: UUID,
    payload: InstrumentAssign,
    current: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    teacher = await TeacherService(db, current.school_id).assign_instrument(
        teacher_id, payload.instrument_id, payload.is_primary
    )
    return serialize_teacher(teacher)


@router.delete("/{teacher_id}/instruments/{instrument_id}", response_model=dict)
async def remove_instrument(
    teacher_id: UUID,
    instrument_id: UUID,
    current: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Remove an instrument; the oldest remaining one becomes primary"""
    teacher = await TeacherService(db, current.school_id).remove_instrument(teacher_id, instrument_id)
    return serialize_teacher(teacher)


@router.put("/{teacher_id}/instruments/{instrument_id}/primary", response_model=dict)
async def set_primary_instrument(
    teacher_id: UUID,
    instrument_id: UUID,
    current: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    teacher = await TeacherService(db, current.school_id).set_primary_instrument(teacher_id, instrument_id)
    return serialize_teacher(teacher)
