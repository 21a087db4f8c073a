# music_portal/routers/students.py
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.auth import CurrentUser, get_current_user, require_admin, require_staff
from ..core.database import get_db
from ..models.tenant_specific.student import AgeGroup
from ..schemas.people_schemas import StudentCreate, StudentUpdate
from ..services.parent_service import ParentService
from ..services.student_service import StudentService, serialize_student

router = APIRouter(prefix="/api/v1/students", tags=["Students"])


@router.get("/", response_model=dict)
async def list_students(
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    search: Optional[str] = Query(None, max_length=100),
    family_id: Optional[UUID] = Query(None),
    age_group: Optional[AgeGroup] = Query(None),
    is_active: Optional[bool] = Query(None),
    current: CurrentUser = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    return await StudentService(db, current.school_id).list_students(page, size, search, family_id, age_group, is_active)


@router.post("/age-groups/recalculate", response_model=dict)
async def recalculate_age_groups(current: CurrentUser = Depends(require_admin), db: AsyncSession = Depends(get_db)):
    """Move students whose birthday changed their age group"""
    updated = await StudentService(db, current.school_id).update_all_age_groups()
    return {"updated": updated}


@router.get("/{student_id}", response_model=dict)
async def get_student(
    student_id: UUID,
    current: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Staff see any student; parents only their own children"""
    if current.is_parent:
        parent = await ParentService(db, current.school_id).require_for_user(current.id)
        return serialize_student(await ParentService(db, current.school_id).ensure_child(parent, student_id))
    return serialize_student(await StudentService(db, current.school_id).get_or_404(student_id))


@router.post("/", response_model=dict, status_code=status.HTTP_201_CREATED)
async def create_student(
    payload: StudentCreate,
    current: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return serialize_student(await StudentService(db, current.school_id).create_student(payload.model_dump()))


@router.put("/{student_id}", response_model=dict)
async def update_student(
    student_id: UUID,
    payload: StudentUpdate,
    current: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    student = await StudentService(db, current.school_id).update_student(student_id, payload.model_dump(exclude_unset=True))
    return serialize_student(student)


@router.delete("/{student_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_student(student_id: UUID, current: CurrentUser = Depends(require_admin), db: AsyncSession = Depends(get_db)):
    await StudentService(db, current.school_id).delete_student(student_id)


@router.put("/{student_id}/family/{family_id}", response_model=dict)
async def assign_family(
    student_id: UUID,
    family_id: UUID,
    current: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return serialize_student(await StudentService(db, current.school_id).assign_family(student_id, family_id))


@router.delete("/{student_id}/family", response_model=dict)
async def remove_family(student_id: UUID, current: CurrentUser = Depends(require_admin), db: AsyncSession = Depends(get_db)):
    return serialize_student(await StudentService(db, current.school_id).remove_family(student_id))
