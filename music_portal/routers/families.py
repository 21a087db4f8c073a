# music_portal/routers/families.py
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.auth import CurrentUser, require_admin, require_staff
from ..core.database import get_db
from ..schemas.people_schemas import FamilyCreate, FamilyParentAdd, FamilyStudentAdd, FamilyUpdate
from ..services.family_service import FamilyService, serialize_family

router = APIRouter(prefix="/api/v1/families", tags=["Families"])


@router.get("/", response_model=dict)
async def list_families(
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    search: Optional[str] = Query(None, max_length=100),
    is_active: Optional[bool] = Query(None),
    current: CurrentUser = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    return await FamilyService(db, current.school_id).list_families(page, size, search, is_active)


@router.get("/{family_id}", response_model=dict)
async def get_family(family_id: UUID, current: CurrentUser = Depends(require_staff), db: AsyncSession = Depends(get_db)):
    """Family with its parents and students"""
    return serialize_family(await FamilyService(db, current.school_id).get_or_404(family_id))


@router.post("/", response_model=dict, status_code=status.HTTP_201_CREATED)
async def create_family(
    payload: FamilyCreate,
    current: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return serialize_family(await FamilyService(db, current.school_id).create_family(payload.model_dump()))


@router.put("/{family_id}", response_model=dict)
async def update_family(
    family_id: UUID,
    payload: FamilyUpdate,
    current: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    family = await FamilyService(db, current.school_id).update_family(family_id, payload.model_dump(exclude_unset=True))
    return serialize_family(family)


@router.delete("/{family_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_family(family_id: UUID, current: CurrentUser = Depends(require_admin), db: AsyncSession = Depends(get_db)):
    """Only empty families can be deleted"""
    await FamilyService(db, current.school_id).delete_family(family_id)


# Members

@router.post("/{family_id}/parents", response_model=dict)
async def add_parent(
    family_id: UUID,
    payload: FamilyParentAdd,
    current: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    family = await FamilyService(db, current.school_id).add_parent(family_id, payload.parent_id, payload.is_primary)
    return serialize_family(family)


@router.delete("/{family_id}/parents/{parent_id}", response_model=dict)
async def remove_parent(
    family_id: UUID,
    parent_id: UUID,
    current: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return serialize_family(await FamilyService(db, current.school_id).remove_parent(family_id, parent_id))


@router.post("/{family_id}/students", response_model=dict)
async def add_student(
    family_id: UUID,
    payload: FamilyStudentAdd,
    current: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return serialize_family(await FamilyService(db, current.school_id).add_student(family_id, payload.student_id))


@router.delete("/{family_id}/students/{student_id}", response_model=dict)
async def remove_student(
    family_id: UUID,
    student_id: UUID,
    current: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return serialize_family(await FamilyService(db, current.school_id).remove_student(family_id, student_id))
