# music_portal/routers/parents.py
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.auth import CurrentUser, require_admin, require_staff
from ..core.database import get_db
from ..models.tenant_specific.family import Parent
from ..schemas.people_schemas import ParentCreate, ParentUpdate
from ..services.parent_service import ParentService, serialize_parent
from ..services.student_service import serialize_student
from .deps import get_parent_profile

router = APIRouter(prefix="/api/v1/parents", tags=["Parents"])


@router.get("/", response_model=dict)
async def list_parents(
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    search: Optional[str] = Query(None, max_length=100),
    family_id: Optional[UUID] = Query(None),
    current: CurrentUser = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    return await ParentService(db, current.school_id).list_parents(page, size, search, family_id)


@router.get("/me", response_model=dict)
async def my_parent_profile(parent: Parent = Depends(get_parent_profile)):
    return serialize_parent(parent)


@router.get("/me/children", response_model=list)
async def my_children(
    parent: Parent = Depends(get_parent_profile),
    db: AsyncSession = Depends(get_db),
):
    """Active students in the caller's family"""
    children = await ParentService(db, parent.school_id).get_children(parent)
    return [serialize_student(child) for child in children]


@router.get("/{parent_id}", response_model=dict)
async def get_parent(parent_id: UUID, current: CurrentUser = Depends(require_staff), db: AsyncSession = Depends(get_db)):
    return serialize_parent(await ParentService(db, current.school_id).get_or_404(parent_id))


@router.post("/", response_model=dict, status_code=status.HTTP_201_CREATED)
async def create_parent(
    payload: ParentCreate,
    current: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Create the parent's login account and profile, optionally joining a family"""
    parent = await ParentService(db, current.school_id).create_parent(payload.model_dump())
    return serialize_parent(parent)


@router.put("/{parent_id}", response_model=dict)
async def update_parent(
    parent_id: UUID,
    payload: ParentUpdate,
    current: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    parent = await ParentService(db, current.school_id).update_parent(parent_id, payload.model_dump(exclude_unset=True))
    return serialize_parent(parent)


@router.delete("/{parent_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_parent(parent_id: UUID, current: CurrentUser = Depends(require_admin), db: AsyncSession = Depends(get_db)):
    await ParentService(db, current.school_id).delete_parent(parent_id)
