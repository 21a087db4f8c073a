# music_portal/routers/lessons.py
import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.auth import CurrentUser, require_admin, require_staff
from ..core.database import get_db
from ..core.exceptions import PermissionDenied
from ..schemas.lesson_schemas import (
    BulkEnrollRequest, ConflictCheckRequest, EnrollRequest, LessonCreate, LessonUpdate, RescheduleRequest,
)
from ..services.lesson_service import LessonService, serialize_enrollment, serialize_lesson
from .deps import get_teacher_scope

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/lessons", tags=["Lessons"])


async def _visible_lesson(service: LessonService, lesson_id: UUID, teacher_id: Optional[UUID]):
    lesson = await service.get_or_404(lesson_id)
    if teacher_id and lesson.teacher_id != teacher_id:
        raise PermissionDenied("You can only access your own lessons.")
    return lesson


@router.get("/", response_model=dict)
async def list_lessons(
    page: int = Query(1, ge=1),
    size: int = Query(50, ge=1, le=200),
    term_id: Optional[UUID] = Query(None),
    teacher_id: Optional[UUID] = Query(None),
    room_id: Optional[UUID] = Query(None),
    instrument_id: Optional[UUID] = Query(None),
    lesson_type_id: Optional[UUID] = Query(None),
    day_of_week: Optional[int] = Query(None, ge=0, le=6),
    is_active: Optional[bool] = Query(True),
    current: CurrentUser = Depends(require_staff),
    own_teacher_id: Optional[UUID] = Depends(get_teacher_scope),
    db: AsyncSession = Depends(get_db),
):
    """Weekly lesson schedule; teachers only see their own lessons"""
    if own_teacher_id:
        teacher_id = own_teacher_id
    return await LessonService(db, current.school_id).list_lessons(
        page, size, term_id, teacher_id, room_id, instrument_id, lesson_type_id, day_of_week, is_active
    )


@router.get("/{lesson_id}", response_model=dict)
async def get_lesson(
    lesson_id: UUID,
    current: CurrentUser = Depends(require_staff),
    own_teacher_id: Optional[UUID] = Depends(get_teacher_scope),
    db: AsyncSession = Depends(get_db),
):
    service = LessonService(db, current.school_id)
    await _visible_lesson(service, lesson_id, own_teacher_id)
    return await service.get_lesson_detail(lesson_id)


@router.post("/", response_model=dict, status_code=status.HTTP_201_CREATED)
async def create_lesson(
    payload: LessonCreate,
    current: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Create a lesson; teacher and room must be free for the whole time range"""
    lesson = await LessonService(db, current.school_id).create_lesson(payload.model_dump())
    return serialize_lesson(lesson, 0)


@router.put("/{lesson_id}", response_model=dict)
async def update_lesson(
    lesson_id: UUID,
    payload: LessonUpdate,
    current: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    service = LessonService(db, current.school_id)
    lesson = await service.update_lesson(lesson_id, payload.model_dump(exclude_unset=True))
    counts = await service.enrollment_counts([lesson.id])
    return serialize_lesson(lesson, counts.get(lesson.id, 0))


@router.delete("/{lesson_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_lesson(lesson_id: UUID, current: CurrentUser = Depends(require_admin), db: AsyncSession = Depends(get_db)):
    await LessonService(db, current.school_id).delete_lesson(lesson_id)


# ============================================================================
# ENROLLMENTS
# ============================================================================

@router.get("/{lesson_id}/capacity", response_model=dict)
async def get_capacity(
    lesson_id: UUID,
    current: CurrentUser = Depends(require_staff),
    own_teacher_id: Optional[UUID] = Depends(get_teacher_scope),
    db: AsyncSession = Depends(get_db),
):
    service = LessonService(db, current.school_id)
    await _visible_lesson(service, lesson_id, own_teacher_id)
    return await service.get_capacity(lesson_id)


@router.get("/{lesson_id}/enrollments", response_model=list)
async def list_enrollments(
    lesson_id: UUID,
    current: CurrentUser = Depends(require_staff),
    own_teacher_id: Optional[UUID] = Depends(get_teacher_scope),
    db: AsyncSession = Depends(get_db),
):
    service = LessonService(db, current.school_id)
    await _visible_lesson(service, lesson_id, own_teacher_id)
    return [serialize_enrollment(enrollment) for enrollment in await service.get_enrollments(lesson_id)]


@router.post("/{lesson_id}/enroll", response_model=dict, status_code=status.HTTP_201_CREATED)
async def enroll_student(
    lesson_id: UUID,
    payload: EnrollRequest,
    current: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    enrollment = await LessonService(db, current.school_id).enroll_student(lesson_id, payload.student_id)
    return serialize_enrollment(enrollment)


@router.post("/{lesson_id}/enroll/bulk", response_model=dict)
async def bulk_enroll(
    lesson_id: UUID,
    payload: BulkEnrollRequest,
    current: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Enroll several students at once; fails without changes when capacity is short"""
    return await LessonService(db, current.school_id).bulk_enroll(lesson_id, payload.student_ids)


@router.delete("/{lesson_id}/enroll/{student_id}", status_code=status.HTTP_204_NO_CONTENT)
async def unenroll_student(
    lesson_id: UUID,
    student_id: UUID,
    current: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    await LessonService(db, current.school_id).unenroll_student(lesson_id, student_id)


# ============================================================================
# RESCHEDULING
# ============================================================================

@router.post("/{lesson_id}/check-conflicts", response_model=dict)
async def check_conflicts(
    lesson_id: UUID,
    payload: ConflictCheckRequest,
    current: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Preview a move: teacher and room clashes plus the students affected"""
    return await LessonService(db, current.school_id).check_conflicts(
        lesson_id, payload.new_day_of_week, payload.new_start_time, payload.new_end_time
    )


@router.post("/{lesson_id}/reschedule", response_model=dict)
async def reschedule_lesson(
    lesson_id: UUID,
    payload: RescheduleRequest,
    current: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    service = LessonService(db, current.school_id)
    lesson = await service.reschedule(
        lesson_id,
        payload.new_day_of_week,
        payload.new_start_time,
        payload.new_end_time,
        reason=payload.reason,
        notify_parents=payload.notify_parents,
    )
    counts = await service.enrollment_counts([lesson.id])
    return serialize_lesson(lesson, counts.get(lesson.id, 0))
