# music_portal/routers/attendance.py
from datetime import date
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.auth import CurrentUser, get_current_user, require_staff
from ..core.database import get_db
from ..schemas.attendance_schemas import AttendanceBatch, AttendanceMark, AttendanceUpdate
from ..services.attendance_service import AttendanceService, serialize_attendance
from ..services.parent_service import ParentService
from .deps import get_teacher_scope

router = APIRouter(prefix="/api/v1/attendance", tags=["Attendance"])


@router.post("/", response_model=dict, status_code=status.HTTP_201_CREATED)
async def mark_attendance(
    payload: AttendanceMark,
    current: CurrentUser = Depends(require_staff),
    teacher_id: Optional[UUID] = Depends(get_teacher_scope),
    db: AsyncSession = Depends(get_db),
):
    """Record one student's attendance, replacing any record for the same day"""
    record = await AttendanceService(db, current.school_id).mark(payload.model_dump(), current.id, teacher_id)
    return serialize_attendance(record)


@router.post("/batch", response_model=list)
async def batch_mark_attendance(
    payload: AttendanceBatch,
    current: CurrentUser = Depends(require_staff),
    teacher_id: Optional[UUID] = Depends(get_teacher_scope),
    db: AsyncSession = Depends(get_db),
):
    """Mark a whole lesson in one request; all records succeed or none do"""
    records = await AttendanceService(db, current.school_id).batch_mark(
        payload.lesson_id,
        payload.date,
        [entry.model_dump() for entry in payload.records],
        current.id,
        teacher_id,
    )
    return [serialize_attendance(record) for record in records]


@router.get("/today", response_model=list)
async def todays_attendance(
    current: CurrentUser = Depends(require_staff),
    teacher_id: Optional[UUID] = Depends(get_teacher_scope),
    db: AsyncSession = Depends(get_db),
):
    records = await AttendanceService(db, current.school_id).for_date(date.today(), teacher_id)
    return [serialize_attendance(record) for record in records]


@router.get("/lesson/{lesson_id}", response_model=list)
async def lesson_attendance(
    lesson_id: UUID,
    day: Optional[date] = Query(None, alias="date"),
    current: CurrentUser = Depends(require_staff),
    teacher_id: Optional[UUID] = Depends(get_teacher_scope),
    db: AsyncSession = Depends(get_db),
):
    records = await AttendanceService(db, current.school_id).by_lesson(lesson_id, day, teacher_id)
    return [serialize_attendance(record) for record in records]


@router.get("/lesson/{lesson_id}/students", response_model=list)
async def enrolled_students(
    lesson_id: UUID,
    day: date = Query(..., alias="date"),
    current: CurrentUser = Depends(require_staff),
    teacher_id: Optional[UUID] = Depends(get_teacher_scope),
    db: AsyncSession = Depends(get_db),
):
    """Roll call for a lesson date"""
    return await AttendanceService(db, current.school_id).enrolled_students_for_date(lesson_id, day, teacher_id)


@router.get("/lesson/{lesson_id}/report", response_model=dict)
async def lesson_report(
    lesson_id: UUID,
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    current: CurrentUser = Depends(require_staff),
    teacher_id: Optional[UUID] = Depends(get_teacher_scope),
    db: AsyncSession = Depends(get_db),
):
    return await AttendanceService(db, current.school_id).lesson_report(lesson_id, start_date, end_date, teacher_id)


@router.get("/student/{student_id}", response_model=list)
async def student_attendance(
    student_id: UUID,
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    current: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Staff see any student; parents only their own children"""
    if current.is_parent:
        parents = ParentService(db, current.school_id)
        await parents.ensure_child(await parents.require_for_user(current.id), student_id)
    records = await AttendanceService(db, current.school_id).by_student(student_id, start_date, end_date)
    return [serialize_attendance(record) for record in records]


@router.get("/student/{student_id}/stats", response_model=dict)
async def student_stats(
    student_id: UUID,
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    current: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    if current.is_parent:
        parents = ParentService(db, current.school_id)
        await parents.ensure_child(await parents.require_for_user(current.id), student_id)
    return await AttendanceService(db, current.school_id).student_stats(student_id, start_date, end_date)


@router.get("/{attendance_id}", response_model=dict)
async def get_attendance(attendance_id: UUID, current: CurrentUser = Depends(require_staff), db: AsyncSession = Depends(get_db)):
    return serialize_attendance(await AttendanceService(db, current.school_id).get_or_404(attendance_id))


@router.put("/{attendance_id}", response_model=dict)
async def update_attendance(
    attendance_id: UUID,
    payload: AttendanceUpdate,
    current: CurrentUser = Depends(require_staff),
    teacher_id: Optional[UUID] = Depends(get_teacher_scope),
    db: AsyncSession = Depends(get_db),
):
    record = await AttendanceService(db, current.school_id).update_record(
        attendance_id, payload.model_dump(exclude_unset=True), current.id, teacher_id
    )
    return serialize_attendance(record)
