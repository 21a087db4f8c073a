# music_portal/routers/notes.py
from datetime import date
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.auth import CurrentUser, get_current_user, require_admin, require_staff
from ..core.database import get_db
from ..core.exceptions import ValidationException
from ..schemas.attendance_schemas import NoteCreate, NoteUpdate
from ..services.notes_service import NotesService, serialize_note
from ..services.parent_service import ParentService
from .deps import get_teacher_scope

router = APIRouter(prefix="/api/v1/notes", tags=["Teacher Notes"])


@router.post("/", response_model=dict, status_code=status.HTTP_201_CREATED)
async def create_note(
    payload: NoteCreate,
    current: CurrentUser = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    """Write a lesson or student note; an existing note for the same day is replaced"""
    return serialize_note(await NotesService(db, current.school_id).create_note(payload.model_dump(), current))


@router.get("/lesson/{lesson_id}", response_model=list)
async def notes_for_lesson(
    lesson_id: UUID,
    day: Optional[date] = Query(None, alias="date"),
    current: CurrentUser = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    notes = await NotesService(db, current.school_id).by_lesson(lesson_id, day)
    return [serialize_note(note) for note in notes]


@router.get("/lesson/{lesson_id}/completion", response_model=dict)
async def lesson_completion(
    lesson_id: UUID,
    day: date = Query(..., alias="date"),
    current: CurrentUser = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    """Class note plus one note per enrolled student, with the overall status"""
    return await NotesService(db, current.school_id).lesson_completion(lesson_id, day)


@router.get("/student/{student_id}", response_model=list)
async def notes_for_student(
    student_id: UUID,
    include_private: bool = Query(False),
    current: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Private notes are only returned to staff"""
    if current.is_parent:
        parents = ParentService(db, current.school_id)
        await parents.ensure_child(await parents.require_for_user(current.id), student_id)
    notes = await NotesService(db, current.school_id).by_student(student_id, include_private and current.is_staff)
    return [serialize_note(note) for note in notes]


@router.get("/date/{day}", response_model=list)
async def notes_for_date(
    day: date,
    mine: bool = Query(False, description="Only notes written by the caller"),
    current: CurrentUser = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    notes = await NotesService(db, current.school_id).by_date(day, current.id if mine else None)
    return [serialize_note(note) for note in notes]


@router.get("/summary/weekly", response_model=dict)
async def teacher_weekly_summary(
    week_of: Optional[date] = Query(None),
    teacher_id: Optional[UUID] = Query(None),
    current: CurrentUser = Depends(require_staff),
    own_teacher_id: Optional[UUID] = Depends(get_teacher_scope),
    db: AsyncSession = Depends(get_db),
):
    """Note completion for one teacher's week; teachers always get their own"""
    teacher_id = own_teacher_id or teacher_id
    if not teacher_id:
        raise ValidationException("teacher_id is required.")
    return await NotesService(db, current.school_id).teacher_weekly_summary(teacher_id, week_of)


@router.get("/summary/school", response_model=dict)
async def school_weekly_summary(
    week_of: Optional[date] = Query(None),
    current: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await NotesService(db, current.school_id).school_weekly_summary(week_of)


@router.get("/{note_id}", response_model=dict)
async def get_note(note_id: UUID, current: CurrentUser = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    return serialize_note(await NotesService(db, current.school_id).get_note(note_id, current))


@router.put("/{note_id}", response_model=dict)
async def update_note(
    note_id: UUID,
    payload: NoteUpdate,
    current: CurrentUser = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    note = await NotesService(db, current.school_id).update_note(note_id, payload.model_dump(exclude_unset=True), current)
    return serialize_note(note)


@router.delete("/{note_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_note(note_id: UUID, current: CurrentUser = Depends(require_staff), db: AsyncSession = Depends(get_db)):
    """Authors delete their own notes; admins any"""
    await NotesService(db, current.school_id).delete_note(note_id, current)
