# music_portal/services/notes_service.py
import logging
from datetime import date, timedelta
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.auth import CurrentUser
from ..core.exceptions import NotFoundError, PermissionDenied, ValidationException
from ..models.tenant_specific.lesson import Lesson, LessonEnrollment
from ..models.tenant_specific.note import Note, NoteStatus
from ..models.tenant_specific.student import Student
from ..models.tenant_specific.teacher import Teacher
from ..utils.scheduling import week_start_monday
from .base_service import BaseService

logger = logging.getLogger(__name__)


def completion_status(class_note: Optional[Note], student_notes: List[Optional[Note]]) -> NoteStatus:
    """COMPLETE when the class note and every student note are complete, PARTIAL when anything exists"""
    notes = [class_note] + list(student_notes)
    if all(note is not None and note.status == NoteStatus.COMPLETE for note in notes):
        return NoteStatus.COMPLETE
    if any(note is not None for note in notes):
        return NoteStatus.PARTIAL
    return NoteStatus.PENDING


def completion_rate(completed: int, required: int) -> int:
    if required <= 0:
        return 100
    return round(completed / required * 100)


def lesson_date_in_week(week_start: date, day_of_week: int) -> date:
    """Date of a Sunday=0 weekday inside a Monday-first week"""
    return week_start + timedelta(days=(day_of_week - 1) % 7)


def serialize_note(note: Note) -> Dict[str, Any]:
    return {
        "id": str(note.id),
        "author_id": str(note.author_id),
        "author_name": note.author.full_name if note.author else None,
        "lesson_id": str(note.lesson_id) if note.lesson_id else None,
        "student_id": str(note.student_id) if note.student_id else None,
        "date": note.date.isoformat(),
        "content": note.content,
        "status": note.status.value,
        "is_private": note.is_private,
        "created_at": note.created_at.isoformat() if note.created_at else None,
        "updated_at": note.updated_at.isoformat() if note.updated_at else None,
    }


class NotesService(BaseService[Note]):
    resource_name = "Note"

    def __init__(self, db: AsyncSession, school_id: UUID):
        super().__init__(Note, db, school_id)

    async def _check_target(self, model, id: Optional[UUID], name: str):
        if id is None:
            return
        found = (await self.db.execute(
            select(model.id).where(model.id == id, model.school_id == self.school_id, model.is_deleted == False)  # noqa: E712
        )).first()
        if not found:
            raise NotFoundError(name)

    async def _find(self, lesson_id, student_id, day: date) -> Optional[Note]:
        stmt = self._scoped(select(Note)).where(Note.date == day)
        stmt = stmt.where(Note.lesson_id == lesson_id if lesson_id else Note.lesson_id.is_(None))
        stmt = stmt.where(Note.student_id == student_id if student_id else Note.student_id.is_(None))
        return (await self.db.execute(stmt)).unique().scalars().first()

    async def create_note(self, data: Dict[str, Any], author: CurrentUser) -> Note:
        """Create, or replace the existing note for the same lesson, student and date"""
        lesson_id = data.get("lesson_id")
        student_id = data.get("student_id")
        if not lesson_id and not student_id:
            raise ValidationException("A note must be linked to a lesson or a student.")
        await self._check_target(Lesson, lesson_id, "Lesson")
        await self._check_target(Student, student_id, "Student")

        note = await self._find(lesson_id, student_id, data["date"])
        if note is None:
            note = Note(
                school_id=self.school_id,
                lesson_id=lesson_id,
                student_id=student_id,
                date=data["date"],
                author_id=author.id,
            )
            self.db.add(note)
        elif note.author_id != author.id and not author.is_admin:
            raise PermissionDenied("You can only edit your own notes.")

        note.content = data["content"]
        note.status = NoteStatus(data.get("status") or NoteStatus.PENDING)
        note.is_private = bool(data.get("is_private", False))
        await self.db.commit()
        return await self.get(note.id)

    async def _owned(self, note_id: UUID, user: CurrentUser) -> Note:
        note = await self.get_or_404(note_id)
        if note.author_id != user.id and not user.is_admin:
            raise PermissionDenied("You can only modify your own notes.")
        return note

    async def update_note(self, note_id: UUID, data: Dict[str, Any], user: CurrentUser) -> Note:
        note = await self._owned(note_id, user)
        if data.get("content") is not None:
            note.content = data["content"]
        if data.get("status") is not None:
            note.status = NoteStatus(data["status"])
        if data.get("is_private") is not None:
            note.is_private = data["is_private"]
        await self.db.commit()
        return await self.get(note_id)

    async def delete_note(self, note_id: UUID, user: CurrentUser) -> None:
        note = await self._owned(note_id, user)
        await self.db.delete(note)
        await self.db.commit()

    async def get_note(self, note_id: UUID, user: CurrentUser) -> Note:
        note = await self.get_or_404(note_id)
        if note.is_private and not user.is_staff:
            raise NotFoundError("Note")
        return note

    async def by_lesson(self, lesson_id: UUID, day: Optional[date] = None, include_private: bool = True) -> List[Note]:
        stmt = self._scoped(select(Note)).where(Note.lesson_id == lesson_id)
        if day:
            stmt = stmt.where(Note.date == day)
        if not include_private:
            stmt = stmt.where(Note.is_private == False)  # noqa: E712
        return (await self.db.execute(stmt.order_by(Note.date.desc()))).unique().scalars().all()

    async def by_student(self, student_id: UUID, include_private: bool = False) -> List[Note]:
        stmt = self._scoped(select(Note)).where(Note.student_id == student_id)
        if not include_private:
            stmt = stmt.where(Note.is_private == False)  # noqa: E712
        return (await self.db.execute(stmt.order_by(Note.date.desc()))).unique().scalars().all()

    async def by_date(self, day: date, author_id: Optional[UUID] = None) -> List[Note]:
        stmt = self._scoped(select(Note)).where(Note.date == day)
        if author_id:
            stmt = stmt.where(Note.author_id == author_id)
        return (await self.db.execute(stmt.order_by(Note.created_at))).unique().scalars().all()

    async def _enrolled_students(self, lesson_id: UUID) -> List[Student]:
        result = await self.db.execute(
            select(Student)
            .join(LessonEnrollment, LessonEnrollment.student_id == Student.id)
            .where(LessonEnrollment.lesson_id == lesson_id, LessonEnrollment.is_active == True)  # noqa: E712
            .order_by(Student.last_name, Student.first_name)
        )
        return result.scalars().all()

    async def lesson_completion(self, lesson_id: UUID, day: date) -> Dict[str, Any]:
        lesson = (await self.db.execute(
            select(Lesson).where(Lesson.id == lesson_id, Lesson.school_id == self.school_id)
        )).unique().scalar_one_or_none()
        if not lesson:
            raise NotFoundError("Lesson")

        notes = await self.by_lesson(lesson_id, day)
        class_note = next((note for note in notes if note.student_id is None), None)
        by_student = {note.student_id: note for note in notes if note.student_id}
        students = await self._enrolled_students(lesson_id)
        student_notes = [by_student.get(student.id) for student in students]

        return {
            "lesson_id": str(lesson.id),
            "lesson_name": lesson.name,
            "date": day.isoformat(),
            "status": completion_status(class_note, student_notes).value,
            "class_note": serialize_note(class_note) if class_note else None,
            "students": [
                {
                    "student_id": str(student.id),
                    "student_name": student.full_name,
                    "note": serialize_note(note) if note else None,
                    "status": note.status.value if note else NoteStatus.PENDING.value,
                }
                for student, note in zip(students, student_notes)
            ],
        }

    async def _week_summary_for_lessons(self, lessons: List[Lesson], week_start: date) -> Dict[str, Any]:
        required = completed = 0
        pending_lessons = []
        for lesson in lessons:
            day = lesson_date_in_week(week_start, lesson.day_of_week)
            if lesson.term and not (lesson.term.start_date <= day <= lesson.term.end_date):
                continue
            students = await self._enrolled_students(lesson.id)
            if not students:
                continue
            notes = await self.by_lesson(lesson.id, day)
            class_note = next((note for note in notes if note.student_id is None), None)
            by_student = {note.student_id: note for note in notes if note.student_id}
            lesson_notes = [class_note] + [by_student.get(student.id) for student in students]

            lesson_required = len(lesson_notes)
            lesson_completed = sum(1 for note in lesson_notes if note and note.status == NoteStatus.COMPLETE)
            required += lesson_required
            completed += lesson_completed
            if lesson_completed < lesson_required:
                pending_lessons.append({
                    "lesson_id": str(lesson.id),
                    "lesson_name": lesson.name,
                    "date": day.isoformat(),
                    "missing": lesson_required - lesson_completed,
                })

        return {
            "week_start": week_start.isoformat(),
            "week_end": (week_start + timedelta(days=6)).isoformat(),
            "required_notes": required,
            "completed_notes": completed,
            "completion_rate": completion_rate(completed, required),
            "pending_lessons": pending_lessons,
        }

    async def _active_lessons(self, teacher_id: Optional[UUID] = None) -> List[Lesson]:
        stmt = select(Lesson).where(
            Lesson.school_id == self.school_id,
            Lesson.is_active == True,  # noqa: E712
            Lesson.is_deleted == False,  # noqa: E712
        )
        if teacher_id:
            stmt = stmt.where(Lesson.teacher_id == teacher_id)
        return (await self.db.execute(stmt.order_by(Lesson.day_of_week, Lesson.start_time))).unique().scalars().all()

    async def teacher_weekly_summary(self, teacher_id: UUID, week_of: Optional[date] = None) -> Dict[str, Any]:
        week_start = week_start_monday(week_of or date.today())
        summary = await self._week_summary_for_lessons(await self._active_lessons(teacher_id), week_start)
        return {"teacher_id": str(teacher_id), **summary}

    async def school_weekly_summary(self, week_of: Optional[date] = None) -> Dict[str, Any]:
        week_start = week_start_monday(week_of or date.today())
        teachers = (await self.db.execute(
            select(Teacher).where(
                Teacher.school_id == self.school_id,
                Teacher.is_active == True,  # noqa: E712
                Teacher.is_deleted == False,  # noqa: E712
            )
        )).unique().scalars().all()

        per_teacher = []
        required = completed = 0
        for teacher in teachers:
            summary = await self._week_summary_for_lessons(await self._active_lessons(teacher.id), week_start)
            required += summary["required_notes"]
            completed += summary["completed_notes"]
            per_teacher.append({
                "teacher_id": str(teacher.id),
                "teacher_name": teacher.user.full_name,
                "required_notes": summary["required_notes"],
                "completed_notes": summary["completed_notes"],
                "completion_rate": summary["completion_rate"],
            })

        return {
            "week_start": week_start.isoformat(),
            "week_end": (week_start + timedelta(days=6)).isoformat(),
            "required_notes": required,
            "completed_notes": completed,
            "completion_rate": completion_rate(completed, required),
            "teachers": sorted(per_teacher, key=lambda item: item["completion_rate"]),
        }
