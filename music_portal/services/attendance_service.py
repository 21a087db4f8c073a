# music_portal/services/attendance_service.py
import logging
from collections import Counter
from datetime import date
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.exceptions import NotFoundError, PermissionDenied, ValidationException
from ..models.tenant_specific.attendance import Attendance, AttendanceStatus
from ..models.tenant_specific.lesson import Lesson, LessonEnrollment
from ..models.tenant_specific.student import Student
from .base_service import BaseService

logger = logging.getLogger(__name__)

REASON_REQUIRED = (AttendanceStatus.ABSENT, AttendanceStatus.EXCUSED)


def attendance_rate(present: int, late: int, total: int, cancelled: int = 0, excused: int = 0) -> float:
    """Share of countable sessions attended; cancelled and excused sessions do not count"""
    countable = total - cancelled - excused
    if countable <= 0:
        return 100.0
    return round((present + late) / countable * 100, 1)


def status_counts(records) -> Dict[str, int]:
    counts = Counter(record.status for record in records)
    return {status.value.lower(): counts.get(status, 0) for status in AttendanceStatus}


def serialize_attendance(record: Attendance) -> Dict[str, Any]:
    return {
        "id": str(record.id),
        "lesson_id": str(record.lesson_id),
        "student_id": str(record.student_id),
        "student_name": record.student.full_name if record.student else None,
        "date": record.date.isoformat(),
        "status": record.status.value,
        "absence_reason": record.absence_reason,
        "notes": record.notes,
        "marked_by_id": str(record.marked_by_id) if record.marked_by_id else None,
        "updated_at": record.updated_at.isoformat() if record.updated_at else None,
    }


class AttendanceService(BaseService[Attendance]):
    resource_name = "Attendance record"

    def __init__(self, db: AsyncSession, school_id: UUID):
        super().__init__(Attendance, db, school_id)

    @staticmethod
    def _check_reason(status: AttendanceStatus, reason: Optional[str]):
        if status in REASON_REQUIRED and not (reason or "").strip():
            raise ValidationException("Absence reason is required for ABSENT or EXCUSED status")

    async def _get_lesson(self, lesson_id: UUID, teacher_id: Optional[UUID] = None) -> Lesson:
        lesson = (await self.db.execute(
            select(Lesson).where(
                Lesson.id == lesson_id, Lesson.school_id == self.school_id, Lesson.is_deleted == False  # noqa: E712
            )
        )).unique().scalar_one_or_none()
        if not lesson:
            raise NotFoundError("Lesson")
        if teacher_id is not None and lesson.teacher_id != teacher_id:
            raise PermissionDenied("You can only access attendance for your own lessons.")
        return lesson

    async def _enrolled_ids(self, lesson_id: UUID) -> set:
        result = await self.db.execute(
            select(LessonEnrollment.student_id).where(
                LessonEnrollment.lesson_id == lesson_id, LessonEnrollment.is_active == True  # noqa: E712
            )
        )
        return set(result.scalars().all())

    async def _find(self, lesson_id: UUID, student_id: UUID, day: date) -> Optional[Attendance]:
        result = await self.db.execute(
            self._scoped(select(Attendance)).where(
                Attendance.lesson_id == lesson_id,
                Attendance.student_id == student_id,
                Attendance.date == day,
            )
        )
        return result.unique().scalar_one_or_none()

    def _apply(self, record: Optional[Attendance], lesson_id, student_id, day, data, marked_by_id) -> Attendance:
        status = AttendanceStatus(data["status"])
        reason = (data.get("absence_reason") or "").strip() or None
        if record is None:
            record = Attendance(school_id=self.school_id, lesson_id=lesson_id, student_id=student_id, date=day)
            self.db.add(record)
        record.status = status
        # A reason only makes sense while the student is away
        record.absence_reason = reason if status in REASON_REQUIRED else None
        if "notes" in data:
            record.notes = data.get("notes")
        record.marked_by_id = marked_by_id
        return record

    async def mark(self, data: Dict[str, Any], marked_by_id: UUID, teacher_id: Optional[UUID] = None) -> Attendance:
        """Create or replace the record for (lesson, student, date)"""
        status = AttendanceStatus(data["status"])
        self._check_reason(status, data.get("absence_reason"))
        await self._get_lesson(data["lesson_id"], teacher_id)
        if data["student_id"] not in await self._enrolled_ids(data["lesson_id"]):
            raise ValidationException("Student is not enrolled in this lesson")

        day = data["date"]
        record = await self._find(data["lesson_id"], data["student_id"], day)
        record = self._apply(record, data["lesson_id"], data["student_id"], day, data, marked_by_id)
        await self.commit_or_conflict("Attendance has already been recorded.")
        return await self.get(record.id)

    async def batch_mark(
        self,
        lesson_id: UUID,
        day: date,
        records: List[Dict[str, Any]],
        marked_by_id: UUID,
        teacher_id: Optional[UUID] = None,
    ) -> List[Attendance]:
        """Mark a whole class at once; nothing is written unless every record is valid"""
        if not records:
            raise ValidationException("At least one attendance record is required")
        await self._get_lesson(lesson_id, teacher_id)

        for item in records:
            self._check_reason(AttendanceStatus(item["status"]), item.get("absence_reason"))

        enrolled = await self._enrolled_ids(lesson_id)
        missing = [str(item["student_id"]) for item in records if item["student_id"] not in enrolled]
        if missing:
            raise ValidationException(f"Students not enrolled in this lesson: {', '.join(missing)}")

        saved = []
        for item in records:
            record = await self._find(lesson_id, item["student_id"], day)
            saved.append(self._apply(record, lesson_id, item["student_id"], day, item, marked_by_id))
        await self.commit_or_conflict("Attendance has already been recorded.")
        logger.info(f"Marked attendance for {len(saved)} students in lesson {lesson_id} on {day}")
        return await self.by_lesson(lesson_id, day)

    async def update_record(
        self, attendance_id: UUID, data: Dict[str, Any], marked_by_id: UUID, teacher_id: Optional[UUID] = None
    ) -> Attendance:
        record = await self.get_or_404(attendance_id)
        await self._get_lesson(record.lesson_id, teacher_id)
        merged = {
            "status": data.get("status") or record.status,
            "absence_reason": data["absence_reason"] if "absence_reason" in data else record.absence_reason,
        }
        if "notes" in data:
            merged["notes"] = data["notes"]
        self._check_reason(AttendanceStatus(merged["status"]), merged["absence_reason"])
        self._apply(record, record.lesson_id, record.student_id, record.date, merged, marked_by_id)
        await self.db.commit()
        return await self.get(attendance_id)

    async def by_lesson(
        self, lesson_id: UUID, day: Optional[date] = None, teacher_id: Optional[UUID] = None
    ) -> List[Attendance]:
        await self._get_lesson(lesson_id, teacher_id)
        stmt = self._scoped(select(Attendance)).where(Attendance.lesson_id == lesson_id)
        if day:
            stmt = stmt.where(Attendance.date == day)
        stmt = stmt.join(Student, Student.id == Attendance.student_id).order_by(
            Attendance.date.desc(), Student.last_name, Student.first_name
        )
        return (await self.db.execute(stmt)).unique().scalars().all()

    async def by_student(
        self, student_id: UUID, start_date: Optional[date] = None, end_date: Optional[date] = None
    ) -> List[Attendance]:
        stmt = self._scoped(select(Attendance)).where(Attendance.student_id == student_id)
        if start_date:
            stmt = stmt.where(Attendance.date >= start_date)
        if end_date:
            stmt = stmt.where(Attendance.date <= end_date)
        return (await self.db.execute(stmt.order_by(Attendance.date.desc()))).unique().scalars().all()

    async def for_date(self, day: date, teacher_id: Optional[UUID] = None) -> List[Attendance]:
        stmt = self._scoped(select(Attendance)).where(Attendance.date == day)
        if teacher_id:
            stmt = stmt.join(Lesson, Lesson.id == Attendance.lesson_id).where(Lesson.teacher_id == teacher_id)
        return (await self.db.execute(stmt)).unique().scalars().all()

    async def enrolled_students_for_date(
        self, lesson_id: UUID, day: date, teacher_id: Optional[UUID] = None
    ) -> List[Dict[str, Any]]:
        """Roll-call view: every actively enrolled student with any record already taken"""
        await self._get_lesson(lesson_id, teacher_id)
        enrollments = (await self.db.execute(
            select(LessonEnrollment)
            .join(Student, Student.id == LessonEnrollment.student_id)
            .where(LessonEnrollment.lesson_id == lesson_id, LessonEnrollment.is_active == True)  # noqa: E712
            .order_by(Student.last_name, Student.first_name)
        )).unique().scalars().all()
        existing = {record.student_id: record for record in await self.by_lesson(lesson_id, day)}
        return [
            {
                "student_id": str(enrollment.student_id),
                "student_name": enrollment.student.full_name,
                "attendance": serialize_attendance(existing[enrollment.student_id])
                if enrollment.student_id in existing else None,
            }
            for enrollment in enrollments
        ]

    async def lesson_report(
        self, lesson_id: UUID, start_date: Optional[date] = None, end_date: Optional[date] = None,
        teacher_id: Optional[UUID] = None,
    ) -> Dict[str, Any]:
        lesson = await self._get_lesson(lesson_id, teacher_id)
        records = [
            record for record in await self.by_lesson(lesson_id)
            if (not start_date or record.date >= start_date) and (not end_date or record.date <= end_date)
        ]
        total_sessions = len({record.date for record in records})

        per_student: Dict[UUID, list] = {}
        for record in records:
            per_student.setdefault(record.student_id, []).append(record)

        students = []
        for student_id, student_records in per_student.items():
            counts = status_counts(student_records)
            students.append({
                "student_id": str(student_id),
                "student_name": student_records[0].student.full_name,
                **counts,
                "attendance_rate": attendance_rate(
                    counts["present"], counts["late"], total_sessions, counts["cancelled"], counts["excused"]
                ),
            })
        students.sort(key=lambda item: item["student_name"])

        overall = status_counts(records)
        return {
            "lesson_id": str(lesson.id),
            "lesson_name": lesson.name,
            "total_sessions": total_sessions,
            "total_records": len(records),
            **overall,
            "attendance_rate": attendance_rate(
                overall["present"], overall["late"], len(records), overall["cancelled"], overall["excused"]
            ),
            "students": students,
        }

    async def student_stats(
        self, student_id: UUID, start_date: Optional[date] = None, end_date: Optional[date] = None
    ) -> Dict[str, Any]:
        student = (await self.db.execute(
            select(Student).where(
                Student.id == student_id, Student.school_id == self.school_id, Student.is_deleted == False  # noqa: E712
            )
        )).scalar_one_or_none()
        if not student:
            raise NotFoundError("Student")

        records = await self.by_student(student_id, start_date, end_date)
        counts = status_counts(records)
        return {
            "student_id": str(student.id),
            "student_name": student.full_name,
            "total_sessions": len(records),
            **counts,
            "attendance_rate": attendance_rate(
                counts["present"], counts["late"], len(records), counts["cancelled"], counts["excused"]
            ),
        }
