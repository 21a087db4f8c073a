# music_portal/services/lesson_service.py
"""Weekly lessons, their enrollments and the scheduling conflict rules."""
import logging
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.exceptions import ConflictError, NotFoundError, ValidationException
from ..models.tenant_specific.hybrid_booking import HybridLessonPattern, HybridPatternType
from ..models.tenant_specific.lesson import Lesson, LessonEnrollment
from ..models.tenant_specific.school_config import Instrument, LessonCategory, LessonType, Room, Term
from ..models.tenant_specific.student import Student
from ..models.tenant_specific.teacher import Teacher
from ..utils.scheduling import add_minutes, duration_between, term_week_count, time_ranges_overlap, utcnow
from .base_service import BaseService

logger = logging.getLogger(__name__)

PATTERN_REQUIRED = "Hybrid lessons require a hybrid pattern configuration."


def serialize_pattern(pattern: Optional[HybridLessonPattern]) -> Optional[Dict[str, Any]]:
    if pattern is None:
        return None
    return {
        "id": str(pattern.id),
        "pattern_type": pattern.pattern_type.value,
        "group_weeks": sorted(pattern.group_weeks or []),
        "individual_weeks": sorted(pattern.individual_weeks or []),
        "individual_slot_duration": pattern.individual_slot_duration,
        "booking_deadline_hours": pattern.booking_deadline_hours,
        "bookings_open": pattern.bookings_open,
    }


def serialize_lesson(lesson: Lesson, enrolled_count: Optional[int] = None) -> Dict[str, Any]:
    teacher_user = lesson.teacher.user if lesson.teacher else None
    data = {
        "id": str(lesson.id),
        "name": lesson.name,
        "description": lesson.description,
        "day_of_week": lesson.day_of_week,
        "start_time": lesson.start_time,
        "end_time": lesson.end_time,
        "duration_mins": lesson.duration_mins,
        "max_students": lesson.max_students,
        "is_recurring": lesson.is_recurring,
        "is_active": lesson.is_active,
        "lesson_type": {
            "id": str(lesson.lesson_type.id),
            "name": lesson.lesson_type.name,
            "type": lesson.lesson_type.type.value,
        } if lesson.lesson_type else None,
        "term": {
            "id": str(lesson.term.id),
            "name": lesson.term.name,
            "start_date": lesson.term.start_date.isoformat(),
            "end_date": lesson.term.end_date.isoformat(),
        } if lesson.term else None,
        "teacher": {
            "id": str(lesson.teacher.id),
            "name": teacher_user.full_name if teacher_user else None,
        } if lesson.teacher else None,
        "room": {
            "id": str(lesson.room.id),
            "name": lesson.room.name,
            "location_id": str(lesson.room.location_id),
        } if lesson.room else None,
        "instrument": {
            "id": str(lesson.instrument.id),
            "name": lesson.instrument.name,
        } if lesson.instrument else None,
        "hybrid_pattern": serialize_pattern(lesson.hybrid_pattern),
    }
    if enrolled_count is not None:
        data["enrolled_count"] = enrolled_count
    return data


def serialize_enrollment(enrollment: LessonEnrollment) -> Dict[str, Any]:
    student = enrollment.student
    return {
        "id": str(enrollment.id),
        "lesson_id": str(enrollment.lesson_id),
        "student_id": str(enrollment.student_id),
        "student_name": student.full_name if student else None,
        "age_group": student.age_group.value if student else None,
        "enrolled_at": enrollment.enrolled_at.isoformat() if enrollment.enrolled_at else None,
        "is_active": enrollment.is_active,
    }


def validate_pattern_weeks(group_weeks: List[int], individual_weeks: List[int], total_weeks: Optional[int] = None):
    weeks = list(group_weeks) + list(individual_weeks)
    if any(week < 1 for week in weeks):
        raise ValidationException("Week numbers must be positive.")
    if total_weeks is not None and any(week > total_weeks for week in weeks):
        raise ValidationException(f"Week numbers must be within the term (1-{total_weeks}).")
    if set(group_weeks) & set(individual_weeks):
        raise ValidationException("A week cannot be both a group week and an individual week.")
    if not individual_weeks:
        raise ValidationException("A hybrid pattern needs at least one individual week.")


def alternating_weeks(total_weeks: int):
    """Odd weeks are group weeks, even weeks are individual booking weeks"""
    group = [week for week in range(1, total_weeks + 1) if week % 2 == 1]
    individual = [week for week in range(1, total_weeks + 1) if week % 2 == 0]
    return group, individual


class LessonService(BaseService[Lesson]):
    resource_name = "Lesson"

    def __init__(self, db: AsyncSession, school_id: UUID):
        super().__init__(Lesson, db, school_id)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def enrollment_counts(self, lesson_ids: List[UUID]) -> Dict[UUID, int]:
        if not lesson_ids:
            return {}
        result = await self.db.execute(
            select(LessonEnrollment.lesson_id, func.count())
            .where(LessonEnrollment.lesson_id.in_(lesson_ids), LessonEnrollment.is_active == True)  # noqa: E712
            .group_by(LessonEnrollment.lesson_id)
        )
        return dict(result.all())

    async def list_lessons(
        self,
        page: int = 1,
        size: int = 50,
        term_id: Optional[UUID] = None,
        teacher_id: Optional[UUID] = None,
        room_id: Optional[UUID] = None,
        instrument_id: Optional[UUID] = None,
        lesson_type_id: Optional[UUID] = None,
        day_of_week: Optional[int] = None,
        is_active: Optional[bool] = True,
    ) -> Dict[str, Any]:
        stmt = self._scoped(select(Lesson))
        for column, value in (
            (Lesson.term_id, term_id),
            (Lesson.teacher_id, teacher_id),
            (Lesson.room_id, room_id),
            (Lesson.instrument_id, instrument_id),
            (Lesson.lesson_type_id, lesson_type_id),
            (Lesson.day_of_week, day_of_week),
            (Lesson.is_active, is_active),
        ):
            if value is not None:
                stmt = stmt.where(column == value)

        total = (await self.db.execute(select(func.count()).select_from(stmt.subquery()))).scalar() or 0
        stmt = stmt.order_by(Lesson.day_of_week, Lesson.start_time).offset((page - 1) * size).limit(size)
        lessons = (await self.db.execute(stmt)).unique().scalars().all()
        counts = await self.enrollment_counts([lesson.id for lesson in lessons])
        return {
            "items": [serialize_lesson(lesson, counts.get(lesson.id, 0)) for lesson in lessons],
            "total": total,
            "page": page,
            "size": size,
            "total_pages": (total + size - 1) // size,
            "has_next": page * size < total,
            "has_previous": page > 1,
        }

    async def get_enrollments(self, lesson_id: UUID, active_only: bool = True) -> List[LessonEnrollment]:
        stmt = select(LessonEnrollment).join(Student, Student.id == LessonEnrollment.student_id).where(
            LessonEnrollment.lesson_id == lesson_id
        )
        if active_only:
            stmt = stmt.where(LessonEnrollment.is_active == True)  # noqa: E712
        result = await self.db.execute(stmt.order_by(Student.last_name, Student.first_name))
        return result.unique().scalars().all()

    async def get_lesson_detail(self, lesson_id: UUID) -> Dict[str, Any]:
        lesson = await self.get_or_404(lesson_id)
        enrollments = await self.get_enrollments(lesson_id)
        data = serialize_lesson(lesson, len(enrollments))
        data["enrollments"] = [serialize_enrollment(enrollment) for enrollment in enrollments]
        return data

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    async def _exists(self, model, id: UUID) -> bool:
        stmt = select(model.id).where(model.id == id, model.school_id == self.school_id, model.is_deleted == False)  # noqa: E712
        return (await self.db.execute(stmt)).first() is not None

    async def validate_references(self, data: Dict[str, Any]):
        """All referenced rows must belong to this school; errors are reported together"""
        errors = []
        checks = (
            ("lesson_type_id", LessonType, "Invalid lesson type."),
            ("term_id", Term, "Invalid term."),
            ("teacher_id", Teacher, "Invalid teacher."),
            ("room_id", Room, "Invalid room."),
            ("instrument_id", Instrument, "Invalid instrument."),
        )
        for key, model, message in checks:
            if data.get(key) and not await self._exists(model, data[key]):
                errors.append(message)
        if errors:
            raise ValidationException(" ".join(errors))

    @staticmethod
    def _check_times(start_time: str, end_time: str):
        if duration_between(start_time, end_time) <= 0:
            raise ValidationException("End time must be after start time.")

    async def find_conflict(
        self,
        column,
        value: UUID,
        day_of_week: int,
        start_time: str,
        end_time: str,
        exclude_id: Optional[UUID] = None,
    ) -> Optional[Lesson]:
        """First active lesson sharing `column` on the same day whose time overlaps"""
        stmt = self._scoped(select(Lesson)).where(
            column == value,
            Lesson.day_of_week == day_of_week,
            Lesson.is_active == True,  # noqa: E712
        )
        if exclude_id:
            stmt = stmt.where(Lesson.id != exclude_id)
        candidates = (await self.db.execute(stmt.order_by(Lesson.start_time))).unique().scalars().all()
        for lesson in candidates:
            if time_ranges_overlap(start_time, end_time, lesson.start_time, lesson.end_time):
                return lesson
        return None

    async def _check_availability(self, room_id, teacher_id, day_of_week, start_time, end_time, exclude_id=None):
        if await self.find_conflict(Lesson.room_id, room_id, day_of_week, start_time, end_time, exclude_id):
            raise ConflictError("Room is not available at this time. Conflicts with another lesson.")
        if await self.find_conflict(Lesson.teacher_id, teacher_id, day_of_week, start_time, end_time, exclude_id):
            raise ConflictError("Teacher is not available at this time. Conflicts with another lesson.")

    def _pattern_values(self, pattern: Dict[str, Any], term: Term) -> Dict[str, Any]:
        total_weeks = term_week_count(term.start_date, term.end_date)
        pattern_type = HybridPatternType(pattern.get("pattern_type") or HybridPatternType.ALTERNATING)
        group_weeks = sorted(set(pattern.get("group_weeks") or []))
        individual_weeks = sorted(set(pattern.get("individual_weeks") or []))
        if pattern_type == HybridPatternType.ALTERNATING and not group_weeks and not individual_weeks:
            group_weeks, individual_weeks = alternating_weeks(total_weeks)
        validate_pattern_weeks(group_weeks, individual_weeks, total_weeks)
        return {
            "pattern_type": pattern_type,
            "group_weeks": group_weeks,
            "individual_weeks": individual_weeks,
            "individual_slot_duration": pattern.get("individual_slot_duration") or 30,
            "booking_deadline_hours": pattern.get("booking_deadline_hours") or 24,
        }

    async def _get_term(self, term_id: UUID) -> Term:
        return (await self.db.execute(select(Term).where(Term.id == term_id))).scalar_one()

    async def _get_pattern(self, lesson_id: UUID) -> Optional[HybridLessonPattern]:
        result = await self.db.execute(select(HybridLessonPattern).where(HybridLessonPattern.lesson_id == lesson_id))
        return result.scalar_one_or_none()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create_lesson(self, data: Dict[str, Any]) -> Lesson:
        await self.validate_references(data)
        self._check_times(data["start_time"], data["end_time"])
        await self._check_availability(
            data["room_id"], data["teacher_id"], data["day_of_week"], data["start_time"], data["end_time"]
        )

        lesson_type = (await self.db.execute(select(LessonType).where(LessonType.id == data["lesson_type_id"]))).scalar_one()
        pattern_data = data.get("hybrid_pattern")
        if lesson_type.type == LessonCategory.HYBRID and not pattern_data:
            raise ValidationException(PATTERN_REQUIRED)

        term = await self._get_term(data["term_id"])
        pattern_values = self._pattern_values(pattern_data, term) if lesson_type.type == LessonCategory.HYBRID else None

        lesson = Lesson(
            school_id=self.school_id,
            lesson_type_id=data["lesson_type_id"],
            term_id=data["term_id"],
            teacher_id=data["teacher_id"],
            room_id=data["room_id"],
            instrument_id=data.get("instrument_id"),
            name=data["name"].strip(),
            description=data.get("description"),
            day_of_week=data["day_of_week"],
            start_time=data["start_time"],
            end_time=data["end_time"],
            duration_mins=duration_between(data["start_time"], data["end_time"]),
            max_students=data.get("max_students") or 1,
            is_recurring=data.get("is_recurring", True),
        )
        self.db.add(lesson)
        await self.db.flush()
        if pattern_values:
            self.db.add(HybridLessonPattern(lesson_id=lesson.id, term_id=lesson.term_id, **pattern_values))

        await self.commit_or_conflict("Lesson already exists.")
        logger.info(f"Created lesson {lesson.id} ({lesson.name}) in school {self.school_id}")
        return await self.get(lesson.id)

    async def update_lesson(self, lesson_id: UUID, data: Dict[str, Any]) -> Lesson:
        lesson = await self.get_or_404(lesson_id)
        await self.validate_references(data)

        day = data.get("day_of_week", lesson.day_of_week)
        start = data.get("start_time") or lesson.start_time
        end = data.get("end_time") or lesson.end_time
        room_id = data.get("room_id") or lesson.room_id
        teacher_id = data.get("teacher_id") or lesson.teacher_id
        self._check_times(start, end)

        schedule_keys = ("day_of_week", "start_time", "end_time", "room_id", "teacher_id")
        if any(key in data and data[key] is not None for key in schedule_keys):
            await self._check_availability(room_id, teacher_id, day, start, end, exclude_id=lesson_id)

        for key in ("lesson_type_id", "term_id", "teacher_id", "room_id", "name", "day_of_week",
                    "start_time", "end_time", "max_students", "is_recurring", "is_active"):
            if data.get(key) is not None:
                setattr(lesson, key, data[key])
        for key in ("instrument_id", "description"):
            if key in data:
                setattr(lesson, key, data[key])
        lesson.duration_mins = duration_between(start, end)

        if "max_students" in data and data["max_students"] is not None:
            current = (await self.enrollment_counts([lesson_id])).get(lesson_id, 0)
            if data["max_students"] < current:
                raise ValidationException(
                    f"Cannot reduce capacity below current enrollment ({current} students)."
                )

        lesson_type = (await self.db.execute(select(LessonType).where(LessonType.id == lesson.lesson_type_id))).scalar_one()
        existing = await self._get_pattern(lesson_id)
        pattern_data = data.get("hybrid_pattern")
        if lesson_type.type == LessonCategory.HYBRID and pattern_data is None and ("hybrid_pattern" in data or not existing):
            raise ValidationException(PATTERN_REQUIRED)

        if pattern_data is not None:
            values = self._pattern_values(pattern_data, await self._get_term(lesson.term_id))
            if existing:
                for key, value in values.items():
                    setattr(existing, key, value)
                existing.term_id = lesson.term_id
            else:
                self.db.add(HybridLessonPattern(lesson_id=lesson_id, term_id=lesson.term_id, **values))
        elif "hybrid_pattern" in data:
            if existing:
                await self.db.delete(existing)
        elif existing and data.get("term_id") is not None:
            # Pattern weeks are numbered within the term
            term = await self._get_term(lesson.term_id)
            validate_pattern_weeks(
                existing.group_weeks, existing.individual_weeks, term_week_count(term.start_date, term.end_date)
            )
            existing.term_id = lesson.term_id

        await self.commit_or_conflict("Lesson already exists.")
        return await self.get(lesson_id)

    async def delete_lesson(self, lesson_id: UUID) -> None:
        lesson = await self.get_or_404(lesson_id)
        lesson.is_active = False
        await self.db.commit()
        logger.info(f"Deactivated lesson {lesson_id}")

    # ------------------------------------------------------------------
    # Enrollments
    # ------------------------------------------------------------------

    async def get_capacity(self, lesson_id: UUID) -> Dict[str, int]:
        lesson = await self.get_or_404(lesson_id)
        current = (await self.enrollment_counts([lesson_id])).get(lesson_id, 0)
        return {"current": current, "max": lesson.max_students, "available": lesson.max_students - current}

    async def _get_student(self, student_id: UUID) -> Student:
        result = await self.db.execute(
            select(Student).where(
                Student.id == student_id, Student.school_id == self.school_id, Student.is_deleted == False  # noqa: E712
            )
        )
        student = result.scalar_one_or_none()
        if not student:
            raise NotFoundError("Student")
        return student

    async def _get_enrollment(self, lesson_id: UUID, student_id: UUID) -> Optional[LessonEnrollment]:
        result = await self.db.execute(
            select(LessonEnrollment).where(
                LessonEnrollment.lesson_id == lesson_id, LessonEnrollment.student_id == student_id
            )
        )
        return result.unique().scalar_one_or_none()

    async def is_enrolled(self, lesson_id: UUID, student_id: UUID) -> bool:
        enrollment = await self._get_enrollment(lesson_id, student_id)
        return bool(enrollment and enrollment.is_active)

    async def enroll_student(self, lesson_id: UUID, student_id: UUID) -> LessonEnrollment:
        lesson = await self.get_or_404(lesson_id)
        if not lesson.is_active:
            raise ValidationException("Cannot enroll in an inactive lesson.")
        await self._get_student(student_id)

        capacity = await self.get_capacity(lesson_id)
        if capacity["available"] <= 0:
            raise ConflictError("Lesson is full.")

        enrollment = await self._get_enrollment(lesson_id, student_id)
        if enrollment and enrollment.is_active:
            raise ConflictError("Student is already enrolled in this lesson.")
        if enrollment:
            enrollment.is_active = True
            enrollment.enrolled_at = utcnow()
        else:
            enrollment = LessonEnrollment(lesson_id=lesson_id, student_id=student_id)
            self.db.add(enrollment)

        await self.commit_or_conflict("Student is already enrolled in this lesson.")
        logger.info(f"Enrolled student {student_id} in lesson {lesson_id}")
        return await self._get_enrollment(lesson_id, student_id)

    async def bulk_enroll(self, lesson_id: UUID, student_ids: List[UUID]) -> Dict[str, Any]:
        lesson = await self.get_or_404(lesson_id)
        if not lesson.is_active:
            raise ValidationException("Cannot enroll in an inactive lesson.")

        student_ids = list(dict.fromkeys(student_ids))
        found = set((await self.db.execute(
            select(Student.id).where(
                Student.id.in_(student_ids),
                Student.school_id == self.school_id,
                Student.is_deleted == False,  # noqa: E712
            )
        )).scalars().all())
        missing = [str(student_id) for student_id in student_ids if student_id not in found]
        if missing:
            raise ValidationException(f"Some students were not found: {', '.join(missing)}")

        to_enroll = []
        already = []
        for student_id in student_ids:
            if await self.is_enrolled(lesson_id, student_id):
                already.append(str(student_id))
            else:
                to_enroll.append(student_id)

        capacity = await self.get_capacity(lesson_id)
        if len(to_enroll) > capacity["available"]:
            raise ConflictError(
                f"Not enough capacity. Available spots: {capacity['available']}, requested: {len(to_enroll)}"
            )

        for student_id in to_enroll:
            enrollment = await self._get_enrollment(lesson_id, student_id)
            if enrollment:
                enrollment.is_active = True
                enrollment.enrolled_at = utcnow()
            else:
                self.db.add(LessonEnrollment(lesson_id=lesson_id, student_id=student_id))

        await self.commit_or_conflict("Student is already enrolled in this lesson.")
        logger.info(f"Bulk enrolled {len(to_enroll)} students in lesson {lesson_id}")
        return {
            "enrolled": [str(student_id) for student_id in to_enroll],
            "already_enrolled": already,
            "capacity": await self.get_capacity(lesson_id),
        }

    async def unenroll_student(self, lesson_id: UUID, student_id: UUID) -> None:
        await self.get_or_404(lesson_id)
        enrollment = await self._get_enrollment(lesson_id, student_id)
        if not enrollment or not enrollment.is_active:
            raise NotFoundError("Enrollment", "Student is not enrolled in this lesson.")
        enrollment.is_active = False
        await self.db.commit()
        logger.info(f"Unenrolled student {student_id} from lesson {lesson_id}")

    # ------------------------------------------------------------------
    # Drag-and-drop rescheduling
    # ------------------------------------------------------------------

    async def check_conflicts(
        self, lesson_id: UUID, day_of_week: int, start_time: str, end_time: Optional[str] = None
    ) -> Dict[str, Any]:
        lesson = await self.get_or_404(lesson_id)
        if end_time is None:
            end_time = add_minutes(start_time, lesson.duration_mins)
        self._check_times(start_time, end_time)

        teacher_conflict = await self.find_conflict(
            Lesson.teacher_id, lesson.teacher_id, day_of_week, start_time, end_time, exclude_id=lesson_id
        )
        room_conflict = await self.find_conflict(
            Lesson.room_id, lesson.room_id, day_of_week, start_time, end_time, exclude_id=lesson_id
        )
        enrollments = await self.get_enrollments(lesson_id)

        def describe(conflict: Optional[Lesson]):
            if conflict is None:
                return None
            return {
                "lesson_id": str(conflict.id),
                "lesson_name": conflict.name,
                "time": f"{conflict.start_time} - {conflict.end_time}",
            }

        return {
            "has_conflicts": teacher_conflict is not None or room_conflict is not None,
            "teacher_conflict": describe(teacher_conflict),
            "room_conflict": describe(room_conflict),
            "affected_students": len(enrollments),
            "affected_enrollments": [
                {"student_id": str(enrollment.student_id), "student_name": enrollment.student.full_name}
                for enrollment in enrollments
            ],
        }

    async def reschedule(
        self,
        lesson_id: UUID,
        day_of_week: int,
        start_time: str,
        end_time: Optional[str] = None,
        reason: Optional[str] = None,
        notify_parents: bool = True,
    ) -> Lesson:
        lesson = await self.get_or_404(lesson_id)
        old_slot = (lesson.day_of_week, lesson.start_time, lesson.end_time)
        if end_time is None:
            end_time = add_minutes(start_time, lesson.duration_mins)

        conflicts = await self.check_conflicts(lesson_id, day_of_week, start_time, end_time)
        if conflicts["teacher_conflict"]:
            raise ConflictError(
                f"Teacher is not available at this time. Conflicts with: {conflicts['teacher_conflict']['lesson_name']}"
            )
        if conflicts["room_conflict"]:
            raise ConflictError(
                f"Room is not available at this time. Conflicts with: {conflicts['room_conflict']['lesson_name']}"
            )

        lesson = await self.get_or_404(lesson_id)
        lesson.day_of_week = day_of_week
        lesson.start_time = start_time
        lesson.end_time = end_time
        lesson.duration_mins = duration_between(start_time, end_time)
        await self.db.commit()

        logger.info(
            f"Rescheduled lesson {lesson_id} from day {old_slot[0]} {old_slot[1]}-{old_slot[2]} "
            f"to day {day_of_week} {start_time}-{end_time}"
            + (f" ({reason})" if reason else "")
        )
        if notify_parents and conflicts["affected_students"]:
            # No mail transport; affected families are recorded in the log
            logger.info(
                f"Lesson {lesson_id} reschedule affects {conflicts['affected_students']} students: "
                + ", ".join(item["student_name"] for item in conflicts["affected_enrollments"])
            )
        return await self.get(lesson_id)
