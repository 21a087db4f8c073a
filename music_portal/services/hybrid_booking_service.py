# music_portal/services/hybrid_booking_service.py
"""Individual-week bookings for hybrid lessons and the lesson calendar.

A hybrid lesson's term weeks are split into group weeks, taught as a normal
class, and individual weeks, in which each family books a short one-to-one
slot inside the lesson's usual time window.
"""
import logging
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.exceptions import ConflictError, NotFoundError, PermissionDenied, ValidationException
from ..models.shared.school import School
from ..models.tenant_specific.family import Parent
from ..models.tenant_specific.hybrid_booking import BookingStatus, HybridBooking, HybridLessonPattern
from ..models.tenant_specific.lesson import Lesson, LessonEnrollment
from ..models.tenant_specific.school_config import LessonCategory
from ..models.tenant_specific.student import Student
from ..utils.scheduling import (
    date_for_week, has_minimum_notice, minutes_to_time, school_timezone,
    time_ranges_overlap, time_to_minutes, utcnow,
)
from .base_service import BaseService
from .lesson_service import LessonService

logger = logging.getLogger(__name__)

def build_slots(lesson_start: str, lesson_end: str, slot_minutes: int) -> List[Dict[str, str]]:
    """Consecutive slots of `slot_minutes` tiling the lesson window; a partial tail slot is dropped"""
    slots = []
    start = time_to_minutes(lesson_start)
    end = time_to_minutes(lesson_end)
    while start + slot_minutes <= end:
        slots.append({"start_time": minutes_to_time(start), "end_time": minutes_to_time(start + slot_minutes)})
        start += slot_minutes
    return slots


def completion_rate(booked: int, total: int) -> float:
    if total <= 0:
        return 0.0
    return round(booked / total * 100, 2)


def serialize_booking(booking: HybridBooking) -> Dict[str, Any]:
    return {
        "id": str(booking.id),
        "lesson_id": str(booking.lesson_id),
        "lesson_name": booking.lesson.name if booking.lesson else None,
        "student_id": str(booking.student_id),
        "student_name": booking.student.full_name if booking.student else None,
        "parent_id": str(booking.parent_id),
        "week_number": booking.week_number,
        "scheduled_date": booking.scheduled_date.isoformat(),
        "start_time": booking.start_time,
        "end_time": booking.end_time,
        "status": booking.status.value,
        "booked_at": booking.booked_at.isoformat() if booking.booked_at else None,
        "confirmed_at": booking.confirmed_at.isoformat() if booking.confirmed_at else None,
        "cancelled_at": booking.cancelled_at.isoformat() if booking.cancelled_at else None,
        "cancellation_reason": booking.cancellation_reason,
    }


class HybridBookingService(BaseService[HybridBooking]):
    resource_name = "Booking"

    def __init__(self, db: AsyncSession, school_id: UUID, now: Optional[datetime] = None):
        super().__init__(HybridBooking, db, school_id)
        self._now = now
        self._tz = None

    @property
    def now(self) -> datetime:
        return self._now or utcnow()

    async def school_tz(self):
        if self._tz is None:
            name = (await self.db.execute(select(School.timezone).where(School.id == self.school_id))).scalar()
            self._tz = school_timezone(name)
        return self._tz

    async def _notice_ok(self, day: date, start_time: str, hours: int) -> bool:
        return has_minimum_notice(day, start_time, hours, await self.school_tz(), self.now)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def _get_lesson(self, lesson_id: UUID, active_only: bool = True) -> Lesson:
        stmt = select(Lesson).where(
            Lesson.id == lesson_id,
            Lesson.school_id == self.school_id,
            Lesson.is_deleted == False,  # noqa: E712
        )
        if active_only:
            stmt = stmt.where(Lesson.is_active == True)  # noqa: E712
        lesson = (await self.db.execute(stmt.execution_options(populate_existing=True))).unique().scalar_one_or_none()
        if not lesson:
            raise NotFoundError("Lesson")
        return lesson

    async def _get_hybrid_lesson(self, lesson_id: UUID, active_only: bool = True):
        lesson = await self._get_lesson(lesson_id, active_only)
        pattern = lesson.hybrid_pattern
        if pattern is None:
            raise ValidationException("This lesson is not a hybrid lesson.")
        return lesson, pattern

    @staticmethod
    def _check_individual_week(pattern: HybridLessonPattern, week: int):
        if week not in (pattern.individual_weeks or []):
            raise ValidationException(f"Week {week} is not an individual booking week.")

    @staticmethod
    def _check_open(pattern: HybridLessonPattern):
        if not pattern.bookings_open:
            raise ValidationException("Bookings are not currently open for this lesson.")

    async def _active_bookings(self, lesson_id: UUID, week: Optional[int] = None, exclude_id: Optional[UUID] = None):
        stmt = select(HybridBooking).where(
            HybridBooking.lesson_id == lesson_id,
            HybridBooking.status != BookingStatus.CANCELLED,
        )
        if week is not None:
            stmt = stmt.where(HybridBooking.week_number == week)
        if exclude_id:
            stmt = stmt.where(HybridBooking.id != exclude_id)
        return (await self.db.execute(stmt)).unique().scalars().all()

    async def _get_booking(self, booking_id: UUID, parent: Optional[Parent] = None) -> HybridBooking:
        stmt = self._scoped(select(HybridBooking).where(HybridBooking.id == booking_id))
        if parent is not None:
            stmt = stmt.where(HybridBooking.parent_id == parent.id)
        booking = (await self.db.execute(stmt.execution_options(populate_existing=True))).unique().scalar_one_or_none()
        if not booking:
            raise NotFoundError("Booking")
        return booking

    def _slot_end(self, lesson: Lesson, pattern: HybridLessonPattern, start_time: str) -> str:
        """Validate that start_time begins one of the lesson's slots and return its end"""
        for slot in build_slots(lesson.start_time, lesson.end_time, pattern.individual_slot_duration):
            if slot["start_time"] == start_time:
                return slot["end_time"]
        raise ValidationException("Requested time is not a valid slot for this lesson.")

    # ------------------------------------------------------------------
    # Slots and bookings
    # ------------------------------------------------------------------

    async def get_available_slots(self, lesson_id: UUID, week: int) -> List[Dict[str, Any]]:
        lesson, pattern = await self._get_hybrid_lesson(lesson_id)
        self._check_individual_week(pattern, week)
        self._check_open(pattern)

        lesson_date = date_for_week(lesson.term.start_date, week, lesson.day_of_week)
        booked = await self._active_bookings(lesson_id, week)
        slots = []
        for slot in build_slots(lesson.start_time, lesson.end_time, pattern.individual_slot_duration):
            taken = any(
                time_ranges_overlap(slot["start_time"], slot["end_time"], booking.start_time, booking.end_time)
                for booking in booked
            )
            slots.append({
                "date": lesson_date.isoformat(),
                "start_time": slot["start_time"],
                "end_time": slot["end_time"],
                "week_number": week,
                "is_available": not taken,
            })
        return slots

    async def _ensure_parent_of(self, parent: Parent, student_id: UUID):
        if not parent.family_id:
            raise PermissionDenied("You can only book for your own children.")
        student = (await self.db.execute(
            select(Student).where(
                Student.id == student_id,
                Student.school_id == self.school_id,
                Student.family_id == parent.family_id,
                Student.is_deleted == False,  # noqa: E712
            )
        )).scalar_one_or_none()
        if not student:
            raise PermissionDenied("You can only book for your own children.")

    async def create_booking(self, parent: Parent, data: Dict[str, Any]) -> HybridBooking:
        lesson, pattern = await self._get_hybrid_lesson(data["lesson_id"])
        self._check_open(pattern)
        await self._ensure_parent_of(parent, data["student_id"])

        if not await LessonService(self.db, self.school_id).is_enrolled(lesson.id, data["student_id"]):
            raise ValidationException("Student is not enrolled in this lesson.")

        week = data["week_number"]
        self._check_individual_week(pattern, week)
        start_time = data["start_time"]
        end_time = self._slot_end(lesson, pattern, start_time)
        scheduled_date = date_for_week(lesson.term.start_date, week, lesson.day_of_week)

        if not await self._notice_ok(scheduled_date, start_time, pattern.booking_deadline_hours):
            raise ValidationException(
                f"Bookings must be made at least {pattern.booking_deadline_hours} hours in advance."
            )

        existing = await self._active_bookings(lesson.id, week)
        if any(booking.student_id == data["student_id"] for booking in existing):
            raise ConflictError(f"Student already has a booking for week {week}.")
        if any(time_ranges_overlap(start_time, end_time, booking.start_time, booking.end_time) for booking in existing):
            raise ConflictError("This time slot is already booked.")

        now = utcnow()
        booking = HybridBooking(
            school_id=self.school_id,
            lesson_id=lesson.id,
            student_id=data["student_id"],
            parent_id=parent.id,
            week_number=week,
            scheduled_date=scheduled_date,
            start_time=start_time,
            end_time=end_time,
            status=BookingStatus.CONFIRMED,
            booked_at=now,
            confirmed_at=now,
        )
        self.db.add(booking)
        await self.commit_or_conflict("This time slot is already booked.")
        logger.info(
            f"Booking {booking.id} created for student {booking.student_id} "
            f"lesson {lesson.id} week {week} at {start_time}"
        )
        return await self._get_booking(booking.id)

    async def reschedule_booking(self, parent: Parent, booking_id: UUID, data: Dict[str, Any]) -> HybridBooking:
        booking = await self._get_booking(booking_id, parent)
        if booking.status == BookingStatus.CANCELLED:
            raise ValidationException("Cannot reschedule a cancelled booking.")
        if booking.status == BookingStatus.COMPLETED:
            raise ValidationException("Cannot reschedule a completed booking.")

        lesson, pattern = await self._get_hybrid_lesson(booking.lesson_id)
        hours = pattern.booking_deadline_hours
        if not await self._notice_ok(booking.scheduled_date, booking.start_time, hours):
            raise ValidationException(f"Cannot reschedule bookings within {hours} hours of the scheduled time.")

        week = data.get("week_number") or booking.week_number
        self._check_individual_week(pattern, week)
        start_time = data["start_time"]
        end_time = self._slot_end(lesson, pattern, start_time)
        scheduled_date = date_for_week(lesson.term.start_date, week, lesson.day_of_week)

        if not await self._notice_ok(scheduled_date, start_time, hours):
            raise ValidationException(f"New booking time must be at least {hours} hours in advance.")
        self._check_open(pattern)

        others = await self._active_bookings(lesson.id, week, exclude_id=booking.id)
        if week != booking.week_number and any(other.student_id == booking.student_id for other in others):
            raise ConflictError(f"Student already has a booking for week {week}.")
        if any(time_ranges_overlap(start_time, end_time, other.start_time, other.end_time) for other in others):
            raise ConflictError("This time slot is already booked.")

        previous = f"week {booking.week_number} {booking.start_time}"
        booking.week_number = week
        booking.scheduled_date = scheduled_date
        booking.start_time = start_time
        booking.end_time = end_time
        await self.db.commit()
        logger.info(f"Booking {booking.id} rescheduled from {previous} to week {week} {start_time}")
        return await self._get_booking(booking.id)

    async def cancel_booking(
        self, booking_id: UUID, parent: Optional[Parent] = None, reason: Optional[str] = None
    ) -> HybridBooking:
        """Parents cancel their own bookings with notice; staff (parent=None) can cancel any booking"""
        booking = await self._get_booking(booking_id, parent)
        if booking.status == BookingStatus.CANCELLED:
            raise ValidationException("Booking is already cancelled.")
        if booking.status == BookingStatus.COMPLETED:
            raise ValidationException("Cannot cancel a completed booking.")

        if parent is not None:
            pattern = (await self.db.execute(
                select(HybridLessonPattern).where(HybridLessonPattern.lesson_id == booking.lesson_id)
            )).scalar_one_or_none()
            hours = pattern.booking_deadline_hours if pattern else 24
            if not await self._notice_ok(booking.scheduled_date, booking.start_time, hours):
                raise ValidationException(f"Cannot cancel bookings within {hours} hours of the scheduled time.")

        booking.status = BookingStatus.CANCELLED
        booking.cancelled_at = utcnow()
        booking.cancellation_reason = reason
        await self.db.commit()
        logger.info(f"Booking {booking.id} cancelled" + (f": {reason}" if reason else ""))
        return await self._get_booking(booking.id)

    async def get_booking(self, booking_id: UUID, parent: Optional[Parent] = None) -> HybridBooking:
        return await self._get_booking(booking_id, parent)

    async def list_bookings(
        self,
        parent: Optional[Parent] = None,
        lesson_id: Optional[UUID] = None,
        status: Optional[BookingStatus] = None,
        week_number: Optional[int] = None,
    ) -> List[HybridBooking]:
        if lesson_id and parent is None:
            await self._get_lesson(lesson_id, active_only=False)
        stmt = self._scoped(select(HybridBooking))
        if parent is not None:
            stmt = stmt.where(HybridBooking.parent_id == parent.id)
        if lesson_id:
            stmt = stmt.where(HybridBooking.lesson_id == lesson_id)
        if status:
            stmt = stmt.where(HybridBooking.status == status)
        if week_number:
            stmt = stmt.where(HybridBooking.week_number == week_number)
        stmt = stmt.order_by(HybridBooking.scheduled_date, HybridBooking.start_time)
        return (await self.db.execute(stmt)).unique().scalars().all()

    # ------------------------------------------------------------------
    # Lesson administration
    # ------------------------------------------------------------------

    async def _enrolled_student_ids(self, lesson_id: UUID) -> List[UUID]:
        result = await self.db.execute(
            select(LessonEnrollment.student_id).where(
                LessonEnrollment.lesson_id == lesson_id, LessonEnrollment.is_active == True  # noqa: E712
            )
        )
        return list(result.scalars().all())

    async def get_stats(self, lesson_id: UUID, week_number: Optional[int] = None) -> Dict[str, Any]:
        await self._get_hybrid_lesson(lesson_id, active_only=False)
        total_students = len(await self._enrolled_student_ids(lesson_id))

        stmt = select(HybridBooking.status, func.count()).where(
            HybridBooking.lesson_id == lesson_id, HybridBooking.status != BookingStatus.CANCELLED
        )
        if week_number:
            stmt = stmt.where(HybridBooking.week_number == week_number)
        counts = dict((await self.db.execute(stmt.group_by(HybridBooking.status))).all())

        pending = counts.get(BookingStatus.PENDING, 0)
        confirmed = counts.get(BookingStatus.CONFIRMED, 0)
        completed = counts.get(BookingStatus.COMPLETED, 0)
        booked = pending + confirmed + completed
        return {
            "lesson_id": str(lesson_id),
            "week_number": week_number,
            "total_students": total_students,
            "booked": booked,
            "unbooked": max(total_students - booked, 0),
            "pending": pending,
            "confirmed": confirmed,
            "completion_rate": completion_rate(booked, total_students),
        }

    async def set_bookings_open(self, lesson_id: UUID, is_open: bool) -> HybridLessonPattern:
        _, pattern = await self._get_hybrid_lesson(lesson_id, active_only=False)
        pattern.bookings_open = is_open
        await self.db.commit()
        logger.info(f"Bookings {'opened' if is_open else 'closed'} for lesson {lesson_id}")
        return pattern

    async def students_without_bookings(self, lesson_id: UUID, week_number: int) -> List[Dict[str, Any]]:
        await self._get_hybrid_lesson(lesson_id, active_only=False)
        enrollments = await LessonService(self.db, self.school_id).get_enrollments(lesson_id)
        booked = {booking.student_id for booking in await self._active_bookings(lesson_id, week_number)}

        family_ids = {enrollment.student.family_id for enrollment in enrollments if enrollment.student.family_id}
        contacts = {}
        if family_ids:
            parents = (await self.db.execute(
                select(Parent).where(Parent.family_id.in_(family_ids), Parent.is_deleted == False)  # noqa: E712
            )).unique().scalars().all()
            for parent in sorted(parents, key=lambda p: not p.is_primary):
                contacts.setdefault(parent.family_id, parent)

        result = []
        for enrollment in enrollments:
            if enrollment.student_id in booked:
                continue
            student = enrollment.student
            parent = contacts.get(student.family_id)
            result.append({
                "student_id": str(student.id),
                "student_name": student.full_name,
                "parent": {
                    "id": str(parent.id),
                    "name": parent.user.full_name,
                    "email": parent.user.email,
                } if parent else None,
            })
        return result

    # ------------------------------------------------------------------
    # Calendar
    # ------------------------------------------------------------------

    async def calendar_events(
        self,
        term_id: Optional[UUID] = None,
        teacher_id: Optional[UUID] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        page: int = 1,
        limit: int = 100,
    ) -> Dict[str, Any]:
        start_date = start_date or self.now.astimezone(await self.school_tz()).date()
        end_date = end_date or start_date + timedelta(days=90)

        stmt = select(Lesson).where(
            Lesson.school_id == self.school_id,
            Lesson.is_deleted == False,  # noqa: E712
            Lesson.is_active == True,  # noqa: E712
        )
        if term_id:
            stmt = stmt.where(Lesson.term_id == term_id)
        if teacher_id:
            stmt = stmt.where(Lesson.teacher_id == teacher_id)
        lessons = (await self.db.execute(stmt)).unique().scalars().all()
        counts = await LessonService(self.db, self.school_id).enrollment_counts([lesson.id for lesson in lessons])

        events = []
        for lesson in lessons:
            term = lesson.term
            teacher_name = lesson.teacher.user.full_name if lesson.teacher else None
            base = {
                "lesson_id": str(lesson.id),
                "lesson_name": lesson.name,
                "teacher_name": teacher_name,
                "room_name": lesson.room.name if lesson.room else None,
                "enrolled_count": counts.get(lesson.id, 0),
                "max_students": lesson.max_students,
            }
            pattern = lesson.hybrid_pattern
            is_hybrid = lesson.lesson_type.type == LessonCategory.HYBRID and pattern is not None

            week = 1
            while True:
                lesson_date = date_for_week(term.start_date, week, lesson.day_of_week)
                if lesson_date > term.end_date or lesson_date > end_date:
                    break
                if lesson_date >= start_date:
                    event = {
                        "id": f"{lesson.id}-week-{week}",
                        "title": lesson.name,
                        "date": lesson_date.isoformat(),
                        "start": f"{lesson_date.isoformat()}T{lesson.start_time}",
                        "end": f"{lesson_date.isoformat()}T{lesson.end_time}",
                        "all_day": False,
                        "week_number": week,
                        **base,
                    }
                    if is_hybrid and week in (pattern.group_weeks or []):
                        event.update(type="HYBRID_GROUP", title=f"{lesson.name} (Group)")
                        events.append(event)
                    elif is_hybrid and week in (pattern.individual_weeks or []):
                        event.update(
                            id=f"{lesson.id}-week-{week}-placeholder",
                            type="HYBRID_PLACEHOLDER",
                            title=f"{lesson.name} (Individual Booking Week)",
                            bookings_open=pattern.bookings_open,
                        )
                        events.append(event)
                    elif not is_hybrid:
                        event["type"] = lesson.lesson_type.type.value
                        events.append(event)
                week += 1

        booking_stmt = self._scoped(select(HybridBooking)).where(
            HybridBooking.status != BookingStatus.CANCELLED,
            HybridBooking.scheduled_date >= start_date,
            HybridBooking.scheduled_date <= end_date,
        )
        if teacher_id:
            booking_stmt = booking_stmt.join(Lesson, Lesson.id == HybridBooking.lesson_id).where(Lesson.teacher_id == teacher_id)
        if term_id:
            booking_stmt = booking_stmt.where(HybridBooking.lesson_id.in_(
                select(Lesson.id).where(Lesson.term_id == term_id)
            ))
        for booking in (await self.db.execute(booking_stmt)).unique().scalars().all():
            lesson = booking.lesson
            day = booking.scheduled_date.isoformat()
            events.append({
                "id": f"booking-{booking.id}",
                "title": f"{lesson.name} - {booking.student.full_name}",
                "type": "HYBRID_INDIVIDUAL",
                "date": day,
                "start": f"{day}T{booking.start_time}",
                "end": f"{day}T{booking.end_time}",
                "all_day": False,
                "week_number": booking.week_number,
                "lesson_id": str(lesson.id),
                "lesson_name": lesson.name,
                "teacher_name": lesson.teacher.user.full_name if lesson.teacher else None,
                "room_name": lesson.room.name if lesson.room else None,
                "booking_id": str(booking.id),
                "student_name": booking.student.full_name,
                "is_booking": True,
            })

        events.sort(key=lambda event: event["start"])
        total = len(events)
        total_pages = (total + limit - 1) // limit
        offset = (page - 1) * limit
        return {
            "events": events[offset:offset + limit],
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "total_pages": total_pages,
                "has_more": page < total_pages,
            },
        }

