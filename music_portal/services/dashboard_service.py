# music_portal/services/dashboard_service.py
"""Role-specific dashboard figures and the recent activity feed."""
import logging
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.tenant_specific.attendance import Attendance, AttendanceStatus
from ..models.tenant_specific.family import Family, Parent
from ..models.tenant_specific.google_drive import (
    FileVisibility, GoogleDriveAuth, GoogleDriveFile, GoogleDriveFolder, SyncStatus,
)
from ..models.tenant_specific.hybrid_booking import HybridBooking, HybridLessonPattern
from ..models.tenant_specific.invoice import Invoice, Payment
from ..models.tenant_specific.lesson import Lesson, LessonEnrollment
from ..models.tenant_specific.meet_and_greet import MeetAndGreet, MeetAndGreetStatus
from ..models.tenant_specific.school_config import Term
from ..models.tenant_specific.student import Student
from ..models.tenant_specific.teacher import Teacher
from ..utils.scheduling import as_utc, utcnow, week_start_monday
from .attendance_service import attendance_rate
from .drive_file_service import DriveFileService
from .invoice_service import OUTSTANDING_STATUSES
from .notes_service import NotesService

logger = logging.getLogger(__name__)

# More failing folders than this turns a warning into an error
SYNC_ERROR_THRESHOLD = 5


def sync_health(connected: bool, error_count: int, last_sync_at) -> str:
    if not connected:
        return "disconnected"
    if error_count > SYNC_ERROR_THRESHOLD:
        return "error"
    if error_count > 0 or last_sync_at is None:
        return "warning"
    return "healthy"


def month_bounds(day: date):
    start = day.replace(day=1)
    next_month = (start + timedelta(days=32)).replace(day=1)
    return start, next_month - timedelta(days=1)


class DashboardService:
    def __init__(self, db: AsyncSession, school_id: UUID, today: Optional[date] = None):
        self.db = db
        self.school_id = school_id
        self.today = today or date.today()

    async def _count(self, stmt) -> int:
        return (await self.db.execute(stmt)).scalar() or 0

    async def _attendance_rate(self, start: date, end: date, teacher_id: Optional[UUID] = None) -> float:
        stmt = (
            select(Attendance.status, func.count())
            .where(
                Attendance.school_id == self.school_id,
                Attendance.is_deleted == False,  # noqa: E712
                Attendance.date >= start,
                Attendance.date <= end,
            )
            .group_by(Attendance.status)
        )
        if teacher_id:
            stmt = stmt.join(Lesson, Lesson.id == Attendance.lesson_id).where(Lesson.teacher_id == teacher_id)
        counts = {status: count for status, count in (await self.db.execute(stmt)).all()}
        return attendance_rate(
            counts.get(AttendanceStatus.PRESENT, 0),
            counts.get(AttendanceStatus.LATE, 0),
            sum(counts.values()),
            counts.get(AttendanceStatus.CANCELLED, 0),
            counts.get(AttendanceStatus.EXCUSED, 0),
        )

    def _lessons_in_window(self, start: date, end: date):
        """Active lessons whose term overlaps the window"""
        return (
            select(func.count(Lesson.id))
            .join(Term, Term.id == Lesson.term_id)
            .where(
                Lesson.school_id == self.school_id,
                Lesson.is_active == True,  # noqa: E712
                Lesson.is_deleted == False,  # noqa: E712
                Term.start_date <= end,
                Term.end_date >= start,
            )
        )

    async def _outstanding(self, family_id: Optional[UUID] = None) -> Dict[str, Any]:
        stmt = select(Invoice.total, Invoice.amount_paid).where(
            Invoice.school_id == self.school_id,
            Invoice.is_deleted == False,  # noqa: E712
            Invoice.status.in_(OUTSTANDING_STATUSES),
        )
        if family_id:
            stmt = stmt.where(Invoice.family_id == family_id)
        rows = (await self.db.execute(stmt)).all()
        amount = sum((Decimal(total or 0) - Decimal(paid or 0) for total, paid in rows), Decimal("0"))
        return {"count": len(rows), "amount": float(amount)}

    # ------------------------------------------------------------------
    # Drive
    # ------------------------------------------------------------------

    async def drive_sync_status(self) -> Dict[str, Any]:
        connected = (await self.db.execute(
            select(GoogleDriveAuth.id).where(GoogleDriveAuth.school_id == self.school_id)
        )).first() is not None
        if not connected:
            return {
                "is_connected": False,
                "last_sync_at": None,
                "synced_folders_count": 0,
                "error_count": 0,
                "status": sync_health(False, 0, None),
            }

        folder_count, last_sync_at = (await self.db.execute(
            select(func.count(GoogleDriveFolder.id), func.max(GoogleDriveFolder.last_sync_at)).where(
                GoogleDriveFolder.school_id == self.school_id,
                GoogleDriveFolder.is_deleted == False,  # noqa: E712
            )
        )).one()
        error_count = await self._count(
            select(func.count(GoogleDriveFolder.id)).where(
                GoogleDriveFolder.school_id == self.school_id,
                GoogleDriveFolder.sync_status == SyncStatus.ERROR,
            )
        )
        last_sync_at = as_utc(last_sync_at)
        return {
            "is_connected": True,
            "last_sync_at": last_sync_at.isoformat() if last_sync_at else None,
            "synced_folders_count": folder_count,
            "error_count": error_count,
            "status": sync_health(True, error_count, last_sync_at),
        }

    # ------------------------------------------------------------------
    # Per-role stats
    # ------------------------------------------------------------------

    async def admin_stats(self) -> Dict[str, Any]:
        week_start = week_start_monday(self.today)
        week_end = week_start + timedelta(days=6)
        month_start, month_end = month_bounds(self.today)

        students = await self._count(select(func.count(Student.id)).where(
            Student.school_id == self.school_id,
            Student.is_active == True,  # noqa: E712
            Student.is_deleted == False,  # noqa: E712
        ))
        families = await self._count(select(func.count(Family.id)).where(
            Family.school_id == self.school_id,
            Family.is_deleted == False,  # noqa: E712
        ))
        teachers = await self._count(select(func.count(Teacher.id)).where(
            Teacher.school_id == self.school_id,
            Teacher.is_active == True,  # noqa: E712
            Teacher.is_deleted == False,  # noqa: E712
        ))
        pending_meet_and_greets = await self._count(select(func.count(MeetAndGreet.id)).where(
            MeetAndGreet.school_id == self.school_id,
            MeetAndGreet.status == MeetAndGreetStatus.PENDING_APPROVAL,
        ))
        upcoming_meet_and_greets = await self._count(select(func.count(MeetAndGreet.id)).where(
            MeetAndGreet.school_id == self.school_id,
            MeetAndGreet.status == MeetAndGreetStatus.APPROVED,
            MeetAndGreet.scheduled_date_time >= utcnow(),
        ))
        outstanding = await self._outstanding()

        return {
            "total_active_students": students,
            "total_active_families": families,
            "total_active_teachers": teachers,
            "total_lessons_this_week": await self._count(self._lessons_in_window(week_start, week_end)),
            "attendance_rate_this_week": await self._attendance_rate(week_start, week_end),
            "attendance_rate_this_month": await self._attendance_rate(month_start, month_end),
            "total_outstanding_payments": outstanding["amount"],
            "pending_meet_and_greets": pending_meet_and_greets,
            "upcoming_meet_and_greets": upcoming_meet_and_greets,
            "drive_sync_status": await self.drive_sync_status(),
        }

    async def teacher_stats(self, teacher: Teacher) -> Dict[str, Any]:
        week_start = week_start_monday(self.today)
        week_end = week_start + timedelta(days=6)

        lessons = await self._count(
            self._lessons_in_window(week_start, week_end).where(Lesson.teacher_id == teacher.id)
        )
        students = await self._count(
            select(func.count(func.distinct(LessonEnrollment.student_id)))
            .join(Lesson, Lesson.id == LessonEnrollment.lesson_id)
            .where(
                Lesson.school_id == self.school_id,
                Lesson.teacher_id == teacher.id,
                Lesson.is_active == True,  # noqa: E712
                LessonEnrollment.is_active == True,  # noqa: E712
            )
        )
        notes = await NotesService(self.db, self.school_id).teacher_weekly_summary(teacher.id, self.today)
        recent_files = await DriveFileService(self.db, self.school_id).recent_uploads(
            teacher.user_id, utcnow() - timedelta(days=7)
        )
        assigned = await self._count(select(func.count(MeetAndGreet.id)).where(
            MeetAndGreet.school_id == self.school_id,
            MeetAndGreet.assigned_teacher_id == teacher.id,
            MeetAndGreet.status.in_((MeetAndGreetStatus.PENDING_APPROVAL, MeetAndGreetStatus.APPROVED)),
        ))

        return {
            "total_lessons_this_week": lessons,
            "total_students": students,
            "attendance_rate_this_week": await self._attendance_rate(week_start, week_end, teacher.id),
            "pending_notes_count": len(notes["pending_lessons"]),
            "recently_uploaded_files": recent_files,
            "assigned_meet_and_greets": assigned,
        }

    async def parent_stats(self, parent: Parent) -> Dict[str, Any]:
        if not parent.family_id:
            return {
                "children_count": 0,
                "upcoming_lessons": 0,
                "outstanding_invoices": 0,
                "outstanding_amount": 0.0,
                "shared_files_count": 0,
                "open_booking_periods": 0,
            }

        family_id = parent.family_id
        week_end = week_start_monday(self.today) + timedelta(days=6)
        family_students = select(Student.id).where(Student.family_id == family_id, Student.is_deleted == False)  # noqa: E712

        children = await self._count(select(func.count(Student.id)).where(
            Student.school_id == self.school_id,
            Student.family_id == family_id,
            Student.is_active == True,  # noqa: E712
            Student.is_deleted == False,  # noqa: E712
        ))
        upcoming = await self._count(
            select(func.count(LessonEnrollment.id))
            .join(Lesson, Lesson.id == LessonEnrollment.lesson_id)
            .join(Term, Term.id == Lesson.term_id)
            .where(
                Lesson.school_id == self.school_id,
                Lesson.is_active == True,  # noqa: E712
                LessonEnrollment.is_active == True,  # noqa: E712
                LessonEnrollment.student_id.in_(family_students),
                Term.start_date <= week_end,
                Term.end_date >= self.today,
            )
        )
        family_lessons = select(LessonEnrollment.lesson_id).where(
            LessonEnrollment.student_id.in_(family_students),
            LessonEnrollment.is_active == True,  # noqa: E712
        )
        shared_files = await self._count(
            select(func.count(GoogleDriveFile.id))
            .join(GoogleDriveFolder, GoogleDriveFolder.id == GoogleDriveFile.folder_id)
            .where(
                GoogleDriveFile.school_id == self.school_id,
                GoogleDriveFile.deleted_in_drive == False,  # noqa: E712
                GoogleDriveFile.visibility.in_((FileVisibility.ALL, FileVisibility.TEACHERS_AND_PARENTS)),
                or_(
                    GoogleDriveFolder.lesson_id.in_(family_lessons),
                    GoogleDriveFolder.student_id.in_(family_students),
                ),
            )
        )
        open_bookings = await self._count(
            select(func.count(HybridLessonPattern.id))
            .join(Lesson, Lesson.id == HybridLessonPattern.lesson_id)
            .where(
                Lesson.school_id == self.school_id,
                HybridLessonPattern.bookings_open == True,  # noqa: E712
                HybridLessonPattern.lesson_id.in_(family_lessons),
            )
        )
        outstanding = await self._outstanding(family_id)

        return {
            "children_count": children,
            "upcoming_lessons": upcoming,
            "outstanding_invoices": outstanding["count"],
            "outstanding_amount": outstanding["amount"],
            "shared_files_count": shared_files,
            "open_booking_periods": open_bookings,
        }

    # ------------------------------------------------------------------
    # Activity
    # ------------------------------------------------------------------

    async def activity_feed(self, limit: int = 10) -> List[Dict[str, Any]]:
        activities = []

        enrollments = (await self.db.execute(
            select(LessonEnrollment, Lesson.name)
            .join(Lesson, Lesson.id == LessonEnrollment.lesson_id)
            .where(Lesson.school_id == self.school_id)
            .order_by(LessonEnrollment.enrolled_at.desc())
            .limit(limit)
        )).unique().all()
        for enrollment, lesson_name in enrollments:
            activities.append({
                "id": f"enrollment-{enrollment.id}",
                "type": "enrollment",
                "title": "New Enrollment",
                "description": f"{enrollment.student.full_name} enrolled in {lesson_name}",
                "timestamp": as_utc(enrollment.enrolled_at),
            })

        payments = (await self.db.execute(
            select(Payment, Invoice.invoice_number, Family.name)
            .join(Invoice, Invoice.id == Payment.invoice_id)
            .join(Family, Family.id == Invoice.family_id)
            .where(Invoice.school_id == self.school_id)
            .order_by(Payment.paid_at.desc())
            .limit(limit)
        )).all()
        for payment, invoice_number, family_name in payments:
            activities.append({
                "id": f"payment-{payment.id}",
                "type": "payment",
                "title": "Payment Received",
                "description": f"${payment.amount:.2f} from {family_name} for {invoice_number}",
                "timestamp": as_utc(payment.paid_at),
                "metadata": {"amount": float(payment.amount)},
            })

        bookings = (await self.db.execute(
            select(HybridBooking)
            .where(HybridBooking.school_id == self.school_id)
            .order_by(HybridBooking.booked_at.desc())
            .limit(limit)
        )).unique().scalars().all()
        for booking in bookings:
            activities.append({
                "id": f"booking-{booking.id}",
                "type": "booking",
                "title": "Hybrid Session Booked",
                "description": f"{booking.student.full_name} booked a session for {booking.lesson.name}",
                "timestamp": as_utc(booking.booked_at),
            })

        meet_and_greets = (await self.db.execute(
            select(MeetAndGreet)
            .where(MeetAndGreet.school_id == self.school_id, MeetAndGreet.is_deleted == False)  # noqa: E712
            .order_by(MeetAndGreet.created_at.desc())
            .limit(limit)
        )).unique().scalars().all()
        for item in meet_and_greets:
            status = "scheduled" if item.status == MeetAndGreetStatus.APPROVED else item.status.value.lower().replace("_", " ")
            activities.append({
                "id": f"meetandgreet-{item.id}",
                "type": "meet_and_greet",
                "title": "Meet & Greet",
                "description": f"{item.student_first_name} {item.student_last_name} - {status}",
                "timestamp": as_utc(item.created_at),
            })

        activities.sort(key=lambda activity: activity["timestamp"], reverse=True)
        return [
            {**activity, "timestamp": activity["timestamp"].isoformat()}
            for activity in activities[:limit]
        ]
