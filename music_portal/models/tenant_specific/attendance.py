# music_portal/models/tenant_specific/attendance.py
from sqlalchemy import Column, String, Text, Date, ForeignKey, Enum, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship
from ..base import Base
import enum


class AttendanceStatus(str, enum.Enum):
    PRESENT = "PRESENT"
    ABSENT = "ABSENT"
    LATE = "LATE"
    EXCUSED = "EXCUSED"
    CANCELLED = "CANCELLED"


class Attendance(Base):
    __tablename__ = "attendances"
    __table_args__ = (
        UniqueConstraint('lesson_id', 'student_id', 'date', name='uq_attendance_lesson_student_date'),
    )

    school_id = Column(Uuid(as_uuid=True), ForeignKey("schools.id"), nullable=False, index=True)
    lesson_id = Column(Uuid(as_uuid=True), ForeignKey("lessons.id"), nullable=False, index=True)
    student_id = Column(Uuid(as_uuid=True), ForeignKey("students.id"), nullable=False, index=True)
    marked_by_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=True)

    date = Column(Date, nullable=False, index=True)
    status = Column(Enum(AttendanceStatus, name="attendance_status"), nullable=False)
    absence_reason = Column(String(500))
    notes = Column(Text)

    student = relationship("Student", lazy="joined")
