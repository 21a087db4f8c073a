# music_portal/models/tenant_specific/hybrid_booking.py
import enum

from sqlalchemy import Column, String, Integer, Boolean, Date, DateTime, JSON, ForeignKey, Enum, Index, Uuid
from sqlalchemy.orm import relationship
from ..base import Base, utcnow


class HybridPatternType(str, enum.Enum):
    ALTERNATING = "ALTERNATING"
    CUSTOM = "CUSTOM"


class BookingStatus(str, enum.Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"
    NO_SHOW = "NO_SHOW"


class HybridLessonPattern(Base):
    __tablename__ = "hybrid_lesson_patterns"

    lesson_id = Column(Uuid(as_uuid=True), ForeignKey("lessons.id", ondelete="CASCADE"), nullable=False, unique=True)
    term_id = Column(Uuid(as_uuid=True), ForeignKey("terms.id"), nullable=False)
    pattern_type = Column(Enum(HybridPatternType, name="hybrid_pattern_type"), nullable=False)
    # Week numbers within the term, 1-based
    group_weeks = Column(JSON, nullable=False, default=list)
    individual_weeks = Column(JSON, nullable=False, default=list)
    individual_slot_duration = Column(Integer, default=30, nullable=False)
    booking_deadline_hours = Column(Integer, default=24, nullable=False)
    bookings_open = Column(Boolean, default=False, nullable=False)


class HybridBooking(Base):
    __tablename__ = "hybrid_bookings"
    __table_args__ = (
        Index('ix_hybrid_bookings_lesson_date', 'lesson_id', 'scheduled_date'),
        Index('ix_hybrid_bookings_lesson_student_week', 'lesson_id', 'student_id', 'week_number'),
    )

    school_id = Column(Uuid(as_uuid=True), ForeignKey("schools.id"), nullable=False, index=True)
    lesson_id = Column(Uuid(as_uuid=True), ForeignKey("lessons.id"), nullable=False, index=True)
    student_id = Column(Uuid(as_uuid=True), ForeignKey("students.id"), nullable=False, index=True)
    parent_id = Column(Uuid(as_uuid=True), ForeignKey("parents.id"), nullable=False, index=True)
    week_number = Column(Integer, nullable=False)
    scheduled_date = Column(Date, nullable=False)
    start_time = Column(String(5), nullable=False)
    end_time = Column(String(5), nullable=False)
    status = Column(Enum(BookingStatus, name="booking_status"), default=BookingStatus.PENDING, nullable=False, index=True)
    booked_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    confirmed_at = Column(DateTime(timezone=True))
    cancelled_at = Column(DateTime(timezone=True))
    cancellation_reason = Column(String(500))

    lesson = relationship("Lesson", lazy="joined")
    student = relationship("Student", lazy="joined")
