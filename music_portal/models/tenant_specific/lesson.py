# music_portal/models/tenant_specific/lesson.py
from sqlalchemy import (
    Column, String, Text, Integer, Boolean, DateTime, ForeignKey, UniqueConstraint, CheckConstraint, Index, Uuid,
)
from sqlalchemy.orm import relationship
from ..base import Base, utcnow


class Lesson(Base):
    __tablename__ = "lessons"
    __table_args__ = (
        CheckConstraint('day_of_week >= 0 AND day_of_week <= 6', name='ck_lesson_day_of_week'),
        CheckConstraint('max_students > 0', name='ck_lesson_max_students'),
        Index('ix_lessons_room_day', 'room_id', 'day_of_week'),
        Index('ix_lessons_teacher_day', 'teacher_id', 'day_of_week'),
    )

    school_id = Column(Uuid(as_uuid=True), ForeignKey("schools.id"), nullable=False, index=True)
    lesson_type_id = Column(Uuid(as_uuid=True), ForeignKey("lesson_types.id"), nullable=False)
    term_id = Column(Uuid(as_uuid=True), ForeignKey("terms.id"), nullable=False, index=True)
    teacher_id = Column(Uuid(as_uuid=True), ForeignKey("teachers.id"), nullable=False, index=True)
    room_id = Column(Uuid(as_uuid=True), ForeignKey("rooms.id"), nullable=False, index=True)
    instrument_id = Column(Uuid(as_uuid=True), ForeignKey("instruments.id"), nullable=True)

    name = Column(String(200), nullable=False)
    description = Column(Text)
    # 0 = Sunday ... 6 = Saturday
    day_of_week = Column(Integer, nullable=False)
    start_time = Column(String(5), nullable=False)
    end_time = Column(String(5), nullable=False)
    duration_mins = Column(Integer, nullable=False)
    max_students = Column(Integer, default=1, nullable=False)
    is_recurring = Column(Boolean, default=True, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    lesson_type = relationship("LessonType", lazy="joined")
    term = relationship("Term", lazy="joined")
    teacher = relationship("Teacher", lazy="joined")
    room = relationship("Room", lazy="joined")
    instrument = relationship("Instrument", lazy="joined")
    hybrid_pattern = relationship("HybridLessonPattern", uselist=False, lazy="selectin", viewonly=True)


class LessonEnrollment(Base):
    __tablename__ = "lesson_enrollments"
    __table_args__ = (
        UniqueConstraint('lesson_id', 'student_id', name='uq_lesson_enrollment'),
    )

    lesson_id = Column(Uuid(as_uuid=True), ForeignKey("lessons.id", ondelete="CASCADE"), nullable=False, index=True)
    student_id = Column(Uuid(as_uuid=True), ForeignKey("students.id"), nullable=False, index=True)
    enrolled_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    student = relationship("Student", lazy="joined")
