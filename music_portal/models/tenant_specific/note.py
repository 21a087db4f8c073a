# music_portal/models/tenant_specific/note.py
import enum

from sqlalchemy import Column, Text, Boolean, Date, ForeignKey, Enum, Index, Uuid
from sqlalchemy.orm import relationship
from ..base import Base


class NoteStatus(str, enum.Enum):
    PENDING = "PENDING"
    PARTIAL = "PARTIAL"
    COMPLETE = "COMPLETE"


class Note(Base):
    __tablename__ = "notes"
    __table_args__ = (
        Index('ix_notes_lesson_student_date', 'school_id', 'lesson_id', 'student_id', 'date'),
    )

    school_id = Column(Uuid(as_uuid=True), ForeignKey("schools.id"), nullable=False, index=True)
    author_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    lesson_id = Column(Uuid(as_uuid=True), ForeignKey("lessons.id"), nullable=True, index=True)
    student_id = Column(Uuid(as_uuid=True), ForeignKey("students.id"), nullable=True, index=True)

    date = Column(Date, nullable=False, index=True)
    content = Column(Text, nullable=False)
    status = Column(Enum(NoteStatus, name="note_status"), default=NoteStatus.PENDING, nullable=False)
    is_private = Column(Boolean, default=False, nullable=False)

    author = relationship("User", lazy="joined")
