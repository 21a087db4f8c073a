# music_portal/models/tenant_specific/teacher.py
from sqlalchemy import Column, Text, Boolean, ForeignKey, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship
from ..base import Base


class Teacher(Base):
    __tablename__ = "teachers"

    school_id = Column(Uuid(as_uuid=True), ForeignKey("schools.id"), nullable=False, index=True)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, unique=True)
    bio = Column(Text)
    is_active = Column(Boolean, default=True, nullable=False)

    user = relationship("User", lazy="joined")
    instruments = relationship(
        "TeacherInstrument",
        back_populates="teacher",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class TeacherInstrument(Base):
    __tablename__ = "teacher_instruments"
    __table_args__ = (
        UniqueConstraint('teacher_id', 'instrument_id', name='uq_teacher_instrument'),
    )

    teacher_id = Column(Uuid(as_uuid=True), ForeignKey("teachers.id", ondelete="CASCADE"), nullable=False, index=True)
    instrument_id = Column(Uuid(as_uuid=True), ForeignKey("instruments.id"), nullable=False, index=True)
    is_primary = Column(Boolean, default=False, nullable=False)

    teacher = relationship("Teacher", back_populates="instruments")
    instrument = relationship("Instrument", lazy="joined")
