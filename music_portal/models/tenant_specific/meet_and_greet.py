# music_portal/models/tenant_specific/meet_and_greet.py
import enum

from sqlalchemy import Column, String, Text, Integer, Date, DateTime, ForeignKey, Enum, Uuid
from sqlalchemy.orm import relationship
from ..base import Base


class MeetAndGreetStatus(str, enum.Enum):
    PENDING_VERIFICATION = "PENDING_VERIFICATION"
    PENDING_APPROVAL = "PENDING_APPROVAL"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CONVERTED = "CONVERTED"
    CANCELLED = "CANCELLED"


class MeetAndGreet(Base):
    __tablename__ = "meet_and_greets"

    school_id = Column(Uuid(as_uuid=True), ForeignKey("schools.id"), nullable=False, index=True)

    # Prospective student
    student_first_name = Column(String(100), nullable=False)
    student_last_name = Column(String(100), nullable=False)
    student_age = Column(Integer)
    instrument_interest = Column(String(100))

    # Contacts
    contact_1_name = Column(String(200), nullable=False)
    contact_1_email = Column(String(254), nullable=False, index=True)
    contact_1_phone = Column(String(30), nullable=False)
    contact_1_relationship = Column(String(50))
    contact_2_name = Column(String(200))
    contact_2_email = Column(String(254))
    contact_2_phone = Column(String(30))
    contact_2_relationship = Column(String(50))

    preferred_date = Column(Date)
    preferred_time = Column(String(5))
    additional_notes = Column(Text)

    # Workflow
    status = Column(
        Enum(MeetAndGreetStatus, name="meet_and_greet_status"),
        default=MeetAndGreetStatus.PENDING_VERIFICATION,
        nullable=False,
        index=True,
    )
    verification_token = Column(String(100), unique=True, nullable=True, index=True)
    verified_at = Column(DateTime(timezone=True))
    registration_token = Column(String(100), unique=True, nullable=True, index=True)
    registration_token_expires_at = Column(DateTime(timezone=True))
    assigned_teacher_id = Column(Uuid(as_uuid=True), ForeignKey("teachers.id"), nullable=True)
    scheduled_date_time = Column(DateTime(timezone=True))
    follow_up_notes = Column(Text)
    rejection_reason = Column(String(500))
    approved_at = Column(DateTime(timezone=True))
    approved_by_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=True)

    assigned_teacher = relationship("Teacher", lazy="joined")
