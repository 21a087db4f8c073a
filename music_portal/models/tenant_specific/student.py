# music_portal/models/tenant_specific/student.py
import enum

from sqlalchemy import Column, String, Text, Boolean, Date, ForeignKey, Enum, Uuid
from ..base import Base


class AgeGroup(str, enum.Enum):
    PRESCHOOL = "PRESCHOOL"
    KIDS = "KIDS"
    TEENS = "TEENS"
    ADULT = "ADULT"


class Student(Base):
    __tablename__ = "students"

    school_id = Column(Uuid(as_uuid=True), ForeignKey("schools.id"), nullable=False, index=True)
    family_id = Column(Uuid(as_uuid=True), ForeignKey("families.id"), nullable=True, index=True)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    birth_date = Column(Date, nullable=False)
    age_group = Column(Enum(AgeGroup, name="age_group"), nullable=False)
    notes = Column(Text)
    is_active = Column(Boolean, default=True, nullable=False)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"
