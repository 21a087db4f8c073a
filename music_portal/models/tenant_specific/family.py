# music_portal/models/tenant_specific/family.py
from sqlalchemy import Column, String, Boolean, ForeignKey, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship
from ..base import Base


class Family(Base):
    __tablename__ = "families"
    __table_args__ = (
        UniqueConstraint('school_id', 'name', name='uq_family_school_name'),
    )

    school_id = Column(Uuid(as_uuid=True), ForeignKey("schools.id"), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    parents = relationship(
        "Parent",
        primaryjoin="and_(Family.id == Parent.family_id, Parent.is_deleted == False)",
        foreign_keys="Parent.family_id",
        viewonly=True,
        lazy="selectin",
    )
    students = relationship(
        "Student",
        primaryjoin="and_(Family.id == Student.family_id, Student.is_deleted == False)",
        foreign_keys="Student.family_id",
        viewonly=True,
        lazy="selectin",
    )

    @property
    def primary_parent(self):
        return next((parent for parent in self.parents if parent.is_primary), None)


class Parent(Base):
    __tablename__ = "parents"

    school_id = Column(Uuid(as_uuid=True), ForeignKey("schools.id"), nullable=False, index=True)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, unique=True)
    family_id = Column(Uuid(as_uuid=True), ForeignKey("families.id"), nullable=True, index=True)
    is_primary = Column(Boolean, default=False, nullable=False)

    # Contact details beyond the login account
    contact_1_name = Column(String(200))
    contact_1_phone = Column(String(30))
    contact_1_email = Column(String(254))
    contact_1_relationship = Column(String(50))
    contact_2_name = Column(String(200))
    contact_2_phone = Column(String(30))
    contact_2_email = Column(String(254))
    contact_2_relationship = Column(String(50))
    emergency_name = Column(String(200))
    emergency_phone = Column(String(30))
    emergency_relationship = Column(String(50))

    user = relationship("User", lazy="joined")
