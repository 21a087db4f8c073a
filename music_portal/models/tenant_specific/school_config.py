# music_portal/models/tenant_specific/school_config.py
"""Terms, locations, rooms and the lesson catalogue a school configures."""
import enum

from sqlalchemy import (
    Column, String, Text, Integer, Boolean, Date, Numeric, JSON, ForeignKey, Enum,
    UniqueConstraint, CheckConstraint, Uuid,
)
from sqlalchemy.orm import relationship
from ..base import Base


class LessonCategory(str, enum.Enum):
    INDIVIDUAL = "INDIVIDUAL"
    GROUP = "GROUP"
    BAND = "BAND"
    HYBRID = "HYBRID"


class Term(Base):
    __tablename__ = "terms"
    __table_args__ = (
        UniqueConstraint('school_id', 'name', name='uq_term_school_name'),
        CheckConstraint('start_date < end_date', name='ck_term_dates'),
    )

    school_id = Column(Uuid(as_uuid=True), ForeignKey("schools.id"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)


class Location(Base):
    __tablename__ = "locations"
    __table_args__ = (
        UniqueConstraint('school_id', 'name', name='uq_location_school_name'),
    )

    school_id = Column(Uuid(as_uuid=True), ForeignKey("schools.id"), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    address = Column(String(500))
    phone = Column(String(30))
    is_active = Column(Boolean, default=True, nullable=False)

    rooms = relationship(
        "Room",
        primaryjoin="and_(Location.id == Room.location_id, Room.is_deleted == False)",
        viewonly=True,
        lazy="selectin",
    )


class Room(Base):
    __tablename__ = "rooms"
    __table_args__ = (
        UniqueConstraint('location_id', 'name', name='uq_room_location_name'),
        CheckConstraint('capacity > 0', name='ck_room_capacity'),
    )

    school_id = Column(Uuid(as_uuid=True), ForeignKey("schools.id"), nullable=False, index=True)
    location_id = Column(Uuid(as_uuid=True), ForeignKey("locations.id"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    capacity = Column(Integer, default=10, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)


class Instrument(Base):
    __tablename__ = "instruments"
    __table_args__ = (
        UniqueConstraint('school_id', 'name', name='uq_instrument_school_name'),
    )

    school_id = Column(Uuid(as_uuid=True), ForeignKey("schools.id"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    sort_order = Column(Integer, default=0, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)


class LessonType(Base):
    __tablename__ = "lesson_types"
    __table_args__ = (
        UniqueConstraint('school_id', 'name', name='uq_lesson_type_school_name'),
    )

    school_id = Column(Uuid(as_uuid=True), ForeignKey("schools.id"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    type = Column(Enum(LessonCategory, name="lesson_category"), nullable=False)
    default_duration = Column(Integer, default=45, nullable=False)
    description = Column(Text)
    is_active = Column(Boolean, default=True, nullable=False)


class LessonDuration(Base):
    __tablename__ = "lesson_durations"
    __table_args__ = (
        UniqueConstraint('school_id', 'minutes', name='uq_lesson_duration_school_minutes'),
        CheckConstraint('minutes >= 15 AND minutes <= 180', name='ck_lesson_duration_range'),
    )

    school_id = Column(Uuid(as_uuid=True), ForeignKey("schools.id"), nullable=False, index=True)
    minutes = Column(Integer, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)


class PricingPackage(Base):
    __tablename__ = "pricing_packages"
    __table_args__ = (
        UniqueConstraint('school_id', 'name', name='uq_pricing_package_school_name'),
    )

    school_id = Column(Uuid(as_uuid=True), ForeignKey("schools.id"), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    description = Column(Text)
    price = Column(Numeric(10, 2), nullable=False)
    items = Column(JSON, nullable=False, default=list)
    is_active = Column(Boolean, default=True, nullable=False)
