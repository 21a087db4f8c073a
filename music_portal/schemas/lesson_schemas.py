# music_portal/schemas/lesson_schemas.py
"""Pydantic schemas for lessons, enrollments, rescheduling and hybrid bookings."""
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from ..models.tenant_specific.hybrid_booking import HybridPatternType
from ..utils.scheduling import is_valid_time

TIME_DESCRIPTION = "24-hour time, HH:MM"


def _check_time(v):
    if v is not None and not is_valid_time(v):
        raise ValueError('Time must be in HH:MM format')
    return v


class HybridPatternInput(BaseModel):
    pattern_type: HybridPatternType = Field(default=HybridPatternType.ALTERNATING)
    group_weeks: List[int] = Field(default_factory=list, description="Term weeks taught as a group")
    individual_weeks: List[int] = Field(default_factory=list, description="Term weeks booked individually")
    individual_slot_duration: int = Field(default=30, ge=10, le=120)
    booking_deadline_hours: int = Field(default=24, ge=0, le=336)


class LessonCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200, description="Lesson name")
    description: Optional[str] = Field(default=None, max_length=5000)
    lesson_type_id: UUID
    term_id: UUID
    teacher_id: UUID
    room_id: UUID
    instrument_id: Optional[UUID] = Field(default=None)
    day_of_week: int = Field(..., ge=0, le=6, description="0 = Sunday ... 6 = Saturday")
    start_time: str = Field(..., description=TIME_DESCRIPTION)
    end_time: str = Field(..., description=TIME_DESCRIPTION)
    max_students: int = Field(default=1, ge=1, le=100)
    is_recurring: bool = True
    hybrid_pattern: Optional[HybridPatternInput] = Field(default=None)

    @field_validator('start_time', 'end_time')
    @classmethod
    def validate_time(cls, v):
        return _check_time(v)


class LessonUpdate(BaseModel):
    """Schema for updating a lesson; `hybrid_pattern: null` removes the pattern"""
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=5000)
    lesson_type_id: Optional[UUID] = Field(default=None)
    term_id: Optional[UUID] = Field(default=None)
    teacher_id: Optional[UUID] = Field(default=None)
    room_id: Optional[UUID] = Field(default=None)
    instrument_id: Optional[UUID] = Field(default=None)
    day_of_week: Optional[int] = Field(default=None, ge=0, le=6)
    start_time: Optional[str] = Field(default=None, description=TIME_DESCRIPTION)
    end_time: Optional[str] = Field(default=None, description=TIME_DESCRIPTION)
    max_students: Optional[int] = Field(default=None, ge=1, le=100)
    is_recurring: Optional[bool] = Field(default=None)
    is_active: Optional[bool] = Field(default=None)
    hybrid_pattern: Optional[HybridPatternInput] = Field(default=None)

    @field_validator('start_time', 'end_time')
    @classmethod
    def validate_time(cls, v):
        return _check_time(v)


class EnrollRequest(BaseModel):
    student_id: UUID


class BulkEnrollRequest(BaseModel):
    student_ids: List[UUID] = Field(..., min_length=1, max_length=100)


class ConflictCheckRequest(BaseModel):
    new_day_of_week: int = Field(..., ge=0, le=6)
    new_start_time: str = Field(..., description=TIME_DESCRIPTION)
    new_end_time: Optional[str] = Field(default=None, description="Defaults to the current lesson length")

    @field_validator('new_start_time', 'new_end_time')
    @classmethod
    def validate_time(cls, v):
        return _check_time(v)


class RescheduleRequest(ConflictCheckRequest):
    reason: Optional[str] = Field(default=None, max_length=500)
    notify_parents: bool = True


# ============================================================================
# HYBRID BOOKINGS
# ============================================================================

class BookingCreate(BaseModel):
    lesson_id: UUID
    student_id: UUID
    week_number: int = Field(..., ge=1, le=52)
    start_time: str = Field(..., description=TIME_DESCRIPTION)

    @field_validator('start_time')
    @classmethod
    def validate_time(cls, v):
        return _check_time(v)


class BookingReschedule(BaseModel):
    week_number: Optional[int] = Field(default=None, ge=1, le=52)
    start_time: str = Field(..., description=TIME_DESCRIPTION)

    @field_validator('start_time')
    @classmethod
    def validate_time(cls, v):
        return _check_time(v)


class BookingCancel(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class BookingsOpenUpdate(BaseModel):
    bookings_open: bool
