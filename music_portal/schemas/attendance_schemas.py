# music_portal/schemas/attendance_schemas.py
"""Pydantic schemas for attendance and teacher notes."""
import datetime as dt
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from ..models.tenant_specific.attendance import AttendanceStatus
from ..models.tenant_specific.note import NoteStatus


class AttendanceEntry(BaseModel):
    student_id: UUID
    status: AttendanceStatus
    absence_reason: Optional[str] = Field(default=None, max_length=500)
    notes: Optional[str] = Field(default=None, max_length=2000)


class AttendanceMark(AttendanceEntry):
    lesson_id: UUID
    date: dt.date = Field(..., description="Calendar day of the lesson")


class AttendanceBatch(BaseModel):
    lesson_id: UUID
    date: dt.date
    records: List[AttendanceEntry] = Field(..., description="One entry per student")


class AttendanceUpdate(BaseModel):
    status: Optional[AttendanceStatus] = Field(default=None)
    absence_reason: Optional[str] = Field(default=None, max_length=500)
    notes: Optional[str] = Field(default=None, max_length=2000)


# ============================================================================
# NOTES
# ============================================================================

class NoteCreate(BaseModel):
    lesson_id: Optional[UUID] = Field(default=None)
    student_id: Optional[UUID] = Field(default=None)
    date: dt.date
    content: str = Field(..., min_length=1, max_length=10000)
    status: NoteStatus = NoteStatus.PENDING
    is_private: bool = False

    @model_validator(mode='after')
    def validate_target(self):
        if not self.lesson_id and not self.student_id:
            raise ValueError('A note must be linked to a lesson or a student.')
        return self


class NoteUpdate(BaseModel):
    content: Optional[str] = Field(default=None, min_length=1, max_length=10000)
    status: Optional[NoteStatus] = Field(default=None)
    is_private: Optional[bool] = Field(default=None)
