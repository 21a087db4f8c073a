# music_portal/schemas/meet_and_greet_schemas.py
"""Pydantic schemas for Meet & Greet requests."""
from datetime import date, datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field, field_validator

from ..utils.scheduling import is_valid_time


class MeetAndGreetCreate(BaseModel):
    """Public request form submitted by a prospective family"""
    student_first_name: str = Field(..., min_length=1, max_length=100)
    student_last_name: str = Field(..., min_length=1, max_length=100)
    student_age: Optional[int] = Field(default=None, ge=1, le=120)
    instrument_interest: Optional[str] = Field(default=None, max_length=100)

    contact_1_name: str = Field(..., min_length=1, max_length=200)
    contact_1_email: EmailStr
    contact_1_phone: str = Field(..., min_length=6, max_length=30)
    contact_1_relationship: Optional[str] = Field(default=None, max_length=50)
    contact_2_name: Optional[str] = Field(default=None, max_length=200)
    contact_2_email: Optional[EmailStr] = Field(default=None)
    contact_2_phone: Optional[str] = Field(default=None, max_length=30)
    contact_2_relationship: Optional[str] = Field(default=None, max_length=50)

    preferred_date: Optional[date] = Field(default=None)
    preferred_time: Optional[str] = Field(default=None, description="24-hour time, HH:MM")
    additional_notes: Optional[str] = Field(default=None, max_length=2000)

    @field_validator('preferred_time')
    @classmethod
    def validate_time(cls, v):
        if v is not None and not is_valid_time(v):
            raise ValueError('Time must be in HH:MM format')
        return v


class MeetAndGreetUpdate(BaseModel):
    assigned_teacher_id: Optional[UUID] = Field(default=None)
    scheduled_date_time: Optional[datetime] = Field(default=None)
    follow_up_notes: Optional[str] = Field(default=None, max_length=2000)


class MeetAndGreetReject(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)
