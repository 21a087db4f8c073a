# music_portal/schemas/people_schemas.py
"""Pydantic schemas for teachers, parents, students and families."""
from datetime import date
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field, field_validator


def _clean_phone(v):
    if v is None:
        return v
    digits = ''.join(c for c in v if c.isdigit())
    if len(digits) < 6:
        raise ValueError('Phone number must contain at least 6 digits')
    return v.strip()


class AccountCreate(BaseModel):
    email: EmailStr = Field(..., description="Login email")
    password: str = Field(..., min_length=8, max_length=200, description="Initial password")
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    phone: Optional[str] = Field(default=None, max_length=30)

    @field_validator('phone')
    @classmethod
    def validate_phone(cls, v):
        return _clean_phone(v)


class AccountUpdate(BaseModel):
    email: Optional[EmailStr] = Field(default=None)
    first_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    last_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    phone: Optional[str] = Field(default=None, max_length=30)

    @field_validator('phone')
    @classmethod
    def validate_phone(cls, v):
        return _clean_phone(v)


# ============================================================================
# TEACHERS
# ============================================================================

class TeacherCreate(AccountCreate):
    bio: Optional[str] = Field(default=None, max_length=5000)
    instrument_ids: List[UUID] = Field(default_factory=list, description="Instruments the teacher teaches")
    primary_instrument_id: Optional[UUID] = Field(default=None)


class TeacherUpdate(AccountUpdate):
    bio: Optional[str] = Field(default=None, max_length=5000)
    is_active: Optional[bool] = Field(default=None)


class InstrumentAssign(BaseModel):
    instrument_id: UUID
    is_primary: bool = False


# ============================================================================
# PARENTS
# ============================================================================

class ParentContacts(BaseModel):
    contact_1_name: Optional[str] = Field(default=None, max_length=200)
    contact_1_phone: Optional[str] = Field(default=None, max_length=30)
    contact_1_email: Optional[EmailStr] = Field(default=None)
    contact_1_relationship: Optional[str] = Field(default=None, max_length=50)
    contact_2_name: Optional[str] = Field(default=None, max_length=200)
    contact_2_phone: Optional[str] = Field(default=None, max_length=30)
    contact_2_email: Optional[EmailStr] = Field(default=None)
    contact_2_relationship: Optional[str] = Field(default=None, max_length=50)
    emergency_name: Optional[str] = Field(default=None, max_length=200)
    emergency_phone: Optional[str] = Field(default=None, max_length=30)
    emergency_relationship: Optional[str] = Field(default=None, max_length=50)


class ParentCreate(AccountCreate, ParentContacts):
    family_id: Optional[UUID] = Field(default=None, description="Family to join")


class ParentUpdate(AccountUpdate, ParentContacts):
    pass


# ============================================================================
# STUDENTS
# ============================================================================

class StudentCreate(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    birth_date: date = Field(..., description="Date of birth; determines the age group")
    family_id: Optional[UUID] = Field(default=None)
    notes: Optional[str] = Field(default=None, max_length=5000)


class StudentUpdate(BaseModel):
    first_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    last_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    birth_date: Optional[date] = Field(default=None)
    family_id: Optional[UUID] = Field(default=None)
    notes: Optional[str] = Field(default=None, max_length=5000)
    is_active: Optional[bool] = Field(default=None)


# ============================================================================
# FAMILIES
# ============================================================================

class FamilyCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200, description="Family name")
    primary_parent_id: Optional[UUID] = Field(default=None)


class FamilyUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    primary_parent_id: Optional[UUID] = Field(default=None)
    is_active: Optional[bool] = Field(default=None)


class FamilyParentAdd(BaseModel):
    parent_id: UUID
    is_primary: bool = False


class FamilyStudentAdd(BaseModel):
    student_id: UUID
