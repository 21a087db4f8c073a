# music_portal/schemas/auth_schemas.py
"""Pydantic schemas for login, tokens and school bootstrap."""
from typing import Any, Dict, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, EmailStr, Field, field_validator


class LoginRequest(BaseModel):
    email: EmailStr = Field(..., description="Account email")
    password: str = Field(..., min_length=1, max_length=200, description="Account password")
    school_slug: Optional[str] = Field(default=None, max_length=100, description="School to sign in to")


class RefreshRequest(BaseModel):
    refresh_token: str = Field(..., min_length=1, max_length=200)


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(..., min_length=1, max_length=200)
    new_password: str = Field(..., min_length=8, max_length=200)


class SchoolAdmin(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=200)
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)


class SchoolCreate(BaseModel):
    """Schema for creating a school with its first administrator"""
    name: str = Field(..., min_length=1, max_length=200, description="School name")
    slug: str = Field(..., min_length=2, max_length=100, pattern=r'^[a-z0-9]+(?:-[a-z0-9]+)*$', description="URL slug")
    email: Optional[EmailStr] = Field(default=None)
    phone: Optional[str] = Field(default=None, max_length=30)
    website: Optional[str] = Field(default=None, max_length=255)
    timezone: Optional[str] = Field(default=None, max_length=64)
    admin: SchoolAdmin


class SchoolSettingsUpdate(BaseModel):
    """Schema for updating school settings - all fields optional"""
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    email: Optional[EmailStr] = Field(default=None)
    phone: Optional[str] = Field(default=None, max_length=30)
    website: Optional[str] = Field(default=None, max_length=255)
    timezone: Optional[str] = Field(default=None, max_length=64)
    settings: Optional[Dict[str, Any]] = Field(default=None)
    branding: Optional[Dict[str, Any]] = Field(default=None)

    @field_validator('timezone')
    @classmethod
    def validate_timezone(cls, v):
        if v is None:
            return v
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError('Unknown timezone')
        return v
