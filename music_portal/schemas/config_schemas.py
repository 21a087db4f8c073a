# music_portal/schemas/config_schemas.py
"""Pydantic schemas for school configuration: terms, rooms, instruments, lesson types, pricing."""
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_serializer

from ..models.tenant_specific.school_config import LessonCategory


class ConfigInDBBase(BaseModel):
    id: UUID = Field(..., description="Unique identifier")
    is_active: bool = Field(..., description="Active status")
    created_at: Optional[datetime] = Field(default=None, description="Creation timestamp")

    class Config:
        from_attributes = True


# ============================================================================
# TERMS
# ============================================================================

class TermCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100, description="Term name")
    start_date: date = Field(..., description="First day of the term")
    end_date: date = Field(..., description="Last day of the term")


class TermUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    start_date: Optional[date] = Field(default=None)
    end_date: Optional[date] = Field(default=None)
    is_active: Optional[bool] = Field(default=None)


class Term(ConfigInDBBase):
    name: str
    start_date: date
    end_date: date
    lesson_count: int = 0


# ============================================================================
# LOCATIONS & ROOMS
# ============================================================================

class LocationCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    address: Optional[str] = Field(default=None, max_length=500)
    phone: Optional[str] = Field(default=None, max_length=30)


class LocationUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    address: Optional[str] = Field(default=None, max_length=500)
    phone: Optional[str] = Field(default=None, max_length=30)
    is_active: Optional[bool] = Field(default=None)


class Room(ConfigInDBBase):
    location_id: UUID
    name: str
    capacity: int


class Location(ConfigInDBBase):
    name: str
    address: Optional[str] = None
    phone: Optional[str] = None
    rooms: List[Room] = []


class RoomCreate(BaseModel):
    location_id: UUID
    name: str = Field(..., min_length=1, max_length=100)
    capacity: int = Field(default=10, gt=0, le=500)


class RoomUpdate(BaseModel):
    location_id: Optional[UUID] = Field(default=None)
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    capacity: Optional[int] = Field(default=None, gt=0, le=500)
    is_active: Optional[bool] = Field(default=None)


# ============================================================================
# INSTRUMENTS, LESSON TYPES, DURATIONS
# ============================================================================

class InstrumentCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    sort_order: Optional[int] = Field(default=None, ge=0)


class InstrumentUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    sort_order: Optional[int] = Field(default=None, ge=0)
    is_active: Optional[bool] = Field(default=None)


class Instrument(ConfigInDBBase):
    name: str
    sort_order: int


class LessonTypeCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: LessonCategory
    default_duration: int = Field(default=45, ge=15, le=180)
    description: Optional[str] = Field(default=None, max_length=2000)


class LessonTypeUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    type: Optional[LessonCategory] = Field(default=None)
    default_duration: Optional[int] = Field(default=None, ge=15, le=180)
    description: Optional[str] = Field(default=None, max_length=2000)
    is_active: Optional[bool] = Field(default=None)


class LessonType(ConfigInDBBase):
    name: str
    type: LessonCategory
    default_duration: int
    description: Optional[str] = None


class LessonDurationCreate(BaseModel):
    minutes: int = Field(..., description="Lesson length in minutes (15-180)")


class LessonDurationUpdate(BaseModel):
    minutes: Optional[int] = Field(default=None)
    is_active: Optional[bool] = Field(default=None)


class LessonDuration(ConfigInDBBase):
    minutes: int


# ============================================================================
# PRICING PACKAGES
# ============================================================================

class PricingPackageCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=2000)
    price: Decimal = Field(..., ge=0, max_digits=10, decimal_places=2)
    items: List[Dict[str, Any]] = Field(default_factory=list, description="What the package includes")


class PricingPackageUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=2000)
    price: Optional[Decimal] = Field(default=None, ge=0, max_digits=10, decimal_places=2)
    items: Optional[List[Dict[str, Any]]] = Field(default=None)
    is_active: Optional[bool] = Field(default=None)


class PricingPackage(ConfigInDBBase):
    name: str
    description: Optional[str] = None
    price: Decimal
    items: List[Dict[str, Any]] = []

    @field_serializer('price')
    def serialize_price(self, price: Decimal):
        return float(price)
