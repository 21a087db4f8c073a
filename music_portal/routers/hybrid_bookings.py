# music_portal/routers/hybrid_bookings.py
"""Individual-week bookings for hybrid lessons."""
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.auth import CurrentUser, get_current_user, require_admin, require_roles, require_staff
from ..core.database import get_db
from ..models.tenant_specific.family import Parent
from ..models.tenant_specific.hybrid_booking import BookingStatus
from ..models.tenant_specific.user import UserRole
from ..schemas.lesson_schemas import BookingCancel, BookingCreate, BookingReschedule, BookingsOpenUpdate
from ..services.hybrid_booking_service import HybridBookingService, serialize_booking
from ..services.lesson_service import serialize_pattern
from ..services.parent_service import ParentService
from .deps import get_parent_profile

router = APIRouter(prefix="/api/v1/hybrid-bookings", tags=["Hybrid Bookings"])


async def _caller_parent(current: CurrentUser, db: AsyncSession) -> Optional[Parent]:
    """Parents act on their own bookings only; staff act on any"""
    if current.is_parent:
        return await ParentService(db, current.school_id).require_for_user(current.id)
    return None


@router.get("/lessons/{lesson_id}/slots", response_model=list)
async def available_slots(
    lesson_id: UUID,
    week: int = Query(..., ge=1, le=52),
    current: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Slots for one individual week, each flagged available or taken"""
    return await HybridBookingService(db, current.school_id).get_available_slots(lesson_id, week)


@router.post("/", response_model=dict, status_code=201)
async def create_booking(
    payload: BookingCreate,
    parent: Parent = Depends(get_parent_profile),
    db: AsyncSession = Depends(get_db),
):
    booking = await HybridBookingService(db, parent.school_id).create_booking(parent, payload.model_dump())
    return serialize_booking(booking)


@router.get("/my-bookings", response_model=list)
async def my_bookings(
    status: Optional[BookingStatus] = Query(None),
    lesson_id: Optional[UUID] = Query(None),
    parent: Parent = Depends(get_parent_profile),
    db: AsyncSession = Depends(get_db),
):
    bookings = await HybridBookingService(db, parent.school_id).list_bookings(parent, lesson_id=lesson_id, status=status)
    return [serialize_booking(booking) for booking in bookings]


@router.get("/{booking_id}", response_model=dict)
async def get_booking(
    booking_id: UUID,
    current: CurrentUser = Depends(require_roles(UserRole.ADMIN, UserRole.TEACHER, UserRole.PARENT)),
    db: AsyncSession = Depends(get_db),
):
    parent = await _caller_parent(current, db)
    return serialize_booking(await HybridBookingService(db, current.school_id).get_booking(booking_id, parent))


@router.put("/{booking_id}/reschedule", response_model=dict)
async def reschedule_booking(
    booking_id: UUID,
    payload: BookingReschedule,
    parent: Parent = Depends(get_parent_profile),
    db: AsyncSession = Depends(get_db),
):
    """Move a booking to another slot, optionally in another individual week"""
    booking = await HybridBookingService(db, parent.school_id).reschedule_booking(
        parent, booking_id, payload.model_dump(exclude_unset=True)
    )
    return serialize_booking(booking)


@router.post("/{booking_id}/cancel", response_model=dict)
async def cancel_booking(
    booking_id: UUID,
    payload: BookingCancel,
    current: CurrentUser = Depends(require_roles(UserRole.ADMIN, UserRole.PARENT)),
    db: AsyncSession = Depends(get_db),
):
    """Parents must respect the booking deadline; administrators can cancel at any time"""
    parent = await _caller_parent(current, db)
    booking = await HybridBookingService(db, current.school_id).cancel_booking(booking_id, parent, payload.reason)
    return serialize_booking(booking)


# ============================================================================
# LESSON ADMINISTRATION
# ============================================================================

@router.get("/lessons/{lesson_id}/bookings", response_model=list)
async def lesson_bookings(
    lesson_id: UUID,
    week: Optional[int] = Query(None, ge=1, le=52),
    status: Optional[BookingStatus] = Query(None),
    current: CurrentUser = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    bookings = await HybridBookingService(db, current.school_id).list_bookings(
        lesson_id=lesson_id, status=status, week_number=week
    )
    return [serialize_booking(booking) for booking in bookings]


@router.get("/lessons/{lesson_id}/stats", response_model=dict)
async def booking_stats(
    lesson_id: UUID,
    week: Optional[int] = Query(None, ge=1, le=52),
    current: CurrentUser = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    return await HybridBookingService(db, current.school_id).get_stats(lesson_id, week)


@router.get("/lessons/{lesson_id}/unbooked", response_model=list)
async def students_without_bookings(
    lesson_id: UUID,
    week: int = Query(..., ge=1, le=52),
    current: CurrentUser = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    """Enrolled students with no active booking in the week, with a parent contact"""
    return await HybridBookingService(db, current.school_id).students_without_bookings(lesson_id, week)


@router.put("/lessons/{lesson_id}/bookings-open", response_model=dict)
async def set_bookings_open(
    lesson_id: UUID,
    payload: BookingsOpenUpdate,
    current: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    pattern = await HybridBookingService(db, current.school_id).set_bookings_open(lesson_id, payload.bookings_open)
    return serialize_pattern(pattern)
