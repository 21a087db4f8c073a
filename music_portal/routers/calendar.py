# music_portal/routers/calendar.py
from datetime import date
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.auth import CurrentUser, require_staff
from ..core.database import get_db
from ..core.exceptions import ValidationException
from ..services.hybrid_booking_service import HybridBookingService
from .deps import get_teacher_scope

router = APIRouter(prefix="/api/v1/calendar", tags=["Calendar"])


@router.get("/events", response_model=dict)
async def calendar_events(
    term_id: Optional[UUID] = Query(None),
    teacher_id: Optional[UUID] = Query(None),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(100, ge=1, le=500),
    current: CurrentUser = Depends(require_staff),
    own_teacher_id: Optional[UUID] = Depends(get_teacher_scope),
    db: AsyncSession = Depends(get_db),
):
    """Lesson occurrences and hybrid bookings across a date range (default: the next 90 days)"""
    if start_date and end_date and end_date < start_date:
        raise ValidationException("end_date must not be before start_date.")
    return await HybridBookingService(db, current.school_id).calendar_events(
        term_id, own_teacher_id or teacher_id, start_date, end_date, page, limit
    )
