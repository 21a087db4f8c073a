# music_portal/routers/meet_and_greet.py
"""Public Meet & Greet request form and the admin review queue."""
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.auth import CurrentUser, require_admin
from ..core.database import get_db
from ..core.rate_limiter import RateLimiter
from ..models.tenant_specific.meet_and_greet import MeetAndGreetStatus
from ..schemas.meet_and_greet_schemas import MeetAndGreetCreate, MeetAndGreetReject, MeetAndGreetUpdate
from ..services.meet_and_greet_service import MeetAndGreetService, serialize_meet_and_greet

router = APIRouter(prefix="/api/v1/meet-and-greet", tags=["Meet & Greet"])

public_form_limiter = RateLimiter(
    max_requests=10, window=3600, message="Too many Meet & Greet requests from this address."
)


def limit_public_form(request: Request):
    public_form_limiter.check(request.client.host if request.client else "unknown")


# ============================================================================
# PUBLIC
# ============================================================================

@router.post(
    "/public/{school_slug}",
    response_model=dict,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(limit_public_form)],
)
async def request_meet_and_greet(
    school_slug: str,
    payload: MeetAndGreetCreate,
    db: AsyncSession = Depends(get_db),
):
    """Submit the public form; a verification link is issued to the first contact"""
    item = await MeetAndGreetService(db).create_public(school_slug, payload.model_dump())
    return {
        "id": str(item.id),
        "status": item.status.value,
        "message": "Please check your email to verify your request.",
    }


@router.post("/public/verify/{token}", response_model=dict, dependencies=[Depends(limit_public_form)])
async def verify_meet_and_greet(token: str, db: AsyncSession = Depends(get_db)):
    item = await MeetAndGreetService(db).verify(token)
    return {"id": str(item.id), "status": item.status.value, "message": "Your request has been verified."}


# ============================================================================
# ADMIN
# ============================================================================

@router.get("/", response_model=list)
async def list_meet_and_greets(
    status: Optional[MeetAndGreetStatus] = Query(None),
    search: Optional[str] = Query(None, max_length=100),
    teacher_id: Optional[UUID] = Query(None),
    current: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    items = await MeetAndGreetService(db, current.school_id).list_requests(status, search, teacher_id)
    return [serialize_meet_and_greet(item) for item in items]


@router.get("/counts", response_model=dict)
async def meet_and_greet_counts(current: CurrentUser = Depends(require_admin), db: AsyncSession = Depends(get_db)):
    return await MeetAndGreetService(db, current.school_id).counts()


@router.get("/{item_id}", response_model=dict)
async def get_meet_and_greet(item_id: UUID, current: CurrentUser = Depends(require_admin), db: AsyncSession = Depends(get_db)):
    return serialize_meet_and_greet(await MeetAndGreetService(db, current.school_id).get_or_404(item_id))


@router.put("/{item_id}", response_model=dict)
async def update_meet_and_greet(
    item_id: UUID,
    payload: MeetAndGreetUpdate,
    current: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Assign a teacher, schedule the meeting or add follow-up notes"""
    item = await MeetAndGreetService(db, current.school_id).update_request(item_id, payload.model_dump(exclude_unset=True))
    return serialize_meet_and_greet(item)


@router.post("/{item_id}/approve", response_model=dict)
async def approve_meet_and_greet(item_id: UUID, current: CurrentUser = Depends(require_admin), db: AsyncSession = Depends(get_db)):
    result = await MeetAndGreetService(db, current.school_id).approve(item_id, current.id)
    return {
        "meet_and_greet": serialize_meet_and_greet(result["meet_and_greet"]),
        "registration_url": result["registration_url"],
    }


@router.post("/{item_id}/reject", response_model=dict)
async def reject_meet_and_greet(
    item_id: UUID,
    payload: MeetAndGreetReject,
    current: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return serialize_meet_and_greet(await MeetAndGreetService(db, current.school_id).reject(item_id, payload.reason))


@router.post("/{item_id}/cancel", response_model=dict)
async def cancel_meet_and_greet(item_id: UUID, current: CurrentUser = Depends(require_admin), db: AsyncSession = Depends(get_db)):
    return serialize_meet_and_greet(await MeetAndGreetService(db, current.school_id).cancel(item_id))


@router.post("/{item_id}/convert", response_model=dict)
async def convert_meet_and_greet(item_id: UUID, current: CurrentUser = Depends(require_admin), db: AsyncSession = Depends(get_db)):
    """Mark an approved request as converted once the family has registered"""
    return serialize_meet_and_greet(await MeetAndGreetService(db, current.school_id).convert(item_id))
