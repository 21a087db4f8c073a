# music_portal/routers/config.py
"""School configuration: terms, locations, rooms, instruments, lesson types, durations, pricing."""
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.auth import CurrentUser, get_current_user, require_admin
from ..core.database import get_db
from ..core.exceptions import NotFoundError
from ..schemas import config_schemas as schemas
from ..services.config_service import (
    InstrumentService, LessonDurationService, LessonTypeService, LocationService,
    PricingPackageService, RoomService, TermService,
)

router = APIRouter(prefix="/api/v1/config", tags=["School Configuration"])


def _removed(outcome: str, resource: str) -> dict:
    return {"status": outcome, "message": f"{resource} {outcome}."}


# ============================================================================
# TERMS
# ============================================================================

@router.get("/terms", response_model=List[schemas.Term])
async def list_terms(
    include_inactive: bool = Query(True),
    current: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    service = TermService(db, current.school_id)
    counts = await service.lesson_counts()
    return [
        schemas.Term.model_validate(term).model_copy(update={"lesson_count": counts.get(term.id, 0)})
        for term in await service.list_all(include_inactive)
    ]


@router.get("/terms/current", response_model=Optional[schemas.Term])
async def current_term(current: CurrentUser = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    """Term covering today, or null between terms"""
    return await TermService(db, current.school_id).get_current()


@router.get("/terms/upcoming", response_model=List[schemas.Term])
async def upcoming_terms(current: CurrentUser = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    return await TermService(db, current.school_id).get_upcoming()


@router.get("/terms/{term_id}", response_model=schemas.Term)
async def get_term(term_id: UUID, current: CurrentUser = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    return await TermService(db, current.school_id).get_or_404(term_id)


@router.post("/terms", response_model=schemas.Term, status_code=status.HTTP_201_CREATED)
async def create_term(
    payload: schemas.TermCreate,
    current: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await TermService(db, current.school_id).create_term(payload.model_dump())


@router.put("/terms/{term_id}", response_model=schemas.Term)
async def update_term(
    term_id: UUID,
    payload: schemas.TermUpdate,
    current: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await TermService(db, current.school_id).update_term(term_id, payload.model_dump(exclude_unset=True))


@router.delete("/terms/{term_id}", response_model=dict)
async def delete_term(term_id: UUID, current: CurrentUser = Depends(require_admin), db: AsyncSession = Depends(get_db)):
    """Terms with lessons are deactivated; unused terms are removed"""
    return _removed(await TermService(db, current.school_id).delete_term(term_id), "Term")


# ============================================================================
# LOCATIONS & ROOMS
# ============================================================================

@router.get("/locations", response_model=List[schemas.Location])
async def list_locations(current: CurrentUser = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    return await LocationService(db, current.school_id).list_all()


@router.post("/locations", response_model=schemas.Location, status_code=status.HTTP_201_CREATED)
async def create_location(
    payload: schemas.LocationCreate,
    current: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await LocationService(db, current.school_id).create_location(payload.model_dump())


@router.put("/locations/{location_id}", response_model=schemas.Location)
async def update_location(
    location_id: UUID,
    payload: schemas.LocationUpdate,
    current: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await LocationService(db, current.school_id).update_location(
        location_id, payload.model_dump(exclude_unset=True)
    )


@router.delete("/locations/{location_id}", response_model=dict)
async def delete_location(location_id: UUID, current: CurrentUser = Depends(require_admin), db: AsyncSession = Depends(get_db)):
    return _removed(await LocationService(db, current.school_id).delete_location(location_id), "Location")


@router.get("/rooms", response_model=List[schemas.Room])
async def list_rooms(
    location_id: Optional[UUID] = Query(None),
    current: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await RoomService(db, current.school_id).list_rooms(location_id)


@router.post("/rooms", response_model=schemas.Room, status_code=status.HTTP_201_CREATED)
async def create_room(
    payload: schemas.RoomCreate,
    current: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await RoomService(db, current.school_id).create_room(payload.model_dump())


@router.put("/rooms/{room_id}", response_model=schemas.Room)
async def update_room(
    room_id: UUID,
    payload: schemas.RoomUpdate,
    current: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await RoomService(db, current.school_id).update_room(room_id, payload.model_dump(exclude_unset=True))


@router.delete("/rooms/{room_id}", response_model=dict)
async def delete_room(room_id: UUID, current: CurrentUser = Depends(require_admin), db: AsyncSession = Depends(get_db)):
    return _removed(await RoomService(db, current.school_id).delete_room(room_id), "Room")


# ============================================================================
# INSTRUMENTS
# ============================================================================

@router.get("/instruments", response_model=List[schemas.Instrument])
async def list_instruments(current: CurrentUser = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    return await InstrumentService(db, current.school_id).list_all()


@router.post("/instruments", response_model=schemas.Instrument, status_code=status.HTTP_201_CREATED)
async def create_instrument(
    payload: schemas.InstrumentCreate,
    current: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await InstrumentService(db, current.school_id).create_instrument(payload.model_dump())


@router.put("/instruments/{instrument_id}", response_model=schemas.Instrument)
async def update_instrument(
    instrument_id: UUID,
    payload: schemas.InstrumentUpdate,
    current: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await InstrumentService(db, current.school_id).update_instrument(
        instrument_id, payload.model_dump(exclude_unset=True)
    )


@router.delete("/instruments/{instrument_id}", response_model=dict)
async def delete_instrument(instrument_id: UUID, current: CurrentUser = Depends(require_admin), db: AsyncSession = Depends(get_db)):
    return _removed(await InstrumentService(db, current.school_id).delete_instrument(instrument_id), "Instrument")


# ============================================================================
# LESSON TYPES & DURATIONS
# ============================================================================

@router.get("/lesson-types", response_model=List[schemas.LessonType])
async def list_lesson_types(current: CurrentUser = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    return await LessonTypeService(db, current.school_id).list_all()


@router.post("/lesson-types", response_model=schemas.LessonType, status_code=status.HTTP_201_CREATED)
async def create_lesson_type(
    payload: schemas.LessonTypeCreate,
    current: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await LessonTypeService(db, current.school_id).create_lesson_type(payload.model_dump())


@router.put("/lesson-types/{lesson_type_id}", response_model=schemas.LessonType)
async def update_lesson_type(
    lesson_type_id: UUID,
    payload: schemas.LessonTypeUpdate,
    current: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await LessonTypeService(db, current.school_id).update_lesson_type(
        lesson_type_id, payload.model_dump(exclude_unset=True)
    )


@router.delete("/lesson-types/{lesson_type_id}", response_model=dict)
async def delete_lesson_type(lesson_type_id: UUID, current: CurrentUser = Depends(require_admin), db: AsyncSession = Depends(get_db)):
    return _removed(await LessonTypeService(db, current.school_id).delete_lesson_type(lesson_type_id), "Lesson type")


@router.get("/durations", response_model=List[schemas.LessonDuration])
async def list_durations(current: CurrentUser = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    return await LessonDurationService(db, current.school_id).list_all()


@router.post("/durations", response_model=schemas.LessonDuration, status_code=status.HTTP_201_CREATED)
async def create_duration(
    payload: schemas.LessonDurationCreate,
    current: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await LessonDurationService(db, current.school_id).create_duration(payload.model_dump())


@router.put("/durations/{duration_id}", response_model=schemas.LessonDuration)
async def update_duration(
    duration_id: UUID,
    payload: schemas.LessonDurationUpdate,
    current: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await LessonDurationService(db, current.school_id).update_duration(
        duration_id, payload.model_dump(exclude_unset=True)
    )


@router.delete("/durations/{duration_id}", response_model=dict)
async def delete_duration(duration_id: UUID, current: CurrentUser = Depends(require_admin), db: AsyncSession = Depends(get_db)):
    return _removed(await LessonDurationService(db, current.school_id).delete_duration(duration_id), "Lesson duration")


# ============================================================================
# PRICING PACKAGES
# ============================================================================

@router.get("/pricing-packages", response_model=List[schemas.PricingPackage])
async def list_pricing_packages(
    active_only: bool = Query(False),
    search: Optional[str] = Query(None, max_length=100),
    current: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await PricingPackageService(db, current.school_id).list_packages(active_only, search)


@router.get("/pricing-packages/{package_id}", response_model=schemas.PricingPackage)
async def get_pricing_package(package_id: UUID, current: CurrentUser = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    package = await PricingPackageService(db, current.school_id).get(package_id)
    if not package:
        raise NotFoundError("Pricing package")
    return package


@router.post("/pricing-packages", response_model=schemas.PricingPackage, status_code=status.HTTP_201_CREATED)
async def create_pricing_package(
    payload: schemas.PricingPackageCreate,
    current: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await PricingPackageService(db, current.school_id).create_package(payload.model_dump())


@router.put("/pricing-packages/{package_id}", response_model=schemas.PricingPackage)
async def update_pricing_package(
    package_id: UUID,
    payload: schemas.PricingPackageUpdate,
    current: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await PricingPackageService(db, current.school_id).update_package(
        package_id, payload.model_dump(exclude_unset=True)
    )


@router.patch("/pricing-packages/{package_id}/toggle", response_model=schemas.PricingPackage)
async def toggle_pricing_package(package_id: UUID, current: CurrentUser = Depends(require_admin), db: AsyncSession = Depends(get_db)):
    return await PricingPackageService(db, current.school_id).toggle_status(package_id)


@router.delete("/pricing-packages/{package_id}", response_model=dict)
async def delete_pricing_package(package_id: UUID, current: CurrentUser = Depends(require_admin), db: AsyncSession = Depends(get_db)):
    return _removed(await PricingPackageService(db, current.school_id).delete_package(package_id), "Pricing package")
