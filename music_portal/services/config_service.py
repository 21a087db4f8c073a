# music_portal/services/config_service.py
"""Terms, locations, rooms, instruments, lesson types, durations and pricing packages."""
import logging
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.exceptions import ConflictError, NotFoundError, ValidationException
from ..models.tenant_specific.lesson import Lesson
from ..models.tenant_specific.school_config import (
    Instrument, LessonDuration, LessonType, Location, PricingPackage, Room, Term,
)
from ..models.tenant_specific.teacher import TeacherInstrument
from .base_service import BaseService

logger = logging.getLogger(__name__)


class NamedConfigService(BaseService):
    """Shared behaviour for catalogue rows whose name is unique per school"""

    async def ensure_unique_name(self, name: str, exclude_id: Optional[UUID] = None, message: str = None, **scope):
        stmt = self._scoped(select(self.model.id).where(func.lower(self.model.name) == name.strip().lower()))
        for key, value in scope.items():
            stmt = stmt.where(getattr(self.model, key) == value)
        if exclude_id:
            stmt = stmt.where(self.model.id != exclude_id)
        if (await self.db.execute(stmt)).first():
            raise ConflictError(message or f"A {self.resource_name.lower()} with this name already exists.")

    async def list_all(self, include_inactive: bool = True) -> List:
        stmt = self._scoped(select(self.model))
        if not include_inactive:
            stmt = stmt.where(self.model.is_active == True)  # noqa: E712
        stmt = stmt.order_by(*self.ordering())
        result = await self.db.execute(stmt)
        return result.unique().scalars().all()

    def ordering(self):
        return (self.model.name,)

    async def deactivate_or_delete(self, obj, in_use: bool) -> str:
        """Rows still referenced are deactivated; unused rows are soft deleted"""
        if in_use:
            obj.is_active = False
            await self.db.commit()
            return "deactivated"
        obj.is_deleted = True
        await self.db.commit()
        return "deleted"


# ============================================================================
# TERMS
# ============================================================================

class TermService(NamedConfigService):
    resource_name = "Term"

    def __init__(self, db: AsyncSession, school_id: UUID):
        super().__init__(Term, db, school_id)

    def ordering(self):
        return (Term.start_date,)

    async def _check_dates(self, start_date: date, end_date: date, exclude_id: Optional[UUID] = None):
        if start_date >= end_date:
            raise ValidationException("Start date must be before end date.")

        stmt = self._scoped(select(Term)).where(Term.start_date <= end_date, Term.end_date >= start_date)
        if exclude_id:
            stmt = stmt.where(Term.id != exclude_id)
        overlapping = (await self.db.execute(stmt)).scalars().first()
        if overlapping:
            raise ValidationException(f"Term dates overlap with existing term: {overlapping.name}")

    async def create_term(self, data: Dict[str, Any]) -> Term:
        await self._check_dates(data["start_date"], data["end_date"])
        await self.ensure_unique_name(data["name"])
        return await self.create(data)

    async def update_term(self, term_id: UUID, data: Dict[str, Any]) -> Term:
        term = await self.get_or_404(term_id)
        start = data.get("start_date", term.start_date)
        end = data.get("end_date", term.end_date)
        if "start_date" in data or "end_date" in data:
            await self._check_dates(start, end, exclude_id=term_id)
        if data.get("name") and data["name"] != term.name:
            await self.ensure_unique_name(data["name"], exclude_id=term_id)
        return await self.update(term_id, data)

    async def delete_term(self, term_id: UUID) -> str:
        term = await self.get_or_404(term_id)
        lesson_count = (await self.db.execute(
            select(func.count()).select_from(Lesson).where(Lesson.term_id == term_id, Lesson.is_deleted == False)  # noqa: E712
        )).scalar()
        if lesson_count:
            term.is_active = False
            await self.db.commit()
            return "deactivated"
        await self.db.delete(term)
        await self.db.commit()
        return "deleted"

    async def lesson_counts(self) -> Dict[UUID, int]:
        stmt = (
            select(Lesson.term_id, func.count())
            .where(Lesson.school_id == self.school_id, Lesson.is_deleted == False, Lesson.is_active == True)  # noqa: E712
            .group_by(Lesson.term_id)
        )
        return {term_id: count for term_id, count in (await self.db.execute(stmt)).all()}

    async def get_current(self, today: Optional[date] = None) -> Optional[Term]:
        today = today or date.today()
        stmt = self._scoped(select(Term)).where(
            Term.is_active == True, Term.start_date <= today, Term.end_date >= today  # noqa: E712
        )
        return (await self.db.execute(stmt)).scalars().first()

    async def get_upcoming(self, today: Optional[date] = None) -> List[Term]:
        today = today or date.today()
        stmt = self._scoped(select(Term)).where(
            Term.is_active == True, Term.start_date > today  # noqa: E712
        ).order_by(Term.start_date)
        return (await self.db.execute(stmt)).scalars().all()


# ============================================================================
# LOCATIONS & ROOMS
# ============================================================================

class LocationService(NamedConfigService):
    resource_name = "Location"

    def __init__(self, db: AsyncSession, school_id: UUID):
        super().__init__(Location, db, school_id)

    async def create_location(self, data: Dict[str, Any]) -> Location:
        await self.ensure_unique_name(data["name"])
        return await self.create(data)

    async def update_location(self, location_id: UUID, data: Dict[str, Any]) -> Location:
        location = await self.get_or_404(location_id)
        if data.get("name") and data["name"] != location.name:
            await self.ensure_unique_name(data["name"], exclude_id=location_id)
        return await self.update(location_id, data)

    async def delete_location(self, location_id: UUID) -> str:
        location = await self.get_or_404(location_id)
        in_use = (await self.db.execute(
            select(func.count()).select_from(Lesson).join(Room, Room.id == Lesson.room_id)
            .where(Room.location_id == location_id, Lesson.is_deleted == False)  # noqa: E712
        )).scalar() > 0
        if not in_use:
            for room in location.rooms:
                room.is_deleted = True
        return await self.deactivate_or_delete(location, in_use)


class RoomService(NamedConfigService):
    resource_name = "Room"

    def __init__(self, db: AsyncSession, school_id: UUID):
        super().__init__(Room, db, school_id)

    async def list_rooms(self, location_id: Optional[UUID] = None) -> List[Room]:
        stmt = self._scoped(select(Room))
        if location_id:
            stmt = stmt.where(Room.location_id == location_id)
        result = await self.db.execute(stmt.order_by(Room.name))
        return result.scalars().all()

    async def _check_location(self, location_id: UUID):
        location = await LocationService(self.db, self.school_id).get(location_id)
        if not location:
            raise NotFoundError("Location")

    async def create_room(self, data: Dict[str, Any]) -> Room:
        await self._check_location(data["location_id"])
        await self.ensure_unique_name(
            data["name"], message="A room with this name already exists in this location.",
            location_id=data["location_id"],
        )
        return await self.create(data)

    async def update_room(self, room_id: UUID, data: Dict[str, Any]) -> Room:
        room = await self.get_or_404(room_id)
        location_id = data.get("location_id") or room.location_id
        if data.get("location_id"):
            await self._check_location(location_id)
        if (data.get("name") and data["name"] != room.name) or location_id != room.location_id:
            await self.ensure_unique_name(
                data.get("name") or room.name, exclude_id=room_id,
                message="A room with this name already exists in this location.",
                location_id=location_id,
            )
        return await self.update(room_id, data)

    async def delete_room(self, room_id: UUID) -> str:
        room = await self.get_or_404(room_id)
        in_use = (await self.db.execute(
            select(func.count()).select_from(Lesson).where(Lesson.room_id == room_id, Lesson.is_deleted == False)  # noqa: E712
        )).scalar() > 0
        return await self.deactivate_or_delete(room, in_use)


# ============================================================================
# INSTRUMENTS, LESSON TYPES, DURATIONS
# ============================================================================

class InstrumentService(NamedConfigService):
    resource_name = "Instrument"

    def __init__(self, db: AsyncSession, school_id: UUID):
        super().__init__(Instrument, db, school_id)

    def ordering(self):
        return (Instrument.sort_order, Instrument.name)

    async def create_instrument(self, data: Dict[str, Any]) -> Instrument:
        await self.ensure_unique_name(data["name"], message="An instrument with this name already exists.")
        if data.get("sort_order") is None:
            highest = (await self.db.execute(
                self._scoped(select(func.max(Instrument.sort_order)))
            )).scalar()
            data = {**data, "sort_order": (highest or 0) + 1}
        return await self.create(data)

    async def update_instrument(self, instrument_id: UUID, data: Dict[str, Any]) -> Instrument:
        instrument = await self.get_or_404(instrument_id)
        if data.get("name") and data["name"] != instrument.name:
            await self.ensure_unique_name(
                data["name"], exclude_id=instrument_id, message="An instrument with this name already exists."
            )
        return await self.update(instrument_id, data)

    async def delete_instrument(self, instrument_id: UUID) -> str:
        instrument = await self.get_or_404(instrument_id)
        lessons = (await self.db.execute(
            select(func.count()).select_from(Lesson).where(Lesson.instrument_id == instrument_id, Lesson.is_deleted == False)  # noqa: E712
        )).scalar()
        teachers = (await self.db.execute(
            select(func.count()).select_from(TeacherInstrument).where(TeacherInstrument.instrument_id == instrument_id)
        )).scalar()
        return await self.deactivate_or_delete(instrument, bool(lessons or teachers))


class LessonTypeService(NamedConfigService):
    resource_name = "Lesson type"

    def __init__(self, db: AsyncSession, school_id: UUID):
        super().__init__(LessonType, db, school_id)

    async def create_lesson_type(self, data: Dict[str, Any]) -> LessonType:
        await self.ensure_unique_name(data["name"])
        return await self.create(data)

    async def update_lesson_type(self, lesson_type_id: UUID, data: Dict[str, Any]) -> LessonType:
        lesson_type = await self.get_or_404(lesson_type_id)
        if data.get("name") and data["name"] != lesson_type.name:
            await self.ensure_unique_name(data["name"], exclude_id=lesson_type_id)
        return await self.update(lesson_type_id, data)

    async def delete_lesson_type(self, lesson_type_id: UUID) -> str:
        lesson_type = await self.get_or_404(lesson_type_id)
        in_use = (await self.db.execute(
            select(func.count()).select_from(Lesson).where(Lesson.lesson_type_id == lesson_type_id, Lesson.is_deleted == False)  # noqa: E712
        )).scalar() > 0
        return await self.deactivate_or_delete(lesson_type, in_use)


class LessonDurationService(BaseService[LessonDuration]):
    resource_name = "Lesson duration"

    def __init__(self, db: AsyncSession, school_id: UUID):
        super().__init__(LessonDuration, db, school_id)

    @staticmethod
    def _check_range(minutes: int):
        if minutes < 15 or minutes > 180:
            raise ValidationException("Duration must be between 15 and 180 minutes.")

    async def _check_unique(self, minutes: int, exclude_id: Optional[UUID] = None):
        stmt = self._scoped(select(LessonDuration.id).where(LessonDuration.minutes == minutes))
        if exclude_id:
            stmt = stmt.where(LessonDuration.id != exclude_id)
        if (await self.db.execute(stmt)).first():
            raise ConflictError("This duration already exists.")

    async def list_all(self) -> List[LessonDuration]:
        result = await self.db.execute(self._scoped(select(LessonDuration)).order_by(LessonDuration.minutes))
        return result.scalars().all()

    async def create_duration(self, data: Dict[str, Any]) -> LessonDuration:
        self._check_range(data["minutes"])
        await self._check_unique(data["minutes"])
        return await self.create(data)

    async def update_duration(self, duration_id: UUID, data: Dict[str, Any]) -> LessonDuration:
        duration = await self.get_or_404(duration_id)
        if data.get("minutes") is not None and data["minutes"] != duration.minutes:
            self._check_range(data["minutes"])
            await self._check_unique(data["minutes"], exclude_id=duration_id)
        return await self.update(duration_id, data)

    async def delete_duration(self, duration_id: UUID) -> str:
        await self.get_or_404(duration_id)
        await self.hard_delete(duration_id)
        return "deleted"


# ============================================================================
# PRICING PACKAGES
# ============================================================================

class PricingPackageService(NamedConfigService):
    resource_name = "Pricing package"

    def __init__(self, db: AsyncSession, school_id: UUID):
        super().__init__(PricingPackage, db, school_id)

    async def list_packages(self, active_only: bool = False, search: Optional[str] = None) -> List[PricingPackage]:
        stmt = self._scoped(select(PricingPackage))
        if active_only:
            stmt = stmt.where(PricingPackage.is_active == True)  # noqa: E712
        if search:
            term = f"%{search.strip().lower()}%"
            stmt = stmt.where(or_(
                func.lower(PricingPackage.name).like(term),
                func.lower(PricingPackage.description).like(term),
            ))
        result = await self.db.execute(stmt.order_by(PricingPackage.name))
        return result.scalars().all()

    async def create_package(self, data: Dict[str, Any]) -> PricingPackage:
        if not data.get("items"):
            raise ValidationException("At least one item is required in the package.")
        await self.ensure_unique_name(data["name"])
        return await self.create({**data, "price": Decimal(str(data["price"]))})

    async def update_package(self, package_id: UUID, data: Dict[str, Any]) -> PricingPackage:
        package = await self.get_or_404(package_id)
        if "items" in data and not data["items"]:
            raise ValidationException("At least one item is required in the package.")
        if data.get("name") and data["name"] != package.name:
            await self.ensure_unique_name(data["name"], exclude_id=package_id)
        if data.get("price") is not None:
            data = {**data, "price": Decimal(str(data["price"]))}
        return await self.update(package_id, data)

    async def toggle_status(self, package_id: UUID) -> PricingPackage:
        package = await self.get_or_404(package_id)
        return await self.update(package_id, {"is_active": not package.is_active})

    async def delete_package(self, package_id: UUID) -> str:
        await self.get_or_404(package_id)
        await self.soft_delete(package_id)
        return "deleted"
