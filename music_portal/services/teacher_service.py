# music_portal/services/teacher_service.py
import logging
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.exceptions import ConflictError, NotFoundError, ValidationException
from ..core.security_utils import like_pattern
from ..models.tenant_specific.school_config import Instrument
from ..models.tenant_specific.teacher import Teacher, TeacherInstrument
from ..models.tenant_specific.user import User, UserRole
from .auth_service import AuthService
from .base_service import BaseService

logger = logging.getLogger(__name__)


def serialize_teacher(teacher: Teacher) -> Dict[str, Any]:
    user = teacher.user
    return {
        "id": str(teacher.id),
        "user_id": str(teacher.user_id),
        "email": user.email,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "full_name": user.full_name,
        "phone": user.phone,
        "bio": teacher.bio,
        "is_active": teacher.is_active,
        "instruments": [
            {
                "id": str(link.instrument_id),
                "name": link.instrument.name if link.instrument else None,
                "is_primary": link.is_primary,
            }
            for link in sorted(teacher.instruments, key=lambda link: (not link.is_primary, link.instrument.name if link.instrument else ""))
        ],
        "created_at": teacher.created_at.isoformat() if teacher.created_at else None,
    }


class TeacherService(BaseService[Teacher]):
    resource_name = "Teacher"

    def __init__(self, db: AsyncSession, school_id: UUID):
        super().__init__(Teacher, db, school_id)

    async def get_by_user_id(self, user_id: UUID) -> Optional[Teacher]:
        result = await self.db.execute(self._scoped(select(Teacher).where(Teacher.user_id == user_id)))
        return result.unique().scalar_one_or_none()

    async def list_teachers(
        self,
        page: int = 1,
        size: int = 20,
        search: Optional[str] = None,
        is_active: Optional[bool] = None,
        instrument_id: Optional[UUID] = None,
    ) -> Dict[str, Any]:
        stmt = self._scoped(select(Teacher)).join(User, User.id == Teacher.user_id)
        if search:
            pattern = like_pattern(search)
            stmt = stmt.where(or_(
                User.first_name.ilike(pattern, escape="\\"),
                User.last_name.ilike(pattern, escape="\\"),
                User.email.ilike(pattern, escape="\\"),
            ))
        if is_active is not None:
            stmt = stmt.where(Teacher.is_active == is_active)
        if instrument_id:
            stmt = stmt.where(Teacher.id.in_(
                select(TeacherInstrument.teacher_id).where(TeacherInstrument.instrument_id == instrument_id)
            ))

        total = (await self.db.execute(select(func.count()).select_from(stmt.subquery()))).scalar() or 0
        stmt = stmt.order_by(User.last_name, User.first_name).offset((page - 1) * size).limit(size)
        teachers = (await self.db.execute(stmt)).unique().scalars().all()
        return {
            "items": [serialize_teacher(teacher) for teacher in teachers],
            "total": total,
            "page": page,
            "size": size,
            "total_pages": (total + size - 1) // size,
            "has_next": page * size < total,
            "has_previous": page > 1,
        }

    async def _validate_instruments(self, instrument_ids: List[UUID]):
        unique_ids = set(instrument_ids)
        if not unique_ids:
            return
        result = await self.db.execute(
            select(func.count()).select_from(Instrument).where(
                Instrument.id.in_(unique_ids),
                Instrument.school_id == self.school_id,
                Instrument.is_deleted == False,  # noqa: E712
            )
        )
        if result.scalar() != len(unique_ids):
            raise ValidationException("One or more instrument IDs are invalid.")

    async def create_teacher(self, data: Dict[str, Any]) -> Teacher:
        instrument_ids = list(dict.fromkeys(data.get("instrument_ids") or []))
        primary_id = data.get("primary_instrument_id")
        if primary_id and primary_id not in instrument_ids:
            instrument_ids.append(primary_id)
        await self._validate_instruments(instrument_ids)

        user = await AuthService(self.db).create_user(
            school_id=self.school_id,
            email=data["email"],
            password=data["password"],
            first_name=data["first_name"],
            last_name=data["last_name"],
            role=UserRole.TEACHER,
            phone=data.get("phone"),
            commit=False,
        )
        teacher = Teacher(school_id=self.school_id, user_id=user.id, bio=data.get("bio"))
        self.db.add(teacher)
        await self.db.flush()

        if instrument_ids and not primary_id:
            primary_id = instrument_ids[0]
        for instrument_id in instrument_ids:
            self.db.add(TeacherInstrument(
                teacher_id=teacher.id,
                instrument_id=instrument_id,
                is_primary=instrument_id == primary_id,
            ))

        await self.commit_or_conflict("A user with this email already exists.")
        logger.info(f"Created teacher {teacher.id} for school {self.school_id}")
        return await self.get(teacher.id)

    async def update_teacher(self, teacher_id: UUID, data: Dict[str, Any]) -> Teacher:
        teacher = await self.get_or_404(teacher_id)
        user = teacher.user

        if data.get("email") and data["email"].strip().lower() != user.email:
            email = data["email"].strip().lower()
            existing = await self.db.execute(
                select(User.id).where(User.school_id == self.school_id, User.email == email, User.id != user.id)
            )
            if existing.first():
                raise ConflictError("A user with this email already exists.")
            user.email = email

        for key in ("first_name", "last_name", "phone"):
            if key in data and data[key] is not None:
                setattr(user, key, data[key].strip() if key != "phone" else data[key])
        if "bio" in data:
            teacher.bio = data["bio"]
        if data.get("is_active") is not None:
            teacher.is_active = data["is_active"]
            user.is_active = data["is_active"]

        await self.commit_or_conflict("A user with this email already exists.")
        return await self.get(teacher_id)

    async def delete_teacher(self, teacher_id: UUID) -> None:
        """Teachers are deactivated rather than removed so lesson history keeps its author"""
        teacher = await self.get_or_404(teacher_id)
        teacher.is_active = False
        teacher.user.is_active = False
        await self.db.commit()
        logger.info(f"Deactivated teacher {teacher_id}")

    async def _get_link(self, teacher_id: UUID, instrument_id: UUID) -> Optional[TeacherInstrument]:
        result = await self.db.execute(
            select(TeacherInstrument).where(
                TeacherInstrument.teacher_id == teacher_id,
                TeacherInstrument.instrument_id == instrument_id,
            )
        )
        return result.unique().scalar_one_or_none()

    async def assign_instrument(self, teacher_id: UUID, instrument_id: UUID, is_primary: bool = False) -> Teacher:
        teacher = await self.get_or_404(teacher_id)
        instrument = (await self.db.execute(
            select(Instrument).where(
                Instrument.id == instrument_id,
                Instrument.school_id == self.school_id,
                Instrument.is_deleted == False,  # noqa: E712
            )
        )).scalar_one_or_none()
        if not instrument:
            raise NotFoundError("Instrument")
        if await self._get_link(teacher_id, instrument_id):
            raise ConflictError("Instrument is already assigned to this teacher.")

        is_primary = is_primary or not teacher.instruments
        if is_primary:
            for link in teacher.instruments:
                link.is_primary = False
        self.db.add(TeacherInstrument(teacher_id=teacher_id, instrument_id=instrument_id, is_primary=is_primary))
        await self.commit_or_conflict("Instrument is already assigned to this teacher.")
        return await self.get(teacher_id)

    async def remove_instrument(self, teacher_id: UUID, instrument_id: UUID) -> Teacher:
        await self.get_or_404(teacher_id)
        link = await self._get_link(teacher_id, instrument_id)
        if not link:
            raise NotFoundError("Instrument assignment")
        was_primary = link.is_primary
        await self.db.delete(link)
        await self.db.flush()

        if was_primary:
            remaining = (await self.db.execute(
                select(TeacherInstrument).where(TeacherInstrument.teacher_id == teacher_id)
                .order_by(TeacherInstrument.created_at)
            )).unique().scalars().first()
            if remaining:
                remaining.is_primary = True

        await self.db.commit()
        return await self.get(teacher_id)

    async def set_primary_instrument(self, teacher_id: UUID, instrument_id: UUID) -> Teacher:
        teacher = await self.get_or_404(teacher_id)
        if not any(link.instrument_id == instrument_id for link in teacher.instruments):
            raise NotFoundError("Instrument assignment")
        for link in teacher.instruments:
            link.is_primary = link.instrument_id == instrument_id
        await self.db.commit()
        return await self.get(teacher_id)
