# music_portal/services/family_service.py
import logging
from typing import Any, Dict, Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.exceptions import ConflictError, NotFoundError, ValidationException
from ..core.security_utils import like_pattern
from ..models.tenant_specific.family import Family, Parent
from ..models.tenant_specific.student import Student
from .base_service import BaseService
from .student_service import serialize_student

logger = logging.getLogger(__name__)


def serialize_parent_summary(parent: Parent) -> Dict[str, Any]:
    return {
        "id": str(parent.id),
        "user_id": str(parent.user_id),
        "first_name": parent.user.first_name,
        "last_name": parent.user.last_name,
        "email": parent.user.email,
        "phone": parent.user.phone,
        "is_primary": parent.is_primary,
    }


def serialize_family(family: Family, detailed: bool = True) -> Dict[str, Any]:
    primary = family.primary_parent
    data = {
        "id": str(family.id),
        "name": family.name,
        "is_active": family.is_active,
        "primary_parent_id": str(primary.id) if primary else None,
        "parent_count": len(family.parents),
        "student_count": len(family.students),
        "created_at": family.created_at.isoformat() if family.created_at else None,
    }
    if detailed:
        data["parents"] = [serialize_parent_summary(parent) for parent in family.parents]
        data["students"] = [serialize_student(student) for student in family.students]
    return data


class FamilyService(BaseService[Family]):
    resource_name = "Family"

    def __init__(self, db: AsyncSession, school_id: UUID):
        super().__init__(Family, db, school_id)

    async def list_families(
        self,
        page: int = 1,
        size: int = 20,
        search: Optional[str] = None,
        is_active: Optional[bool] = None,
    ) -> Dict[str, Any]:
        stmt = self._scoped(select(Family))
        if search:
            stmt = stmt.where(Family.name.ilike(like_pattern(search), escape="\\"))
        if is_active is not None:
            stmt = stmt.where(Family.is_active == is_active)

        total = (await self.db.execute(select(func.count()).select_from(stmt.subquery()))).scalar() or 0
        stmt = stmt.order_by(Family.name).offset((page - 1) * size).limit(size)
        families = (await self.db.execute(stmt)).scalars().all()
        return {
            "items": [serialize_family(family, detailed=False) for family in families],
            "total": total,
            "page": page,
            "size": size,
            "total_pages": (total + size - 1) // size,
            "has_next": page * size < total,
            "has_previous": page > 1,
        }

    async def _ensure_unique_name(self, name: str, exclude_id: Optional[UUID] = None):
        stmt = self._scoped(select(Family.id).where(func.lower(Family.name) == name.strip().lower()))
        if exclude_id:
            stmt = stmt.where(Family.id != exclude_id)
        if (await self.db.execute(stmt)).first():
            raise ConflictError("A family with this name already exists.")

    async def _get_parent(self, parent_id: UUID) -> Parent:
        result = await self.db.execute(
            select(Parent).where(
                Parent.id == parent_id, Parent.school_id == self.school_id, Parent.is_deleted == False  # noqa: E712
            )
        )
        parent = result.unique().scalar_one_or_none()
        if not parent:
            raise NotFoundError("Parent")
        return parent

    async def _get_student(self, student_id: UUID) -> Student:
        result = await self.db.execute(
            select(Student).where(
                Student.id == student_id, Student.school_id == self.school_id, Student.is_deleted == False  # noqa: E712
            )
        )
        student = result.scalar_one_or_none()
        if not student:
            raise NotFoundError("Student")
        return student

    async def _make_primary(self, family: Family, parent: Parent):
        for member in family.parents:
            if member.id != parent.id:
                member.is_primary = False
        parent.family_id = family.id
        parent.is_primary = True

    async def create_family(self, data: Dict[str, Any]) -> Family:
        name = data["name"].strip()
        await self._ensure_unique_name(name)
        parent = await self._get_parent(data["primary_parent_id"]) if data.get("primary_parent_id") else None

        family = Family(school_id=self.school_id, name=name)
        self.db.add(family)
        await self.db.flush()
        if parent:
            parent.family_id = family.id
            parent.is_primary = True

        await self.commit_or_conflict("A family with this name already exists.")
        logger.info(f"Created family {family.id} in school {self.school_id}")
        return await self.get(family.id)

    async def update_family(self, family_id: UUID, data: Dict[str, Any]) -> Family:
        family = await self.get_or_404(family_id)
        if data.get("name") and data["name"].strip() != family.name:
            await self._ensure_unique_name(data["name"], exclude_id=family_id)
            family.name = data["name"].strip()
        if data.get("is_active") is not None:
            family.is_active = data["is_active"]
        if data.get("primary_parent_id"):
            parent = await self._get_parent(data["primary_parent_id"])
            if parent.family_id != family.id:
                raise ValidationException("Primary parent must belong to this family.")
            await self._make_primary(family, parent)

        await self.commit_or_conflict("A family with this name already exists.")
        return await self.get(family_id)

    async def delete_family(self, family_id: UUID) -> None:
        family = await self.get_or_404(family_id)
        if family.parents or family.students:
            raise ValidationException(
                "Cannot delete a family with members. Remove all parents and students first."
            )
        family.is_deleted = True
        family.is_active = False
        await self.db.commit()
        logger.info(f"Deleted family {family_id}")

    async def add_student(self, family_id: UUID, student_id: UUID) -> Family:
        await self.get_or_404(family_id)
        student = await self._get_student(student_id)
        if student.family_id == family_id:
            raise ConflictError("Student is already in this family.")
        student.family_id = family_id
        await self.db.commit()
        return await self.get(family_id)

    async def remove_student(self, family_id: UUID, student_id: UUID) -> Family:
        await self.get_or_404(family_id)
        student = await self._get_student(student_id)
        if student.family_id != family_id:
            raise ValidationException("Student is not in this family.")
        student.family_id = None
        await self.db.commit()
        return await self.get(family_id)

    async def add_parent(self, family_id: UUID, parent_id: UUID, is_primary: bool = False) -> Family:
        family = await self.get_or_404(family_id)
        parent = await self._get_parent(parent_id)
        if parent.family_id == family_id:
            raise ConflictError("Parent is already in this family.")
        if parent.family_id and parent.is_primary:
            raise ValidationException("Parent is the primary contact of another family.")

        parent.family_id = family_id
        parent.is_primary = False
        if is_primary or not family.parents:
            await self._make_primary(family, parent)
        await self.db.commit()
        return await self.get(family_id)

    async def remove_parent(self, family_id: UUID, parent_id: UUID) -> Family:
        family = await self.get_or_404(family_id)
        parent = await self._get_parent(parent_id)
        if parent.family_id != family_id:
            raise ValidationException("Parent is not in this family.")
        if len(family.parents) <= 1:
            raise ValidationException("Cannot remove the last parent from a family.")

        was_primary = parent.is_primary
        parent.family_id = None
        parent.is_primary = False
        if was_primary:
            successor = next(member for member in family.parents if member.id != parent.id)
            successor.is_primary = True

        await self.db.commit()
        logger.info(f"Removed parent {parent_id} from family {family_id}")
        return await self.get(family_id)
