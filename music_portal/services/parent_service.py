# music_portal/services/parent_service.py
import logging
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.exceptions import ConflictError, NotFoundError, PermissionDenied, ValidationException
from ..core.security_utils import like_pattern
from ..models.tenant_specific.family import Family, Parent
from ..models.tenant_specific.student import Student
from ..models.tenant_specific.user import User, UserRole
from .auth_service import AuthService
from .base_service import BaseService

logger = logging.getLogger(__name__)

CONTACT_FIELDS = (
    "contact_1_name", "contact_1_phone", "contact_1_email", "contact_1_relationship",
    "contact_2_name", "contact_2_phone", "contact_2_email", "contact_2_relationship",
    "emergency_name", "emergency_phone", "emergency_relationship",
)


def serialize_parent(parent: Parent) -> Dict[str, Any]:
    user = parent.user
    data = {
        "id": str(parent.id),
        "user_id": str(parent.user_id),
        "family_id": str(parent.family_id) if parent.family_id else None,
        "is_primary": parent.is_primary,
        "email": user.email,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "full_name": user.full_name,
        "phone": user.phone,
        "is_active": user.is_active,
        "created_at": parent.created_at.isoformat() if parent.created_at else None,
    }
    data.update({field: getattr(parent, field) for field in CONTACT_FIELDS})
    return data


class ParentService(BaseService[Parent]):
    resource_name = "Parent"

    def __init__(self, db: AsyncSession, school_id: UUID):
        super().__init__(Parent, db, school_id)

    async def get_by_user_id(self, user_id: UUID) -> Optional[Parent]:
        result = await self.db.execute(self._scoped(select(Parent).where(Parent.user_id == user_id)))
        return result.unique().scalar_one_or_none()

    async def require_for_user(self, user_id: UUID) -> Parent:
        parent = await self.get_by_user_id(user_id)
        if not parent:
            raise NotFoundError("Parent", "Parent profile not found.")
        return parent

    async def list_parents(
        self,
        page: int = 1,
        size: int = 20,
        search: Optional[str] = None,
        family_id: Optional[UUID] = None,
    ) -> Dict[str, Any]:
        stmt = self._scoped(select(Parent)).join(User, User.id == Parent.user_id)
        if search:
            pattern = like_pattern(search)
            stmt = stmt.where(or_(
                User.first_name.ilike(pattern, escape="\\"),
                User.last_name.ilike(pattern, escape="\\"),
                User.email.ilike(pattern, escape="\\"),
            ))
        if family_id:
            stmt = stmt.where(Parent.family_id == family_id)

        total = (await self.db.execute(select(func.count()).select_from(stmt.subquery()))).scalar() or 0
        stmt = stmt.order_by(User.last_name, User.first_name).offset((page - 1) * size).limit(size)
        parents = (await self.db.execute(stmt)).unique().scalars().all()
        return {
            "items": [serialize_parent(parent) for parent in parents],
            "total": total,
            "page": page,
            "size": size,
            "total_pages": (total + size - 1) // size,
            "has_next": page * size < total,
            "has_previous": page > 1,
        }

    async def _get_family(self, family_id: UUID) -> Family:
        result = await self.db.execute(
            select(Family).where(
                Family.id == family_id, Family.school_id == self.school_id, Family.is_deleted == False  # noqa: E712
            )
        )
        family = result.scalar_one_or_none()
        if not family:
            raise NotFoundError("Family")
        return family

    async def create_parent(self, data: Dict[str, Any]) -> Parent:
        family = await self._get_family(data["family_id"]) if data.get("family_id") else None

        user = await AuthService(self.db).create_user(
            school_id=self.school_id,
            email=data["email"],
            password=data["password"],
            first_name=data["first_name"],
            last_name=data["last_name"],
            role=UserRole.PARENT,
            phone=data.get("phone"),
            commit=False,
        )
        parent = Parent(
            school_id=self.school_id,
            user_id=user.id,
            family_id=family.id if family else None,
            is_primary=bool(family) and not family.parents,
            **{field: data.get(field) for field in CONTACT_FIELDS},
        )
        self.db.add(parent)
        await self.commit_or_conflict("A user with this email already exists.")
        logger.info(f"Created parent {parent.id} in school {self.school_id}")
        return await self.get(parent.id)

    async def update_parent(self, parent_id: UUID, data: Dict[str, Any]) -> Parent:
        parent = await self.get_or_404(parent_id)
        user = parent.user

        if data.get("email") and data["email"].strip().lower() != user.email:
            email = data["email"].strip().lower()
            existing = await self.db.execute(
                select(User.id).where(User.school_id == self.school_id, User.email == email, User.id != user.id)
            )
            if existing.first():
                raise ConflictError("A user with this email already exists.")
            user.email = email
        for key in ("first_name", "last_name"):
            if data.get(key):
                setattr(user, key, data[key].strip())
        if "phone" in data:
            user.phone = data["phone"]
        for field in CONTACT_FIELDS:
            if field in data:
                setattr(parent, field, data[field])

        await self.commit_or_conflict("A user with this email already exists.")
        return await self.get(parent_id)

    async def delete_parent(self, parent_id: UUID) -> None:
        parent = await self.get_or_404(parent_id)
        if parent.family_id and parent.is_primary:
            family = await self._get_family(parent.family_id)
            others = [member for member in family.parents if member.id != parent.id]
            if others or family.students:
                raise ValidationException(
                    "Cannot delete the primary parent of a family with other members. "
                    "Assign a new primary parent first."
                )

        parent.is_deleted = True
        parent.is_primary = False
        parent.family_id = None
        parent.user.is_active = False
        await self.db.commit()
        logger.info(f"Deleted parent {parent_id}")

    async def get_children(self, parent: Parent) -> List[Student]:
        if not parent.family_id:
            return []
        result = await self.db.execute(
            select(Student).where(
                Student.school_id == self.school_id,
                Student.family_id == parent.family_id,
                Student.is_deleted == False,  # noqa: E712
                Student.is_active == True,  # noqa: E712
            ).order_by(Student.first_name)
        )
        return result.scalars().all()

    async def ensure_child(self, parent: Parent, student_id: UUID, message: str = "You can only access your own children.") -> Student:
        """Guard parent access to a student record"""
        children = await self.get_children(parent)
        for child in children:
            if child.id == student_id:
                return child
        raise PermissionDenied(message)
