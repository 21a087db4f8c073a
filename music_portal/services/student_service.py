# music_portal/services/student_service.py
import logging
from datetime import date
from typing import Any, Dict, Optional
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.exceptions import NotFoundError, ValidationException
from ..core.security_utils import like_pattern
from ..models.tenant_specific.family import Family
from ..models.tenant_specific.student import AgeGroup, Student
from ..utils.scheduling import age_on
from .base_service import BaseService

logger = logging.getLogger(__name__)


def calculate_age_group(birth_date: date, today: Optional[date] = None) -> AgeGroup:
    age = age_on(birth_date, today)
    if age <= 5:
        return AgeGroup.PRESCHOOL
    if age <= 11:
        return AgeGroup.KIDS
    if age <= 17:
        return AgeGroup.TEENS
    return AgeGroup.ADULT


def serialize_student(student: Student) -> Dict[str, Any]:
    return {
        "id": str(student.id),
        "family_id": str(student.family_id) if student.family_id else None,
        "first_name": student.first_name,
        "last_name": student.last_name,
        "full_name": student.full_name,
        "birth_date": student.birth_date.isoformat(),
        "age": age_on(student.birth_date),
        "age_group": student.age_group.value,
        "notes": student.notes,
        "is_active": student.is_active,
        "created_at": student.created_at.isoformat() if student.created_at else None,
    }


class StudentService(BaseService[Student]):
    resource_name = "Student"

    def __init__(self, db: AsyncSession, school_id: Optional[UUID]):
        super().__init__(Student, db, school_id)

    async def list_students(
        self,
        page: int = 1,
        size: int = 20,
        search: Optional[str] = None,
        family_id: Optional[UUID] = None,
        age_group: Optional[AgeGroup] = None,
        is_active: Optional[bool] = None,
    ) -> Dict[str, Any]:
        stmt = self._scoped(select(Student))
        if search:
            pattern = like_pattern(search)
            stmt = stmt.where(or_(
                Student.first_name.ilike(pattern, escape="\\"),
                Student.last_name.ilike(pattern, escape="\\"),
            ))
        if family_id:
            stmt = stmt.where(Student.family_id == family_id)
        if age_group:
            stmt = stmt.where(Student.age_group == age_group)
        if is_active is not None:
            stmt = stmt.where(Student.is_active == is_active)

        total = (await self.db.execute(select(func.count()).select_from(stmt.subquery()))).scalar() or 0
        stmt = stmt.order_by(Student.last_name, Student.first_name).offset((page - 1) * size).limit(size)
        students = (await self.db.execute(stmt)).scalars().all()
        return {
            "items": [serialize_student(student) for student in students],
            "total": total,
            "page": page,
            "size": size,
            "total_pages": (total + size - 1) // size,
            "has_next": page * size < total,
            "has_previous": page > 1,
        }

    async def _check_family(self, family_id: Optional[UUID]):
        if not family_id:
            return
        result = await self.db.execute(
            select(Family.id).where(
                Family.id == family_id, Family.school_id == self.school_id, Family.is_deleted == False  # noqa: E712
            )
        )
        if not result.first():
            raise NotFoundError("Family")

    @staticmethod
    def _check_birth_date(birth_date: date):
        if birth_date > date.today():
            raise ValidationException("Birth date cannot be in the future.")

    async def create_student(self, data: Dict[str, Any]) -> Student:
        self._check_birth_date(data["birth_date"])
        await self._check_family(data.get("family_id"))
        student = await self.create({
            "first_name": data["first_name"].strip(),
            "last_name": data["last_name"].strip(),
            "birth_date": data["birth_date"],
            "age_group": calculate_age_group(data["birth_date"]),
            "family_id": data.get("family_id"),
            "notes": data.get("notes"),
        })
        logger.info(f"Created student {student.id} in school {self.school_id}")
        return student

    async def update_student(self, student_id: UUID, data: Dict[str, Any]) -> Student:
        await self.get_or_404(student_id)
        changes = {key: value for key, value in data.items() if value is not None or key in ("notes", "family_id")}
        if "family_id" in changes:
            await self._check_family(changes["family_id"])
        if changes.get("birth_date"):
            self._check_birth_date(changes["birth_date"])
            changes["age_group"] = calculate_age_group(changes["birth_date"])
        for key in ("first_name", "last_name"):
            if changes.get(key):
                changes[key] = changes[key].strip()
        return await self.update(student_id, changes)

    async def delete_student(self, student_id: UUID) -> None:
        student = await self.get_or_404(student_id)
        student.is_active = False
        await self.db.commit()
        logger.info(f"Deactivated student {student_id}")

    async def assign_family(self, student_id: UUID, family_id: UUID) -> Student:
        await self.get_or_404(student_id)
        await self._check_family(family_id)
        return await self.update(student_id, {"family_id": family_id})

    async def remove_family(self, student_id: UUID) -> Student:
        student = await self.get_or_404(student_id)
        if not student.family_id:
            raise ValidationException("Student is not assigned to a family.")
        return await self.update(student_id, {"family_id": None})

    async def update_all_age_groups(self, today: Optional[date] = None) -> int:
        """Recompute age groups after birthdays; returns how many students moved group"""
        students = (await self.db.execute(self._scoped(select(Student)))).scalars().all()
        updated = 0
        for student in students:
            age_group = calculate_age_group(student.birth_date, today)
            if student.age_group != age_group:
                student.age_group = age_group
                updated += 1
        await self.db.commit()
        if updated:
            logger.info(f"Updated age group for {updated} students in school {self.school_id}")
        return updated
