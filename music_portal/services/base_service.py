# music_portal/services/base_service.py
"""Base service with common CRUD operations scoped to one school."""
import logging
from typing import Any, Dict, Generic, Optional, Type, TypeVar
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.exceptions import ConflictError, NotFoundError

logger = logging.getLogger(__name__)

# Define generic type
T = TypeVar('T')


class BaseService(Generic[T]):
    resource_name = "Record"

    def __init__(self, model: Type[T], db: AsyncSession, school_id: Optional[UUID] = None):
        self.model = model
        self.db = db
        self.school_id = school_id

    def _scoped(self, stmt, include_deleted: bool = False):
        """Apply the tenant and soft-delete filters every query needs"""
        if self.school_id is not None and hasattr(self.model, 'school_id'):
            stmt = stmt.where(self.model.school_id == self.school_id)
        if hasattr(self.model, 'is_deleted') and not include_deleted:
            stmt = stmt.where(self.model.is_deleted == False)  # noqa: E712
        return stmt

    async def get(self, id: Any, include_deleted: bool = False) -> Optional[T]:
        stmt = self._scoped(select(self.model).where(self.model.id == id), include_deleted)
        result = await self.db.execute(stmt.execution_options(populate_existing=True))
        return result.unique().scalar_one_or_none()

    async def get_or_404(self, id: Any, message: Optional[str] = None) -> T:
        obj = await self.get(id)
        if not obj:
            raise NotFoundError(self.resource_name, message)
        return obj

    async def create(self, obj_in: Dict) -> T:
        if self.school_id is not None and hasattr(self.model, 'school_id'):
            obj_in = {**obj_in, "school_id": self.school_id}
        obj = self.model(**obj_in)
        self.db.add(obj)
        await self.commit_or_conflict(f"{self.resource_name} already exists.")
        return await self.get(obj.id, include_deleted=True)

    async def update(self, id: Any, obj_in: Dict) -> Optional[T]:
        obj = await self.get(id)
        if not obj:
            return None
        for key, value in obj_in.items():
            setattr(obj, key, value)
        await self.commit_or_conflict(f"{self.resource_name} already exists.")
        return await self.get(id)

    async def soft_delete(self, id: Any) -> bool:
        obj = await self.get(id)
        if not obj:
            return False
        obj.is_deleted = True
        await self.db.commit()
        return True

    async def hard_delete(self, id: Any) -> bool:
        """Permanently delete record from database"""
        obj = await self.get(id, include_deleted=True)
        if not obj:
            return False
        await self.db.delete(obj)
        await self.db.commit()
        return True

    async def commit_or_conflict(self, message: str):
        """Commit, turning unique-constraint violations into 409s"""
        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            logger.warning(f"Integrity error on {self.model.__name__}: {e.orig}")
            raise ConflictError(message)
