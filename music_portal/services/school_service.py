# music_portal/services/school_service.py
import logging
from typing import Any, Dict
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from ..core.exceptions import NotFoundError
from ..models.shared.school import School
from .base_service import BaseService

logger = logging.getLogger(__name__)


class SchoolService(BaseService[School]):
    resource_name = "School"

    def __init__(self, db: AsyncSession):
        super().__init__(School, db)

    @staticmethod
    def serialize(school: School) -> Dict[str, Any]:
        return {
            "id": str(school.id),
            "name": school.name,
            "slug": school.slug,
            "email": school.email,
            "phone": school.phone,
            "website": school.website,
            "timezone": school.timezone,
            "settings": school.settings or {},
            "branding": school.branding or {},
            "is_active": school.is_active,
        }

    async def get_settings(self, school_id: UUID) -> Dict[str, Any]:
        school = await self.get(school_id)
        if not school:
            raise NotFoundError("School")
        return self.serialize(school)

    async def update_settings(self, school_id: UUID, data: Dict[str, Any]) -> Dict[str, Any]:
        school = await self.get(school_id)
        if not school:
            raise NotFoundError("School")

        for key in ("name", "email", "phone", "website", "timezone"):
            if key in data:
                setattr(school, key, data[key])
        # JSON blobs are merged so partial updates keep unrelated keys
        if data.get("settings") is not None:
            school.settings = {**(school.settings or {}), **data["settings"]}
        if data.get("branding") is not None:
            school.branding = {**(school.branding or {}), **data["branding"]}

        await self.db.commit()
        logger.info(f"Updated settings for school {school.slug}")
        return self.serialize(school)
