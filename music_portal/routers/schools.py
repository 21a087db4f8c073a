# music_portal/routers/schools.py
"""School bootstrap and settings endpoints."""
import hmac
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.auth import CurrentUser, get_current_user, require_admin
from ..core.config import settings
from ..core.database import get_db
from ..core.exceptions import PermissionDenied
from ..schemas.auth_schemas import SchoolCreate, SchoolSettingsUpdate
from ..services.auth_service import AuthService
from ..services.school_service import SchoolService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/schools", tags=["Schools"])


def check_bootstrap_token(token: Optional[str]):
    if settings.bootstrap_token:
        if not token or not hmac.compare_digest(token, settings.bootstrap_token):
            raise PermissionDenied("Invalid bootstrap token.")
    elif settings.environment == "production":
        raise PermissionDenied("School creation is disabled.")


@router.post("/", response_model=dict, status_code=status.HTTP_201_CREATED)
async def create_school(
    payload: SchoolCreate,
    x_bootstrap_token: Optional[str] = Header(default=None),
    db: AsyncSession = Depends(get_db),
):
    """Create a school and its first administrator"""
    check_bootstrap_token(x_bootstrap_token)
    return await AuthService(db).create_school(payload.model_dump())


@router.get("/settings", response_model=dict)
async def get_school_settings(
    current: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await SchoolService(db).get_settings(current.school_id)


@router.put("/settings", response_model=dict)
async def update_school_settings(
    payload: SchoolSettingsUpdate,
    current: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return await SchoolService(db).update_settings(current.school_id, payload.model_dump(exclude_unset=True))
