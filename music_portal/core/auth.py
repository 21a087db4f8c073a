# music_portal/core/auth.py
"""Request authentication and role guards."""
import logging
from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .database import get_db
from .exceptions import AuthenticationError, PermissionDenied
from .security import decode_token
from ..models.tenant_specific.user import User, UserRole

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


@dataclass
class CurrentUser:
    """The authenticated caller; `school_id` scopes every query they make"""
    user: User

    @property
    def id(self) -> UUID:
        return self.user.id

    @property
    def school_id(self) -> UUID:
        return self.user.school_id

    @property
    def role(self) -> UserRole:
        return self.user.role

    @property
    def is_admin(self) -> bool:
        return self.user.role == UserRole.ADMIN

    @property
    def is_teacher(self) -> bool:
        return self.user.role == UserRole.TEACHER

    @property
    def is_parent(self) -> bool:
        return self.user.role == UserRole.PARENT

    @property
    def is_staff(self) -> bool:
        return self.user.role in (UserRole.ADMIN, UserRole.TEACHER)


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> CurrentUser:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise AuthenticationError()

    payload = decode_token(credentials.credentials)
    try:
        user_id = UUID(payload.get("sub", ""))
        school_id = UUID(payload.get("school_id", ""))
    except ValueError:
        raise AuthenticationError("Invalid or expired token.")

    result = await db.execute(
        select(User).where(User.id == user_id, User.school_id == school_id, User.is_deleted == False)  # noqa: E712
    )
    user = result.unique().scalar_one_or_none()
    if not user:
        raise AuthenticationError("User not found.")
    if not user.is_active:
        raise AuthenticationError("Account is inactive.")
    if not user.school.is_active:
        raise AuthenticationError("School is inactive.")
    return CurrentUser(user=user)


def require_roles(*roles: UserRole):
    """Dependency factory restricting a route to the given roles"""
    async def checker(current: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if current.role not in roles:
            logger.info(f"User {current.id} with role {current.role.value} denied access")
            raise PermissionDenied()
        return current
    return checker


require_admin = require_roles(UserRole.ADMIN)
require_staff = require_roles(UserRole.ADMIN, UserRole.TEACHER)
require_parent = require_roles(UserRole.PARENT)
