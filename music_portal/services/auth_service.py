# music_portal/services/auth_service.py
import logging
from datetime import timedelta
from typing import Any, Dict, Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import settings
from ..core.exceptions import AuthenticationError, ConflictError, ValidationException
from ..core.rate_limiter import RateLimiter
from ..core.security import (
    create_access_token, generate_refresh_token, hash_password, hash_token,
    validate_password_strength, verify_password,
)
from ..models.shared.school import School
from ..models.tenant_specific.user import LoginAttempt, RefreshToken, User, UserRole
from ..utils.scheduling import as_utc, utcnow
from .base_service import BaseService

logger = logging.getLogger(__name__)

INVALID_CREDENTIALS = "Invalid email or password."

login_limiter = RateLimiter(
    max_requests=settings.login_max_attempts,
    window=settings.login_window_seconds,
    message="Too many login attempts.",
)


def serialize_user(user: User) -> Dict[str, Any]:
    return {
        "id": str(user.id),
        "school_id": str(user.school_id),
        "email": user.email,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "phone": user.phone,
        "role": user.role.value,
        "is_active": user.is_active,
        "last_login_at": user.last_login_at.isoformat() if user.last_login_at else None,
        "school": {
            "id": str(user.school.id),
            "name": user.school.name,
            "slug": user.school.slug,
        } if user.school else None,
    }


class AuthService(BaseService[User]):
    def __init__(self, db: AsyncSession):
        super().__init__(User, db)

    async def _resolve_school(self, email: str, school_slug: Optional[str]) -> Optional[School]:
        if school_slug:
            result = await self.db.execute(select(School).where(School.slug == school_slug, School.is_deleted == False))  # noqa: E712
            return result.scalar_one_or_none()

        result = await self.db.execute(
            select(School)
            .join(User, User.school_id == School.id)
            .where(User.email == email, User.is_deleted == False)  # noqa: E712
        )
        schools = result.unique().scalars().all()
        if len(schools) > 1:
            raise ValidationException("Multiple schools found. Please specify a school.")
        return schools[0] if schools else None

    async def _record_attempt(self, email: str, school_id: Optional[UUID], ip_address: Optional[str], success: bool):
        self.db.add(LoginAttempt(email=email, school_id=school_id, ip_address=ip_address, success=success))
        await self.db.commit()

    async def login(
        self,
        email: str,
        password: str,
        school_slug: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> Dict[str, Any]:
        email = email.strip().lower()
        login_limiter.check(email)

        school = await self._resolve_school(email, school_slug)
        if not school:
            await self._record_attempt(email, None, ip_address, False)
            raise AuthenticationError(INVALID_CREDENTIALS)

        result = await self.db.execute(
            select(User).where(User.school_id == school.id, User.email == email, User.is_deleted == False)  # noqa: E712
        )
        user = result.unique().scalar_one_or_none()

        if not user or not verify_password(password, user.password_hash):
            await self._record_attempt(email, school.id, ip_address, False)
            raise AuthenticationError(INVALID_CREDENTIALS)

        if not school.is_active:
            await self._record_attempt(email, school.id, ip_address, False)
            raise AuthenticationError("School is inactive.")

        if not user.is_active:
            await self._record_attempt(email, school.id, ip_address, False)
            raise AuthenticationError("Account is inactive.")

        user.last_login_at = utcnow()
        self.db.add(LoginAttempt(email=email, school_id=school.id, ip_address=ip_address, success=True))
        tokens = await self._issue_tokens(user)
        login_limiter.reset(email)
        logger.info(f"User {user.id} logged in to school {school.slug}")
        return {**tokens, "user": serialize_user(user)}

    async def _issue_tokens(self, user: User) -> Dict[str, Any]:
        refresh_token = generate_refresh_token()
        self.db.add(RefreshToken(
            user_id=user.id,
            token_hash=hash_token(refresh_token),
            expires_at=utcnow() + timedelta(days=settings.refresh_token_expire_days),
        ))
        await self.db.commit()

        access_token = create_access_token({
            "sub": str(user.id),
            "school_id": str(user.school_id),
            "role": user.role.value,
            "email": user.email,
        })
        return {
            "access_token": access_token,
            "refresh_token": refresh_token,
            "token_type": "bearer",
            "expires_in": settings.access_token_expire_minutes * 60,
        }

    async def _get_refresh_token(self, token: str) -> Optional[RefreshToken]:
        result = await self.db.execute(select(RefreshToken).where(RefreshToken.token_hash == hash_token(token)))
        return result.scalar_one_or_none()

    async def refresh(self, token: str) -> Dict[str, Any]:
        """Rotate a refresh token: the presented token is revoked and a new pair issued"""
        stored = await self._get_refresh_token(token)
        if not stored or stored.revoked_at is not None or as_utc(stored.expires_at) <= utcnow():
            raise AuthenticationError("Invalid or expired refresh token.")

        user = await self.get(stored.user_id)
        if not user or not user.is_active or not user.school.is_active:
            raise AuthenticationError("Invalid or expired refresh token.")

        stored.revoked_at = utcnow()
        tokens = await self._issue_tokens(user)
        return {**tokens, "user": serialize_user(user)}

    async def logout(self, token: str) -> None:
        stored = await self._get_refresh_token(token)
        if stored and stored.revoked_at is None:
            stored.revoked_at = utcnow()
            await self.db.commit()

    async def revoke_all_tokens(self, user_id: UUID) -> None:
        await self.db.execute(
            update(RefreshToken)
            .where(RefreshToken.user_id == user_id, RefreshToken.revoked_at.is_(None))
            .values(revoked_at=utcnow())
        )
        await self.db.commit()

    async def change_password(self, user: User, current_password: str, new_password: str) -> None:
        if not verify_password(current_password, user.password_hash):
            raise AuthenticationError("Current password is incorrect.")
        errors = validate_password_strength(new_password)
        if errors:
            raise ValidationException(" ".join(errors))
        user.password_hash = hash_password(new_password)
        await self.db.commit()
        await self.revoke_all_tokens(user.id)
        logger.info(f"Password changed for user {user.id}")

    async def create_user(
        self,
        school_id: UUID,
        email: str,
        password: str,
        first_name: str,
        last_name: str,
        role: UserRole,
        phone: Optional[str] = None,
        commit: bool = True,
    ) -> User:
        """Create a login account; callers creating profile rows pass commit=False"""
        email = email.strip().lower()
        existing = await self.db.execute(
            select(User.id).where(User.school_id == school_id, User.email == email, User.is_deleted == False)  # noqa: E712
        )
        if existing.first():
            raise ConflictError("A user with this email already exists.")

        errors = validate_password_strength(password)
        if errors:
            raise ValidationException(" ".join(errors))

        user = User(
            school_id=school_id,
            email=email,
            password_hash=hash_password(password),
            first_name=first_name.strip(),
            last_name=last_name.strip(),
            phone=phone,
            role=role,
        )
        self.db.add(user)
        if commit:
            await self.commit_or_conflict("A user with this email already exists.")
        else:
            await self.db.flush()
        return user

    async def create_school(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Create a school together with its first administrator"""
        slug = data["slug"].strip().lower()
        existing = await self.db.execute(select(School.id).where(School.slug == slug))
        if existing.first():
            raise ConflictError("A school with this slug already exists.")

        admin = data["admin"]
        errors = validate_password_strength(admin["password"])
        if errors:
            raise ValidationException(" ".join(errors))

        school = School(
            name=data["name"].strip(),
            slug=slug,
            email=data.get("email"),
            phone=data.get("phone"),
            website=data.get("website"),
            timezone=data.get("timezone") or "Australia/Sydney",
            settings={},
            branding={},
        )
        self.db.add(school)
        await self.db.flush()

        user = await self.create_user(
            school_id=school.id,
            email=admin["email"],
            password=admin["password"],
            first_name=admin["first_name"],
            last_name=admin["last_name"],
            role=UserRole.ADMIN,
            commit=False,
        )
        await self.commit_or_conflict("A school with this slug already exists.")
        logger.info(f"Created school {slug} with admin {user.email}")
        return {"school_id": str(school.id), "slug": school.slug, "admin_user_id": str(user.id)}
