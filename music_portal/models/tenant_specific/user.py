# music_portal/models/tenant_specific/user.py
import enum

from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, Enum, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship
from ..base import Base


class UserRole(str, enum.Enum):
    ADMIN = "ADMIN"
    TEACHER = "TEACHER"
    PARENT = "PARENT"
    STUDENT = "STUDENT"


class User(Base):
    __tablename__ = "users"
    __table_args__ = (
        UniqueConstraint('school_id', 'email', name='uq_users_school_email'),
    )

    school_id = Column(Uuid(as_uuid=True), ForeignKey("schools.id"), nullable=False, index=True)
    email = Column(String(254), nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    phone = Column(String(30))
    role = Column(Enum(UserRole, name="user_role"), nullable=False, index=True)
    is_active = Column(Boolean, default=True, nullable=False)
    last_login_at = Column(DateTime(timezone=True))

    school = relationship("School", lazy="joined")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class RefreshToken(Base):
    __tablename__ = "refresh_tokens"

    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    token_hash = Column(String(64), unique=True, nullable=False, index=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    revoked_at = Column(DateTime(timezone=True))


class LoginAttempt(Base):
    __tablename__ = "login_attempts"

    school_id = Column(Uuid(as_uuid=True), ForeignKey("schools.id"), nullable=True, index=True)
    email = Column(String(254), nullable=False, index=True)
    ip_address = Column(String(64))
    success = Column(Boolean, default=False, nullable=False)
