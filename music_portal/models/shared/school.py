# music_portal/models/shared/school.py
"""School (tenant) model definition."""
import re

from sqlalchemy import Column, String, Boolean, JSON
from sqlalchemy.orm import validates
from ..base import Base


class School(Base):
    __tablename__ = "schools"

    name = Column(String(200), nullable=False)
    slug = Column(String(100), unique=True, nullable=False, index=True)
    email = Column(String(254))
    phone = Column(String(30))
    website = Column(String(255))
    timezone = Column(String(64), default="Australia/Sydney", nullable=False)
    settings = Column(JSON, default=dict)
    branding = Column(JSON, default=dict)
    is_active = Column(Boolean, default=True, nullable=False)

    @validates('slug')
    def validate_slug(self, key, value):
        if not value or not re.match(r'^[a-z0-9]+(?:-[a-z0-9]+)*$', value):
            raise ValueError("Slug may only contain lowercase letters, numbers and hyphens")
        return value

    @validates('email')
    def validate_email(self, key, value):
        if value and value.startswith('mailto:'):
            value = value[7:]
        if value and not re.match(r'^[^@]+@[^@]+\.[^@]+$', value):
            raise ValueError("Invalid email address format")
        return value
