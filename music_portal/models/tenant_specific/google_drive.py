# music_portal/models/tenant_specific/google_drive.py
import enum

from sqlalchemy import (
    Column, String, Text, Boolean, BigInteger, DateTime, JSON, ForeignKey, Enum, UniqueConstraint, Uuid,
)
from sqlalchemy.orm import relationship
from ..base import Base


class SyncStatus(str, enum.Enum):
    PENDING = "PENDING"
    SYNCING = "SYNCING"
    SYNCED = "SYNCED"
    ERROR = "ERROR"


class FileVisibility(str, enum.Enum):
    ALL = "ALL"
    TEACHERS_AND_PARENTS = "TEACHERS_AND_PARENTS"
    TEACHERS_ONLY = "TEACHERS_ONLY"


class UploadSource(str, enum.Enum):
    PORTAL = "PORTAL"
    GOOGLE_DRIVE = "GOOGLE_DRIVE"


class GoogleDriveAuth(Base):
    __tablename__ = "google_drive_auths"

    school_id = Column(Uuid(as_uuid=True), ForeignKey("schools.id"), nullable=False, unique=True)
    # Fernet-encrypted
    access_token = Column(Text, nullable=False)
    refresh_token = Column(Text, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    scope = Column(Text)
    token_type = Column(String(20), default="Bearer")
    connected_by_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=True)


class GoogleDriveFolder(Base):
    """Folder mapping: a Drive folder linked to one lesson or one student"""
    __tablename__ = "google_drive_folders"
    __table_args__ = (
        UniqueConstraint('school_id', 'drive_folder_id', name='uq_drive_folder_school'),
    )

    school_id = Column(Uuid(as_uuid=True), ForeignKey("schools.id"), nullable=False, index=True)
    drive_folder_id = Column(String(200), nullable=False)
    folder_name = Column(String(500), nullable=False)
    folder_url = Column(String(1000))
    lesson_id = Column(Uuid(as_uuid=True), ForeignKey("lessons.id"), nullable=True, unique=True)
    student_id = Column(Uuid(as_uuid=True), ForeignKey("students.id"), nullable=True, unique=True)
    sync_enabled = Column(Boolean, default=True, nullable=False)
    sync_status = Column(Enum(SyncStatus, name="drive_sync_status"), default=SyncStatus.PENDING, nullable=False)
    sync_error = Column(Text)
    last_sync_at = Column(DateTime(timezone=True))

    lesson = relationship("Lesson", lazy="joined")
    student = relationship("Student", lazy="joined")


class GoogleDriveFile(Base):
    __tablename__ = "google_drive_files"
    __table_args__ = (
        UniqueConstraint('folder_id', 'drive_file_id', name='uq_drive_file_folder'),
    )

    school_id = Column(Uuid(as_uuid=True), ForeignKey("schools.id"), nullable=False, index=True)
    folder_id = Column(Uuid(as_uuid=True), ForeignKey("google_drive_folders.id", ondelete="SET NULL"), nullable=True, index=True)
    drive_file_id = Column(String(200), nullable=False, index=True)
    file_name = Column(String(500), nullable=False)
    mime_type = Column(String(200), nullable=False)
    file_size = Column(BigInteger)
    web_view_link = Column(String(1000))
    web_content_link = Column(String(1000))
    thumbnail_link = Column(String(1000))
    visibility = Column(Enum(FileVisibility, name="file_visibility"), default=FileVisibility.ALL, nullable=False, index=True)
    tags = Column(JSON, default=list, nullable=False)
    uploaded_by_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=True)
    uploaded_via = Column(Enum(UploadSource, name="upload_source"), default=UploadSource.PORTAL, nullable=False)
    modified_time = Column(DateTime(timezone=True))
    created_time = Column(DateTime(timezone=True))
    deleted_in_drive = Column(Boolean, default=False, nullable=False, index=True)
    deleted_at = Column(DateTime(timezone=True))

    folder = relationship("GoogleDriveFolder", lazy="joined")
