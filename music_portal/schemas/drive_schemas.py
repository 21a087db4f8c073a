# music_portal/schemas/drive_schemas.py
"""Pydantic schemas for Google Drive folder mappings and shared files."""
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from ..models.tenant_specific.google_drive import FileVisibility


class FolderLinkCreate(BaseModel):
    drive_folder_id: str = Field(..., min_length=1, max_length=200)
    folder_name: str = Field(..., min_length=1, max_length=500)
    folder_url: Optional[str] = Field(default=None, max_length=1000)
    lesson_id: Optional[UUID] = Field(default=None)
    student_id: Optional[UUID] = Field(default=None)
    sync_enabled: bool = True

    @model_validator(mode='after')
    def validate_target(self):
        if bool(self.lesson_id) == bool(self.student_id):
            raise ValueError('Must provide either lesson_id or student_id, but not both.')
        return self


class FolderMappingUpdate(BaseModel):
    sync_enabled: bool


class FileUpdate(BaseModel):
    visibility: Optional[FileVisibility] = Field(default=None)
    tags: Optional[List[str]] = Field(default=None, max_length=20)
