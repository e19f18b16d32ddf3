"""Pydantic v2 request/response schemas for profile endpoints."""

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class ProfileUpdate(BaseModel):
    """Partial profile update. Omitted fields are left unchanged."""

    username: str | None = Field(None, min_length=1, max_length=255)
    display_name: str | None = Field(None, min_length=1, max_length=255)
    avatar_url: str | None = Field(None, max_length=512)


class ProfileResponse(BaseModel):
    """The caller's profile."""

    id: uuid.UUID
    email: str
    username: str | None = None
    display_name: str | None = None
    avatar_url: str | None = None
    is_active: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
