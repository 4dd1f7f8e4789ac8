from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class CommentRuleBase(BaseModel):
    name: str = Field(min_length=1, max_length=160)
    trigger_keywords: list[str] = Field(min_length=1)
    trigger_media_ids: list[str] | None = None
    dm_template: str = Field(min_length=1, max_length=1000)
    dm_delay_seconds: int = Field(default=0, ge=0, le=86400)
    max_per_user_per_day: int = Field(default=1, ge=1, le=50)
    is_active: bool = True


class CommentRuleCreate(CommentRuleBase):
    connection_id: UUID


class CommentRuleUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=160)
    trigger_keywords: list[str] | None = Field(default=None, min_length=1)
    trigger_media_ids: list[str] | None = None
    dm_template: str | None = Field(default=None, min_length=1, max_length=1000)
    dm_delay_seconds: int | None = Field(default=None, ge=0, le=86400)
    max_per_user_per_day: int | None = Field(default=None, ge=1, le=50)
    is_active: bool | None = None


class CommentRuleRead(CommentRuleBase):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    connection_id: UUID
    organization_id: UUID
    trigger_count: int
    dm_sent_count: int
    created_at: datetime
