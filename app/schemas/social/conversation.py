from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator

from app.models.social.enums import MessageDirection, MessageKind, MessageStatus, SocialPlatform, ThreadOwner


class PlatformConversationRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    connection_id: UUID
    organization_id: UUID
    platform: SocialPlatform
    participant_id: str
    participant_name: str | None = None
    participant_username: str | None = None
    participant_profile_pic: str | None = None
    last_message_at: datetime | None = None
    unread_count: int
    thread_owner: ThreadOwner
    thread_owner_app_id: str | None = None
    control_requested_by_app_id: str | None = None
    unified_conversation_id: UUID | None = None


class PlatformMessageRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    conversation_id: UUID
    platform_message_id: str
    direction: MessageDirection
    kind: MessageKind
    text: str | None = None
    media_url: str | None = None
    status: MessageStatus
    platform_timestamp: datetime


class ThreadControlRequest(BaseModel):
    target_app_id: str | None = Field(default=None, max_length=64)
    metadata: str | None = Field(default=None, max_length=1000)


class ThreadControlResult(BaseModel):
    conversation_id: UUID
    thread_owner: ThreadOwner
    thread_owner_app_id: str | None = None


class SocialSendRequest(BaseModel):
    text: str | None = Field(default=None, min_length=1, max_length=2000)
    attachment: dict | None = None
    quick_replies: list[dict] | None = None

    @model_validator(mode="after")
    def _require_content(self) -> SocialSendRequest:
        if not self.text and not self.attachment:
            raise ValueError("text or attachment is required")
        return self

    def to_message_payload(self) -> dict:
        message: dict = {}
        if self.text:
            message["text"] = self.text
        if self.attachment:
            message["attachment"] = self.attachment
        if self.quick_replies:
            message["quick_replies"] = self.quick_replies
        return message
