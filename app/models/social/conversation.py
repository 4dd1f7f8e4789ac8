import uuid
from datetime import UTC, datetime

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db import Base
from app.models.social.enums import (
    MessageDirection,
    MessageKind,
    MessageStatus,
    SocialPlatform,
    ThreadOwner,
)


class PlatformConversation(Base):
    """Thread between a connected account and one external participant."""

    __tablename__ = "social_conversations"
    __table_args__ = (
        UniqueConstraint("connection_id", "participant_id", name="uq_social_conversations_participant"),
        Index("ix_social_conversations_org_last_msg", "organization_id", "last_message_at"),
        Index("ix_social_conversations_thread_owner", "thread_owner"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    connection_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("social_connections.id"), nullable=False
    )
    organization_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    platform: Mapped[SocialPlatform] = mapped_column(Enum(SocialPlatform), nullable=False)
    participant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    participant_name: Mapped[str | None] = mapped_column(String(200))
    participant_username: Mapped[str | None] = mapped_column(String(120))
    participant_profile_pic: Mapped[str | None] = mapped_column(Text)
    thread_id: Mapped[str | None] = mapped_column(String(160))
    last_message_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    unread_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    # Handover Protocol
    thread_owner: Mapped[ThreadOwner] = mapped_column(Enum(ThreadOwner), default=ThreadOwner.app, nullable=False)
    thread_owner_app_id: Mapped[str | None] = mapped_column(String(64))
    control_requested_by_app_id: Mapped[str | None] = mapped_column(String(64))
    control_requested_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    # Receipt watermarks (epoch milliseconds)
    last_read_watermark: Mapped[int | None] = mapped_column(BigInteger)
    last_delivery_watermark: Mapped[int | None] = mapped_column(BigInteger)

    unified_conversation_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("unified_conversations.id")
    )
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSON)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    connection = relationship("SocialConnection", back_populates="conversations")
    unified_conversation = relationship("UnifiedConversation")
    messages = relationship("PlatformMessage", back_populates="conversation")
    thread_control_log = relationship(
        "ThreadControlLogEntry",
        back_populates="conversation",
        order_by="ThreadControlLogEntry.created_at",
    )


class PlatformMessage(Base):
    __tablename__ = "social_messages"
    __table_args__ = (
        UniqueConstraint("conversation_id", "platform_message_id", name="uq_social_messages_native_id"),
        Index("ix_social_messages_conv_ts", "conversation_id", "platform_timestamp"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    conversation_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("social_conversations.id"), nullable=False
    )
    platform_message_id: Mapped[str] = mapped_column(String(255), nullable=False)
    direction: Mapped[MessageDirection] = mapped_column(Enum(MessageDirection), nullable=False)
    sender_id: Mapped[str] = mapped_column(String(64), nullable=False)
    recipient_id: Mapped[str] = mapped_column(String(64), nullable=False)

    kind: Mapped[MessageKind] = mapped_column(Enum(MessageKind), default=MessageKind.text, nullable=False)
    text: Mapped[str | None] = mapped_column(Text)
    media_url: Mapped[str | None] = mapped_column(Text)
    media_type: Mapped[str | None] = mapped_column(String(20))
    template_type: Mapped[str | None] = mapped_column(String(40))
    template_payload: Mapped[dict | None] = mapped_column(JSON)
    quick_reply_payload: Mapped[str | None] = mapped_column(Text)
    postback_payload: Mapped[str | None] = mapped_column(Text)
    postback_title: Mapped[str | None] = mapped_column(String(255))
    story_id: Mapped[str | None] = mapped_column(String(120))
    rich_title: Mapped[str | None] = mapped_column(String(500))
    rich_url: Mapped[str | None] = mapped_column(Text)
    reply_to_message_id: Mapped[str | None] = mapped_column(String(255))

    status: Mapped[MessageStatus] = mapped_column(Enum(MessageStatus), default=MessageStatus.delivered)
    error_code: Mapped[str | None] = mapped_column(String(40))
    error_message: Mapped[str | None] = mapped_column(Text)

    platform_timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    read_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    conversation = relationship("PlatformConversation", back_populates="messages")
