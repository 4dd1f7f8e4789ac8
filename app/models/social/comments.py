import uuid
from datetime import UTC, datetime

from sqlalchemy import JSON, Boolean, DateTime, Enum, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db import Base
from app.models.social.enums import CommentDmStatus


class CommentRule(Base):
    """Keyword rule that turns an Instagram comment into a direct message."""

    __tablename__ = "social_comment_rules"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    organization_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    connection_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("social_connections.id"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(160), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    trigger_keywords: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    trigger_media_ids: Mapped[list | None] = mapped_column(JSON)
    dm_template: Mapped[str] = mapped_column(Text, nullable=False)
    dm_delay_seconds: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_per_user_per_day: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    trigger_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    dm_sent_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    connection = relationship("SocialConnection")


class CommentDmTracking(Base):
    __tablename__ = "social_comment_dm_tracking"
    __table_args__ = (
        UniqueConstraint("rule_id", "comment_id", name="uq_social_comment_dm_tracking_rule_comment"),
        Index("ix_social_comment_dm_tracking_rule_user", "rule_id", "user_id", "created_at"),
        Index("ix_social_comment_dm_tracking_due", "status", "scheduled_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    rule_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("social_comment_rules.id"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    comment_id: Mapped[str] = mapped_column(String(120), nullable=False)
    status: Mapped[CommentDmStatus] = mapped_column(
        Enum(CommentDmStatus), default=CommentDmStatus.pending, nullable=False
    )
    scheduled_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    error_message: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))

    rule = relationship("CommentRule")


class StoryMention(Base):
    __tablename__ = "social_story_mentions"
    __table_args__ = (
        UniqueConstraint(
            "connection_id",
            "story_id",
            "mentioned_by_id",
            name="uq_social_story_mentions_story_author",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    connection_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("social_connections.id"), nullable=False
    )
    organization_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    story_id: Mapped[str] = mapped_column(String(120), nullable=False)
    story_url: Mapped[str | None] = mapped_column(Text)
    mentioned_by_id: Mapped[str] = mapped_column(String(64), nullable=False)
    mentioned_by_username: Mapped[str | None] = mapped_column(String(120))
    mentioned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    responded: Mapped[bool] = mapped_column(Boolean, default=False)
    raw_payload: Mapped[dict | None] = mapped_column(JSON)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))
