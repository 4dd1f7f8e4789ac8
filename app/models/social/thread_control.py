import uuid
from datetime import UTC, datetime

from sqlalchemy import JSON, DateTime, Enum, ForeignKey, Index, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db import Base
from app.models.social.enums import ThreadControlAction, ThreadOwner


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class ThreadControlLogEntry(Base):
    """Append-only Handover Protocol log for a conversation."""

    __tablename__ = "social_thread_control_log"
    __table_args__ = (Index("ix_social_thread_control_log_conv_created", "conversation_id", "created_at"),)

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    conversation_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("social_conversations.id"), nullable=False
    )
    action: Mapped[ThreadControlAction] = mapped_column(
        Enum(ThreadControlAction, values_callable=_enum_values, name="threadcontrolaction"),
        nullable=False,
    )
    from_app_id: Mapped[str | None] = mapped_column(String(64))
    to_app_id: Mapped[str | None] = mapped_column(String(64))
    resulting_owner: Mapped[ThreadOwner] = mapped_column(Enum(ThreadOwner), nullable=False)
    source_event_id: Mapped[str | None] = mapped_column(String(255))
    metadata_: Mapped[dict | None] = mapped_column("metadata", JSON)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=lambda: datetime.now(UTC))

    conversation = relationship("PlatformConversation", back_populates="thread_control_log")
