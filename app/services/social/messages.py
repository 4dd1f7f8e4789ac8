"""Persistence of platform messages and their unified inbox mirror."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.logging import get_logger
from app.models.social import (
    MessageDirection,
    MessageKind,
    MessageStatus,
    PlatformConversation,
    PlatformMessage,
    UnifiedMessage,
)
from app.services.social.conversations import channel_for
from app.services.social.errors import SocialValidationError
from app.services.social.normalizers import CanonicalEvent, MessageContent

logger = get_logger(__name__)


@dataclass(frozen=True)
class PersistResult:
    message: PlatformMessage
    created: bool


def unified_content(content: MessageContent) -> str:
    return content.text or f"[{content.kind.value}]"


def unified_message_type(kind: MessageKind) -> str:
    return "text" if kind == MessageKind.text else "media"


def _find(db: Session, conversation: PlatformConversation, platform_message_id: str) -> PlatformMessage | None:
    return (
        db.query(PlatformMessage)
        .filter(PlatformMessage.conversation_id == conversation.id)
        .filter(PlatformMessage.platform_message_id == platform_message_id)
        .first()
    )


def persist_message(
    db: Session,
    conversation: PlatformConversation,
    *,
    platform_message_id: str,
    direction: MessageDirection,
    sender_id: str,
    recipient_id: str,
    content: MessageContent,
    timestamp: datetime,
    status: MessageStatus = MessageStatus.delivered,
) -> PersistResult:
    """Insert a message row; an existing native id returns the stored row.

    The unified mirror is written in the same savepoint when the
    conversation is linked to a unified conversation.
    """
    if not platform_message_id:
        raise SocialValidationError("missing_message_id", "Message has no native id")
    rich = content.rich
    message = PlatformMessage(
        conversation_id=conversation.id,
        platform_message_id=platform_message_id,
        direction=direction,
        sender_id=sender_id,
        recipient_id=recipient_id,
        kind=content.kind,
        text=content.text,
        media_url=content.media_url,
        media_type=content.media_type,
        template_type=content.template_type,
        template_payload=content.template_payload,
        quick_reply_payload=content.quick_reply_payload,
        postback_payload=content.postback_payload,
        postback_title=content.postback_title,
        story_id=content.story_id,
        rich_title=rich.title if rich else None,
        rich_url=rich.url if rich else None,
        reply_to_message_id=content.reply_to_message_id,
        status=status,
        platform_timestamp=timestamp,
    )
    try:
        with db.begin_nested():
            db.add(message)
            db.flush()
            if conversation.unified_conversation_id:
                db.add(
                    UnifiedMessage(
                        conversation_id=conversation.unified_conversation_id,
                        organization_id=conversation.organization_id,
                        direction=direction,
                        content=unified_content(content),
                        message_type=unified_message_type(content.kind),
                        channel=channel_for(conversation.platform),
                        channel_message_id=platform_message_id,
                        status=status,
                        created_at=timestamp,
                    )
                )
                db.flush()
    except IntegrityError:
        existing = _find(db, conversation, platform_message_id)
        if existing is None:
            raise
        logger.info(
            "social_message_duplicate conversation_id=%s message_id=%s",
            conversation.id,
            platform_message_id,
        )
        return PersistResult(message=existing, created=False)
    return PersistResult(message=message, created=True)


def persist(
    db: Session,
    conversation: PlatformConversation,
    event: CanonicalEvent,
    direction: MessageDirection = MessageDirection.inbound,
) -> PersistResult:
    if event.content is None:
        raise SocialValidationError("missing_content", f"Event {event.event_id} carries no message content")
    return persist_message(
        db,
        conversation,
        platform_message_id=event.native_message_id or event.event_id,
        direction=direction,
        sender_id=event.sender_id or "",
        recipient_id=event.recipient_id or "",
        content=event.content,
        timestamp=event.timestamp,
        status=MessageStatus.delivered if direction == MessageDirection.inbound else MessageStatus.sent,
    )


def list_messages(db: Session, conversation: PlatformConversation, limit: int = 50) -> list[PlatformMessage]:
    return (
        db.query(PlatformMessage)
        .filter(PlatformMessage.conversation_id == conversation.id)
        .order_by(PlatformMessage.platform_timestamp.desc())
        .limit(limit)
        .all()
    )
