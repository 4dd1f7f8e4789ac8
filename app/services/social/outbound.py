"""Gated outbound sends on a platform conversation."""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy.orm import Session

from app.logging import get_logger
from app.models.social import (
    MessageDirection,
    MessageKind,
    MessageStatus,
    PlatformConversation,
    PlatformMessage,
    SocialPlatform,
)
from app.services.social import rate_limit
from app.services.social.conversations import resolve
from app.services.social.errors import SocialError, SocialValidationError
from app.services.social.messages import persist_message
from app.services.social.normalizers import MessageContent
from app.services.social.observability import OUTBOUND_MESSAGES
from app.services.social.platform_client import MetaPlatformClient, get_platform_client
from app.services.social.thread_control import ensure_can_send

logger = get_logger(__name__)

_MEDIA_TYPES = {"image", "video", "audio", "file"}


def content_from_payload(payload: dict) -> MessageContent:
    attachment = payload.get("attachment") or {}
    attachment_type = attachment.get("type")
    attachment_payload = attachment.get("payload") or {}
    text = payload.get("text")
    if attachment_type == "template":
        return MessageContent(
            kind=MessageKind.template,
            text=text or attachment_payload.get("text"),
            template_type=attachment_payload.get("template_type"),
            template_payload=attachment_payload,
        )
    if attachment_type in _MEDIA_TYPES:
        return MessageContent(
            kind=MessageKind(attachment_type),
            text=text,
            media_url=attachment_payload.get("url"),
            media_type=attachment_type,
        )
    if attachment_type:
        return MessageContent(kind=MessageKind.fallback, text=text, media_url=attachment_payload.get("url"))
    if not text:
        raise SocialValidationError("empty_message", "Message payload needs text or an attachment")
    return MessageContent(kind=MessageKind.text, text=text)


def send_message(
    db: Session,
    conversation: PlatformConversation,
    payload: dict,
    client: MetaPlatformClient | None = None,
) -> PlatformMessage:
    """Send ``payload`` to the conversation's participant and record it.

    Order: ownership gate, Instagram hourly limit, platform call, then the
    outbound row. Nothing is written for the message when the platform
    call fails.

    Raises:
        ThreadOwnershipError: When another app controls the thread.
        RateLimitExceeded: When the organization is over its hourly limit.
        PlatformAPIError: When Meta rejects or times out the send.
    """
    content = content_from_payload(payload)
    platform = conversation.platform.value
    try:
        ensure_can_send(conversation)
        if conversation.platform == SocialPlatform.instagram:
            rate_limit.check_and_increment(db, conversation.organization_id)
            db.commit()
    except SocialError:
        OUTBOUND_MESSAGES.labels(platform, "rejected").inc()
        raise

    connection = conversation.connection
    client = client or get_platform_client()
    try:
        result = client.send_message(connection, conversation.participant_id, payload)
    except SocialError:
        OUTBOUND_MESSAGES.labels(platform, "failed").inc()
        raise
    OUTBOUND_MESSAGES.labels(platform, "sent").inc()

    sent_at = datetime.now(UTC)
    resolve(db, connection, conversation.participant_id, inbound=False, timestamp=sent_at)
    persisted = persist_message(
        db,
        conversation,
        platform_message_id=result.message_id,
        direction=MessageDirection.outbound,
        sender_id=connection.page_id or connection.account_id,
        recipient_id=conversation.participant_id,
        content=content,
        timestamp=sent_at,
        status=MessageStatus.sent,
    )
    db.commit()
    db.refresh(persisted.message)
    logger.info(
        "social_outbound_recorded conversation_id=%s message_id=%s kind=%s",
        conversation.id,
        result.message_id,
        content.kind.value,
    )
    return persisted.message
