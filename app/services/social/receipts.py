"""Delivery and read receipt reconciliation for outbound messages.

Receipts arrive out of order. Delivery never downgrades a read message and
read watermarks only move forward.
"""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import update
from sqlalchemy.orm import Session

from app.logging import get_logger
from app.models.social import (
    MessageDirection,
    MessageStatus,
    PlatformConversation,
    PlatformMessage,
    UnifiedMessage,
)
from app.services.social.conversations import channel_for
from app.services.social.normalizers import as_utc, ms_to_datetime

logger = get_logger(__name__)

_DELIVERABLE = (MessageStatus.sent,)
_READABLE = (MessageStatus.sent, MessageStatus.delivered)
_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


def _mirror_status(
    db: Session,
    conversation: PlatformConversation,
    message_ids: list[str],
    status: MessageStatus,
) -> None:
    if not conversation.unified_conversation_id or not message_ids:
        return
    statuses = _READABLE if status == MessageStatus.read else _DELIVERABLE
    db.execute(
        update(UnifiedMessage)
        .where(UnifiedMessage.conversation_id == conversation.unified_conversation_id)
        .where(UnifiedMessage.channel == channel_for(conversation.platform))
        .where(UnifiedMessage.channel_message_id.in_(message_ids))
        .where(UnifiedMessage.status.in_(statuses))
        .values(status=status)
        .execution_options(synchronize_session=False)
    )


def apply_delivery(
    db: Session,
    conversation: PlatformConversation,
    message_ids: list[str] | None,
    watermark_ms: int | None = None,
) -> int:
    """Mark outbound messages delivered; returns how many rows changed.

    With ``message_ids`` each id is handled on its own. Without them, every
    outbound message at or before ``watermark_ms`` that is still ``sent``
    is marked delivered. Failed sends are never promoted.
    """
    query = (
        db.query(PlatformMessage)
        .filter(PlatformMessage.conversation_id == conversation.id)
        .filter(PlatformMessage.direction == MessageDirection.outbound)
        .filter(PlatformMessage.status.in_(_DELIVERABLE))
    )
    if message_ids:
        query = query.filter(PlatformMessage.platform_message_id.in_(list(message_ids)))
    elif watermark_ms is not None:
        query = query.filter(PlatformMessage.platform_timestamp <= ms_to_datetime(watermark_ms))
    else:
        return 0

    now = datetime.now(UTC)
    changed: list[str] = []
    for message in query.all():
        message.status = MessageStatus.delivered
        message.delivered_at = now
        changed.append(message.platform_message_id)

    if watermark_ms is not None and watermark_ms > (conversation.last_delivery_watermark or 0):
        conversation.last_delivery_watermark = watermark_ms
    _mirror_status(db, conversation, changed, MessageStatus.delivered)
    db.flush()
    logger.info(
        "social_delivery_applied conversation_id=%s updated=%s watermark=%s",
        conversation.id,
        len(changed),
        watermark_ms,
    )
    return len(changed)


def watermark_for_message(db: Session, conversation: PlatformConversation, message_id: str) -> int | None:
    """Epoch milliseconds of an outbound message, for receipts that name a mid.

    Instagram read receipts carry ``read.mid`` instead of a watermark.
    Rounds up so the message itself falls inside the watermark.
    """
    message = (
        db.query(PlatformMessage)
        .filter(PlatformMessage.conversation_id == conversation.id)
        .filter(PlatformMessage.direction == MessageDirection.outbound)
        .filter(PlatformMessage.platform_message_id == message_id)
        .first()
    )
    if message is None:
        return None
    delta = as_utc(message.platform_timestamp) - _EPOCH
    return delta.days * 86_400_000 + delta.seconds * 1000 + -(-delta.microseconds // 1000)


def apply_read(db: Session, conversation: PlatformConversation, watermark_ms: int) -> int:
    """Mark outbound messages up to ``watermark_ms`` read and clear ``unread_count``.

    A watermark older than ``last_read_watermark`` is ignored and returns 0.
    """
    last = conversation.last_read_watermark
    if last is not None and watermark_ms < last:
        logger.info(
            "social_read_watermark_stale conversation_id=%s watermark=%s last=%s",
            conversation.id,
            watermark_ms,
            last,
        )
        return 0

    now = datetime.now(UTC)
    changed: list[str] = []
    messages = (
        db.query(PlatformMessage)
        .filter(PlatformMessage.conversation_id == conversation.id)
        .filter(PlatformMessage.direction == MessageDirection.outbound)
        .filter(PlatformMessage.status.in_(_READABLE))
        .filter(PlatformMessage.platform_timestamp <= ms_to_datetime(watermark_ms))
        .all()
    )
    for message in messages:
        message.status = MessageStatus.read
        message.read_at = now
        if message.delivered_at is None:
            message.delivered_at = now
        changed.append(message.platform_message_id)

    conversation.unread_count = 0
    conversation.last_read_watermark = watermark_ms
    _mirror_status(db, conversation, changed, MessageStatus.read)
    db.flush()
    logger.info(
        "social_read_applied conversation_id=%s updated=%s watermark=%s",
        conversation.id,
        len(changed),
        watermark_ms,
    )
    return len(changed)
