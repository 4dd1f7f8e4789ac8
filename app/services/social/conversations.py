"""Find-or-create for platform conversations."""

from __future__ import annotations

import uuid
from collections.abc import Callable
from datetime import UTC, datetime

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.logging import get_logger
from app.models.social import (
    PlatformConversation,
    SocialConnection,
    SocialPlatform,
    ThreadOwner,
    UnifiedConversation,
    UnifiedConversationStatus,
)
from app.services.social.errors import SocialNotFoundError
from app.services.social.normalizers import as_utc
from app.services.social.thread_control import initial_owner

logger = get_logger(__name__)

ProfileFetcher = Callable[[SocialConnection, str], dict | None]

CHANNEL_BY_PLATFORM = {
    SocialPlatform.messenger: "facebook",
    SocialPlatform.instagram: "instagram",
}


def channel_for(platform: SocialPlatform) -> str:
    return CHANNEL_BY_PLATFORM[platform]


def get_conversation(db: Session, conversation_id: str | uuid.UUID) -> PlatformConversation:
    try:
        key = conversation_id if isinstance(conversation_id, uuid.UUID) else uuid.UUID(str(conversation_id))
    except ValueError as exc:
        raise SocialNotFoundError("conversation_not_found", "Conversation not found") from exc
    conversation = db.get(PlatformConversation, key)
    if not conversation:
        raise SocialNotFoundError("conversation_not_found", "Conversation not found")
    return conversation


def find_conversation(
    db: Session,
    connection: SocialConnection,
    participant_id: str,
) -> PlatformConversation | None:
    return (
        db.query(PlatformConversation)
        .filter(PlatformConversation.connection_id == connection.id)
        .filter(PlatformConversation.participant_id == participant_id)
        .first()
    )


def _touch(conversation: PlatformConversation, *, inbound: bool, timestamp: datetime | None) -> None:
    if inbound:
        conversation.unread_count = (conversation.unread_count or 0) + 1
    if timestamp is None:
        return
    current = as_utc(conversation.last_message_at)
    if current is None or timestamp > current:
        conversation.last_message_at = timestamp
        unified = conversation.unified_conversation
        if unified is not None:
            unified_last = as_utc(unified.last_message_at)
            if unified_last is None or timestamp > unified_last:
                unified.last_message_at = timestamp


def _fetch_profile(
    connection: SocialConnection,
    participant_id: str,
    profile_fetcher: ProfileFetcher | None,
) -> dict:
    if profile_fetcher is None:
        return {}
    try:
        return profile_fetcher(connection, participant_id) or {}
    except Exception as exc:
        # Profile access depends on page permissions; missing profiles are fine.
        logger.info(
            "social_profile_fetch_failed connection_id=%s participant=%s error=%s",
            connection.id,
            participant_id[:8],
            exc,
        )
        return {}


def resolve(
    db: Session,
    connection: SocialConnection,
    participant_id: str,
    *,
    inbound: bool = True,
    timestamp: datetime | None = None,
    is_standby: bool = False,
    profile_fetcher: ProfileFetcher | None = None,
) -> PlatformConversation:
    """Return the conversation for ``participant_id``, creating it on first contact.

    New conversations get a linked ``UnifiedConversation`` and start with the
    owner implied by whether the event arrived on the standby channel.
    Existing ones have their counters bumped: inbound events increment
    ``unread_count``; both directions advance ``last_message_at``.
    """
    timestamp = as_utc(timestamp)
    conversation = find_conversation(db, connection, participant_id)
    if conversation is not None:
        _touch(conversation, inbound=inbound, timestamp=timestamp)
        db.flush()
        return conversation

    profile = _fetch_profile(connection, participant_id, profile_fetcher)
    owner = initial_owner(is_standby)
    channel = channel_for(connection.platform)
    unified = UnifiedConversation(
        organization_id=connection.organization_id,
        channel=channel,
        status=UnifiedConversationStatus.open,
        last_message_at=timestamp,
    )
    conversation = PlatformConversation(
        connection_id=connection.id,
        organization_id=connection.organization_id,
        platform=connection.platform,
        participant_id=participant_id,
        participant_name=profile.get("name"),
        participant_username=profile.get("username"),
        participant_profile_pic=profile.get("profile_pic"),
        thread_id=(
            f"{connection.account_id}_{participant_id}"
            if connection.platform == SocialPlatform.instagram
            else None
        ),
        last_message_at=timestamp,
        unread_count=1 if inbound else 0,
        thread_owner=owner,
        thread_owner_app_id=connection.app_id if owner == ThreadOwner.app else None,
    )
    try:
        with db.begin_nested():
            db.add(unified)
            db.flush()
            conversation.unified_conversation_id = unified.id
            db.add(conversation)
            db.flush()
    except IntegrityError:
        existing = find_conversation(db, connection, participant_id)
        if existing is None:
            raise
        logger.info(
            "social_conversation_create_race connection_id=%s participant=%s",
            connection.id,
            participant_id[:8],
        )
        _touch(existing, inbound=inbound, timestamp=timestamp)
        db.flush()
        return existing

    logger.info(
        "social_conversation_created conversation_id=%s platform=%s owner=%s",
        conversation.id,
        connection.platform.value,
        owner.value,
    )
    return conversation


def set_referral(conversation: PlatformConversation, referral: dict) -> None:
    metadata = dict(conversation.metadata_ or {})
    metadata["last_referral"] = {**referral, "recorded_at": datetime.now(UTC).isoformat()}
    conversation.metadata_ = metadata
