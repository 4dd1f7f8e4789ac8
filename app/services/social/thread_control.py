"""Handover Protocol thread ownership.

Ownership is a three-state enum moved only by :func:`transition`. Every
change is written as a ``ThreadControlLogEntry`` in the same transaction as
the conversation's cached ``thread_owner``. Operator actions change local
state only after the platform acknowledges the call.
"""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy.orm import Session

from app.config import settings
from app.logging import get_logger
from app.models.social import (
    PlatformConversation,
    ThreadControlAction,
    ThreadControlLogEntry,
    ThreadOwner,
)
from app.services.social.errors import PlatformAPIError, SocialValidationError, ThreadOwnershipError
from app.services.social.normalizers import CanonicalEvent, EventKind
from app.services.social.platform_client import MetaPlatformClient, get_platform_client

logger = get_logger(__name__)


def classify_app_id(
    app_id: str | None,
    own_app_id: str | None,
    page_inbox_app_id: str | None = None,
) -> ThreadOwner:
    inbox_app_id = page_inbox_app_id or settings.meta_page_inbox_app_id
    if app_id is not None and own_app_id and str(app_id) == str(own_app_id):
        return ThreadOwner.app
    if app_id is not None and str(app_id) == str(inbox_app_id):
        return ThreadOwner.page_inbox
    return ThreadOwner.secondary_app


def transition(
    current: ThreadOwner,
    action: ThreadControlAction,
    target: ThreadOwner | None = None,
) -> ThreadOwner:
    if action == ThreadControlAction.pass_:
        if target is None:
            raise ValueError("pass requires a target owner")
        return target
    if action == ThreadControlAction.take:
        return ThreadOwner.app
    return current


def initial_owner(is_standby: bool) -> ThreadOwner:
    return ThreadOwner.page_inbox if is_standby else ThreadOwner.app


def ensure_can_send(conversation: PlatformConversation) -> None:
    if conversation.thread_owner != ThreadOwner.app:
        raise ThreadOwnershipError(
            "thread_not_owned",
            f"Conversation is controlled by {conversation.thread_owner.value}; take control before sending",
        )


def _own_app_id(conversation: PlatformConversation) -> str | None:
    connection = conversation.connection
    return (connection.app_id if connection else None) or settings.meta_app_id


def _record(
    db: Session,
    conversation: PlatformConversation,
    action: ThreadControlAction,
    *,
    from_app_id: str | None,
    to_app_id: str | None,
    target: ThreadOwner | None = None,
    metadata: str | None = None,
    source_event_id: str | None = None,
) -> ThreadControlLogEntry:
    resulting = transition(conversation.thread_owner, action, target)
    entry = ThreadControlLogEntry(
        conversation_id=conversation.id,
        action=action,
        from_app_id=from_app_id,
        to_app_id=to_app_id,
        resulting_owner=resulting,
        source_event_id=source_event_id,
        metadata_={"metadata": metadata} if metadata else None,
        created_at=datetime.now(UTC),
    )
    db.add(entry)
    if action != ThreadControlAction.request:
        conversation.thread_owner = resulting
        conversation.thread_owner_app_id = to_app_id
        conversation.control_requested_by_app_id = None
        conversation.control_requested_at = None
    db.flush()
    logger.info(
        "social_thread_control action=%s conversation_id=%s owner=%s from=%s to=%s",
        action.value,
        conversation.id,
        resulting.value,
        from_app_id,
        to_app_id,
    )
    return entry


def pass_thread_control(
    db: Session,
    conversation: PlatformConversation,
    target_app_id: str | None = None,
    metadata: str | None = None,
    client: MetaPlatformClient | None = None,
) -> ThreadControlLogEntry:
    """Hand the thread to another app (the Page Inbox by default).

    Raises:
        ThreadOwnershipError: When this app does not own the thread.
        PlatformAPIError: When the platform rejects the pass.
    """
    ensure_can_send(conversation)
    own_app_id = _own_app_id(conversation)
    target_app_id = target_app_id or settings.meta_page_inbox_app_id
    client = client or get_platform_client()
    if not client.pass_thread_control(
        conversation.connection,
        conversation.participant_id,
        target_app_id=target_app_id,
        metadata=metadata,
    ):
        raise PlatformAPIError("handover_rejected", "Platform rejected pass_thread_control", retryable=False)
    entry = _record(
        db,
        conversation,
        ThreadControlAction.pass_,
        from_app_id=own_app_id,
        to_app_id=target_app_id,
        target=classify_app_id(target_app_id, own_app_id),
        metadata=metadata,
    )
    db.commit()
    db.refresh(conversation)
    return entry


def take_thread_control(
    db: Session,
    conversation: PlatformConversation,
    metadata: str | None = None,
    client: MetaPlatformClient | None = None,
) -> ThreadControlLogEntry:
    client = client or get_platform_client()
    if not client.take_thread_control(conversation.connection, conversation.participant_id, metadata=metadata):
        raise PlatformAPIError("handover_rejected", "Platform rejected take_thread_control", retryable=False)
    entry = _record(
        db,
        conversation,
        ThreadControlAction.take,
        from_app_id=conversation.thread_owner_app_id,
        to_app_id=_own_app_id(conversation),
        metadata=metadata,
    )
    db.commit()
    db.refresh(conversation)
    return entry


def request_thread_control(
    db: Session,
    conversation: PlatformConversation,
    metadata: str | None = None,
    client: MetaPlatformClient | None = None,
) -> ThreadControlLogEntry:
    client = client or get_platform_client()
    if not client.request_thread_control(conversation.connection, conversation.participant_id, metadata=metadata):
        raise PlatformAPIError("handover_rejected", "Platform rejected request_thread_control", retryable=False)
    entry = _record(
        db,
        conversation,
        ThreadControlAction.request,
        from_app_id=_own_app_id(conversation),
        to_app_id=conversation.thread_owner_app_id,
        metadata=metadata,
    )
    db.commit()
    db.refresh(conversation)
    return entry


def apply_handover_event(
    db: Session,
    conversation: PlatformConversation,
    event: CanonicalEvent,
) -> ThreadControlLogEntry:
    """Apply a handover webhook the platform has already carried out.

    The caller owns the transaction.
    """
    own_app_id = _own_app_id(conversation)
    data = event.data
    metadata = data.get("metadata")

    if event.kind == EventKind.pass_thread_control:
        new_owner_app_id = data.get("new_owner_app_id")
        if not new_owner_app_id:
            raise SocialValidationError("invalid_handover", "pass_thread_control event has no new_owner_app_id")
        return _record(
            db,
            conversation,
            ThreadControlAction.pass_,
            from_app_id=data.get("previous_owner_app_id") or conversation.thread_owner_app_id or own_app_id,
            to_app_id=new_owner_app_id,
            target=classify_app_id(new_owner_app_id, own_app_id),
            metadata=metadata,
            source_event_id=event.event_id,
        )

    if event.kind == EventKind.take_thread_control:
        return _record(
            db,
            conversation,
            ThreadControlAction.take,
            from_app_id=data.get("previous_owner_app_id"),
            to_app_id=own_app_id,
            metadata=metadata,
            source_event_id=event.event_id,
        )

    if event.kind == EventKind.request_thread_control:
        requested_by = data.get("requested_owner_app_id")
        conversation.control_requested_by_app_id = requested_by
        conversation.control_requested_at = event.timestamp
        logger.warning(
            "social_thread_control_requested conversation_id=%s requested_by=%s",
            conversation.id,
            requested_by,
        )
        return _record(
            db,
            conversation,
            ThreadControlAction.request,
            from_app_id=requested_by,
            to_app_id=own_app_id,
            metadata=metadata,
            source_event_id=event.event_id,
        )

    raise SocialValidationError("invalid_handover", f"Not a handover event: {event.kind.value}")
