"""Webhook dispatcher for Messenger and Instagram payloads.

Each event runs through: idempotency insert, normalize, handle, finish.
Failures are recorded on the event's ledger row and in the aggregate result;
they never stop sibling events or entries.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy.orm import Session

from app.config import settings
from app.logging import get_logger
from app.models.social import SocialConnection, SocialPlatform, WebhookEvent
from app.schemas.social.webhooks import MetaWebhookPayload, WebhookProcessingResult
from app.services.social import comment_automation, conversations, idempotency, messages, receipts, thread_control
from app.services.social.errors import InvalidWebhookObject
from app.services.social.observability import EVENT_PROCESSING_TIME, WEBHOOK_EVENTS
from app.services.social.normalizers import (
    HANDOVER_KINDS,
    CanonicalEvent,
    EventKind,
    RawEvent,
    RawEventSource,
    source_for_object,
    source_for_platform,
)
from app.services.social.platform_client import MetaPlatformClient, get_platform_client

logger = get_logger(__name__)

_NO_SIDE_EFFECTS = {EventKind.echo, EventKind.deleted, EventKind.change, EventKind.unknown}


class _AlreadyStored(Exception):
    """Raised inside an event savepoint when its message row already exists."""


@dataclass
class _Context:
    db: Session
    connection: SocialConnection
    client: MetaPlatformClient | None

    def profile_fetcher(self, connection: SocialConnection, participant_id: str) -> dict | None:
        client = self.client or get_platform_client()
        return client.get_user_profile(connection, participant_id)


def get_connection(db: Session, platform: SocialPlatform, account_id: str) -> SocialConnection | None:
    return (
        db.query(SocialConnection)
        .filter(SocialConnection.platform == platform)
        .filter(SocialConnection.account_id == str(account_id))
        .first()
    )


def process_webhook(
    db: Session,
    payload: dict | MetaWebhookPayload,
    *,
    source: RawEventSource | None = None,
    client: MetaPlatformClient | None = None,
) -> WebhookProcessingResult:
    """Process every event of a parsed webhook payload.

    Raises:
        InvalidWebhookObject: When ``payload.object`` is not a supported kind,
            or does not match ``source`` when one is given.
    """
    parsed = payload if isinstance(payload, MetaWebhookPayload) else MetaWebhookPayload.model_validate(payload)
    resolved = source_for_object(parsed.object)
    if resolved is None or (source is not None and source.object_kind != parsed.object):
        raise InvalidWebhookObject(parsed.object)
    source = source or resolved

    result = WebhookProcessingResult()
    for entry in parsed.entry:
        connection = get_connection(db, source.platform, entry.id)
        if connection is None or not connection.is_active:
            logger.warning(
                "social_webhook_unknown_account platform=%s account_id=%s",
                source.platform.value,
                entry.id,
            )
            result.add_error(f"No active connection for {source.platform.value} account {entry.id}")
            continue
        for raw in source.iter_events(entry):
            _process_event(db, source, connection, raw, result, client)

    logger.info(
        "social_webhook_processed platform=%s processed=%s skipped=%s errors=%s",
        source.platform.value,
        result.processed_count,
        result.skipped_count,
        len(result.errors),
    )
    return result


def _process_event(
    db: Session,
    source: RawEventSource,
    connection: SocialConnection,
    raw: RawEvent,
    result: WebhookProcessingResult,
    client: MetaPlatformClient | None,
) -> None:
    try:
        event = source.normalize(raw)
    except Exception as exc:
        logger.exception("social_webhook_normalize_failed account_id=%s", raw.entry_id)
        _record_unreadable(db, source, connection, raw, exc, result)
        return

    begin = idempotency.begin_processing(
        db,
        event.event_id,
        event.kind.value,
        connection.id,
        platform=source.platform,
        payload=raw.to_stored(),
    )
    if begin.already_seen:
        WEBHOOK_EVENTS.labels(source.platform.value, event.kind.value, "duplicate").inc()
        result.skipped_count += 1
        return

    error = _run_event(db, connection, event, client)
    if error is None:
        result.processed_count += 1
    else:
        result.add_error(f"Event {event.event_id}: {error}")


def _record_unreadable(
    db: Session,
    source: RawEventSource,
    connection: SocialConnection,
    raw: RawEvent,
    exc: Exception,
    result: WebhookProcessingResult,
) -> None:
    """Give an event that could not be normalized a failed ledger row."""
    stored = raw.to_stored()
    event_id = f"{raw.entry_id}:{raw.collection}:unreadable:{idempotency.hash_payload(raw.body)}"
    begin = idempotency.begin_processing(
        db,
        event_id,
        EventKind.unknown.value,
        connection.id,
        platform=source.platform,
        payload=stored,
    )
    if begin.already_seen:
        WEBHOOK_EVENTS.labels(source.platform.value, EventKind.unknown.value, "duplicate").inc()
        result.skipped_count += 1
        return
    error = f"Could not normalize event: {exc}"
    idempotency.finish(db, event_id, False, error)
    WEBHOOK_EVENTS.labels(source.platform.value, EventKind.unknown.value, "failed").inc()
    result.add_error(f"Event {event_id}: {error}")


def _run_event(
    db: Session,
    connection: SocialConnection,
    event: CanonicalEvent,
    client: MetaPlatformClient | None,
) -> str | None:
    """Handle a claimed event and finish its ledger row.

    Returns None on success, otherwise the error recorded on the row.
    """
    context = _Context(db=db, connection=connection, client=client)
    platform = event.platform.value
    started = time.monotonic()
    try:
        with db.begin_nested():
            handle_event(context, event)
    except _AlreadyStored:
        pass
    except Exception as exc:
        db.rollback()
        error = str(exc) or exc.__class__.__name__
        logger.warning(
            "social_webhook_event_failed event_id=%s kind=%s error=%s",
            event.event_id,
            event.kind.value,
            error,
        )
        idempotency.finish(db, event.event_id, False, error)
        WEBHOOK_EVENTS.labels(platform, event.kind.value, "failed").inc()
        return error
    finally:
        EVENT_PROCESSING_TIME.labels(platform, event.kind.value).observe(time.monotonic() - started)
    idempotency.finish(db, event.event_id, True)
    WEBHOOK_EVENTS.labels(platform, event.kind.value, "processed").inc()
    return None


def handle_event(context: _Context, event: CanonicalEvent) -> None:
    if event.kind in _NO_SIDE_EFFECTS:
        logger.debug("social_webhook_event_ignored event_id=%s kind=%s", event.event_id, event.kind.value)
        return
    if event.kind in (EventKind.message, EventKind.postback):
        _handle_message(context, event)
    elif event.kind == EventKind.delivery:
        _handle_delivery(context, event)
    elif event.kind == EventKind.read:
        _handle_read(context, event)
    elif event.kind == EventKind.referral:
        _handle_referral(context, event)
    elif event.kind in HANDOVER_KINDS:
        _handle_handover(context, event)
    elif event.kind == EventKind.comment:
        _handle_comment(context, event)
    elif event.kind == EventKind.mention:
        _handle_mention(context, event)


def _require_sender(event: CanonicalEvent) -> str:
    if not event.sender_id:
        raise ValueError(f"{event.kind.value} event has no sender id")
    return event.sender_id


def _handle_message(context: _Context, event: CanonicalEvent) -> None:
    db = context.db
    participant_id = _require_sender(event)
    conversation = conversations.resolve(
        db,
        context.connection,
        participant_id,
        inbound=True,
        timestamp=event.timestamp,
        is_standby=event.is_standby,
        profile_fetcher=context.profile_fetcher,
    )
    persisted = messages.persist(db, conversation, event)
    if not persisted.created:
        raise _AlreadyStored(event.event_id)


def _find_participant_conversation(context: _Context, event: CanonicalEvent):
    return conversations.find_conversation(context.db, context.connection, _require_sender(event))


def _handle_delivery(context: _Context, event: CanonicalEvent) -> None:
    conversation = _find_participant_conversation(context, event)
    if conversation is None:
        logger.info("social_delivery_unknown_conversation event_id=%s", event.event_id)
        return
    receipts.apply_delivery(
        context.db,
        conversation,
        event.data.get("mids") or [],
        event.data.get("watermark"),
    )


def _handle_read(context: _Context, event: CanonicalEvent) -> None:
    conversation = _find_participant_conversation(context, event)
    if conversation is None:
        logger.info("social_read_unknown_conversation event_id=%s", event.event_id)
        return
    watermark = event.data.get("watermark")
    if watermark is None and event.data.get("mid"):
        watermark = receipts.watermark_for_message(context.db, conversation, event.data["mid"])
    if watermark is None:
        logger.info(
            "social_read_unknown_message event_id=%s mid=%s",
            event.event_id,
            event.data.get("mid"),
        )
        return
    receipts.apply_read(context.db, conversation, watermark)


def _handle_referral(context: _Context, event: CanonicalEvent) -> None:
    logger.info(
        "social_referral sender=%s ref=%s source=%s type=%s",
        (event.sender_id or "")[:8],
        event.data.get("ref"),
        event.data.get("source"),
        event.data.get("type"),
    )
    conversation = _find_participant_conversation(context, event)
    if conversation is not None:
        conversations.set_referral(conversation, event.data)
        context.db.flush()


def _handle_handover(context: _Context, event: CanonicalEvent) -> None:
    conversation = conversations.resolve(
        context.db,
        context.connection,
        _require_sender(event),
        inbound=False,
        timestamp=None,
        is_standby=event.is_standby,
        profile_fetcher=context.profile_fetcher,
    )
    thread_control.apply_handover_event(context.db, conversation, event)


def _handle_comment(context: _Context, event: CanonicalEvent) -> None:
    outcome = comment_automation.process_comment(
        context.db,
        context.connection,
        event.data,
        client=context.client,
    )
    if outcome.triggered:
        logger.info(
            "social_comment_rule_triggered rule_id=%s comment_id=%s dm_sent=%s error=%s",
            outcome.rule_id,
            event.data.get("comment_id"),
            outcome.dm_sent,
            outcome.error,
        )


def _handle_mention(context: _Context, event: CanonicalEvent) -> None:
    comment_automation.record_story_mention(
        context.db,
        context.connection,
        story_id=event.data.get("story_id"),
        mentioned_by_id=event.data.get("mentioned_by_id"),
        mentioned_by_username=event.data.get("mentioned_by_username"),
        story_url=event.data.get("story_url"),
        mentioned_at=event.timestamp,
        raw_payload=event.data.get("value"),
    )


def reprocess_stale_events(
    db: Session,
    older_than_seconds: int | None = None,
    *,
    limit: int = 100,
    client: MetaPlatformClient | None = None,
) -> WebhookProcessingResult:
    """Re-run ledger rows left pending after a crash and finish them."""
    older_than = timedelta(
        seconds=older_than_seconds
        if older_than_seconds is not None
        else settings.social_webhook_pending_timeout_seconds
    )
    result = WebhookProcessingResult()
    for row in idempotency.list_stale_pending(db, older_than, limit=limit):
        event_id = row.event_id
        if not idempotency.claim_stale(db, event_id, older_than):
            result.skipped_count += 1
            continue
        row = db.query(WebhookEvent).filter(WebhookEvent.event_id == event_id).populate_existing().first()
        connection = db.get(SocialConnection, row.connection_id) if row.connection_id else None
        if not row.payload or row.platform is None or connection is None:
            idempotency.finish(db, event_id, False, "No stored payload to reprocess")
            result.add_error(f"Event {event_id}: no stored payload to reprocess")
            continue
        try:
            raw = RawEvent.from_stored(row.payload)
            event = source_for_platform(row.platform).normalize(raw)
        except Exception as exc:
            idempotency.finish(db, event_id, False, f"Stored payload unreadable: {exc}")
            result.add_error(f"Event {event_id}: stored payload unreadable")
            continue
        logger.info("social_webhook_event_reprocess event_id=%s attempts=%s", event_id, row.attempts)
        error = _run_event(db, connection, event, client)
        if error is None:
            result.processed_count += 1
        else:
            result.add_error(f"Event {event_id}: {error}")
    return result
