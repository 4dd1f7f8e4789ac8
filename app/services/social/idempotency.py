"""Webhook idempotency ledger.

Every attempted event gets exactly one ``WebhookEvent`` row. The row is
inserted before any side effect runs; the unique constraint on ``event_id``
decides which delivery of a duplicate event does the work.
"""

from __future__ import annotations

import hashlib
import json
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from sqlalchemy import func, or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.logging import get_logger
from app.models.social import SocialPlatform, WebhookEvent, WebhookEventStatus

logger = get_logger(__name__)

_ERROR_MESSAGE_LIMIT = 2000


@dataclass(frozen=True)
class BeginResult:
    inserted: bool
    event: WebhookEvent | None = None
    existing_status: WebhookEventStatus | None = None

    @property
    def already_seen(self) -> bool:
        return not self.inserted


def hash_payload(payload: dict | None) -> str:
    encoded = json.dumps(payload or {}, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


def is_processed(db: Session, event_id: str) -> bool:
    """Return True when a ledger row exists for ``event_id`` in any state.

    Informational only. Deduplication happens in :func:`begin_processing`.
    """
    return db.query(WebhookEvent.id).filter(WebhookEvent.event_id == event_id).first() is not None


def begin_processing(
    db: Session,
    event_id: str,
    event_type: str,
    connection_id: uuid.UUID | None = None,
    payload_hash: str | None = None,
    *,
    platform: SocialPlatform | None = None,
    payload: dict | None = None,
) -> BeginResult:
    """Insert a pending ledger row, or report that the event was already seen.

    The pending row is committed before returning so it is durable ahead of
    the event's side effects.
    """
    record = WebhookEvent(
        event_id=event_id,
        event_type=event_type,
        platform=platform,
        connection_id=connection_id,
        payload_hash=payload_hash or (hash_payload(payload) if payload is not None else None),
        payload=payload,
        status=WebhookEventStatus.pending,
        attempts=1,
        last_attempt_at=datetime.now(UTC),
    )
    try:
        with db.begin_nested():
            db.add(record)
            db.flush()
    except IntegrityError:
        existing = db.query(WebhookEvent).filter(WebhookEvent.event_id == event_id).first()
        status = existing.status if existing else None
        logger.info(
            "social_webhook_event_duplicate event_id=%s status=%s",
            event_id,
            status.value if status else None,
        )
        return BeginResult(inserted=False, event=existing, existing_status=status)
    db.commit()
    return BeginResult(inserted=True, event=record, existing_status=WebhookEventStatus.pending)


def finish(db: Session, event_id: str, success: bool, error_message: str | None = None) -> bool:
    """Move a pending row to processed or failed.

    Terminal rows are left untouched; returns whether a row transitioned.
    """
    status = WebhookEventStatus.processed if success else WebhookEventStatus.failed
    result = db.execute(
        update(WebhookEvent)
        .where(WebhookEvent.event_id == event_id)
        .where(WebhookEvent.status == WebhookEventStatus.pending)
        .values(
            status=status,
            error_message=error_message[:_ERROR_MESSAGE_LIMIT] if error_message else None,
            processed_at=datetime.now(UTC),
        )
        .execution_options(synchronize_session="fetch")
    )
    db.commit()
    transitioned = bool(result.rowcount)
    if not transitioned:
        logger.info("social_webhook_event_finish_noop event_id=%s", event_id)
    return transitioned


def list_stale_pending(db: Session, older_than: timedelta | int, limit: int = 100) -> list[WebhookEvent]:
    """Pending rows whose last attempt started before ``older_than`` ago."""
    if isinstance(older_than, int):
        older_than = timedelta(seconds=older_than)
    cutoff = datetime.now(UTC) - older_than
    return (
        db.query(WebhookEvent)
        .filter(WebhookEvent.status == WebhookEventStatus.pending)
        .filter(func.coalesce(WebhookEvent.last_attempt_at, WebhookEvent.created_at) < cutoff)
        .order_by(WebhookEvent.created_at.asc())
        .limit(limit)
        .all()
    )


def claim_stale(db: Session, event_id: str, older_than: timedelta | int) -> bool:
    """Bump ``attempts`` on a stale pending row; False if another worker got it first."""
    if isinstance(older_than, int):
        older_than = timedelta(seconds=older_than)
    now = datetime.now(UTC)
    cutoff = now - older_than
    result = db.execute(
        update(WebhookEvent)
        .where(WebhookEvent.event_id == event_id)
        .where(WebhookEvent.status == WebhookEventStatus.pending)
        .where(
            or_(
                WebhookEvent.last_attempt_at.is_(None),
                WebhookEvent.last_attempt_at < cutoff,
            )
        )
        .values(attempts=WebhookEvent.attempts + 1, last_attempt_at=now)
        .execution_options(synchronize_session="fetch")
    )
    db.commit()
    return bool(result.rowcount)
