"""Persistence of social webhook payloads that could not be processed."""

import traceback

from app.db import SessionLocal
from app.logging import get_logger
from app.models.webhook_dead_letter import WebhookDeadLetter

logger = get_logger(__name__)


def write_dead_letter(
    channel: str,
    raw_payload: dict | str | bytes,
    error: str | Exception,
    trace_id: str | None = None,
    event_id: str | None = None,
) -> None:
    """Store a failed webhook payload for later inspection.

    Opens its own session so it works while the caller's session is dirty
    or already closed. Write failures are logged, never raised.

    Args:
        channel: Platform the payload arrived on ("messenger", "instagram").
        raw_payload: Parsed payload, or the undecodable body.
        error: The error message or exception.
        trace_id: Request correlation id.
        event_id: Ledger event id, when the failure belongs to one event.
    """
    if isinstance(error, Exception):
        # Format the given exception, not sys.exc_info(), which may hold a retry wrapper.
        error_str = "".join(traceback.format_exception(type(error), error, error.__traceback__))
    else:
        error_str = str(error)

    if isinstance(raw_payload, bytes):
        raw_payload = raw_payload.decode("utf-8", errors="replace")
    if isinstance(raw_payload, str):
        raw_payload = {"raw_text": raw_payload[:8000]}

    session = SessionLocal()
    try:
        session.add(
            WebhookDeadLetter(
                channel=channel,
                trace_id=trace_id,
                event_id=event_id,
                raw_payload=raw_payload,
                error=error_str[:4000] if error_str else None,
            )
        )
        session.commit()
        logger.info(
            "webhook_dead_letter_written channel=%s trace_id=%s event_id=%s",
            channel,
            trace_id,
            event_id,
        )
    except Exception:
        session.rollback()
        logger.exception("webhook_dead_letter_write_failed channel=%s trace_id=%s", channel, trace_id)
    finally:
        session.close()
