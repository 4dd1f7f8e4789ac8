"""Celery tasks for social webhook processing and scheduled sweeps."""

from app.celery_app import celery_app
from app.config import settings
from app.db import SessionLocal
from app.logging import get_logger
from app.services.social import comment_automation, dispatcher
from app.services.social.errors import InvalidWebhookObject
from app.services.webhook_dead_letter import write_dead_letter

logger = get_logger(__name__)

INBOUND_MAX_RETRIES = 5
INBOUND_RETRY_BASE_DELAY = 60  # seconds


@celery_app.task(
    name="app.tasks.social.process_social_webhook",
    bind=True,
    max_retries=INBOUND_MAX_RETRIES,
)
def process_social_webhook(self, payload: dict, channel: str, trace_id: str | None = None):
    """Run the dispatcher over a verified webhook payload.

    Per-event failures are terminal ledger rows and are not retried here;
    only a failure of the whole run is retried and finally dead-lettered.
    """
    session = SessionLocal()
    try:
        result = dispatcher.process_webhook(session, payload)
        logger.info(
            "webhook_processed channel=%s trace_id=%s processed=%s skipped=%s errors=%s",
            channel,
            trace_id,
            result.processed_count,
            result.skipped_count,
            len(result.errors),
        )
        return result.model_dump()
    except InvalidWebhookObject as exc:
        logger.warning("social_webhook_invalid_object channel=%s trace_id=%s", channel, trace_id)
        write_dead_letter(channel=channel, raw_payload=payload, error=exc, trace_id=trace_id)
        return None
    except Exception as exc:
        session.rollback()
        logger.exception(
            "social_webhook_processing_failed channel=%s trace_id=%s attempt=%s/%s error=%s",
            channel,
            trace_id,
            self.request.retries,
            INBOUND_MAX_RETRIES,
            exc,
        )
        # retry(exc=...) re-raises exc once retries run out, so check first.
        if self.request.retries >= INBOUND_MAX_RETRIES:
            logger.error("social_webhook_retries_exhausted channel=%s trace_id=%s", channel, trace_id)
            write_dead_letter(channel=channel, raw_payload=payload, error=exc, trace_id=trace_id)
            return None
        raise self.retry(
            exc=exc,
            countdown=INBOUND_RETRY_BASE_DELAY * (2**self.request.retries),
        )
    finally:
        session.close()


@celery_app.task(name="app.tasks.social.reprocess_stale_webhook_events")
def reprocess_stale_webhook_events(older_than_seconds: int | None = None):
    session = SessionLocal()
    try:
        result = dispatcher.reprocess_stale_events(
            session,
            older_than_seconds or settings.social_webhook_pending_timeout_seconds,
        )
        if result.processed_count or result.errors:
            logger.info(
                "social_stale_events_reprocessed processed=%s errors=%s skipped=%s",
                result.processed_count,
                len(result.errors),
                result.skipped_count,
            )
        return result.model_dump()
    finally:
        session.close()


@celery_app.task(name="app.tasks.social.send_due_comment_dms")
def send_due_comment_dms():
    session = SessionLocal()
    try:
        result = comment_automation.send_due_comment_dms(session)
        if result.sent or result.failed:
            logger.info("social_comment_dms_sent sent=%s failed=%s", result.sent, result.failed)
        return {"sent": result.sent, "failed": result.failed, "errors": result.errors}
    finally:
        session.close()
