from datetime import UTC, datetime, timedelta

from app.models.social import SocialPlatform, WebhookEvent, WebhookEventStatus
from app.services.social import idempotency


def _row(db_session, event_id):
    return (
        db_session.query(WebhookEvent)
        .filter(WebhookEvent.event_id == event_id)
        .populate_existing()
        .one()
    )


def test_begin_processing_inserts_pending_row(db_session):
    result = idempotency.begin_processing(
        db_session,
        "m_1",
        "message",
        platform=SocialPlatform.messenger,
        payload={"event": {"message": {"mid": "m_1"}}},
    )
    assert result.inserted
    assert not result.already_seen
    row = _row(db_session, "m_1")
    assert row.status == WebhookEventStatus.pending
    assert row.attempts == 1
    assert row.payload_hash == idempotency.hash_payload({"event": {"message": {"mid": "m_1"}}})
    assert idempotency.is_processed(db_session, "m_1")


def test_second_begin_reports_already_seen(db_session):
    idempotency.begin_processing(db_session, "m_2", "message")
    duplicate = idempotency.begin_processing(db_session, "m_2", "message")
    assert duplicate.already_seen
    assert duplicate.existing_status == WebhookEventStatus.pending
    assert db_session.query(WebhookEvent).filter(WebhookEvent.event_id == "m_2").count() == 1


def test_finish_moves_pending_to_terminal_once(db_session):
    idempotency.begin_processing(db_session, "m_3", "message")
    assert idempotency.finish(db_session, "m_3", True)
    assert not idempotency.finish(db_session, "m_3", False, "late failure")
    row = _row(db_session, "m_3")
    assert row.status == WebhookEventStatus.processed
    assert row.error_message is None
    assert row.processed_at is not None


def test_finish_failed_records_truncated_error(db_session):
    idempotency.begin_processing(db_session, "m_4", "message")
    idempotency.finish(db_session, "m_4", False, "x" * 5000)
    row = _row(db_session, "m_4")
    assert row.status == WebhookEventStatus.failed
    assert len(row.error_message) == 2000


def test_duplicate_of_terminal_row_stays_terminal(db_session):
    idempotency.begin_processing(db_session, "m_5", "message")
    idempotency.finish(db_session, "m_5", False, "boom")
    duplicate = idempotency.begin_processing(db_session, "m_5", "message")
    assert duplicate.already_seen
    assert duplicate.existing_status == WebhookEventStatus.failed
    assert _row(db_session, "m_5").status == WebhookEventStatus.failed


def test_is_processed_false_for_unknown(db_session):
    assert not idempotency.is_processed(db_session, "never-seen")


def test_stale_pending_rows_are_listed_and_claimed_once(db_session):
    idempotency.begin_processing(db_session, "stale", "message")
    idempotency.begin_processing(db_session, "fresh", "message")
    row = _row(db_session, "stale")
    row.last_attempt_at = datetime.now(UTC) - timedelta(hours=1)
    db_session.commit()

    stale = idempotency.list_stale_pending(db_session, timedelta(minutes=15))
    assert [item.event_id for item in stale] == ["stale"]

    assert idempotency.claim_stale(db_session, "stale", timedelta(minutes=15))
    assert not idempotency.claim_stale(db_session, "stale", timedelta(minutes=15))
    assert _row(db_session, "stale").attempts == 2
    assert idempotency.list_stale_pending(db_session, 900) == []
