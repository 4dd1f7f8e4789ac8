"""Tests for social webhook Celery tasks."""

from unittest.mock import MagicMock

import pytest

from app.models.social import PlatformMessage
from app.models.webhook_dead_letter import WebhookDeadLetter
from app.services import webhook_dead_letter
from app.services.social import dispatcher
from app.tasks import social as social_tasks
from conftest import FakePlatformClient, messenger_payload, text_event


@pytest.fixture()
def task_session(db_session, monkeypatch):
    monkeypatch.setattr(db_session, "close", lambda: None)
    monkeypatch.setattr(social_tasks, "SessionLocal", lambda: db_session)
    monkeypatch.setattr(dispatcher, "get_platform_client", lambda: FakePlatformClient())
    return db_session


@pytest.fixture()
def dead_letter(monkeypatch):
    writer = MagicMock()
    monkeypatch.setattr(social_tasks, "write_dead_letter", writer)
    return writer


def test_task_retry_config():
    assert social_tasks.process_social_webhook.max_retries == social_tasks.INBOUND_MAX_RETRIES
    assert social_tasks.process_social_webhook.name == "app.tasks.social.process_social_webhook"


def test_task_processes_payload(task_session, messenger_connection, dead_letter):
    result = social_tasks.process_social_webhook.apply(
        args=(messenger_payload(text_event("m_task")), "messenger"),
        kwargs={"trace_id": "trace-1"},
    ).get()

    assert result["processed_count"] == 1
    assert result["success"] is True
    assert task_session.query(PlatformMessage).filter_by(platform_message_id="m_task").count() == 1
    dead_letter.assert_not_called()


def test_unsupported_object_is_dead_lettered_without_retry(task_session, dead_letter):
    payload = {"object": "whatsapp_business_account", "entry": []}
    result = social_tasks.process_social_webhook.apply(args=(payload, "messenger")).get()

    assert result is None
    dead_letter.assert_called_once()
    assert dead_letter.call_args.kwargs["raw_payload"] == payload


def test_exhausted_retries_are_dead_lettered(task_session, dead_letter, monkeypatch):
    def _explode(*args, **kwargs):
        raise RuntimeError("database went away")

    monkeypatch.setattr(dispatcher, "process_webhook", _explode)
    result = social_tasks.process_social_webhook.apply(
        args=(messenger_payload(), "instagram"),
        kwargs={"trace_id": "trace-2"},
        retries=social_tasks.INBOUND_MAX_RETRIES,
    ).get()

    assert result is None
    dead_letter.assert_called_once()
    assert dead_letter.call_args.kwargs["channel"] == "instagram"
    assert dead_letter.call_args.kwargs["trace_id"] == "trace-2"
    assert str(dead_letter.call_args.kwargs["error"]) == "database went away"


def test_stale_sweep_task_uses_configured_timeout(task_session, monkeypatch):
    seen = {}

    def _reprocess(db, older_than_seconds, **kwargs):
        seen["older_than"] = older_than_seconds
        return dispatcher.WebhookProcessingResult()

    monkeypatch.setattr(dispatcher, "reprocess_stale_events", _reprocess)
    result = social_tasks.reprocess_stale_webhook_events.apply().get()

    assert seen["older_than"] == social_tasks.settings.social_webhook_pending_timeout_seconds
    assert result["processed_count"] == 0


def test_dead_letter_writer_decodes_raw_bodies(monkeypatch):
    session = MagicMock()
    monkeypatch.setattr(webhook_dead_letter, "SessionLocal", lambda: session)

    webhook_dead_letter.write_dead_letter("messenger", b"{broken", ValueError("bad json"), trace_id="t-1")

    record = session.add.call_args.args[0]
    assert isinstance(record, WebhookDeadLetter)
    assert record.raw_payload == {"raw_text": "{broken"}
    assert "ValueError: bad json" in record.error
    session.commit.assert_called_once()
    session.close.assert_called_once()
