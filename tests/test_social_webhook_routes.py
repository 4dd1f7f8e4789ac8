import json
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from app.main import app
from app.web.public import social_webhooks
from conftest import VERIFY_TOKEN, instagram_payload, messenger_payload, signed_headers, text_event


@pytest.fixture()
def client():
    return TestClient(app)


@pytest.fixture()
def enqueue(monkeypatch):
    delay = MagicMock()
    monkeypatch.setattr(social_webhooks.social_tasks.process_social_webhook, "delay", delay)
    return delay


@pytest.fixture()
def dead_letter(monkeypatch):
    writer = MagicMock()
    monkeypatch.setattr(social_webhooks, "write_dead_letter", writer)
    return writer


def _post(client, path: str, payload) -> object:
    body = payload if isinstance(payload, bytes) else json.dumps(payload).encode()
    return client.post(path, content=body, headers=signed_headers(body))


@pytest.mark.parametrize("channel", ["messenger", "instagram"])
def test_verification_echoes_challenge(client, channel):
    response = client.get(
        f"/webhooks/social/{channel}",
        params={"hub.mode": "subscribe", "hub.verify_token": VERIFY_TOKEN, "hub.challenge": "1158201444"},
    )
    assert response.status_code == 200
    assert response.text == "1158201444"


def test_verification_rejects_wrong_token(client):
    response = client.get(
        "/webhooks/social/messenger",
        params={"hub.mode": "subscribe", "hub.verify_token": "nope", "hub.challenge": "1"},
    )
    assert response.status_code == 403


def test_verification_without_configured_token(client, override_settings):
    override_settings(meta_webhook_verify_token=None)
    response = client.get(
        "/webhooks/social/messenger",
        params={"hub.mode": "subscribe", "hub.verify_token": "", "hub.challenge": "1"},
    )
    assert response.status_code == 403


def test_signed_payload_is_enqueued(client, enqueue):
    payload = messenger_payload(text_event("m_1"), text_event("m_2"))
    response = _post(client, "/webhooks/social/messenger", payload)

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "events": 2}
    enqueue.assert_called_once()
    args, kwargs = enqueue.call_args
    assert args[0]["object"] == "page"
    assert len(args[0]["entry"][0]["messaging"]) == 2
    assert args[1] == "messenger"
    assert kwargs["trace_id"]


def test_api_v1_prefix_is_not_used_for_webhooks(client, enqueue):
    response = _post(client, "/api/v1/webhooks/social/messenger", messenger_payload(text_event("m_1")))
    assert response.status_code == 404
    enqueue.assert_not_called()


def test_bad_signature_is_rejected(client, enqueue):
    body = json.dumps(messenger_payload(text_event("m_1"))).encode()
    headers = signed_headers(body, secret="someone-else")
    response = client.post("/webhooks/social/messenger", content=body, headers=headers)
    assert response.status_code == 401
    enqueue.assert_not_called()


def test_missing_signature_is_rejected(client, enqueue):
    response = client.post("/webhooks/social/messenger", content=b'{"object": "page", "entry": []}')
    assert response.status_code == 401
    enqueue.assert_not_called()


def test_unconfigured_secret_rejects_everything(client, enqueue, override_settings):
    override_settings(meta_app_secret=None)
    response = _post(client, "/webhooks/social/messenger", messenger_payload(text_event("m_1")))
    assert response.status_code == 403
    enqueue.assert_not_called()


def test_malformed_body_is_dead_lettered(client, enqueue, dead_letter):
    response = _post(client, "/webhooks/social/instagram", b"{not json")
    assert response.status_code == 400
    enqueue.assert_not_called()
    dead_letter.assert_called_once()
    assert dead_letter.call_args.kwargs["channel"] == "instagram"


def test_wrong_object_for_channel(client, enqueue):
    response = _post(client, "/webhooks/social/messenger", instagram_payload(messaging=[text_event("m_1")]))
    assert response.status_code == 400
    assert "instagram" in response.json()["detail"]
    enqueue.assert_not_called()


def test_instagram_changes_count_as_events(client, enqueue):
    payload = instagram_payload(changes=[{"field": "comments", "value": {"id": "c_1", "text": "hi"}}])
    response = _post(client, "/webhooks/social/instagram", payload)
    assert response.status_code == 200
    assert response.json()["events"] == 1
    assert enqueue.call_args.args[1] == "instagram"


def test_health_and_metrics(client):
    assert client.get("/health").json() == {"status": "ok"}
    metrics = client.get("/metrics")
    assert metrics.status_code == 200
    assert "social_webhook_events_total" in metrics.text
