import pytest

from app.models.social import (
    MessageDirection,
    MessageKind,
    MessageStatus,
    PlatformMessage,
    ThreadOwner,
    UnifiedMessage,
)
from app.services.social import outbound, rate_limit
from app.services.social.errors import PlatformAPIError, RateLimitExceeded, SocialValidationError, ThreadOwnershipError
from conftest import FakePlatformClient


def test_send_records_outbound_message(db_session, messenger_conversation):
    client = FakePlatformClient()
    messenger_conversation.unread_count = 2
    db_session.commit()

    message = outbound.send_message(db_session, messenger_conversation, {"text": "Thanks!"}, client=client)

    assert client.sent == [("PSID_USER_1", {"text": "Thanks!"})]
    assert message.platform_message_id == "m_out_1"
    assert message.direction == MessageDirection.outbound
    assert message.status == MessageStatus.sent
    assert message.kind == MessageKind.text
    assert messenger_conversation.unread_count == 2
    unified = db_session.query(UnifiedMessage).filter_by(channel_message_id="m_out_1").one()
    assert unified.direction == MessageDirection.outbound


def test_send_blocked_when_thread_not_owned(db_session, messenger_conversation):
    messenger_conversation.thread_owner = ThreadOwner.page_inbox
    db_session.commit()
    client = FakePlatformClient()

    with pytest.raises(ThreadOwnershipError):
        outbound.send_message(db_session, messenger_conversation, {"text": "hello"}, client=client)
    assert client.sent == []


def test_platform_failure_persists_nothing(db_session, messenger_conversation):
    client = FakePlatformClient(send_error=PlatformAPIError("platform_send_failed", "boom"))

    with pytest.raises(PlatformAPIError):
        outbound.send_message(db_session, messenger_conversation, {"text": "hello"}, client=client)
    assert db_session.query(PlatformMessage).count() == 0


def test_empty_payload_rejected(db_session, messenger_conversation):
    with pytest.raises(SocialValidationError):
        outbound.send_message(db_session, messenger_conversation, {}, client=FakePlatformClient())


def test_instagram_sends_count_against_hourly_limit(db_session, instagram_conversation, override_settings):
    override_settings(instagram_hourly_send_limit=2)
    client = FakePlatformClient()

    outbound.send_message(db_session, instagram_conversation, {"text": "one"}, client=client)
    outbound.send_message(db_session, instagram_conversation, {"text": "two"}, client=client)
    with pytest.raises(RateLimitExceeded) as exc:
        outbound.send_message(db_session, instagram_conversation, {"text": "three"}, client=client)

    assert exc.value.retry_after > 0
    assert len(client.sent) == 2
    info = rate_limit.get_rate_limit_info(db_session, instagram_conversation.organization_id)
    assert info.messages_sent == 2


def test_messenger_sends_are_not_rate_limited(db_session, messenger_conversation, override_settings):
    override_settings(instagram_hourly_send_limit=1)
    client = FakePlatformClient()
    for text in ("a", "b", "c"):
        outbound.send_message(db_session, messenger_conversation, {"text": text}, client=client)
    assert len(client.sent) == 3


def test_content_from_payload_kinds():
    template = outbound.content_from_payload(
        {"attachment": {"type": "template", "payload": {"template_type": "generic", "elements": []}}}
    )
    image = outbound.content_from_payload({"attachment": {"type": "image", "payload": {"url": "https://i"}}})
    assert template.kind == MessageKind.template
    assert template.template_type == "generic"
    assert image.kind == MessageKind.image
    assert image.media_url == "https://i"
