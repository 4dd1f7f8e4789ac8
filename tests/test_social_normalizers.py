import pytest

from app.models.social import MessageKind, SocialPlatform
from app.schemas.social.webhooks import MetaWebhookEntry
from app.services.social.normalizers import (
    FALLBACK_SHARE_TEXT,
    EventKind,
    InstagramEventSource,
    MessengerEventSource,
    RawEvent,
    parse_message_content,
    source_for_object,
    source_for_platform,
)

TS = 1767268800000


def _raw(body: dict, collection: str = "messaging", entry_id: str = "PAGE", entry_time: int | None = TS) -> RawEvent:
    return RawEvent(entry_id=entry_id, entry_time=entry_time, collection=collection, body=body)


def _messaging(**extra) -> dict:
    return {"sender": {"id": "USER"}, "recipient": {"id": "PAGE"}, "timestamp": TS, **extra}


messenger = MessengerEventSource()
instagram = InstagramEventSource()


def test_text_message_uses_mid_as_event_id():
    event = messenger.normalize(_raw(_messaging(message={"mid": "m_1", "text": "hi"})))
    assert event.kind == EventKind.message
    assert event.event_id == "m_1"
    assert event.native_message_id == "m_1"
    assert event.content.kind == MessageKind.text
    assert event.content.text == "hi"
    assert event.sender_id == "USER"
    assert event.timestamp.year == 2026


def test_message_without_mid_gets_deterministic_id():
    raw = _raw(_messaging(message={"text": "hi"}))
    first = messenger.normalize(raw)
    second = messenger.normalize(raw)
    assert first.event_id == second.event_id == f"USER:{TS}:message"


def test_echo_and_deleted_are_classified():
    echo = messenger.normalize(_raw(_messaging(message={"mid": "m_e", "is_echo": True, "text": "x"})))
    deleted = instagram.normalize(_raw(_messaging(message={"mid": "m_d", "is_deleted": True})))
    assert echo.kind == EventKind.echo
    assert deleted.kind == EventKind.deleted
    assert deleted.platform == SocialPlatform.instagram


def test_delivery_and_read_ids_use_watermark():
    delivery = messenger.normalize(_raw(_messaging(delivery={"mids": ["m_1", "m_2"], "watermark": 1767268900000})))
    read = messenger.normalize(_raw(_messaging(read={"watermark": 1767268900000})))
    assert delivery.kind == EventKind.delivery
    assert delivery.event_id == "USER:1767268900000:delivery"
    assert delivery.data["mids"] == ["m_1", "m_2"]
    assert read.kind == EventKind.read
    assert read.event_id == "USER:1767268900000:read"
    assert read.data["watermark"] == 1767268900000


def test_postback_carries_payload_and_synthetic_message_id():
    event = messenger.normalize(_raw(_messaging(postback={"title": "Get Started", "payload": "START"})))
    assert event.kind == EventKind.postback
    assert event.event_id == f"USER:{TS}:postback"
    assert event.native_message_id == f"postback_{TS}"
    assert event.content.kind == MessageKind.postback
    assert event.content.postback_payload == "START"
    assert event.content.text == "Get Started"


def test_postback_prefers_platform_mid():
    event = messenger.normalize(_raw(_messaging(postback={"mid": "m_pb", "title": "Yes", "payload": "YES"})))
    assert event.native_message_id == "m_pb"


def test_referral_event():
    event = messenger.normalize(_raw(_messaging(referral={"ref": "summer", "source": "SHORTLINK", "type": "OPEN_THREAD"})))
    assert event.kind == EventKind.referral
    assert event.data["ref"] == "summer"
    assert event.data["source"] == "SHORTLINK"


@pytest.mark.parametrize(
    ("key", "kind"),
    [
        ("pass_thread_control", EventKind.pass_thread_control),
        ("take_thread_control", EventKind.take_thread_control),
        ("request_thread_control", EventKind.request_thread_control),
    ],
)
def test_handover_events(key, kind):
    body = _messaging(**{key: {"new_owner_app_id": 263902037430900, "previous_owner_app_id": "111", "metadata": "m"}})
    event = messenger.normalize(_raw(body))
    assert event.kind == kind
    assert event.event_id == f"USER:{TS}:{key}"
    assert event.data["new_owner_app_id"] == "263902037430900"
    assert event.data["metadata"] == "m"


def test_standby_collection_marks_event():
    event = messenger.normalize(_raw(_messaging(message={"mid": "m_s", "text": "x"}), collection="standby"))
    assert event.is_standby


def test_unknown_messaging_event_is_deterministic():
    raw = _raw(_messaging(optin={"ref": "x"}))
    first = messenger.normalize(raw)
    assert first.kind == EventKind.unknown
    assert first.event_id == messenger.normalize(raw).event_id


def test_seconds_timestamps_are_promoted_to_milliseconds():
    event = messenger.normalize(_raw({"sender": {"id": "USER"}, "timestamp": 1767268800, "message": {"mid": "m"}}))
    assert event.timestamp_ms == TS


def test_parse_media_attachment():
    content = parse_message_content({"attachments": [{"type": "image", "payload": {"url": "https://cdn/x.jpg"}}]})
    assert content.kind == MessageKind.image
    assert content.media_url == "https://cdn/x.jpg"
    assert content.media_type == "image"


def test_parse_sticker_location_template_share():
    sticker = parse_message_content({"sticker_id": 369239263222822, "attachments": [{"type": "image", "payload": {"url": "u"}}]})
    location = parse_message_content(
        {"attachments": [{"type": "location", "payload": {"coordinates": {"lat": 6.5, "long": 3.4}}}]}
    )
    template = parse_message_content(
        {"attachments": [{"type": "template", "payload": {"template_type": "button", "text": "Pick"}}]}
    )
    share = parse_message_content({"attachments": [{"type": "share", "payload": {"url": "https://x"}}]})
    assert sticker.kind == MessageKind.sticker
    assert location.kind == MessageKind.location
    assert location.text == "Location: 6.5, 3.4"
    assert template.kind == MessageKind.template
    assert template.template_type == "button"
    assert share.kind == MessageKind.share
    assert share.text == FALLBACK_SHARE_TEXT


def test_parse_story_mention_and_quick_reply():
    mention = parse_message_content({"attachments": [{"type": "story_mention", "payload": {"url": "https://s", "id": "st_1"}}]})
    reply = parse_message_content({"text": "Yes", "quick_reply": {"payload": "YES"}, "reply_to": {"mid": "m_0"}})
    assert mention.kind == MessageKind.story_mention
    assert mention.story_id == "st_1"
    assert reply.quick_reply_payload == "YES"
    assert reply.reply_to_message_id == "m_0"


def test_unknown_attachment_falls_back():
    content = parse_message_content({"attachments": [{"type": "ephemeral", "payload": {}}]})
    assert content.kind == MessageKind.fallback
    assert content.text == FALLBACK_SHARE_TEXT


def test_instagram_comment_change():
    change = {
        "field": "comments",
        "value": {"id": "c_1", "text": "Price?", "from": {"id": "IGU", "username": "ann"}, "media": {"id": "media_1"}},
    }
    event = instagram.normalize(_raw(change, collection="changes", entry_time=1767268800))
    assert event.kind == EventKind.comment
    assert event.event_id == "comments:c_1"
    assert event.data["from_id"] == "IGU"
    assert event.data["media_id"] == "media_1"
    assert event.timestamp_ms == TS


def test_instagram_mention_and_other_changes():
    mention = instagram.normalize(
        _raw({"field": "mentions", "value": {"media_id": "st_9", "mentioned_by": {"id": "IGU"}}}, collection="changes")
    )
    other = instagram.normalize(_raw({"field": "story_insights", "value": {"reach": 3}}, collection="changes"))
    assert mention.kind == EventKind.mention
    assert mention.data["story_id"] == "st_9"
    assert other.kind == EventKind.change
    assert other.event_id == instagram.normalize(
        _raw({"field": "story_insights", "value": {"reach": 3}}, collection="changes")
    ).event_id


def test_iter_events_walks_platform_collections():
    entry = MetaWebhookEntry(
        id="PAGE",
        time=TS,
        messaging=[_messaging(message={"mid": "a"})],
        standby=[_messaging(message={"mid": "b"})],
        changes=[{"field": "comments", "value": {"id": "c"}}],
    )
    assert [raw.collection for raw in messenger.iter_events(entry)] == ["messaging", "standby"]
    assert [raw.collection for raw in instagram.iter_events(entry)] == ["messaging", "changes"]


def test_stored_raw_event_roundtrip_normalizes_identically():
    raw = _raw(_messaging(message={"mid": "m_rt", "text": "hi"}), collection="standby")
    restored = RawEvent.from_stored(raw.to_stored())
    assert messenger.normalize(restored) == messenger.normalize(raw)


def test_source_lookup():
    assert source_for_object("page").platform == SocialPlatform.messenger
    assert source_for_object("instagram").platform == SocialPlatform.instagram
    assert source_for_object("whatsapp_business_account") is None
    assert source_for_object(None) is None
    assert source_for_platform(SocialPlatform.instagram).object_kind == "instagram"
