from app.models.social import MessageStatus, PlatformMessage, UnifiedMessage
from app.services.social import receipts
from conftest import add_outbound

BASE_MS = 1767268800000


def _status(db_session, message_id):
    message = (
        db_session.query(PlatformMessage)
        .filter(PlatformMessage.platform_message_id == message_id)
        .populate_existing()
        .one()
    )
    return message.status


def test_read_watermark_marks_messages_up_to_watermark(db_session, messenger_conversation):
    add_outbound(db_session, messenger_conversation, "m_a", BASE_MS + 1000)
    add_outbound(db_session, messenger_conversation, "m_b", BASE_MS + 2000)
    add_outbound(db_session, messenger_conversation, "m_c", BASE_MS + 3000)
    messenger_conversation.unread_count = 4
    db_session.commit()

    updated = receipts.apply_read(db_session, messenger_conversation, BASE_MS + 2000)
    db_session.commit()

    assert updated == 2
    assert _status(db_session, "m_a") == MessageStatus.read
    assert _status(db_session, "m_b") == MessageStatus.read
    assert _status(db_session, "m_c") == MessageStatus.sent
    assert messenger_conversation.unread_count == 0
    assert messenger_conversation.last_read_watermark == BASE_MS + 2000
    unified = db_session.query(UnifiedMessage).filter_by(channel_message_id="m_a").one()
    assert unified.status == MessageStatus.read


def test_stale_read_watermark_is_ignored(db_session, messenger_conversation):
    add_outbound(db_session, messenger_conversation, "m_a", BASE_MS + 1000)
    receipts.apply_read(db_session, messenger_conversation, BASE_MS + 5000)
    add_outbound(db_session, messenger_conversation, "m_late", BASE_MS + 2000)

    assert receipts.apply_read(db_session, messenger_conversation, BASE_MS + 3000) == 0
    assert _status(db_session, "m_late") == MessageStatus.sent
    assert messenger_conversation.last_read_watermark == BASE_MS + 5000


def test_read_sets_delivered_at_when_missing(db_session, messenger_conversation):
    message = add_outbound(db_session, messenger_conversation, "m_a", BASE_MS + 1000)
    receipts.apply_read(db_session, messenger_conversation, BASE_MS + 1000)
    db_session.commit()
    db_session.refresh(message)
    assert message.read_at is not None
    assert message.delivered_at is not None


def test_delivery_by_message_ids(db_session, messenger_conversation):
    add_outbound(db_session, messenger_conversation, "m_a", BASE_MS + 1000)
    add_outbound(db_session, messenger_conversation, "m_b", BASE_MS + 2000)

    updated = receipts.apply_delivery(db_session, messenger_conversation, ["m_b", "m_unknown"])
    db_session.commit()

    assert updated == 1
    assert _status(db_session, "m_a") == MessageStatus.sent
    assert _status(db_session, "m_b") == MessageStatus.delivered
    unified = db_session.query(UnifiedMessage).filter_by(channel_message_id="m_b").one()
    assert unified.status == MessageStatus.delivered


def test_delivery_by_watermark_never_downgrades_read(db_session, messenger_conversation):
    add_outbound(db_session, messenger_conversation, "m_a", BASE_MS + 1000)
    add_outbound(db_session, messenger_conversation, "m_b", BASE_MS + 2000)
    receipts.apply_read(db_session, messenger_conversation, BASE_MS + 1000)

    updated = receipts.apply_delivery(db_session, messenger_conversation, [], BASE_MS + 2000)
    db_session.commit()

    assert updated == 1
    assert _status(db_session, "m_a") == MessageStatus.read
    assert _status(db_session, "m_b") == MessageStatus.delivered
    assert messenger_conversation.last_delivery_watermark == BASE_MS + 2000


def test_delivery_without_ids_or_watermark_is_noop(db_session, messenger_conversation):
    add_outbound(db_session, messenger_conversation, "m_a", BASE_MS + 1000)
    assert receipts.apply_delivery(db_session, messenger_conversation, None, None) == 0


def test_failed_sends_are_not_promoted_by_receipts(db_session, messenger_conversation):
    failed = add_outbound(db_session, messenger_conversation, "m_failed", BASE_MS + 1000)
    failed.status = MessageStatus.failed
    db_session.commit()

    assert receipts.apply_delivery(db_session, messenger_conversation, ["m_failed"]) == 0
    assert receipts.apply_delivery(db_session, messenger_conversation, None, BASE_MS + 5000) == 0
    assert receipts.apply_read(db_session, messenger_conversation, BASE_MS + 5000) == 0
    db_session.commit()

    assert _status(db_session, "m_failed") == MessageStatus.failed
    unified = db_session.query(UnifiedMessage).filter_by(channel_message_id="m_failed").one()
    assert unified.status != MessageStatus.read


def test_watermark_for_message_covers_the_message(db_session, instagram_conversation):
    add_outbound(db_session, instagram_conversation, "ig_out", BASE_MS + 1234)

    watermark = receipts.watermark_for_message(db_session, instagram_conversation, "ig_out")

    assert watermark == BASE_MS + 1234
    assert receipts.watermark_for_message(db_session, instagram_conversation, "missing") is None
