"""Normalization of Meta webhook events into canonical events.

Messenger and Instagram deliver similar but incompatible payloads. Each
platform gets a ``RawEventSource`` adapter that knows which collections of an
entry carry events and how to turn one raw event into a ``CanonicalEvent``
with a deterministic ``event_id`` for the idempotency ledger.
"""

from __future__ import annotations

import enum
import hashlib
import json
from abc import ABC, abstractmethod
from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import UTC, datetime

from app.models.social import MessageKind, SocialPlatform
from app.schemas.social.webhooks import MetaWebhookEntry

FALLBACK_SHARE_TEXT = "[Shared content]"

_MEDIA_ATTACHMENTS = {"image", "video", "audio", "file"}
_MS_THRESHOLD = 10**12


class EventKind(enum.Enum):
    message = "message"
    echo = "echo"
    deleted = "deleted"
    delivery = "delivery"
    read = "read"
    postback = "postback"
    referral = "referral"
    pass_thread_control = "pass_thread_control"
    take_thread_control = "take_thread_control"
    request_thread_control = "request_thread_control"
    comment = "comment"
    mention = "mention"
    change = "change"
    unknown = "unknown"


HANDOVER_KINDS = frozenset(
    {
        EventKind.pass_thread_control,
        EventKind.take_thread_control,
        EventKind.request_thread_control,
    }
)


@dataclass(frozen=True)
class RichContent:
    title: str | None = None
    url: str | None = None
    id: str | None = None


@dataclass(frozen=True)
class MessageContent:
    kind: MessageKind = MessageKind.text
    text: str | None = None
    media_url: str | None = None
    media_type: str | None = None
    template_type: str | None = None
    template_payload: dict | None = None
    quick_reply_payload: str | None = None
    postback_payload: str | None = None
    postback_title: str | None = None
    reply_to_message_id: str | None = None
    rich: RichContent | None = None

    @property
    def story_id(self) -> str | None:
        if self.kind == MessageKind.story_mention and self.rich:
            return self.rich.id
        return None


@dataclass(frozen=True)
class RawEvent:
    """One event as found in a webhook entry, plus where it came from."""

    entry_id: str
    entry_time: int | None
    collection: str
    body: dict

    @property
    def is_standby(self) -> bool:
        return self.collection == "standby"

    def to_stored(self) -> dict:
        return {
            "entry_id": self.entry_id,
            "entry_time": self.entry_time,
            "collection": self.collection,
            "event": self.body,
        }

    @classmethod
    def from_stored(cls, stored: dict) -> RawEvent:
        return cls(
            entry_id=str(stored["entry_id"]),
            entry_time=stored.get("entry_time"),
            collection=stored["collection"],
            body=stored["event"],
        )


@dataclass(frozen=True)
class CanonicalEvent:
    kind: EventKind
    platform: SocialPlatform
    event_id: str
    sender_id: str | None
    recipient_id: str | None
    timestamp_ms: int
    is_standby: bool = False
    content: MessageContent | None = None
    data: dict = field(default_factory=dict)

    @property
    def timestamp(self) -> datetime:
        return ms_to_datetime(self.timestamp_ms)

    @property
    def native_message_id(self) -> str | None:
        return self.data.get("message_id")


def ms_to_datetime(value: int) -> datetime:
    return datetime.fromtimestamp(value / 1000, tz=UTC)


def _to_ms(value) -> int:
    """Coerce a Meta timestamp to epoch milliseconds.

    Entry times on ``changes`` are seconds; messaging timestamps are
    milliseconds.
    """
    if value is None:
        return int(datetime.now(UTC).timestamp() * 1000)
    number = int(value)
    if number < _MS_THRESHOLD:
        return number * 1000
    return number


def _content_hash(value: dict | None) -> str:
    encoded = json.dumps(value or {}, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()[:16]


def _participant(body: dict, key: str) -> str | None:
    party = body.get(key)
    if isinstance(party, dict) and party.get("id") is not None:
        return str(party["id"])
    return None


def parse_message_content(message: dict) -> MessageContent:
    """Sub-type a messaging ``message`` object.

    Args:
        message: The ``message`` object of a Messenger or Instagram event.

    Returns:
        The content with its ``MessageKind``. Only the first attachment is
        considered; unknown attachment types become ``fallback``.
    """
    text = message.get("text")
    quick_reply = (message.get("quick_reply") or {}).get("payload")
    reply_to = (message.get("reply_to") or {}).get("mid")
    base = {
        "quick_reply_payload": quick_reply,
        "reply_to_message_id": reply_to,
    }

    story_mention = message.get("story_mention")
    if isinstance(story_mention, dict):
        return MessageContent(
            kind=MessageKind.story_mention,
            text=text,
            rich=RichContent(url=story_mention.get("link"), id=story_mention.get("id")),
            **base,
        )

    attachments = message.get("attachments") or []
    if not attachments:
        if message.get("sticker_id"):
            return MessageContent(kind=MessageKind.sticker, text=text, media_type="image", **base)
        return MessageContent(kind=MessageKind.text, text=text, **base)

    attachment = attachments[0] or {}
    attachment_type = attachment.get("type")
    payload = attachment.get("payload") or {}

    if message.get("sticker_id") or attachment_type == "sticker":
        return MessageContent(
            kind=MessageKind.sticker,
            text=text,
            media_url=payload.get("url"),
            media_type="image",
            **base,
        )
    if attachment_type in _MEDIA_ATTACHMENTS:
        return MessageContent(
            kind=MessageKind(attachment_type),
            text=text,
            media_url=payload.get("url"),
            media_type=attachment_type,
            **base,
        )
    if attachment_type == "location":
        coordinates = payload.get("coordinates") or {}
        return MessageContent(
            kind=MessageKind.location,
            text=f"Location: {coordinates.get('lat')}, {coordinates.get('long')}",
            **base,
        )
    if attachment_type == "template":
        return MessageContent(
            kind=MessageKind.template,
            text=text,
            template_type=payload.get("template_type"),
            template_payload=payload,
            **base,
        )
    if attachment_type == "story_mention":
        return MessageContent(
            kind=MessageKind.story_mention,
            text=text,
            rich=RichContent(url=payload.get("link") or payload.get("url"), id=payload.get("id")),
            **base,
        )
    if attachment_type == "share":
        title = payload.get("title")
        return MessageContent(
            kind=MessageKind.share,
            text=title or FALLBACK_SHARE_TEXT,
            media_url=payload.get("url"),
            rich=RichContent(title=title, url=payload.get("url")),
            **base,
        )
    return MessageContent(
        kind=MessageKind.fallback,
        text=(attachment.get("title") or payload.get("title") or FALLBACK_SHARE_TEXT),
        media_url=payload.get("url") or attachment.get("url"),
        **base,
    )


def normalize_messaging_event(platform: SocialPlatform, raw: RawEvent) -> CanonicalEvent:
    """Normalize a ``messaging`` or ``standby`` event of either platform."""
    body = raw.body
    sender_id = _participant(body, "sender")
    recipient_id = _participant(body, "recipient")
    timestamp_ms = _to_ms(body.get("timestamp") or raw.entry_time)
    common = {
        "platform": platform,
        "sender_id": sender_id,
        "recipient_id": recipient_id,
        "timestamp_ms": timestamp_ms,
        "is_standby": raw.is_standby,
    }

    message = body.get("message")
    if isinstance(message, dict):
        mid = message.get("mid")
        event_id = mid or f"{sender_id}:{timestamp_ms}:message"
        data = {"message_id": mid}
        if message.get("is_echo"):
            return CanonicalEvent(kind=EventKind.echo, event_id=event_id, data=data, **common)
        if message.get("is_deleted"):
            return CanonicalEvent(kind=EventKind.deleted, event_id=event_id, data=data, **common)
        return CanonicalEvent(
            kind=EventKind.message,
            event_id=event_id,
            content=parse_message_content(message),
            data=data,
            **common,
        )

    for key, kind in (("delivery", EventKind.delivery), ("read", EventKind.read)):
        receipt = body.get(key)
        if isinstance(receipt, dict):
            watermark = receipt.get("watermark")
            data = {"watermark": int(watermark) if watermark is not None else None}
            if kind == EventKind.delivery:
                data["mids"] = list(receipt.get("mids") or [])
            else:
                data["mid"] = receipt.get("mid")
            return CanonicalEvent(
                kind=kind,
                event_id=f"{sender_id}:{watermark if watermark is not None else timestamp_ms}:{kind.value}",
                data=data,
                **common,
            )

    postback = body.get("postback")
    if isinstance(postback, dict):
        message_id = postback.get("mid") or f"postback_{timestamp_ms}"
        return CanonicalEvent(
            kind=EventKind.postback,
            event_id=f"{sender_id}:{timestamp_ms}:{EventKind.postback.value}",
            content=MessageContent(
                kind=MessageKind.postback,
                text=postback.get("title"),
                postback_payload=postback.get("payload"),
                postback_title=postback.get("title"),
            ),
            data={"message_id": message_id, "referral": postback.get("referral")},
            **common,
        )

    referral = body.get("referral")
    if isinstance(referral, dict):
        return CanonicalEvent(
            kind=EventKind.referral,
            event_id=f"{sender_id}:{timestamp_ms}:{EventKind.referral.value}",
            data={
                "ref": referral.get("ref"),
                "source": referral.get("source"),
                "type": referral.get("type"),
                "ad_id": referral.get("ad_id"),
            },
            **common,
        )

    for kind in HANDOVER_KINDS:
        handover = body.get(kind.value)
        if isinstance(handover, dict):
            return CanonicalEvent(
                kind=kind,
                event_id=f"{sender_id}:{timestamp_ms}:{kind.value}",
                data={
                    "new_owner_app_id": _as_str(handover.get("new_owner_app_id")),
                    "previous_owner_app_id": _as_str(handover.get("previous_owner_app_id")),
                    "requested_owner_app_id": _as_str(handover.get("requested_owner_app_id")),
                    "metadata": handover.get("metadata"),
                },
                **common,
            )

    return CanonicalEvent(
        kind=EventKind.unknown,
        event_id=f"{sender_id}:{timestamp_ms}:{EventKind.unknown.value}:{_content_hash(body)}",
        data={"keys": sorted(body.keys())},
        **common,
    )


def normalize_change_event(platform: SocialPlatform, raw: RawEvent) -> CanonicalEvent:
    """Normalize an Instagram ``changes`` item (comments, mentions, others)."""
    change = raw.body
    field_name = change.get("field") or "unknown"
    value = change.get("value") or {}
    value_id = value.get("id")
    if value_id:
        event_id = f"{field_name}:{value_id}"
    else:
        event_id = f"{raw.entry_id}:{raw.entry_time}:{field_name}:{_content_hash(value)}"
    timestamp_ms = _to_ms(value.get("timestamp") if isinstance(value.get("timestamp"), int) else raw.entry_time)

    if field_name == "comments":
        author = value.get("from") or {}
        media = value.get("media") or {}
        return CanonicalEvent(
            kind=EventKind.comment,
            platform=platform,
            event_id=event_id,
            sender_id=_as_str(author.get("id")),
            recipient_id=raw.entry_id,
            timestamp_ms=timestamp_ms,
            data={
                "comment_id": _as_str(value_id),
                "text": value.get("text"),
                "from_id": _as_str(author.get("id")),
                "from_username": author.get("username"),
                "media_id": _as_str(media.get("id")),
                "parent_id": _as_str(value.get("parent_id")),
            },
        )
    if field_name == "mentions":
        mentioned_by = value.get("mentioned_by") or {}
        return CanonicalEvent(
            kind=EventKind.mention,
            platform=platform,
            event_id=event_id,
            sender_id=_as_str(mentioned_by.get("id")),
            recipient_id=raw.entry_id,
            timestamp_ms=timestamp_ms,
            data={
                "story_id": _as_str(value.get("story_id") or value.get("media_id")),
                "story_url": value.get("link"),
                "mentioned_by_id": _as_str(mentioned_by.get("id")),
                "mentioned_by_username": mentioned_by.get("username"),
                "value": value,
            },
        )
    return CanonicalEvent(
        kind=EventKind.change,
        platform=platform,
        event_id=event_id,
        sender_id=None,
        recipient_id=raw.entry_id,
        timestamp_ms=timestamp_ms,
        data={"field": field_name},
    )


def _as_str(value) -> str | None:
    if value is None:
        return None
    return str(value)


class RawEventSource(ABC):
    """Platform adapter: which collections carry events and how to read them."""

    platform: SocialPlatform
    object_kind: str
    collections: tuple[str, ...]

    def iter_events(self, entry: MetaWebhookEntry) -> Iterator[RawEvent]:
        for collection in self.collections:
            for body in getattr(entry, collection, None) or []:
                if not isinstance(body, dict):
                    continue
                yield RawEvent(
                    entry_id=str(entry.id),
                    entry_time=entry.time,
                    collection=collection,
                    body=body,
                )

    @abstractmethod
    def normalize(self, raw: RawEvent) -> CanonicalEvent:
        raise NotImplementedError


class MessengerEventSource(RawEventSource):
    platform = SocialPlatform.messenger
    object_kind = "page"
    collections = ("messaging", "standby")

    def normalize(self, raw: RawEvent) -> CanonicalEvent:
        return normalize_messaging_event(self.platform, raw)


class InstagramEventSource(RawEventSource):
    platform = SocialPlatform.instagram
    object_kind = "instagram"
    collections = ("messaging", "changes")

    def normalize(self, raw: RawEvent) -> CanonicalEvent:
        if raw.collection == "changes":
            return normalize_change_event(self.platform, raw)
        return normalize_messaging_event(self.platform, raw)


_SOURCES: dict[str, RawEventSource] = {
    MessengerEventSource.object_kind: MessengerEventSource(),
    InstagramEventSource.object_kind: InstagramEventSource(),
}


def source_for_object(object_kind: str | None) -> RawEventSource | None:
    if not object_kind:
        return None
    return _SOURCES.get(object_kind)


def source_for_platform(platform: SocialPlatform) -> RawEventSource:
    for source in _SOURCES.values():
        if source.platform == platform:
            return source
    raise ValueError(f"No event source for platform {platform!r}")


def as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value
