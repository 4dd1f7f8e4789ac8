import enum


class SocialPlatform(enum.Enum):
    messenger = "messenger"
    instagram = "instagram"


class ThreadOwner(enum.Enum):
    app = "app"
    page_inbox = "page_inbox"
    secondary_app = "secondary_app"


class ThreadControlAction(enum.Enum):
    pass_ = "pass"
    take = "take"
    request = "request"


class MessageDirection(enum.Enum):
    inbound = "inbound"
    outbound = "outbound"


class MessageStatus(enum.Enum):
    sent = "sent"
    delivered = "delivered"
    read = "read"
    failed = "failed"


class MessageKind(enum.Enum):
    text = "text"
    image = "image"
    video = "video"
    audio = "audio"
    file = "file"
    sticker = "sticker"
    location = "location"
    template = "template"
    postback = "postback"
    story_mention = "story_mention"
    share = "share"
    fallback = "fallback"


class WebhookEventStatus(enum.Enum):
    pending = "pending"
    processed = "processed"
    failed = "failed"


class UnifiedConversationStatus(enum.Enum):
    open = "open"
    pending = "pending"
    resolved = "resolved"


class CommentDmStatus(enum.Enum):
    pending = "pending"
    sent = "sent"
    failed = "failed"
