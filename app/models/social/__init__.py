from app.models.social.comments import CommentDmTracking, CommentRule, StoryMention
from app.models.social.connection import SocialConnection
from app.models.social.conversation import PlatformConversation, PlatformMessage
from app.models.social.enums import (
    CommentDmStatus,
    MessageDirection,
    MessageKind,
    MessageStatus,
    SocialPlatform,
    ThreadControlAction,
    ThreadOwner,
    UnifiedConversationStatus,
    WebhookEventStatus,
)
from app.models.social.rate_limit import RateLimitWindow
from app.models.social.thread_control import ThreadControlLogEntry
from app.models.social.unified import UnifiedConversation, UnifiedMessage
from app.models.social.webhook_event import WebhookEvent

__all__ = [
    "CommentDmStatus",
    "CommentDmTracking",
    "CommentRule",
    "MessageDirection",
    "MessageKind",
    "MessageStatus",
    "PlatformConversation",
    "PlatformMessage",
    "RateLimitWindow",
    "SocialConnection",
    "SocialPlatform",
    "StoryMention",
    "ThreadControlAction",
    "ThreadControlLogEntry",
    "ThreadOwner",
    "UnifiedConversation",
    "UnifiedConversationStatus",
    "UnifiedMessage",
    "WebhookEvent",
    "WebhookEventStatus",
]
