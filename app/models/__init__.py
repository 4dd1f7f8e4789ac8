from app.models.social import (  # noqa: F401
    CommentDmStatus,
    CommentDmTracking,
    CommentRule,
    MessageDirection,
    MessageKind,
    MessageStatus,
    PlatformConversation,
    PlatformMessage,
    RateLimitWindow,
    SocialConnection,
    SocialPlatform,
    StoryMention,
    ThreadControlAction,
    ThreadControlLogEntry,
    ThreadOwner,
    UnifiedConversation,
    UnifiedConversationStatus,
    UnifiedMessage,
    WebhookEvent,
    WebhookEventStatus,
)
from app.models.webhook_dead_letter import WebhookDeadLetter  # noqa: F401
