from app.tasks.social import (
    process_social_webhook,
    reprocess_stale_webhook_events,
    send_due_comment_dms,
)

__all__ = [
    "process_social_webhook",
    "reprocess_stale_webhook_events",
    "send_due_comment_dms",
]
