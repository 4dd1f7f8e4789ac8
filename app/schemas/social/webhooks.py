from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class MetaWebhookEntry(BaseModel):
    """A single entry in a Meta webhook payload."""

    model_config = ConfigDict(extra="allow")

    id: str  # Page ID or Instagram account ID
    time: int | None = None
    messaging: list[dict] | None = None
    standby: list[dict] | None = None  # Messenger events for threads we do not own
    changes: list[dict] | None = None  # Instagram comments/mentions


class MetaWebhookPayload(BaseModel):
    """Full Meta webhook payload for Messenger/Instagram events."""

    object: str
    entry: list[MetaWebhookEntry] = Field(default_factory=list)

    def event_count(self) -> int:
        return sum(
            len(entry.messaging or []) + len(entry.standby or []) + len(entry.changes or [])
            for entry in self.entry
        )


class WebhookProcessingResult(BaseModel):
    success: bool = True
    processed_count: int = 0
    skipped_count: int = 0
    errors: list[str] = Field(default_factory=list)

    def add_error(self, message: str) -> None:
        self.errors.append(message)
        self.success = False
