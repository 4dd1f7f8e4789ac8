"""Instagram comment-to-DM automation and story mention tracking."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.logging import get_logger
from app.models.social import (
    CommentDmStatus,
    CommentDmTracking,
    CommentRule,
    SocialConnection,
    StoryMention,
)
from app.services.social import rate_limit
from app.services.social.errors import SocialError, SocialNotFoundError, SocialValidationError
from app.services.social.platform_client import MetaPlatformClient, get_platform_client, text_message

logger = get_logger(__name__)

DAY = timedelta(hours=24)
_RULE_UPDATE_FIELDS = {
    "name",
    "is_active",
    "trigger_keywords",
    "trigger_media_ids",
    "dm_template",
    "dm_delay_seconds",
    "max_per_user_per_day",
}


@dataclass(frozen=True)
class CommentProcessingResult:
    triggered: bool
    rule_id: uuid.UUID | None = None
    dm_sent: bool = False
    error: str | None = None


@dataclass(frozen=True)
class DueDmResult:
    sent: int
    failed: int
    errors: list[str]


def _clean_keywords(keywords: list[str] | None) -> list[str]:
    cleaned = [keyword.strip() for keyword in (keywords or []) if keyword and keyword.strip()]
    if not cleaned:
        raise SocialValidationError("invalid_comment_rule", "At least one trigger keyword is required")
    return cleaned


def _validate_rule(rule: CommentRule) -> None:
    if not (rule.dm_template or "").strip():
        raise SocialValidationError("invalid_comment_rule", "dm_template is required")
    if rule.dm_delay_seconds < 0:
        raise SocialValidationError("invalid_comment_rule", "dm_delay_seconds cannot be negative")
    if rule.max_per_user_per_day < 1:
        raise SocialValidationError("invalid_comment_rule", "max_per_user_per_day must be at least 1")


def create_comment_rule(
    db: Session,
    connection: SocialConnection,
    *,
    name: str,
    trigger_keywords: list[str],
    dm_template: str,
    trigger_media_ids: list[str] | None = None,
    dm_delay_seconds: int = 0,
    max_per_user_per_day: int = 1,
    is_active: bool = True,
) -> CommentRule:
    rule = CommentRule(
        organization_id=connection.organization_id,
        connection_id=connection.id,
        name=name,
        trigger_keywords=_clean_keywords(trigger_keywords),
        trigger_media_ids=list(trigger_media_ids) if trigger_media_ids else None,
        dm_template=dm_template,
        dm_delay_seconds=dm_delay_seconds,
        max_per_user_per_day=max_per_user_per_day,
        is_active=is_active,
    )
    _validate_rule(rule)
    db.add(rule)
    db.commit()
    db.refresh(rule)
    return rule


def list_comment_rules(
    db: Session,
    connection_id: uuid.UUID,
    *,
    active_only: bool = False,
) -> list[CommentRule]:
    query = db.query(CommentRule).filter(CommentRule.connection_id == connection_id)
    if active_only:
        query = query.filter(CommentRule.is_active.is_(True))
    return query.order_by(CommentRule.created_at.asc()).all()


def get_comment_rule(db: Session, rule_id: uuid.UUID) -> CommentRule:
    rule = db.get(CommentRule, rule_id)
    if not rule:
        raise SocialNotFoundError("comment_rule_not_found", "Comment rule not found")
    return rule


def update_comment_rule(db: Session, rule_id: uuid.UUID, **changes) -> CommentRule:
    rule = get_comment_rule(db, rule_id)
    unknown = set(changes) - _RULE_UPDATE_FIELDS
    if unknown:
        raise SocialValidationError("invalid_comment_rule", f"Unknown fields: {sorted(unknown)}")
    for key, value in changes.items():
        if key == "trigger_keywords":
            value = _clean_keywords(value)
        setattr(rule, key, value)
    _validate_rule(rule)
    db.commit()
    db.refresh(rule)
    return rule


def delete_comment_rule(db: Session, rule_id: uuid.UUID) -> None:
    rule = get_comment_rule(db, rule_id)
    db.query(CommentDmTracking).filter(CommentDmTracking.rule_id == rule.id).delete(synchronize_session=False)
    db.delete(rule)
    db.commit()


def _matches(rule: CommentRule, text: str, media_id: str | None) -> bool:
    lowered = text.lower()
    if not any(keyword.lower() in lowered for keyword in rule.trigger_keywords or []):
        return False
    if rule.trigger_media_ids:
        return media_id is not None and media_id in rule.trigger_media_ids
    return True


def _recent_dm_count(db: Session, rule: CommentRule, user_id: str, now: datetime) -> int:
    return (
        db.query(func.count(CommentDmTracking.id))
        .filter(CommentDmTracking.rule_id == rule.id)
        .filter(CommentDmTracking.user_id == user_id)
        .filter(CommentDmTracking.status != CommentDmStatus.failed)
        .filter(CommentDmTracking.created_at >= now - DAY)
        .scalar()
        or 0
    )


def _send_dm(
    db: Session,
    connection: SocialConnection,
    rule: CommentRule,
    tracking: CommentDmTracking,
    client: MetaPlatformClient,
) -> None:
    rate_limit.check_and_increment(db, connection.organization_id)
    client.send_message(connection, tracking.user_id, text_message(rule.dm_template))
    tracking.status = CommentDmStatus.sent
    tracking.sent_at = datetime.now(UTC)
    rule.dm_sent_count = (rule.dm_sent_count or 0) + 1


def process_comment(
    db: Session,
    connection: SocialConnection,
    comment: dict,
    client: MetaPlatformClient | None = None,
) -> CommentProcessingResult:
    """Run the connection's active rules against one comment.

    ``comment`` carries ``comment_id``, ``text``, ``from_id`` and optionally
    ``media_id``. The first rule that matches and is under its per-user cap
    wins. The caller owns the transaction.
    """
    comment_id = comment.get("comment_id")
    text = comment.get("text")
    user_id = comment.get("from_id")
    if not comment_id or not text or not user_id:
        return CommentProcessingResult(triggered=False)

    now = datetime.now(UTC)
    for rule in list_comment_rules(db, connection.id, active_only=True):
        if not _matches(rule, text, comment.get("media_id")):
            continue
        if _recent_dm_count(db, rule, user_id, now) >= rule.max_per_user_per_day:
            logger.info(
                "social_comment_rule_capped rule_id=%s user=%s",
                rule.id,
                user_id[:8],
            )
            continue

        tracking = CommentDmTracking(
            rule_id=rule.id,
            user_id=user_id,
            comment_id=comment_id,
            status=CommentDmStatus.pending,
            scheduled_at=now + timedelta(seconds=rule.dm_delay_seconds or 0),
            created_at=now,
        )
        try:
            with db.begin_nested():
                db.add(tracking)
                db.flush()
        except IntegrityError:
            logger.info("social_comment_already_tracked rule_id=%s comment_id=%s", rule.id, comment_id)
            return CommentProcessingResult(triggered=False, rule_id=rule.id)
        rule.trigger_count = (rule.trigger_count or 0) + 1

        if rule.dm_delay_seconds and rule.dm_delay_seconds > 0:
            db.flush()
            return CommentProcessingResult(triggered=True, rule_id=rule.id, dm_sent=False)

        try:
            _send_dm(db, connection, rule, tracking, client or get_platform_client())
        except SocialError as exc:
            tracking.status = CommentDmStatus.failed
            tracking.error_message = exc.detail
            db.flush()
            logger.warning("social_comment_dm_failed rule_id=%s comment_id=%s error=%s", rule.id, comment_id, exc)
            return CommentProcessingResult(triggered=True, rule_id=rule.id, dm_sent=False, error=exc.detail)
        db.flush()
        return CommentProcessingResult(triggered=True, rule_id=rule.id, dm_sent=True)

    return CommentProcessingResult(triggered=False)


def send_due_comment_dms(
    db: Session,
    client: MetaPlatformClient | None = None,
    *,
    now: datetime | None = None,
    limit: int = 100,
) -> DueDmResult:
    """Send pending comment DMs whose ``scheduled_at`` has passed."""
    now = now or datetime.now(UTC)
    client = client or get_platform_client()
    due = (
        db.query(CommentDmTracking)
        .filter(CommentDmTracking.status == CommentDmStatus.pending)
        .filter(CommentDmTracking.scheduled_at <= now)
        .order_by(CommentDmTracking.scheduled_at.asc())
        .limit(limit)
        .all()
    )
    sent = 0
    errors: list[str] = []
    for tracking in due:
        rule = tracking.rule
        connection = rule.connection if rule else None
        if rule is None or connection is None or not connection.is_active:
            tracking.status = CommentDmStatus.failed
            tracking.error_message = "Rule or connection unavailable"
            errors.append(f"DM {tracking.id}: rule or connection unavailable")
            db.commit()
            continue
        try:
            _send_dm(db, connection, rule, tracking, client)
        except SocialError as exc:
            tracking.status = CommentDmStatus.failed
            tracking.error_message = exc.detail
            errors.append(f"DM {tracking.id}: {exc.detail}")
            logger.warning("social_comment_dm_failed tracking_id=%s error=%s", tracking.id, exc)
        else:
            sent += 1
        db.commit()
    return DueDmResult(sent=sent, failed=len(errors), errors=errors)


def get_comment_rule_stats(db: Session, rule_id: uuid.UUID, *, now: datetime | None = None) -> dict:
    rule = get_comment_rule(db, rule_id)
    now = now or datetime.now(UTC)
    base = db.query(CommentDmTracking).filter(CommentDmTracking.rule_id == rule.id)
    unique_users = (
        db.query(func.count(func.distinct(CommentDmTracking.user_id)))
        .filter(CommentDmTracking.rule_id == rule.id)
        .scalar()
        or 0
    )
    recent = base.filter(CommentDmTracking.created_at >= now - DAY)
    return {
        "trigger_count": rule.trigger_count,
        "dm_sent_count": rule.dm_sent_count,
        "unique_users": unique_users,
        "pending": base.filter(CommentDmTracking.status == CommentDmStatus.pending).count(),
        "failed": base.filter(CommentDmTracking.status == CommentDmStatus.failed).count(),
        "last_24_hours": {
            "triggers": recent.count(),
            "dms_sent": recent.filter(CommentDmTracking.status == CommentDmStatus.sent).count(),
        },
    }


def record_story_mention(
    db: Session,
    connection: SocialConnection,
    *,
    story_id: str | None,
    mentioned_by_id: str | None,
    mentioned_by_username: str | None = None,
    story_url: str | None = None,
    mentioned_at: datetime | None = None,
    raw_payload: dict | None = None,
) -> StoryMention | None:
    """Upsert a mention keyed by connection, story and author."""
    if not story_id or not mentioned_by_id:
        return None

    def _existing() -> StoryMention | None:
        return (
            db.query(StoryMention)
            .filter(StoryMention.connection_id == connection.id)
            .filter(StoryMention.story_id == story_id)
            .filter(StoryMention.mentioned_by_id == mentioned_by_id)
            .first()
        )

    mention = _existing()
    if mention is None:
        mention = StoryMention(
            connection_id=connection.id,
            organization_id=connection.organization_id,
            story_id=story_id,
            story_url=story_url,
            mentioned_by_id=mentioned_by_id,
            mentioned_by_username=mentioned_by_username,
            mentioned_at=mentioned_at or datetime.now(UTC),
            responded=False,
            raw_payload=raw_payload,
        )
        try:
            with db.begin_nested():
                db.add(mention)
                db.flush()
            return mention
        except IntegrityError:
            mention = _existing()
            if mention is None:
                raise
    if mentioned_by_username:
        mention.mentioned_by_username = mentioned_by_username
    if story_url:
        mention.story_url = story_url
    mention.raw_payload = raw_payload or mention.raw_payload
    db.flush()
    return mention
