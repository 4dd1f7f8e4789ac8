"""Fixed hourly outbound send limit per organization (Instagram DMs)."""

from __future__ import annotations

import math
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from sqlalchemy import case, or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.config import settings
from app.logging import get_logger
from app.models.social import RateLimitWindow
from app.services.social.errors import RateLimitExceeded
from app.services.social.normalizers import as_utc

logger = get_logger(__name__)

WINDOW = timedelta(hours=1)
_MAX_ATTEMPTS = 3


@dataclass(frozen=True)
class RateLimitInfo:
    messages_sent: int
    limit: int
    window_start: datetime | None

    @property
    def remaining(self) -> int:
        return max(self.limit - self.messages_sent, 0)

    @property
    def resets_at(self) -> datetime | None:
        if self.window_start is None:
            return None
        return self.window_start + WINDOW


def _load(db: Session, organization_id: uuid.UUID) -> RateLimitWindow | None:
    return (
        db.query(RateLimitWindow)
        .filter(RateLimitWindow.organization_id == organization_id)
        .populate_existing()
        .first()
    )


def _info(window: RateLimitWindow, limit: int) -> RateLimitInfo:
    return RateLimitInfo(
        messages_sent=window.messages_sent,
        limit=limit,
        window_start=as_utc(window.window_start),
    )


def check_and_increment(
    db: Session,
    organization_id: uuid.UUID,
    limit: int | None = None,
    *,
    now: datetime | None = None,
) -> RateLimitInfo:
    """Count one send against the organization's current hourly window.

    An expired window restarts at 1; a live one increments while below the
    limit. Both happen in a single conditional UPDATE.

    Raises:
        RateLimitExceeded: When the live window is already at the limit.
    """
    limit = limit if limit is not None else settings.instagram_hourly_send_limit
    now = as_utc(now) or datetime.now(UTC)
    cutoff = now - WINDOW

    for _ in range(_MAX_ATTEMPTS):
        expired = RateLimitWindow.window_start <= cutoff
        result = db.execute(
            update(RateLimitWindow)
            .where(RateLimitWindow.organization_id == organization_id)
            .where(or_(expired, RateLimitWindow.messages_sent < limit))
            .values(
                messages_sent=case((expired, 1), else_=RateLimitWindow.messages_sent + 1),
                window_start=case((expired, now), else_=RateLimitWindow.window_start),
                limit_per_hour=limit,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            window = _load(db, organization_id)
            return _info(window, limit)

        window = _load(db, organization_id)
        if window is not None:
            window_start = as_utc(window.window_start)
            retry_after = math.ceil((window_start + WINDOW - now).total_seconds())
            logger.warning(
                "social_rate_limit_exceeded organization_id=%s sent=%s limit=%s retry_after=%s",
                organization_id,
                window.messages_sent,
                limit,
                retry_after,
            )
            raise RateLimitExceeded(max(retry_after, 1), limit)

        window = RateLimitWindow(
            organization_id=organization_id,
            messages_sent=1,
            window_start=now,
            limit_per_hour=limit,
        )
        try:
            with db.begin_nested():
                db.add(window)
                db.flush()
        except IntegrityError:
            # Another sender created the window first; retry the UPDATE.
            continue
        return _info(window, limit)

    raise RuntimeError(f"Could not acquire rate limit window for organization {organization_id}")


def get_rate_limit_info(db: Session, organization_id: uuid.UUID, *, now: datetime | None = None) -> RateLimitInfo:
    limit = settings.instagram_hourly_send_limit
    now = as_utc(now) or datetime.now(UTC)
    window = _load(db, organization_id)
    if window is None:
        return RateLimitInfo(messages_sent=0, limit=limit, window_start=None)
    window_start = as_utc(window.window_start)
    if window_start <= now - WINDOW:
        return RateLimitInfo(messages_sent=0, limit=window.limit_per_hour, window_start=None)
    return RateLimitInfo(messages_sent=window.messages_sent, limit=window.limit_per_hour, window_start=window_start)
