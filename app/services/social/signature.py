"""Boundary authentication for Meta webhook calls."""

from __future__ import annotations

import hashlib
import hmac

from app.logging import get_logger

logger = get_logger(__name__)

SIGNATURE_HEADER = "X-Hub-Signature-256"
_SIGNATURE_PREFIX = "sha256="
SUBSCRIBE_MODE = "subscribe"


def compute_signature(raw_body: bytes, app_secret: str) -> str:
    """Return the ``sha256=<hex>`` header value Meta would send for ``raw_body``."""
    digest = hmac.new(app_secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()
    return f"{_SIGNATURE_PREFIX}{digest}"


def verify_signature(raw_body: bytes | str | None, header_value: str | None, app_secret: str | None) -> bool:
    """Check the HMAC-SHA256 signature of an unparsed request body.

    Fails closed: a missing secret, a missing or malformed header, or any
    error while computing the digest all return False.
    """
    if not app_secret:
        logger.warning("social_webhook_signature_secret_missing")
        return False
    if not header_value or raw_body is None:
        return False
    try:
        if isinstance(raw_body, str):
            raw_body = raw_body.encode("utf-8")
        candidate = header_value.strip()
        if not candidate.startswith(_SIGNATURE_PREFIX):
            return False
        provided = candidate[len(_SIGNATURE_PREFIX) :].lower()
        expected = hmac.new(app_secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()
        return hmac.compare_digest(expected.encode("ascii"), provided.encode("ascii"))
    except Exception as exc:
        logger.warning("social_webhook_signature_check_error error=%s", exc)
        return False


def respond_to_challenge(
    mode: str | None,
    token: str | None,
    challenge: str | None,
    expected_token: str | None,
) -> str | None:
    """Return the challenge when the subscription handshake matches, else None."""
    if not expected_token or mode != SUBSCRIBE_MODE or token is None or challenge is None:
        return None
    if not hmac.compare_digest(token.encode("utf-8"), expected_token.encode("utf-8")):
        return None
    return challenge
