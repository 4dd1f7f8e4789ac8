"""Error taxonomy for the social messaging services."""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import HTTPException


@dataclass(frozen=True)
class SocialError(Exception):
    code: str
    detail: str
    status_code: int = 400
    retryable: bool = False

    def __str__(self) -> str:
        return self.detail

    def to_http_exception(self) -> HTTPException:
        return HTTPException(status_code=self.status_code, detail=self.detail)


class SocialValidationError(SocialError):
    def __init__(self, code: str, detail: str):
        super().__init__(code=code, detail=detail, status_code=400, retryable=False)


class SocialNotFoundError(SocialError):
    def __init__(self, code: str, detail: str):
        super().__init__(code=code, detail=detail, status_code=404, retryable=False)


class InvalidWebhookObject(SocialError):
    def __init__(self, received: str | None):
        super().__init__(
            code="invalid_webhook_object",
            detail=f"Unsupported webhook object type: {received!r}",
            status_code=400,
            retryable=False,
        )


class ThreadOwnershipError(SocialError):
    def __init__(self, code: str, detail: str):
        super().__init__(code=code, detail=detail, status_code=409, retryable=False)


class RateLimitExceeded(SocialError):
    def __init__(self, retry_after: int, limit: int):
        super().__init__(
            code="rate_limit_exceeded",
            detail=f"Rate limit exceeded: {limit} messages per hour",
            status_code=429,
            retryable=True,
        )
        object.__setattr__(self, "retry_after", retry_after)


class PlatformAPIError(SocialError):
    def __init__(self, code: str, detail: str, status_code: int = 502, retryable: bool = True):
        super().__init__(code=code, detail=detail, status_code=status_code, retryable=retryable)


def as_http_exception(exc: Exception) -> HTTPException:
    if isinstance(exc, SocialError):
        return exc.to_http_exception()
    if isinstance(exc, HTTPException):
        return exc
    return HTTPException(status_code=500, detail=str(exc) or "Social messaging error")
