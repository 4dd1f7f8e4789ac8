import time
import uuid

from fastapi import APIRouter, Query, Request, Response, status
from pydantic import ValidationError
from starlette.requests import ClientDisconnect
from starlette.responses import JSONResponse

from app.config import settings
from app.logging import get_logger
from app.models.social import SocialPlatform
from app.schemas.social.webhooks import MetaWebhookPayload
from app.services.social.normalizers import RawEventSource, source_for_platform
from app.services.social.signature import SIGNATURE_HEADER, respond_to_challenge, verify_signature
from app.services.webhook_dead_letter import write_dead_letter
from app.tasks import social as social_tasks

logger = get_logger(__name__)

router = APIRouter(prefix="/webhooks/social", tags=["web-public-social"])

_CHANNEL_STATS: dict[str, dict[str, float]] = {
    SocialPlatform.messenger.value: {"count": 0.0, "errors": 0.0, "last_log": 0.0},
    SocialPlatform.instagram.value: {"count": 0.0, "errors": 0.0, "last_log": 0.0},
}
_METRICS_LOG_INTERVAL_SECONDS = 60.0


def _record_channel_stat(channel: str, ok: bool, events: int | None = None) -> None:
    stats = _CHANNEL_STATS.get(channel)
    if not stats:
        return
    stats["count"] += float(events or 1)
    if not ok:
        stats["errors"] += 1.0
    now = time.monotonic()
    if now - stats.get("last_log", 0.0) >= _METRICS_LOG_INTERVAL_SECONDS:
        error_rate = stats["errors"] / stats["count"] if stats["count"] else 0.0
        logger.info(
            "webhook_channel_metrics channel=%s count=%s errors=%s error_rate=%.3f",
            channel,
            int(stats["count"]),
            int(stats["errors"]),
            error_rate,
        )
        stats["count"] = 0.0
        stats["errors"] = 0.0
        stats["last_log"] = now


def _verify(channel: str, hub_mode: str | None, hub_verify_token: str | None, hub_challenge: str | None) -> Response:
    expected_token = settings.meta_webhook_verify_token
    if not expected_token:
        logger.warning("social_webhook_verify_failed channel=%s reason=no_verify_token_configured", channel)
        return Response(status_code=403)
    challenge = respond_to_challenge(hub_mode, hub_verify_token, hub_challenge, expected_token)
    if challenge is None:
        logger.warning("social_webhook_verify_failed channel=%s mode=%s", channel, hub_mode)
        return Response(status_code=403)
    logger.info("social_webhook_verified channel=%s", channel)
    return Response(content=challenge, media_type="text/plain")


async def _receive(request: Request, source: RawEventSource) -> Response:
    channel = source.platform.value
    trace_id = str(uuid.uuid4())

    app_secret = settings.meta_app_secret
    if not app_secret:
        logger.warning("social_webhook_secret_missing channel=%s", channel)
        return Response(status_code=403)

    try:
        body = await request.body()
    except ClientDisconnect:
        logger.warning("social_webhook_client_disconnect channel=%s trace_id=%s", channel, trace_id)
        _record_channel_stat(channel, ok=False)
        # Meta retries on 5xx; the body was not fully read.
        return Response(status_code=500)

    if not verify_signature(body, request.headers.get(SIGNATURE_HEADER), app_secret):
        logger.warning("social_webhook_signature_invalid channel=%s trace_id=%s", channel, trace_id)
        _record_channel_stat(channel, ok=False)
        return Response(status_code=401)

    try:
        payload = MetaWebhookPayload.model_validate_json(body)
    except ValidationError as exc:
        logger.warning("social_webhook_invalid_payload channel=%s trace_id=%s error=%s", channel, trace_id, exc)
        _record_channel_stat(channel, ok=False)
        write_dead_letter(channel=channel, raw_payload=body, error=exc, trace_id=trace_id)
        return JSONResponse(status_code=400, content={"status": "error", "detail": "Invalid payload"})

    if payload.object != source.object_kind:
        logger.warning(
            "social_webhook_wrong_object channel=%s trace_id=%s object=%s",
            channel,
            trace_id,
            payload.object,
        )
        _record_channel_stat(channel, ok=False)
        return JSONResponse(
            status_code=400,
            content={"status": "error", "detail": f"Unsupported object type: {payload.object}"},
        )

    event_count = payload.event_count()
    social_tasks.process_social_webhook.delay(
        payload.model_dump(exclude_none=True),
        channel,
        trace_id=trace_id,
    )
    logger.info(
        "social_webhook_enqueued channel=%s trace_id=%s entries=%s events=%s",
        channel,
        trace_id,
        len(payload.entry),
        event_count,
    )
    _record_channel_stat(channel, ok=True, events=event_count)
    return JSONResponse(status_code=status.HTTP_200_OK, content={"status": "ok", "events": event_count})


@router.get("/messenger")
async def messenger_webhook_verify(
    hub_mode: str = Query(None, alias="hub.mode"),
    hub_verify_token: str = Query(None, alias="hub.verify_token"),
    hub_challenge: str = Query(None, alias="hub.challenge"),
):
    return _verify(SocialPlatform.messenger.value, hub_mode, hub_verify_token, hub_challenge)


@router.post("/messenger", status_code=status.HTTP_200_OK)
async def messenger_webhook(request: Request):
    """Receive Messenger events (``object == "page"``) and queue them for processing."""
    return await _receive(request, source_for_platform(SocialPlatform.messenger))


@router.get("/instagram")
async def instagram_webhook_verify(
    hub_mode: str = Query(None, alias="hub.mode"),
    hub_verify_token: str = Query(None, alias="hub.verify_token"),
    hub_challenge: str = Query(None, alias="hub.challenge"),
):
    return _verify(SocialPlatform.instagram.value, hub_mode, hub_verify_token, hub_challenge)


@router.post("/instagram", status_code=status.HTTP_200_OK)
async def instagram_webhook(request: Request):
    """Receive Instagram events (``object == "instagram"``) and queue them for processing."""
    return await _receive(request, source_for_platform(SocialPlatform.instagram))
