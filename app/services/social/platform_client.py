"""Meta Graph API client for Messenger and Instagram.

Covers outbound sends, webhook subscription, profile lookup and the
Handover Protocol endpoints. Sends are retried once on 429/5xx responses
and on timeouts; handover calls report failure as ``False``.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import httpx

from app.config import settings
from app.logging import get_logger
from app.models.social import SocialConnection, SocialPlatform
from app.services.social.errors import PlatformAPIError

logger = get_logger(__name__)

MESSENGER_SUBSCRIBED_FIELDS = (
    "messages",
    "messaging_postbacks",
    "messaging_optins",
    "message_deliveries",
    "message_reads",
    "messaging_handovers",
    "standby",
)
INSTAGRAM_SUBSCRIBED_FIELDS = ("messages", "messaging_seen", "messaging_postbacks")

_MESSENGER_PROFILE_FIELDS = "id,name,first_name,last_name,profile_pic,locale,timezone"
_INSTAGRAM_PROFILE_FIELDS = "id,name,username,profile_pic"
_TYPING_ACTIONS = {"typing_on", "typing_off", "mark_seen"}


@dataclass(frozen=True)
class SendResult:
    recipient_id: str | None
    message_id: str


@dataclass(frozen=True)
class ThreadOwnerInfo:
    app_id: str
    is_secondary_receiver: bool


def text_message(text: str) -> dict:
    return {"text": text}


def quick_reply_message(text: str, quick_replies: list[dict]) -> dict:
    return {"text": text, "quick_replies": quick_replies}


def template_message(template: dict) -> dict:
    return {"attachment": {"type": "template", "payload": template}}


def _safe_status_code(response: httpx.Response) -> int | None:
    status_code = getattr(response, "status_code", None)
    if isinstance(status_code, int):
        return status_code
    if status_code is None:
        return None
    try:
        return int(status_code)
    except (TypeError, ValueError):
        return None


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    return response.text or f"HTTP {response.status_code}"


class MetaPlatformClient:
    def __init__(
        self,
        *,
        base_url: str | None = None,
        timeout: float | None = None,
        page_inbox_app_id: str | None = None,
        http_client: httpx.Client | None = None,
        sleep: Callable[[float], None] = time.sleep,
        max_retries: int = 1,
    ):
        self.base_url = (base_url or settings.meta_graph_base_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.meta_http_timeout_seconds
        self.page_inbox_app_id = page_inbox_app_id or settings.meta_page_inbox_app_id
        self._http_client = http_client
        self._sleep = sleep
        self.max_retries = max_retries

    # -- transport -----------------------------------------------------------

    def _client(self) -> httpx.Client:
        if self._http_client is not None:
            return self._http_client
        return httpx.Client(timeout=self.timeout)

    def _request(
        self,
        method: str,
        path: str,
        connection: SocialConnection,
        *,
        params: dict | None = None,
        json: dict | None = None,
        retry: bool = False,
    ) -> httpx.Response:
        url = f"{self.base_url}/{path.lstrip('/')}"
        headers = {"Authorization": f"Bearer {connection.access_token or ''}"}
        client = self._client()
        owns_client = client is not self._http_client
        retries = 0
        try:
            while True:
                try:
                    response = client.request(
                        method,
                        url,
                        params=params,
                        json=json,
                        headers=headers,
                        timeout=self.timeout,
                    )
                except httpx.TimeoutException:
                    if retry and retries < self.max_retries:
                        retries += 1
                        logger.warning("meta_graph_timeout_retry path=%s attempt=%s", path, retries)
                        continue
                    raise
                status_code = _safe_status_code(response)
                if retry and status_code is not None and (status_code == 429 or status_code >= 500):
                    if retries >= self.max_retries:
                        return response
                    retry_after = response.headers.get("Retry-After")
                    delay = 1.0
                    if retry_after:
                        try:
                            delay = max(0.0, float(retry_after))
                        except ValueError:
                            delay = 1.0
                    self._sleep(delay)
                    retries += 1
                    continue
                return response
        finally:
            if owns_client:
                client.close()

    # -- messaging ------------------------------------------------------------

    def send_message(
        self,
        connection: SocialConnection,
        recipient_id: str,
        payload: dict,
        *,
        messaging_type: str = "RESPONSE",
        tag: str | None = None,
    ) -> SendResult:
        """Send a message object to ``recipient_id``.

        Raises:
            PlatformAPIError: On timeout or any non-2xx response.
        """
        body: dict[str, Any] = {"recipient": {"id": recipient_id}, "message": payload}
        if connection.platform == SocialPlatform.messenger:
            body["messaging_type"] = messaging_type
            if tag:
                body["tag"] = tag
        sender = _sender_account(connection)
        try:
            response = self._request("POST", f"{sender}/messages", connection, json=body, retry=True)
        except httpx.TimeoutException as exc:
            logger.error(
                "social_message_send_timeout platform=%s account=%s",
                connection.platform.value,
                sender,
            )
            raise PlatformAPIError("platform_timeout", "Meta Graph API request timed out", 504) from exc
        except httpx.HTTPError as exc:
            raise PlatformAPIError("platform_unreachable", f"Meta Graph API request failed: {exc}") from exc

        status_code = _safe_status_code(response) or 0
        if status_code >= 400:
            detail = _error_detail(response)
            logger.error(
                "social_message_send_failed platform=%s account=%s recipient=%s status=%s detail=%s",
                connection.platform.value,
                sender,
                recipient_id[:8],
                status_code,
                detail,
            )
            raise PlatformAPIError(
                "platform_send_failed",
                detail,
                status_code=502,
                retryable=status_code == 429 or status_code >= 500,
            )
        data = response.json()
        message_id = data.get("message_id")
        if not message_id:
            raise PlatformAPIError("platform_send_failed", "Meta Graph API returned no message_id")
        logger.info(
            "social_message_sent platform=%s account=%s recipient=%s... message_id=%s",
            connection.platform.value,
            sender,
            recipient_id[:8],
            message_id,
        )
        return SendResult(recipient_id=data.get("recipient_id"), message_id=message_id)

    def send_text(self, connection: SocialConnection, recipient_id: str, text: str, **kwargs) -> SendResult:
        return self.send_message(connection, recipient_id, text_message(text), **kwargs)

    def send_quick_replies(
        self,
        connection: SocialConnection,
        recipient_id: str,
        text: str,
        quick_replies: list[dict],
    ) -> SendResult:
        return self.send_message(connection, recipient_id, quick_reply_message(text, quick_replies))

    def send_template(self, connection: SocialConnection, recipient_id: str, template: dict) -> SendResult:
        return self.send_message(connection, recipient_id, template_message(template))

    def send_typing_indicator(
        self,
        connection: SocialConnection,
        recipient_id: str,
        action: str = "typing_on",
    ) -> bool:
        if action not in _TYPING_ACTIONS:
            raise ValueError(f"Unsupported sender action: {action}")
        body = {"recipient": {"id": recipient_id}, "sender_action": action}
        try:
            response = self._request("POST", f"{_sender_account(connection)}/messages", connection, json=body)
        except httpx.HTTPError as exc:
            logger.warning("social_typing_indicator_failed recipient=%s error=%s", recipient_id[:8], exc)
            return False
        return (_safe_status_code(response) or 0) < 400

    # -- profiles and subscriptions ------------------------------------------

    def get_user_profile(self, connection: SocialConnection, user_id: str) -> dict:
        """Fetch the participant's display profile.

        Returns ``{"name", "profile_pic", "username"}``; keys are None when the
        platform does not expose them.

        Raises:
            PlatformAPIError: When the lookup fails (commonly missing permissions).
        """
        fields = (
            _INSTAGRAM_PROFILE_FIELDS
            if connection.platform == SocialPlatform.instagram
            else _MESSENGER_PROFILE_FIELDS
        )
        try:
            response = self._request("GET", user_id, connection, params={"fields": fields})
        except httpx.HTTPError as exc:
            raise PlatformAPIError("profile_lookup_failed", f"Profile lookup failed: {exc}") from exc
        status_code = _safe_status_code(response) or 0
        if status_code >= 400:
            raise PlatformAPIError("profile_lookup_failed", _error_detail(response), retryable=False)
        data = response.json()
        name = data.get("name")
        if not name and (data.get("first_name") or data.get("last_name")):
            name = " ".join(part for part in (data.get("first_name"), data.get("last_name")) if part)
        return {
            "name": name,
            "profile_pic": data.get("profile_pic"),
            "username": data.get("username"),
        }

    def subscribe_webhooks(self, connection: SocialConnection) -> bool:
        fields = (
            INSTAGRAM_SUBSCRIBED_FIELDS
            if connection.platform == SocialPlatform.instagram
            else MESSENGER_SUBSCRIBED_FIELDS
        )
        page_id = connection.page_id or connection.account_id
        try:
            response = self._request(
                "POST",
                f"{page_id}/subscribed_apps",
                connection,
                json={"subscribed_fields": list(fields)},
            )
        except httpx.HTTPError as exc:
            logger.error("social_webhook_subscribe_failed page_id=%s error=%s", page_id, exc)
            return False
        if (_safe_status_code(response) or 0) >= 400:
            logger.error(
                "social_webhook_subscribe_failed page_id=%s detail=%s",
                page_id,
                _error_detail(response),
            )
            return False
        connection.webhook_subscribed = True
        logger.info("social_webhook_subscribed page_id=%s platform=%s", page_id, connection.platform.value)
        return True

    # -- handover protocol ---------------------------------------------------

    def _handover(self, action: str, connection: SocialConnection, body: dict) -> bool:
        page_id = connection.page_id or connection.account_id
        try:
            response = self._request("POST", f"{page_id}/{action}", connection, json=body)
        except httpx.HTTPError as exc:
            logger.error("social_handover_request_failed action=%s page_id=%s error=%s", action, page_id, exc)
            return False
        if (_safe_status_code(response) or 0) >= 400:
            logger.error(
                "social_handover_rejected action=%s page_id=%s detail=%s",
                action,
                page_id,
                _error_detail(response),
            )
            return False
        try:
            data = response.json()
        except ValueError:
            return True
        return bool(data.get("success", True)) if isinstance(data, dict) else True

    def pass_thread_control(
        self,
        connection: SocialConnection,
        recipient_id: str,
        target_app_id: str | None = None,
        metadata: str | None = None,
    ) -> bool:
        body: dict[str, Any] = {
            "recipient": {"id": recipient_id},
            "target_app_id": target_app_id or self.page_inbox_app_id,
        }
        if metadata:
            body["metadata"] = metadata
        return self._handover("pass_thread_control", connection, body)

    def take_thread_control(
        self,
        connection: SocialConnection,
        recipient_id: str,
        target_app_id: str | None = None,
        metadata: str | None = None,
    ) -> bool:
        body: dict[str, Any] = {"recipient": {"id": recipient_id}}
        if metadata:
            body["metadata"] = metadata
        return self._handover("take_thread_control", connection, body)

    def request_thread_control(
        self,
        connection: SocialConnection,
        recipient_id: str,
        target_app_id: str | None = None,
        metadata: str | None = None,
    ) -> bool:
        body: dict[str, Any] = {"recipient": {"id": recipient_id}}
        if metadata:
            body["metadata"] = metadata
        return self._handover("request_thread_control", connection, body)

    def get_thread_owner(self, connection: SocialConnection, recipient_id: str) -> ThreadOwnerInfo | None:
        page_id = connection.page_id or connection.account_id
        try:
            response = self._request(
                "GET",
                f"{page_id}/thread_owner",
                connection,
                params={"recipient": recipient_id},
            )
        except httpx.HTTPError as exc:
            logger.warning("social_thread_owner_lookup_failed page_id=%s error=%s", page_id, exc)
            return None
        if (_safe_status_code(response) or 0) >= 400:
            return None
        entries = (response.json() or {}).get("data") or []
        if not entries:
            return None
        app_id = (entries[0].get("thread_owner") or {}).get("app_id")
        if app_id is None:
            return None
        app_id = str(app_id)
        secondary = {str(item) for item in (connection.secondary_receiver_app_ids or [])}
        return ThreadOwnerInfo(app_id=app_id, is_secondary_receiver=app_id in secondary)


def _sender_account(connection: SocialConnection) -> str:
    if connection.platform == SocialPlatform.messenger:
        return connection.page_id or connection.account_id
    return connection.account_id


def get_platform_client() -> MetaPlatformClient:
    return MetaPlatformClient()
