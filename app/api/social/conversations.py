from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from app.api.deps import get_db, get_platform_client
from app.schemas.social.conversation import (
    PlatformConversationRead,
    PlatformMessageRead,
    SocialSendRequest,
    ThreadControlRequest,
    ThreadControlResult,
)
from app.services.social import conversations as conversation_service
from app.services.social import messages as message_service
from app.services.social import outbound, thread_control
from app.services.social.errors import SocialError, as_http_exception
from app.services.social.platform_client import MetaPlatformClient

router = APIRouter(prefix="/social/conversations", tags=["social-conversations"])


def _result(conversation) -> ThreadControlResult:
    return ThreadControlResult(
        conversation_id=conversation.id,
        thread_owner=conversation.thread_owner,
        thread_owner_app_id=conversation.thread_owner_app_id,
    )


@router.get("/{conversation_id}", response_model=PlatformConversationRead)
def get_conversation(conversation_id: str, db: Session = Depends(get_db)):
    try:
        return conversation_service.get_conversation(db, conversation_id)
    except SocialError as exc:
        raise as_http_exception(exc) from exc


@router.get("/{conversation_id}/messages", response_model=list[PlatformMessageRead])
def list_messages(
    conversation_id: str,
    limit: int = Query(default=50, ge=1, le=200),
    db: Session = Depends(get_db),
):
    try:
        conversation = conversation_service.get_conversation(db, conversation_id)
    except SocialError as exc:
        raise as_http_exception(exc) from exc
    return message_service.list_messages(db, conversation, limit=limit)


@router.post(
    "/{conversation_id}/messages",
    response_model=PlatformMessageRead,
    status_code=status.HTTP_201_CREATED,
)
def send_message(
    conversation_id: str,
    payload: SocialSendRequest,
    db: Session = Depends(get_db),
    client: MetaPlatformClient = Depends(get_platform_client),
):
    try:
        conversation = conversation_service.get_conversation(db, conversation_id)
        return outbound.send_message(db, conversation, payload.to_message_payload(), client=client)
    except SocialError as exc:
        http_exc = as_http_exception(exc)
        retry_after = getattr(exc, "retry_after", None)
        if retry_after is not None:
            raise HTTPException(
                status_code=http_exc.status_code,
                detail=http_exc.detail,
                headers={"Retry-After": str(retry_after)},
            ) from exc
        raise http_exc from exc


@router.post("/{conversation_id}/thread-control/pass", response_model=ThreadControlResult)
def pass_thread_control(
    conversation_id: str,
    payload: ThreadControlRequest,
    db: Session = Depends(get_db),
    client: MetaPlatformClient = Depends(get_platform_client),
):
    try:
        conversation = conversation_service.get_conversation(db, conversation_id)
        thread_control.pass_thread_control(
            db,
            conversation,
            target_app_id=payload.target_app_id,
            metadata=payload.metadata,
            client=client,
        )
    except SocialError as exc:
        raise as_http_exception(exc) from exc
    return _result(conversation)


@router.post("/{conversation_id}/thread-control/take", response_model=ThreadControlResult)
def take_thread_control(
    conversation_id: str,
    payload: ThreadControlRequest | None = None,
    db: Session = Depends(get_db),
    client: MetaPlatformClient = Depends(get_platform_client),
):
    try:
        conversation = conversation_service.get_conversation(db, conversation_id)
        thread_control.take_thread_control(
            db,
            conversation,
            metadata=payload.metadata if payload else None,
            client=client,
        )
    except SocialError as exc:
        raise as_http_exception(exc) from exc
    return _result(conversation)


@router.post("/{conversation_id}/thread-control/request", response_model=ThreadControlResult)
def request_thread_control(
    conversation_id: str,
    payload: ThreadControlRequest | None = None,
    db: Session = Depends(get_db),
    client: MetaPlatformClient = Depends(get_platform_client),
):
    try:
        conversation = conversation_service.get_conversation(db, conversation_id)
        thread_control.request_thread_control(
            db,
            conversation,
            metadata=payload.metadata if payload else None,
            client=client,
        )
    except SocialError as exc:
        raise as_http_exception(exc) from exc
    return _result(conversation)
