from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from app.api.deps import get_db
from app.models.social import SocialConnection
from app.schemas.social.comments import CommentRuleCreate, CommentRuleRead, CommentRuleUpdate
from app.services.social import comment_automation
from app.services.social.errors import SocialError, as_http_exception

router = APIRouter(prefix="/social/comment-rules", tags=["social-comment-rules"])


@router.post("", response_model=CommentRuleRead, status_code=status.HTTP_201_CREATED)
def create_comment_rule(payload: CommentRuleCreate, db: Session = Depends(get_db)):
    connection = db.get(SocialConnection, payload.connection_id)
    if not connection:
        raise HTTPException(status_code=404, detail="Connection not found")
    try:
        return comment_automation.create_comment_rule(
            db,
            connection,
            **payload.model_dump(exclude={"connection_id"}),
        )
    except SocialError as exc:
        raise as_http_exception(exc) from exc


@router.get("", response_model=list[CommentRuleRead])
def list_comment_rules(connection_id: UUID, active_only: bool = False, db: Session = Depends(get_db)):
    return comment_automation.list_comment_rules(db, connection_id, active_only=active_only)


@router.patch("/{rule_id}", response_model=CommentRuleRead)
def update_comment_rule(rule_id: UUID, payload: CommentRuleUpdate, db: Session = Depends(get_db)):
    try:
        return comment_automation.update_comment_rule(db, rule_id, **payload.model_dump(exclude_unset=True))
    except SocialError as exc:
        raise as_http_exception(exc) from exc


@router.delete("/{rule_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_comment_rule(rule_id: UUID, db: Session = Depends(get_db)):
    try:
        comment_automation.delete_comment_rule(db, rule_id)
    except SocialError as exc:
        raise as_http_exception(exc) from exc


@router.get("/{rule_id}/stats")
def get_comment_rule_stats(rule_id: UUID, db: Session = Depends(get_db)):
    try:
        return comment_automation.get_comment_rule_stats(db, rule_id)
    except SocialError as exc:
        raise as_http_exception(exc) from exc
