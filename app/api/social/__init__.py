from fastapi import APIRouter

from app.api.social.comment_rules import router as comment_rules_router
from app.api.social.conversations import router as conversations_router

router = APIRouter(tags=["social"])
router.include_router(conversations_router)
router.include_router(comment_rules_router)

__all__ = ["router"]
