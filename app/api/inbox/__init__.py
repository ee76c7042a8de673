from fastapi import APIRouter

from app.api.inbox.analytics import router as analytics_router
from app.api.inbox.conversations import router as conversations_router
from app.api.inbox.messages import router as messages_router
from app.api.inbox.webhooks import router as webhooks_router

router = APIRouter()
router.include_router(conversations_router)
router.include_router(analytics_router)
router.include_router(messages_router)
router.include_router(webhooks_router)

__all__ = ["router"]
