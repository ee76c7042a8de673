from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from starlette.responses import JSONResponse

from app.api.deps import get_db, get_outbound_dispatcher
from app.schemas.inbox.message import ManualResponseCreate, ManualResponseResult, MessageRead
from app.services.inbox import messages as messages_service
from app.services.inbox.errors import InboxError
from app.services.inbox.outbound import OutboundDispatcher

router = APIRouter(tags=["messages"])


@router.get("/messages", response_model=list[MessageRead])
def list_messages(
    conversation_id: int | None = Query(None, alias="conversationId"),
    db: Session = Depends(get_db),
):
    return messages_service.list_messages(db, conversation_id)


@router.post(
    "/api/send-manual-response",
    response_model=ManualResponseResult,
    response_model_exclude_none=True,
)
def send_manual_response(
    payload: ManualResponseCreate,
    db: Session = Depends(get_db),
    dispatcher: OutboundDispatcher = Depends(get_outbound_dispatcher),
):
    """Store an agent reply and deliver it through the conversation's channel."""
    try:
        return messages_service.send_manual_response(db, payload, dispatcher)
    except InboxError as exc:
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "error": exc.detail},
        )
