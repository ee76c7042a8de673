from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.api.deps import get_db
from app.schemas.inbox.conversation import ConversationClaim, ConversationRead, ConversationStatusUpdate
from app.services.inbox import conversations as conversations_service

router = APIRouter(prefix="/conversations", tags=["conversations"])


@router.get("", response_model=list[ConversationRead])
def list_conversations(
    status: str | None = None,
    assigned_to: str | None = Query(None, alias="assignedTo"),
    limit: int | None = Query(None),
    db: Session = Depends(get_db),
):
    return conversations_service.list_conversations(db, status=status, assigned_to=assigned_to, limit=limit)


@router.get("/{conversation_id}", response_model=ConversationRead)
def get_conversation(conversation_id: int, db: Session = Depends(get_db)):
    return conversations_service.get_conversation(db, conversation_id)


@router.post("/{conversation_id}/claim", response_model=ConversationRead)
def claim_conversation(conversation_id: int, payload: ConversationClaim, db: Session = Depends(get_db)):
    return conversations_service.claim_conversation(db, conversation_id, payload.agent_name)


@router.post("/{conversation_id}/status", response_model=ConversationRead)
def update_conversation_status(
    conversation_id: int,
    payload: ConversationStatusUpdate,
    db: Session = Depends(get_db),
):
    return conversations_service.update_status(db, conversation_id, payload.status)
