from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

import schemas
from core.database import get_db
from crud import conversationDB as crud_conv
from models import Conversation

router = APIRouter()


def _get_or_404(db: Session, conversation_id: str) -> Conversation:
    conversation = crud_conv.get_conversation(db, conversation_id)
    if conversation is None:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return conversation


def _envelope(conversation: Conversation) -> schemas.ConversationEnvelope:
    return schemas.ConversationEnvelope(conversation=schemas.ConversationResponse.model_validate(conversation))


# ============================
# List / search
# ============================
@router.get("", response_model=schemas.ConversationList)
def list_conversations(search: Optional[str] = Query(None), db: Session = Depends(get_db)):
    conversations = crud_conv.list_conversations(db, search=(search or "").strip() or None)
    return schemas.ConversationList(
        conversations=[schemas.ConversationResponse.model_validate(c) for c in conversations]
    )


# ============================
# Create
# ============================
@router.post("", response_model=schemas.ConversationEnvelope, status_code=status.HTTP_201_CREATED)
def create_conversation(data: schemas.ConversationCreate, db: Session = Depends(get_db)):
    return _envelope(crud_conv.create_conversation(db, data))


# ============================
# Single conversation
# ============================
@router.get("/{conversation_id}", response_model=schemas.ConversationEnvelope)
def get_conversation(conversation_id: str, db: Session = Depends(get_db)):
    return _envelope(_get_or_404(db, conversation_id))


@router.patch("/{conversation_id}", response_model=schemas.ConversationEnvelope)
def update_conversation(
    conversation_id: str, changes: schemas.ConversationUpdate, db: Session = Depends(get_db)
):
    conversation = _get_or_404(db, conversation_id)
    return _envelope(crud_conv.update_conversation(db, conversation, changes))


@router.delete("/{conversation_id}")
def delete_conversation(conversation_id: str, db: Session = Depends(get_db)):
    crud_conv.delete_conversation(db, _get_or_404(db, conversation_id))
    return {"success": True}


# ============================
# Messages
# ============================
@router.post(
    "/{conversation_id}/messages",
    response_model=schemas.ConversationEnvelope,
    status_code=status.HTTP_201_CREATED,
)
def add_message(conversation_id: str, data: schemas.MessageCreate, db: Session = Depends(get_db)):
    _get_or_404(db, conversation_id)
    crud_conv.create_message(
        db,
        conversation_id,
        content=data.content,
        sender=data.sender,
        is_whisper=data.is_whisper,
        target_ai=data.target_ai,
    )
    # re-read so the new message shows up in order
    return _envelope(_get_or_404(db, conversation_id))
