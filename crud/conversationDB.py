# CRUD OPS for conversations and their messages

import logging
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session, selectinload

import schemas
from models import Conversation, Message

logger = logging.getLogger(__name__)


def _with_messages(db: Session):
    # populate_existing: messages added earlier in this session must show up
    return db.query(Conversation).options(selectinload(Conversation.messages)).populate_existing()


def create_conversation(db: Session, data: schemas.ConversationCreate) -> Conversation:
    conversation = Conversation(
        title=data.title,
        topic=data.topic or "",
        defender_model=data.defender_model,
        defender_provider=data.defender_provider,
        critic_model=data.critic_model,
        critic_provider=data.critic_provider,
        conversation_type=data.conversation_type or "MIXED",
    )
    db.add(conversation)
    db.commit()
    db.refresh(conversation)
    return conversation


# Most recently active first.
def list_conversations(db: Session, search: Optional[str] = None) -> List[Conversation]:
    query = _with_messages(db)
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(Conversation.title.ilike(pattern), Conversation.topic.ilike(pattern)))
    return query.order_by(Conversation.updated_at.desc()).all()


def get_conversation(db: Session, conversation_id: str) -> Optional[Conversation]:
    return _with_messages(db).filter(Conversation.id == conversation_id).first()


def update_conversation(
    db: Session, conversation: Conversation, changes: schemas.ConversationUpdate
) -> Conversation:
    """Apply a partial update: status, title/topic and the model configuration."""
    if changes.status:
        conversation.status = changes.status

    if changes.title is not None or changes.topic is not None:
        conversation.title = changes.title or ""
        conversation.topic = changes.topic or ""

    model_updates: Dict[str, str] = {
        field: value
        for field, value in (
            ("defender_model", changes.defender_model),
            ("defender_provider", changes.defender_provider),
            ("critic_model", changes.critic_model),
            ("critic_provider", changes.critic_provider),
        )
        if value is not None
    }
    for field, value in model_updates.items():
        setattr(conversation, field, value)

    db.commit()
    db.refresh(conversation)
    return conversation


def delete_conversation(db: Session, conversation: Conversation) -> None:
    db.delete(conversation)
    db.commit()


def create_message(
    db: Session,
    conversation_id: str,
    content: str,
    sender: str,
    is_whisper: bool = False,
    target_ai: Optional[str] = None,
) -> Message:
    """
    Store one turn and bump the conversation's updated_at.
    `sender` is accepted in UI form ("defender") and stored upper-cased.
    """
    message = Message(
        conversation_id=conversation_id,
        content=content,
        sender=sender.upper(),
        is_whisper=bool(is_whisper),
        target_ai=target_ai,
        timestamp=datetime.utcnow(),
    )
    db.add(message)
    db.query(Conversation).filter(Conversation.id == conversation_id).update(
        {Conversation.updated_at: datetime.utcnow()}, synchronize_session=False
    )
    db.commit()
    db.refresh(message)
    logger.info(
        "Stored %s message (%d chars) in conversation %s", message.sender, len(content), conversation_id
    )
    return message
