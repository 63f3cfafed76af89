# conversation_models.py
# Database structure for debate conversations and their messages.
# We use SQLAlchemy's ORM: each class is a table, each instance a row.

import uuid
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, String, Text
from sqlalchemy.orm import relationship

from core.database import Base


def _new_id() -> str:
    return str(uuid.uuid4())


# --- Conversation Model ---
# One debate: its topic, the model/provider pairing for each AI seat,
# and the ordered list of messages.
class Conversation(Base):
    __tablename__ = "conversations"

    # Opaque string id, generated client-independently.
    id = Column(String(36), primary_key=True, default=_new_id)

    title = Column(Text, nullable=False)
    topic = Column(Text, nullable=False, default="")

    # ACTIVE | PAUSED | COMPLETED
    status = Column(String(16), nullable=False, default="ACTIVE")

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    # Bumped whenever a message is added, so listings sort by activity.
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    defender_model = Column(String(128), nullable=False)
    defender_provider = Column(String(32), nullable=False)
    critic_model = Column(String(128), nullable=False)
    critic_provider = Column(String(32), nullable=False)

    # MIXED | SAME_MODEL | COLLABORATIVE
    conversation_type = Column(String(16), nullable=False, default="MIXED")

    # Deleting a conversation deletes all of its messages.
    messages = relationship(
        "Message",
        back_populates="conversation",
        cascade="all, delete-orphan",
        order_by="Message.timestamp",
    )


# --- Message Model ---
# One turn in a conversation: moderator input, a Defender reply or a Critic reply.
class Message(Base):
    __tablename__ = "messages"

    id = Column(String(36), primary_key=True, default=_new_id)
    conversation_id = Column(
        String(36), ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False, index=True
    )

    content = Column(Text, nullable=False)

    # USER | DEFENDER | CRITIC
    sender = Column(String(16), nullable=False)

    timestamp = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Whispers are private to `target_ai` when building prompts.
    is_whisper = Column(Boolean, nullable=False, default=False)
    target_ai = Column(String(64), nullable=True)

    conversation = relationship("Conversation", back_populates="messages")
