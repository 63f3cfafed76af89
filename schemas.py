# schemas.py
# Request/response models. Wire names are camelCase (the browser client's
# shape); Python attribute names stay snake_case.
from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

Sender = Literal["user", "defender", "critic"]
ConversationStatus = Literal["ACTIVE", "PAUSED", "COMPLETED"]
ConversationType = Literal["MIXED", "SAME_MODEL", "COLLABORATIVE"]


class CamelModel(BaseModel):
    model_config = ConfigDict(
        from_attributes=True,
        alias_generator=to_camel,
        populate_by_name=True,
    )


# -------------------------
# Turn request (browser -> relay)
# -------------------------
class ChatMessage(CamelModel):
    """One entry of the debate history as the browser holds it."""
    id: Optional[str] = None
    content: str
    sender: Sender
    timestamp: Optional[datetime] = None
    is_whisper: bool = False
    target_ai: Optional[str] = Field(None, alias="targetAI")


class ProviderConfig(CamelModel):
    provider: str = Field(..., min_length=1)
    model: str = Field(..., min_length=1)
    api_key: Optional[str] = None

    @field_validator("provider")
    @classmethod
    def _norm_provider(cls, v: str) -> str:
        return (v or "").strip().lower()


class ProvidersConfig(CamelModel):
    defender: Optional[ProviderConfig] = None
    critic: Optional[ProviderConfig] = None


class Personalities(CamelModel):
    defender: Optional[str] = None
    critic: Optional[str] = None


class ChatRequest(CamelModel):
    """
    Turn request. `current_turn` and `providers` are validated by the relay
    (400 on a bad value) rather than here, so the client gets a readable error.
    """
    messages: List[ChatMessage] = Field(default_factory=list)
    current_turn: Optional[str] = None
    topic: str = ""
    providers: Optional[ProvidersConfig] = None
    personalities: Optional[Personalities] = None
    conversation_id: Optional[str] = None
    temperature: Optional[float] = Field(None, ge=0.0, le=2.0)
    max_tokens: Optional[int] = Field(None, gt=0)


class ChatResponse(CamelModel):
    content: str


# -------------------------
# Conversations / messages (storage collaborator)
# -------------------------
class ConversationCreate(CamelModel):
    title: str = Field(..., min_length=1)
    topic: str = ""
    defender_model: str = Field(..., min_length=1)
    defender_provider: str = Field(..., min_length=1)
    critic_model: str = Field(..., min_length=1)
    critic_provider: str = Field(..., min_length=1)
    conversation_type: ConversationType = "MIXED"

    @field_validator("title", "topic")
    @classmethod
    def _trim(cls, v: str) -> str:
        return (v or "").strip()


class ConversationUpdate(CamelModel):
    status: Optional[ConversationStatus] = None
    title: Optional[str] = None
    topic: Optional[str] = None
    defender_model: Optional[str] = None
    defender_provider: Optional[str] = None
    critic_model: Optional[str] = None
    critic_provider: Optional[str] = None


class MessageCreate(CamelModel):
    content: str = Field(..., min_length=1)
    sender: Sender
    is_whisper: bool = False
    target_ai: Optional[str] = Field(None, alias="targetAI")


class MessageResponse(CamelModel):
    """Mirror of models.Message; sender is lowercased for the UI."""
    id: str
    content: str
    sender: Sender
    timestamp: datetime
    is_whisper: bool = False
    target_ai: Optional[str] = Field(None, alias="targetAI")

    @field_validator("sender", mode="before")
    @classmethod
    def _lower_sender(cls, v: str) -> str:
        return (v or "").lower()


class ConversationResponse(CamelModel):
    """Mirror of models.Conversation including ordered messages."""
    id: str
    title: str
    topic: str
    status: ConversationStatus
    created_at: datetime
    updated_at: datetime
    defender_model: str
    defender_provider: str
    critic_model: str
    critic_provider: str
    conversation_type: ConversationType
    messages: List[MessageResponse] = Field(default_factory=list)


class ConversationEnvelope(CamelModel):
    conversation: ConversationResponse


class ConversationList(CamelModel):
    conversations: List[ConversationResponse] = Field(default_factory=list)


# -------------------------
# Ollama model management
# -------------------------
class OllamaModelRequest(CamelModel):
    model: str = Field(..., min_length=1)
