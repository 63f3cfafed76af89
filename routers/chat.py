# routers/chat.py
# ----------------------------------------------------------------------
# Turn relay: one POST = one debate turn from one AI role.
#   Accept: text/event-stream -> SSE  (content* -> [DONE] | error)
#   anything else             -> JSON {content}
# Config problems are 400 {error}; an upstream refusal is 502 {error, status}
# and happens before any byte of the stream is written.
# ----------------------------------------------------------------------

from __future__ import annotations

import logging
from typing import Optional

import httpx
from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import sessionmaker
from starlette.background import BackgroundTask

import schemas
from core.errors import ConfigurationError
from crud import conversationDB as crud_conv
from dependencies import get_http_client, get_session_factory, get_settings
from services.ai_providers import (
    MODEL_CATALOGUE,
    CompletionStream,
    GenerationParams,
    resolve_target,
    validate_connection,
)
from services.history_builder import build_conversation_history
from services.name_map import ROLES
from services.relay import SSE_HEADERS, SSE_MEDIA_TYPE, OnComplete, RelayController, RelaySession
from services.system_prompts import get_available_personalities
from utils.config import Settings

router = APIRouter()
logger = logging.getLogger(__name__)


# ----------------------------------------------------------------------
# small helpers
# ----------------------------------------------------------------------
def _wants_stream(request: Request) -> bool:
    return SSE_MEDIA_TYPE in request.headers.get("accept", "")


def _store_turn(session_factory: sessionmaker, conversation_id: str, role: str) -> OnComplete:
    """Persist the finished turn; only ever called after a clean completion."""

    def _write(text: str) -> None:
        with session_factory() as db:
            crud_conv.create_message(db, conversation_id, text, role)

    async def on_complete(text: str) -> None:
        if not text.strip():
            logger.info("Empty %s turn not stored for conversation %s", role, conversation_id)
            return
        await run_in_threadpool(_write, text)

    return on_complete


def _params(req: schemas.ChatRequest, settings: Settings) -> GenerationParams:
    return GenerationParams(
        temperature=req.temperature if req.temperature is not None else settings.default_temperature,
        max_tokens=req.max_tokens or settings.default_max_tokens,
    )


# ----------------------------------------------------------------------
# routes
# ----------------------------------------------------------------------
@router.post("/chat", status_code=status.HTTP_200_OK)
async def chat(
    req: schemas.ChatRequest,
    request: Request,
    settings: Settings = Depends(get_settings),
    client: httpx.AsyncClient = Depends(get_http_client),
    session_factory: sessionmaker = Depends(get_session_factory),
):
    role = (req.current_turn or "").strip().lower()
    if role not in ROLES:
        raise ConfigurationError('Invalid currentTurn. Must be "defender" or "critic"')

    config = getattr(req.providers, role, None) if req.providers else None
    if config is None:
        raise ConfigurationError(f"Provider configuration missing for {role}")
    target = resolve_target(settings, config.provider, config.model, config.api_key)

    on_complete: Optional[OnComplete] = None
    if req.conversation_id:
        with session_factory() as db:
            found = crud_conv.get_conversation(db, req.conversation_id) is not None
        if not found:
            raise HTTPException(status_code=404, detail="Conversation not found")
        on_complete = _store_turn(session_factory, req.conversation_id, role)

    personality = getattr(req.personalities, role, None) if req.personalities else None
    prompt = build_conversation_history(
        req.messages, role, req.topic, window=settings.history_window, personality=personality
    )
    params = _params(req, settings)

    logger.info(
        "Turn %s via %s/%s (%d history messages)", role, target.provider, target.model, len(req.messages)
    )
    stream = CompletionStream(client, target, prompt, params)
    # a refusal surfaces here as UpstreamRequestError -> 502, before any output
    await stream.open()

    session = RelaySession(provider=target.provider, model=target.model, prompt=prompt, params=params)

    if _wants_stream(request):
        controller = RelayController(
            session, stream, on_complete=on_complete, is_disconnected=request.is_disconnected
        )
        # the body may never start if the client leaves first; the background
        # close still returns the upstream connection to the pool
        return StreamingResponse(
            controller.events(),
            media_type=SSE_MEDIA_TYPE,
            headers=SSE_HEADERS,
            background=BackgroundTask(stream.aclose),
        )

    controller = RelayController(session, stream, on_complete=on_complete)
    content = await controller.drain()
    return schemas.ChatResponse(content=content)


@router.get("/providers", status_code=status.HTTP_200_OK)
async def providers(settings: Settings = Depends(get_settings)):
    """Catalogue of supported providers and whether a server-side key exists."""
    configured = set(settings.configured_providers())
    return {
        "providers": [
            {"name": name, "models": models, "configured": name in configured}
            for name, models in MODEL_CATALOGUE.items()
        ],
        "personalities": {role: get_available_personalities(role) for role in ROLES},
    }


@router.post("/providers/validate", status_code=status.HTTP_200_OK)
async def validate_provider(
    config: schemas.ProviderConfig,
    settings: Settings = Depends(get_settings),
    client: httpx.AsyncClient = Depends(get_http_client),
):
    target = resolve_target(settings, config.provider, config.model, config.api_key)
    valid = await validate_connection(client, target)
    logger.info("Connection check %s/%s: %s", target.provider, target.model, "ok" if valid else "failed")
    return {"valid": valid}
