# routers/ollama.py
# Local model management. Status never fails: an unreachable server is
# reported as "offline". Pull/delete failures are UpstreamRequestError -> 502.

import logging

import httpx
from fastapi import APIRouter, BackgroundTasks, Depends, status

import schemas
from core.errors import UpstreamRequestError
from dependencies import get_http_client, get_settings
from services.ai_providers import (
    delete_ollama_model,
    follow_pull_progress,
    list_ollama_models,
    pull_ollama_model,
)
from utils.config import Settings

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/status", status_code=status.HTTP_200_OK)
async def ollama_status(
    settings: Settings = Depends(get_settings),
    client: httpx.AsyncClient = Depends(get_http_client),
):
    server_url = settings.ollama_base_url
    try:
        models = await list_ollama_models(client, server_url)
    except (httpx.HTTPError, UpstreamRequestError) as e:
        logger.info("Ollama not reachable at %s: %s", server_url, e)
        return {"status": "offline", "serverUrl": server_url, "models": [], "totalModels": 0, "error": str(e)}
    return {"status": "online", "serverUrl": server_url, "models": models, "totalModels": len(models)}


@router.post("/pull", status_code=status.HTTP_200_OK)
async def ollama_pull(
    req: schemas.OllamaModelRequest,
    background_tasks: BackgroundTasks,
    settings: Settings = Depends(get_settings),
    client: httpx.AsyncClient = Depends(get_http_client),
):
    try:
        progress = await pull_ollama_model(client, settings.ollama_base_url, req.model)
    except httpx.HTTPError as e:
        raise UpstreamRequestError("ollama", 0, f"{type(e).__name__}: {e}") from e
    # the download runs on after the response; keep reading so it isn't aborted
    background_tasks.add_task(follow_pull_progress, progress, req.model)
    logger.info("Pull started for %s", req.model)
    return {"success": True, "message": f"Started downloading model: {req.model}", "model": req.model}


@router.delete("/delete", status_code=status.HTTP_200_OK)
async def ollama_delete(
    req: schemas.OllamaModelRequest,
    settings: Settings = Depends(get_settings),
    client: httpx.AsyncClient = Depends(get_http_client),
):
    try:
        await delete_ollama_model(client, settings.ollama_base_url, req.model)
    except httpx.HTTPError as e:
        raise UpstreamRequestError("ollama", 0, f"{type(e).__name__}: {e}") from e
    logger.info("Deleted model %s", req.model)
    return {"success": True, "message": f"Successfully deleted model: {req.model}", "model": req.model}
