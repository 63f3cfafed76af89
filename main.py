# main.py
"""
Main application file for the AI debate relay.
Builds settings, the shared upstream HTTP client and the database in the
lifespan, maps relay errors to JSON, wires routers, and exposes /healthz.
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from core.database import init_database
from core.errors import ConfigurationError, UpstreamRequestError, UpstreamStreamError
from routers import chat, conversations, ollama
from utils.config import Settings, load_settings

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None, http_client: Optional[httpx.AsyncClient] = None) -> FastAPI:
    """
    App factory. Tests pass their own Settings (in-memory SQLite) and an
    httpx client on a MockTransport; production reads the environment.
    """
    settings = settings or load_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        engine, session_factory = init_database(settings.database_url)
        app.state.settings = settings
        app.state.session_factory = session_factory
        owns_client = http_client is None
        app.state.http_client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(settings.upstream_timeout_sec, connect=10.0)
        )
        logger.info("Relay ready; providers with keys: %s", ", ".join(settings.configured_providers()))
        try:
            yield
        finally:
            if owns_client:
                await app.state.http_client.aclose()
            engine.dispose()

    app = FastAPI(
        title="AI Debate Relay API",
        description="Streams debate turns from cloud and local models and stores conversations.",
        version="1.0.0",
        lifespan=lifespan,
    )

    # Allow the web client's dev server origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # --- relay errors -> JSON {error} ---
    @app.exception_handler(ConfigurationError)
    async def configuration_error_handler(request: Request, exc: ConfigurationError):
        logger.info("Rejected %s: %s", request.url.path, exc)
        return JSONResponse(status_code=400, content={"error": str(exc)})

    @app.exception_handler(UpstreamRequestError)
    async def upstream_request_error_handler(request: Request, exc: UpstreamRequestError):
        logger.warning("Upstream refused %s: %s", request.url.path, exc)
        return JSONResponse(status_code=502, content={"error": str(exc), "status": exc.status})

    @app.exception_handler(UpstreamStreamError)
    async def upstream_stream_error_handler(request: Request, exc: UpstreamStreamError):
        # only reachable on the non-streaming path; SSE reports it in-band
        logger.warning("Upstream stream failed on %s: %s", request.url.path, exc)
        return JSONResponse(status_code=502, content={"error": str(exc)})

    # Routers
    app.include_router(chat.router, prefix="/api", tags=["chat"])
    app.include_router(conversations.router, prefix="/api/conversations", tags=["conversations"])
    app.include_router(ollama.router, prefix="/api/ollama", tags=["ollama"])

    # Health for dev/proxy/lb checks
    @app.get("/healthz")
    async def healthz():
        return {"ok": True}

    return app


app = create_app()
