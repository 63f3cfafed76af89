# This file contains shared dependencies used across different routers.
# Everything lives on app.state, built once by main.create_app's lifespan.

import httpx
from fastapi import Request
from sqlalchemy.orm import sessionmaker

from utils.config import Settings


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


# The process-wide upstream client; each turn opens its own response on it.
def get_http_client(request: Request) -> httpx.AsyncClient:
    return request.app.state.http_client


# For work that outlives the request (storing a message after the stream ends).
def get_session_factory(request: Request) -> sessionmaker:
    return request.app.state.session_factory
