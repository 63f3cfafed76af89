# Configuration module for environment setup and provider endpoints
# This module is imported by: main.py (app factory), routers via request.app.state
# Dependencies: python-dotenv
# Purpose: Centralized configuration; built once per app and passed explicitly

import os  # For accessing environment variables from system
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from dotenv import load_dotenv  # For loading .env files into environment

from core.errors import ConfigurationError

DEFAULT_CORS_ORIGINS = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
    "http://localhost:5173",
    "http://127.0.0.1:5173",
]

# provider name -> env var holding its key (ollama runs keyless)
API_KEY_ENV = {
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    return int(raw) if raw else default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    return float(raw) if raw else default


@dataclass
class Settings:
    openai_base_url: str = "https://api.openai.com/v1"
    anthropic_base_url: str = "https://api.anthropic.com/v1"
    ollama_base_url: str = "http://localhost:11434"
    database_url: str = "sqlite:///./app.db"
    history_window: Optional[int] = 6
    default_temperature: float = 0.9
    default_max_tokens: int = 1000
    upstream_timeout_sec: float = 60.0
    client_timeout_sec: float = 60.0
    log_level: str = "INFO"
    cors_origins: List[str] = field(default_factory=lambda: list(DEFAULT_CORS_ORIGINS))
    api_keys: Dict[str, str] = field(default_factory=dict)

    def base_url_for(self, provider: str) -> str:
        urls = {
            "openai": self.openai_base_url,
            "anthropic": self.anthropic_base_url,
            "ollama": self.ollama_base_url,
        }
        if provider not in urls:
            raise ConfigurationError(f"Unknown provider: {provider}")
        return urls[provider]

    def resolve_api_key(self, provider: str, request_key: Optional[str] = None) -> str:
        """
        Pick the key for a provider: the request's own key wins, then the env.
        Ollama never needs one. Raises ConfigurationError when a cloud key is missing.
        """
        if provider == "ollama":
            return ""
        if provider not in API_KEY_ENV:
            raise ConfigurationError(f"Unknown provider: {provider}")
        key = (request_key or "").strip() or self.api_keys.get(provider, "")
        if not key:
            raise ConfigurationError(f"API key not found for {provider}")
        return key

    def configured_providers(self) -> List[str]:
        return ["ollama"] + [p for p in API_KEY_ENV if self.api_keys.get(p)]


def load_settings(env_file: Optional[str] = None) -> Settings:
    """
    Load variables from .env (if present) and build a Settings object.
    Called by: main.create_app()
    Returns: Settings; never raises for missing keys, those are checked per turn.
    """
    load_dotenv(env_file)  # Load variables from .env file into environment
    window = _env_int("HISTORY_WINDOW", 6)
    origins = os.getenv("CORS_ORIGINS", "").strip()
    return Settings(
        openai_base_url=os.getenv("OPENAI_BASE_URL", Settings.openai_base_url).rstrip("/"),
        anthropic_base_url=os.getenv("ANTHROPIC_BASE_URL", Settings.anthropic_base_url).rstrip("/"),
        ollama_base_url=os.getenv("OLLAMA_BASE_URL", Settings.ollama_base_url).rstrip("/"),
        database_url=os.getenv("DATABASE_URL", Settings.database_url),
        history_window=window if window > 0 else None,
        default_temperature=_env_float("DEFAULT_TEMPERATURE", 0.9),
        default_max_tokens=_env_int("DEFAULT_MAX_TOKENS", 1000),
        upstream_timeout_sec=_env_float("UPSTREAM_TIMEOUT_SEC", 60.0),
        client_timeout_sec=_env_float("CLIENT_TIMEOUT_SEC", 60.0),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        cors_origins=[o.strip() for o in origins.split(",") if o.strip()] or list(DEFAULT_CORS_ORIGINS),
        api_keys={
            provider: os.getenv(env_name, "").strip()
            for provider, env_name in API_KEY_ENV.items()
            if os.getenv(env_name, "").strip()
        },
    )
