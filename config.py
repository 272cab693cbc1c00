"""Configuration management for the Ollama bridge service."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

T = TypeVar("T")

_TRUTHY = {"1", "true", "yes", "y", "on"}


def _env_raw(name: str) -> Optional[str]:
    """Stripped value of an environment variable, None when unset or blank."""
    v = os.getenv(name)
    if v is None or not v.strip():
        return None
    return v.strip()


def _env_parsed(name: str, default: T, parse: Callable[[str], T]) -> T:
    v = _env_raw(name)
    if v is None:
        return default
    try:
        return parse(v)
    except ValueError:
        return default


def _env_bool(name: str, default: bool) -> bool:
    return _env_parsed(name, default, lambda v: v.lower() in _TRUTHY)


def _env_float(name: str, default: float) -> float:
    return _env_parsed(name, default, float)


def _env_int(name: str, default: int) -> int:
    return _env_parsed(name, default, int)


def _env_str(name: str, default: str) -> str:
    """String variable; an explicitly empty value overrides the default."""
    v = os.getenv(name)
    return default if v is None else v.strip()


@dataclass(frozen=True)
class AppConfig:
    """Application configuration."""

    # Default upstream (OpenAI-compatible)
    api_key: str
    base_url: str
    http_referer: str
    x_title: str
    user_agent: str

    # Static model list
    models_file: str

    # Dynamic discovery from a local model server
    ollama_base_url: str
    ollama_api_key: str
    ollama_discovery: bool
    discovery_context_length: int
    discovery_timeout_s: float
    refresh_models_s: int

    # Timeouts and streaming
    request_timeout_s: float
    keepalive_s: float

    # Server settings
    port: int
    log_level: str
    log_path: str
    max_request_bytes: int

    @classmethod
    def from_env(cls) -> AppConfig:
        """Load configuration from environment variables."""
        return cls(
            api_key=_env_str("API_KEY", ""),
            base_url=_env_str("BASE_URL", "https://openrouter.ai/api/v1").rstrip("/"),
            http_referer=_env_str("OPENROUTER_HTTP_REFERER", "http://localhost"),
            x_title=_env_str("OPENROUTER_X_TITLE", "ollama-bridge"),
            user_agent=_env_str("USER_AGENT", "ollama-bridge/0.3.0"),
            models_file=_env_str("MODELS_FILE", "models.json"),
            ollama_base_url=_env_str("OLLAMA_BASE_URL", "http://localhost:11434/v1").rstrip("/"),
            ollama_api_key=_env_str("OLLAMA_API_KEY", "ollama"),
            ollama_discovery=_env_bool("OLLAMA_DISCOVERY", True),
            discovery_context_length=_env_int("DISCOVERY_CONTEXT_LENGTH", 32768),
            discovery_timeout_s=_env_float("DISCOVERY_TIMEOUT_S", 3.0),
            refresh_models_s=_env_int("REFRESH_MODELS_S", 60),
            request_timeout_s=_env_float("REQUEST_TIMEOUT_S", 30.0),
            keepalive_s=_env_float("KEEPALIVE_S", 10.0),
            port=_env_int("PORT", 3000),
            log_level=_env_str("LOG_LEVEL", "INFO").upper(),
            log_path=_env_str("LOG_PATH", ""),
            max_request_bytes=_env_int("MAX_REQUEST_BYTES", 100_000_000),  # ~100MB, images are inlined
        )

    def validate(self, require_api_key: bool = True) -> None:
        """Validate configuration."""
        if require_api_key and not self.api_key:
            raise ValueError("API_KEY is required")
        if not self.base_url.startswith(("http://", "https://")):
            raise ValueError("BASE_URL must be an http(s) URL")
        if self.ollama_discovery and not self.ollama_base_url.startswith(("http://", "https://")):
            raise ValueError("OLLAMA_BASE_URL must be an http(s) URL")
        if self.port <= 0:
            raise ValueError("PORT must be > 0")
        if self.discovery_context_length <= 0:
            raise ValueError("DISCOVERY_CONTEXT_LENGTH must be > 0")
        if self.discovery_timeout_s <= 0:
            raise ValueError("DISCOVERY_TIMEOUT_S must be > 0")
        if self.refresh_models_s < 0:
            raise ValueError("REFRESH_MODELS_S must be >= 0")
        if self.request_timeout_s <= 0:
            raise ValueError("REQUEST_TIMEOUT_S must be > 0")
        if self.keepalive_s <= 0:
            raise ValueError("KEEPALIVE_S must be > 0")
        if self.max_request_bytes <= 0:
            raise ValueError("MAX_REQUEST_BYTES must be > 0")
        if not self.models_file:
            raise ValueError("MODELS_FILE must be non-empty")


def load_config() -> AppConfig:
    """Load configuration from environment."""
    return AppConfig.from_env()
