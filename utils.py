"""Utility functions for the Ollama bridge service."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path

from dotenv import load_dotenv

from config import AppConfig
from logger import mask_secret

log = logging.getLogger("ollama_bridge")


def load_env_files() -> None:
    """Load `.env` from the program directory, then the working directory (which wins)."""
    candidates = [Path(__file__).resolve().parent / ".env", Path.cwd().resolve() / ".env"]
    seen = set()
    for path in candidates:
        if path in seen or not path.is_file():
            continue
        seen.add(path)
        load_dotenv(dotenv_path=path, override=True)
        log.info("Loaded .env from %s", path)


def dump_config(config: AppConfig) -> None:
    """Log effective configuration at startup."""
    log.info("=== Ollama bridge startup config ===")
    log.info("BASE_URL=%s", config.base_url)
    log.info(
        "API_KEY_set=%s value=%s len=%s",
        bool(config.api_key),
        mask_secret(config.api_key),
        len(config.api_key or ""),
    )
    log.info("OPENROUTER_HTTP_REFERER=%s", config.http_referer)
    log.info("OPENROUTER_X_TITLE=%s", config.x_title)
    log.info("MODELS_FILE=%s", config.models_file)
    log.info("OLLAMA_DISCOVERY=%s", config.ollama_discovery)
    if config.ollama_discovery:
        log.info("OLLAMA_BASE_URL=%s", config.ollama_base_url)
        log.info("DISCOVERY_CONTEXT_LENGTH=%s", config.discovery_context_length)
        log.info("DISCOVERY_TIMEOUT_S=%s", config.discovery_timeout_s)
        log.info("REFRESH_MODELS_S=%s", config.refresh_models_s)
    log.info("REQUEST_TIMEOUT_S=%s", config.request_timeout_s)
    log.info("KEEPALIVE_S=%s", config.keepalive_s)
    log.info("MAX_REQUEST_BYTES=%s", config.max_request_bytes)
    log.info("LOG_LEVEL=%s", config.log_level)
    log.info("LOG_PATH=%s", config.log_path or "<console>")
    log.info("USER_AGENT=%s", config.user_agent)
    log.info("WorkingDir=%s", str(Path.cwd()))
    log.info("====================================")


def iso_timestamp() -> str:
    """UTC timestamp in the millisecond `...Z` form the clients parse."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")
