"""
Ollama bridge service: local-model-server chat API -> OpenAI-compatible upstream.

Desktop clients that speak the local-model-server protocol (`/api/tags`,
`/api/show`, `/api/chat`) are served by any OpenAI-compatible streaming
chat-completion endpoint (OpenRouter by default). Models come from a static
`models.json`, merged with whatever a local model server currently lists.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict

from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import load_config
from logger import setup_logging
from models import (
    ModelCatalog,
    ModelDiscovery,
    ModelNotFoundError,
    generate_model_info,
    generate_models_list,
    load_models,
)
from schemas import ChatRequest, ShowRequest
from stream_relay import ChatStreamRelay, ChatStreamResponse
from translate import build_chat_payload
from upstream import UpstreamClient, UpstreamError
from utils import dump_config, load_env_files

# Load environment
load_env_files()

# Load configuration
config = load_config()
config.validate(require_api_key=False)

# Initialize logging
log = setup_logging(config.log_path)
dump_config(config)

default_upstream = UpstreamClient.from_config(config)
catalog = ModelCatalog(
    load_models(config.models_file),
    default_upstream,
    config,
    discovery=ModelDiscovery.from_config(config) if config.ollama_discovery else None,
)


async def log_available_models() -> None:
    """Log the merged model list at startup."""
    models = await catalog.list_models()
    log.info("=== AVAILABLE MODELS ===")
    for i, m in enumerate(models, start=1):
        log.info(
            "%d. name=%s id=%s ctx=%s capabilities=%s endpoint=%s",
            i,
            m.name,
            m.id,
            m.context_length,
            ",".join(m.capabilities) or "-",
            m.base_url or "default",
        )
    log.info("========================")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Lifespan context manager for FastAPI application.

    The model listing runs in the background so discovery never delays readiness.
    """
    startup_task: asyncio.Task[None] = asyncio.create_task(
        log_available_models(),
        name="ollama_bridge.log_available_models",
    )

    yield  # Application is running

    startup_task.cancel()
    with contextlib.suppress(asyncio.CancelledError, Exception):
        await startup_task


app = FastAPI(
    title="ollama-bridge",
    version="0.3.0",
    lifespan=lifespan,
)


@app.middleware("http")
async def access_log(request: Request, call_next: Any) -> Response:
    t0 = time.time()
    response = await call_next(request)
    # streaming bodies are still being written; this times the headers
    log.info(
        "%s %s status=%s ms=%.1f",
        request.method,
        request.url.path,
        response.status_code,
        (time.time() - t0) * 1000,
    )
    return response


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Render errors in the local-model-server envelope: {"error": "..."}."""
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})


async def _read_json_body(request: Request) -> Dict[str, Any]:
    # Basic request size guard
    cl = request.headers.get("content-length")
    if cl:
        try:
            n = int(cl)
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Invalid Content-Length header: {cl!r}")
        if n > config.max_request_bytes:
            raise HTTPException(
                status_code=413,
                detail=f"Request too large: {n} bytes (max {config.max_request_bytes})",
            )

    try:
        body = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON body")
    if not isinstance(body, dict):
        raise HTTPException(status_code=400, detail="Invalid JSON body: expected object")
    return body


def _request_id(request: Request) -> str:
    return (
        (request.headers.get("x-request-id") or "").strip()
        or (request.headers.get("x-correlation-id") or "").strip()
        or uuid.uuid4().hex
    )


@app.get("/healthz")
async def healthz() -> Dict[str, str]:
    """Health check endpoint."""
    return {"status": "ok"}


@app.get("/api/tags")
async def api_tags() -> Dict[str, Any]:
    """List static and discovered models."""
    return generate_models_list(await catalog.list_models())


@app.post("/api/show")
async def api_show(request: Request) -> Dict[str, Any]:
    """Describe one model."""
    body = await _read_json_body(request)
    try:
        show = ShowRequest.model_validate(body)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=f"Invalid request: {e}")

    try:
        model = await catalog.find(show.model)
    except ModelNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return generate_model_info(model)


@app.post("/api/chat")
async def api_chat(request: Request) -> Response:
    """Stream a chat completion as newline-delimited local-model-server frames."""
    body = await _read_json_body(request)
    try:
        chat = ChatRequest.model_validate(body)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=f"Invalid request: {e}")

    req_id = _request_id(request)
    client_ip = request.client.host if request.client else "unknown"
    log.info(
        "Incoming chat req_id=%s from=%s model=%r messages=%d tools=%d",
        req_id,
        client_ip,
        chat.model,
        len(chat.messages),
        len(chat.tools),
    )

    try:
        model, upstream = await catalog.resolve(chat.model)
    except ModelNotFoundError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if not model.has_dedicated_endpoint and not config.api_key:
        raise HTTPException(status_code=500, detail="API_KEY environment variable required")

    payload = build_chat_payload(model, chat.messages, chat.tools)
    if log.isEnabledFor(logging.INFO):
        config_without_messages = {k: v for k, v in payload.items() if k != "messages"}
        log.info(
            "ChatCompletionRequest req_id=%s endpoint=%s config=%s",
            req_id,
            upstream.base_url,
            json.dumps(config_without_messages, ensure_ascii=False),
        )

    try:
        stream = await upstream.open_chat_stream(payload)
    except UpstreamError as e:
        raise HTTPException(status_code=502, detail=f"Upstream error: {e}")

    # From here on the response is committed; failures end the stream early
    relay = ChatStreamRelay(stream, model_name=chat.model, req_id=req_id, keepalive_s=config.keepalive_s)
    return ChatStreamResponse(
        relay,
        media_type="application/json",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=config.port, reload=False)
