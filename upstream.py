"""Upstream OpenAI-compatible chat-completion communication."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import time
from typing import Any, AsyncIterator, Dict, Optional

import httpx

from config import AppConfig
from sse_handler import iter_sse_events

log = logging.getLogger("ollama_bridge")


class UpstreamError(Exception):
    """The upstream call could not be opened or broke mid-stream."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class UpstreamStream:
    """One open streaming chat completion.

    Closing it cancels the upstream call; closing twice is a no-op.
    """

    def __init__(self, client: httpx.AsyncClient, resp: httpx.Response, model_id: str) -> None:
        self._client = client
        self._resp = resp
        self._model_id = model_id
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def chunks(self) -> AsyncIterator[Dict[str, Any]]:
        """Yield decoded `chat.completion.chunk` objects until [DONE] or EOF."""
        async for event in iter_sse_events(self._resp.aiter_lines()):
            if event.is_empty:
                continue
            if event.is_done:
                return

            data = event.data.strip()

            try:
                obj = json.loads(data)
            except json.JSONDecodeError as e:
                raise UpstreamError(f"Malformed upstream chunk: {data[:200]!r}") from e
            if not isinstance(obj, dict):
                raise UpstreamError(f"Unexpected upstream chunk: {data[:200]!r}")

            err = obj.get("error")
            if err:
                message = err.get("message") if isinstance(err, dict) else str(err)
                raise UpstreamError(f"Upstream stream error: {message}")

            yield obj

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        with contextlib.suppress(Exception):
            await self._resp.aclose()
        with contextlib.suppress(Exception):
            await self._client.aclose()
        log.debug("Upstream stream closed model=%s", self._model_id)


class UpstreamClient:
    """Backend client bound to one OpenAI-compatible endpoint and credential."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        http_referer: str = "",
        x_title: str = "",
        user_agent: str = "",
        request_timeout_s: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._http_referer = http_referer
        self._x_title = x_title
        self._user_agent = user_agent
        self._request_timeout_s = request_timeout_s
        self._transport = transport

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        *,
        base_url: str | None = None,
        api_key: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> UpstreamClient:
        """Build a client from config, optionally bound to a dedicated endpoint."""
        return cls(
            base_url or config.base_url,
            config.api_key if api_key is None else api_key,
            http_referer=config.http_referer,
            x_title=config.x_title,
            user_agent=config.user_agent,
            request_timeout_s=config.request_timeout_s,
            transport=transport,
        )

    def get_headers(self) -> Dict[str, str]:
        """Get default headers for the upstream API."""
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
        }
        if self._http_referer:
            headers["HTTP-Referer"] = self._http_referer
        if self._x_title:
            headers["X-Title"] = self._x_title
        if self._user_agent:
            headers["User-Agent"] = self._user_agent
        return headers

    def new_http_client(self, timeout: httpx.Timeout | float | None = None) -> httpx.AsyncClient:
        if timeout is None:
            # No read timeout: reasoning models can pause for a long time between deltas
            t = self._request_timeout_s
            timeout = httpx.Timeout(connect=t, write=t, pool=t, read=None)
        return httpx.AsyncClient(timeout=timeout, transport=self._transport)

    async def open_chat_stream(self, payload: Dict[str, Any]) -> UpstreamStream:
        """
        Send a streaming chat completion request and return the open stream.

        Raises UpstreamError before any body is consumed when the request
        fails or the upstream answers with a non-200 status.
        """
        model_id = str(payload.get("model") or "")
        client = self.new_http_client()
        t0 = time.time()
        try:
            req = client.build_request(
                "POST",
                f"{self.base_url}/chat/completions",
                headers=self.get_headers(),
                json=payload,
            )
            resp = await client.send(req, stream=True)
        except httpx.HTTPError as e:
            await client.aclose()
            log.warning("Upstream chat request failed model=%s err=%r", model_id, e)
            raise UpstreamError(f"Upstream request failed: {type(e).__name__}: {e}") from e

        dt = (time.time() - t0) * 1000
        log.info("Upstream chat model=%s status=%s ms=%.1f", model_id, resp.status_code, dt)

        if resp.status_code != 200:
            snippet = await self.read_error_snippet(resp)
            await resp.aclose()
            await client.aclose()
            log.warning(
                "Upstream chat error model=%s status=%s body=%s",
                model_id,
                resp.status_code,
                snippet[:500],
            )
            raise UpstreamError(
                snippet or f"Upstream error {resp.status_code}",
                status_code=resp.status_code,
            )

        return UpstreamStream(client, resp, model_id)

    @staticmethod
    async def read_error_snippet(
        resp: httpx.Response, limit: int = 2000, timeout_s: float = 2.0
    ) -> str:
        """Best-effort: read small error body without risking a hang."""
        try:
            raw = await asyncio.wait_for(resp.aread(), timeout=timeout_s)
        except Exception:
            return ""
        txt = raw.decode("utf-8", errors="replace")
        try:
            data = json.loads(txt)
        except json.JSONDecodeError:
            return txt[:limit]
        err = data.get("error") if isinstance(data, dict) else None
        if isinstance(err, dict) and err.get("message"):
            return str(err["message"])[:limit]
        return txt[:limit]
