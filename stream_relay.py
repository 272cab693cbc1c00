"""Relay of one upstream chat stream to a local-model-server client."""

from __future__ import annotations

import asyncio
import enum
import logging
from typing import Any, AsyncGenerator, Optional, Union

import anyio
from starlette.responses import StreamingResponse
from starlette.types import Receive, Scope, Send

from stream_state import StreamState, encode_frame, make_chat_frame
from upstream import UpstreamStream

log = logging.getLogger("ollama_bridge")

KEEPALIVE = b"\n"
DEFAULT_KEEPALIVE_S = 10.0
_QUEUE_SIZE = 64


class _Outcome(enum.Enum):
    COMPLETED = "completed"
    FAILED = "failed"


class ChatStreamRelay:
    """
    Drive one streaming chat request from an already opened upstream stream.

    A pump task reads upstream chunks and queues content frames; a keepalive
    task queues a blank line every `keepalive_s` so idle proxies keep the
    connection open. `frames()` drains the queue in order.

    The stream closes on upstream completion, upstream failure or client
    disconnect (the generator being closed or cancelled, or `ChatStreamResponse`
    ending early). Every path goes through `_cleanup()`, which runs once: it
    cancels the pump (closing the upstream call) and stops the keepalive
    timer. Only a completed stream gets the terminal `done=true` frame,
    written after cleanup.
    """

    def __init__(
        self,
        upstream: UpstreamStream,
        model_name: str,
        req_id: str,
        keepalive_s: float = DEFAULT_KEEPALIVE_S,
    ) -> None:
        self._upstream = upstream
        self._model_name = model_name
        self._req_id = req_id
        self._keepalive_s = keepalive_s
        self.state = StreamState()
        self._queue: asyncio.Queue[Union[bytes, _Outcome]] = asyncio.Queue(maxsize=_QUEUE_SIZE)
        self._pump_task: Optional[asyncio.Task[None]] = None
        self._keepalive_task: Optional[asyncio.Task[None]] = None
        self._upstream_close_task: Optional[asyncio.Future[None]] = None
        self._cleaned_up = False
        self.close_reason: Optional[str] = None
        self.terminal_sent = False

    @property
    def closed(self) -> bool:
        return self._cleaned_up

    async def frames(self) -> AsyncGenerator[bytes, None]:
        """Yield outbound bytes: content frames, keepalives, then the terminal frame."""
        self._pump_task = asyncio.create_task(self._pump(), name=f"ollama_bridge.pump.{self._req_id}")
        self._pump_task.add_done_callback(self._on_pump_done)
        self._keepalive_task = asyncio.create_task(
            self._keepalive(), name=f"ollama_bridge.keepalive.{self._req_id}"
        )

        outcome: Optional[_Outcome] = None
        try:
            while True:
                item = await self._queue.get()
                if isinstance(item, _Outcome):
                    outcome = item
                    break
                yield item
        finally:
            self._cleanup(outcome.value if outcome is not None else "disconnected")

        if outcome is _Outcome.COMPLETED:
            yield encode_frame(self._terminal_frame())
            self.terminal_sent = True

    def close(self, reason: str = "closed") -> None:
        """Stop the relay from outside the frame loop (e.g. a disconnect callback)."""
        self._cleanup(reason)

    async def aclose(self, reason: str = "closed") -> None:
        """Close the relay and wait for its tasks and the upstream call to finish."""
        self._cleanup(reason)
        tasks = [t for t in (self._pump_task, self._keepalive_task) if t is not None]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        if self._upstream_close_task is not None:
            await asyncio.gather(self._upstream_close_task, return_exceptions=True)
        if not self._upstream.closed:
            await self._upstream.aclose()

    def _cleanup(self, reason: str) -> None:
        if self._cleaned_up:
            return
        self._cleaned_up = True
        self.close_reason = reason

        if self._pump_task is not None and not self._pump_task.done():
            self._pump_task.cancel()
        if self._keepalive_task is not None and not self._keepalive_task.done():
            self._keepalive_task.cancel()

        log.info(
            "ConnectionCleanup req_id=%s model=%s reason=%s",
            self._req_id,
            self._model_name,
            reason,
        )

    def _on_pump_done(self, task: asyncio.Task[None]) -> None:
        if not self._upstream.closed:
            # cancelled before its first step, so its finally never ran
            self._upstream_close_task = asyncio.ensure_future(self._upstream.aclose())

    async def _pump(self) -> None:
        outcome = _Outcome.FAILED
        try:
            async for chunk in self._upstream.chunks():
                for piece in self.state.apply(chunk):
                    await self._queue.put(encode_frame(make_chat_frame(self._model_name, piece, False)))
                usage = chunk.get("usage")
                if usage:
                    log.info("CompletionUsage req_id=%s model=%s usage=%s", self._req_id, self._model_name, usage)
            outcome = _Outcome.COMPLETED
        except Exception as e:
            # Headers are already sent; the client sees the stream end without a terminal frame
            log.warning(
                "Chat stream aborted req_id=%s model=%s err=%r",
                self._req_id,
                self._model_name,
                e,
            )
        finally:
            await self._upstream.aclose()
        await self._queue.put(outcome)

    async def _keepalive(self) -> None:
        while True:
            await asyncio.sleep(self._keepalive_s)
            if self._queue.full():
                # frames are already waiting to be written
                continue
            self._queue.put_nowait(KEEPALIVE)
            log.debug("ConnectionPing req_id=%s", self._req_id)

    def _terminal_frame(self) -> dict:
        return make_chat_frame(
            self._model_name,
            "",
            True,
            done_reason=self.state.finish_reason,
            tool_calls=self.state.tool_calls.finalize(),
        )


class ChatStreamResponse(StreamingResponse):
    """
    StreamingResponse bound to the lifetime of one relay.

    Servers may abandon the body iterator instead of closing it when the
    client goes away (a failing `send`), so the relay is closed here on
    every exit from the response.
    """

    def __init__(self, relay: ChatStreamRelay, **kwargs: Any) -> None:
        super().__init__(relay.frames(), **kwargs)
        self.relay = relay

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            # no-op once the stream completed
            self.relay.close("disconnected")
            with anyio.CancelScope(shield=True):
                await self.relay.aclose()
