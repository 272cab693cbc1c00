"""Per-stream state: tool-call accumulation, reasoning sequencing, outbound frames."""

from __future__ import annotations

import enum
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from utils import iso_timestamp

log = logging.getLogger("ollama_bridge")

THINK_OPEN = "<think>\n"
THINK_CLOSE = "\n</think>\n\n"

# Terminal reasons the local-model-server protocol understands
DONE_REASONS = ("stop", "tool_calls")


@dataclass
class ToolCallFragment:
    """A tool call being assembled from streamed fragments sharing one index."""

    index: int
    id: Optional[str]
    type: Optional[str]
    name: str
    arguments: str


class ToolCallAccumulator:
    """Merge streamed `delta.tool_calls` fragments into complete calls.

    The first fragment seen for an index fixes id, type and name; every
    later fragment for that index only appends to the argument text.
    """

    def __init__(self) -> None:
        self._calls: Dict[int, ToolCallFragment] = {}

    def ingest(self, fragments: Optional[List[Dict[str, Any]]]) -> None:
        for frag in fragments or []:
            if not isinstance(frag, dict):
                continue
            index = frag.get("index") or 0
            fn = frag.get("function") or {}
            args = fn.get("arguments") or ""

            current = self._calls.get(index)
            if current is None:
                self._calls[index] = ToolCallFragment(
                    index=index,
                    id=frag.get("id"),
                    type=frag.get("type"),
                    name=fn.get("name") or "",
                    arguments=args,
                )
            else:
                current.arguments += args

    def finalize(self) -> Optional[List[Dict[str, Any]]]:
        """
        Return completed calls in index order, or None if none survive.

        Calls without a function name, or whose arguments are not valid JSON,
        are dropped without raising.
        """
        out: List[Dict[str, Any]] = []
        for index in sorted(self._calls):
            tc = self._calls[index]
            if not tc.name:
                continue
            try:
                arguments = json.loads(tc.arguments or "{}")
            except json.JSONDecodeError:
                log.debug("Dropping tool call with malformed arguments name=%s index=%d", tc.name, index)
                continue
            out.append({"function": {"name": tc.name, "arguments": arguments}})
        return out or None


class SequencerMode(enum.Enum):
    IDLE = "idle"
    REASONING = "reasoning"


class ReasoningSequencer:
    """Fold reasoning and answer text into one content stream.

    Reasoning runs are wrapped in THINK_OPEN / THINK_CLOSE. A stream that
    ends mid-reasoning is left open, matching what the upstream sends.
    """

    def __init__(self) -> None:
        self.mode = SequencerMode.IDLE

    def feed(self, reasoning: Optional[str], content: Optional[str]) -> List[str]:
        """Return the content pieces to emit for one delta, one frame each."""
        if reasoning:
            # reasoning wins if a delta ever carries both
            if self.mode is SequencerMode.IDLE:
                self.mode = SequencerMode.REASONING
                return [THINK_OPEN, reasoning]
            return [reasoning]

        if content:
            if self.mode is SequencerMode.REASONING:
                self.mode = SequencerMode.IDLE
                return [THINK_CLOSE, content]
            return [content]

        return []


def map_finish_reason(reason: Optional[str]) -> Optional[str]:
    """Pass through recognized terminal reasons, fold the rest into "stop"."""
    if not reason:
        return None
    if reason in DONE_REASONS:
        return reason
    return "stop"


def delta_reasoning(delta: Dict[str, Any]) -> Optional[str]:
    # DeepSeek/vLLM use reasoning_content, OpenRouter uses reasoning
    value = delta.get("reasoning_content") or delta.get("reasoning")
    return value if isinstance(value, str) else None


class StreamState:
    """Mutable state of one upstream stream."""

    def __init__(self) -> None:
        self.sequencer = ReasoningSequencer()
        self.tool_calls = ToolCallAccumulator()
        self.finish_reason: Optional[str] = None

    def apply(self, chunk: Dict[str, Any]) -> List[str]:
        """Apply one upstream chunk and return the content pieces to emit."""
        choices = chunk.get("choices")
        if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
            return []
        choice = choices[0]
        delta = choice.get("delta") or {}
        if not isinstance(delta, dict):
            delta = {}

        content = delta.get("content")
        pieces = self.sequencer.feed(
            delta_reasoning(delta),
            content if isinstance(content, str) else None,
        )

        tool_calls = delta.get("tool_calls")
        if isinstance(tool_calls, list):
            self.tool_calls.ingest(tool_calls)

        reason = map_finish_reason(choice.get("finish_reason"))
        if reason:
            self.finish_reason = reason

        return pieces


def make_chat_frame(
    model: str,
    content: str,
    done: bool,
    done_reason: Optional[str] = None,
    tool_calls: Optional[List[Dict[str, Any]]] = None,
) -> Dict[str, Any]:
    """Build one outbound local-model-server chat frame."""
    message: Dict[str, Any] = {"role": "assistant", "content": content}
    if tool_calls:
        message["tool_calls"] = tool_calls
    frame: Dict[str, Any] = {
        "model": model,
        "created_at": iso_timestamp(),
        "message": message,
        "done": done,
    }
    if done_reason:
        frame["done_reason"] = done_reason
    return frame


def encode_frame(frame: Dict[str, Any]) -> bytes:
    """Serialize a frame as one JSON line followed by a blank line."""
    return (json.dumps(frame, ensure_ascii=False) + "\n\n").encode("utf-8")
