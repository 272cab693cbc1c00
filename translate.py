"""Translation of local-model-server chat requests into OpenAI chat-completion requests."""

from __future__ import annotations

import json
import secrets
import string
from collections import deque
from typing import Any, Deque, Dict, List, Optional, Sequence

from models import ModelConfig
from schemas import ChatMessage, LocalTool, ToolDeclaration

# Base62 alphabet for tool_call IDs (strict providers reject other characters)
_BASE62_ALPHABET = string.ascii_letters + string.digits
TOOL_CALL_ID_LENGTH = 9
IMAGE_DATA_URI_PREFIX = "data:image/jpeg;base64,"


def make_tool_call_id() -> str:
    return "".join(secrets.choice(_BASE62_ALPHABET) for _ in range(TOOL_CALL_ID_LENGTH))


def convert_messages(messages: Sequence[ChatMessage]) -> List[Dict[str, Any]]:
    """
    Convert inbound messages 1:1 (order preserved) into OpenAI chat messages.

    The inbound protocol does not carry tool-call ids, so ids are minted for
    each assistant tool call and handed to the following tool messages in
    FIFO order.
    """
    pending_ids: Deque[str] = deque()
    out: List[Dict[str, Any]] = []

    for msg in messages:
        if msg.role == "assistant" and msg.tool_calls:
            # A new tool-call turn supersedes ids left unanswered by an earlier one
            pending_ids.clear()
            tool_calls = []
            for tc in msg.tool_calls:
                tool_call_id = make_tool_call_id()
                pending_ids.append(tool_call_id)
                tool_calls.append(
                    {
                        "id": tool_call_id,
                        "type": "function",
                        "function": {
                            "name": tc.function.name,
                            "arguments": json.dumps(tc.function.arguments, ensure_ascii=False),
                        },
                    }
                )
            out.append({"role": "assistant", "content": msg.content, "tool_calls": tool_calls})

        elif msg.role == "tool":
            tool_call_id = pending_ids.popleft() if pending_ids else make_tool_call_id()
            out.append({"role": "tool", "content": msg.content, "tool_call_id": tool_call_id})

        elif msg.role == "user" and msg.images:
            parts: List[Dict[str, Any]] = [{"type": "text", "text": msg.content}]
            for img in msg.images:
                parts.append({"type": "image_url", "image_url": {"url": f"{IMAGE_DATA_URI_PREFIX}{img}"}})
            out.append({"role": "user", "content": parts})

        else:
            out.append({"role": msg.role, "content": msg.content})

    return out


def convert_tools(tools: Optional[Sequence[ToolDeclaration]]) -> Optional[List[Dict[str, Any]]]:
    """Map local tools to OpenAI function tools; remote tools are dropped.

    Returns None (not []) when nothing is left, so the field can be omitted.
    """
    local = [t for t in (tools or []) if isinstance(t, LocalTool)]
    if not local:
        return None
    return [
        {
            "type": "function",
            "function": {
                "name": t.function.name,
                "description": t.function.description,
                "parameters": t.function.parameters,
            },
        }
        for t in local
    ]


def build_chat_payload(
    model: ModelConfig,
    messages: Sequence[ChatMessage],
    tools: Optional[Sequence[ToolDeclaration]] = None,
) -> Dict[str, Any]:
    """Assemble the streaming chat-completion request for one resolved model."""
    payload: Dict[str, Any] = dict(model.extra or {})
    payload.update(
        {
            "model": model.id,
            "messages": convert_messages(messages),
            "stream": True,
            "stream_options": {"include_usage": True},
        }
    )
    if model.temperature is not None:
        payload["temperature"] = model.temperature
    if model.top_p is not None:
        payload["top_p"] = model.top_p
    if model.max_tokens is not None:
        payload["max_completion_tokens"] = model.max_tokens

    openai_tools = convert_tools(tools)
    if openai_tools:
        payload["tools"] = openai_tools
    return payload
