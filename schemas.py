"""Inbound request schemas for the local-model-server chat protocol."""

from __future__ import annotations

from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator

EMPTY_OBJECT_SCHEMA: Dict[str, Any] = {"type": "object", "properties": {}, "required": []}


def _empty_object_schema() -> Dict[str, Any]:
    return dict(EMPTY_OBJECT_SCHEMA, properties={}, required=[])


class ToolCallFunction(BaseModel):
    name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)


class ToolCallRequest(BaseModel):
    function: ToolCallFunction


class ChatMessage(BaseModel):
    role: Literal["user", "assistant", "system", "tool"]
    content: str = ""
    # base64 payloads, only meaningful on user messages
    images: Optional[List[str]] = None
    # only meaningful on assistant messages
    tool_calls: Optional[List[ToolCallRequest]] = None

    @field_validator("content", mode="before")
    @classmethod
    def _null_content(cls, value: Any) -> Any:
        return "" if value is None else value


class RemoteTool(BaseModel):
    """Client-side tool executed remotely by the client; the upstream cannot call it."""

    type: Literal["remote_tool"]
    name: str


class LocalToolFunction(BaseModel):
    name: str
    description: str = ""
    parameters: Dict[str, Any] = Field(default_factory=_empty_object_schema)

    @field_validator("parameters", mode="before")
    @classmethod
    def _default_empty_schema(cls, value: Any) -> Any:
        # Upstream validators reject a bare {} as a function schema
        if value is None or value == {}:
            return _empty_object_schema()
        return value


class LocalTool(BaseModel):
    type: Literal["local_tool"]
    function: LocalToolFunction


ToolDeclaration = Annotated[Union[RemoteTool, LocalTool], Field(discriminator="type")]


class ChatRequest(BaseModel):
    model: str
    messages: List[ChatMessage]
    tools: List[ToolDeclaration] = Field(default_factory=list)

    @field_validator("tools", mode="before")
    @classmethod
    def _null_tools(cls, value: Any) -> Any:
        return [] if value is None else value


class ShowRequest(BaseModel):
    model: str
