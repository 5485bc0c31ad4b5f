"""
Data models for the conversation loop.

- ChatMessage: one entry of the chat-completions message list
- ToolCallRequest: a tool call as requested by the model (raw JSON arguments)
- ToolCall: a dispatched tool call with its parsed arguments and result
- TokenUsage / LLMResponse: what a finished turn hands back to the caller
- LLMError: raised when the backend call itself fails
"""

from __future__ import annotations

import json
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field


class LLMError(Exception):
    """Raised when the LLM backend cannot be reached or rejects the request."""

    def __init__(self, message: str, cause: Exception | None = None):
        super().__init__(message)
        self.cause = cause


def decode_arguments(arguments: str | None) -> dict[str, Any]:
    """
    Decode a model-issued argument string.

    Empty or missing input decodes to ``{}``.

    Raises:
        ValueError: If the string is not JSON or not a JSON object
    """
    if not arguments or not arguments.strip():
        return {}
    parsed = json.loads(arguments)
    if not isinstance(parsed, dict):
        raise ValueError(f"expected a JSON object, got {type(parsed).__name__}")
    return parsed


class ToolCallRequest(BaseModel):
    """A single entry of ``choices[0].message.tool_calls``."""

    id: str
    name: str
    arguments: str = Field(default="", description="JSON-encoded argument object, unparsed")

    @classmethod
    def from_completion(cls, tool_call: Any) -> ToolCallRequest:
        """
        Build from a LiteLLM tool-call object or a plain dict.

        Some providers send ``arguments`` already decoded; those are
        re-encoded so the request always carries the raw JSON string.
        """
        if isinstance(tool_call, dict):
            function = tool_call.get("function") or {}
            call_id, name, arguments = tool_call.get("id"), function.get("name"), function.get("arguments")
        else:
            call_id, name, arguments = tool_call.id, tool_call.function.name, tool_call.function.arguments

        if arguments is None:
            arguments = ""
        elif not isinstance(arguments, str):
            try:
                arguments = json.dumps(arguments, ensure_ascii=False)
            except (TypeError, ValueError):
                arguments = str(arguments)
        return cls(id=call_id or "", name=name or "", arguments=arguments)

    def parse_arguments(self) -> dict[str, Any]:
        return decode_arguments(self.arguments)

    def to_api(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }


class ChatMessage(BaseModel):
    """
    One message of the conversation.

    Inbound user messages may carry the author's display name; it is folded
    into the content as ``[username]: text`` so the model can tell thread
    participants apart.
    """

    role: Literal["system", "user", "assistant", "tool"]
    content: str | None = None
    username: str | None = None
    tool_call_id: str | None = None
    name: str | None = None
    tool_calls: list[ToolCallRequest] | None = None

    def to_api(self) -> dict[str, Any]:
        """Render in the chat-completions wire shape."""
        if self.role == "user" and self.username and self.content:
            content: str | None = f"[{self.username}]: {self.content}"
        else:
            content = self.content

        message: dict[str, Any] = {"role": self.role, "content": content}
        if self.role == "tool":
            message["tool_call_id"] = self.tool_call_id
            message["name"] = self.name
        if self.role == "assistant" and self.tool_calls:
            message["tool_calls"] = [tc.to_api() for tc in self.tool_calls]
        return message


class ToolCall(BaseModel):
    """Record of a tool call made during a turn."""

    id: str = ""
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)
    result: dict[str, Any] = Field(default_factory=dict)


class TokenUsage(BaseModel):
    """Token counts accumulated over every backend call of a turn."""

    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


class StopReason(str, Enum):
    """Why a turn ended."""

    COMPLETED = "completed"
    EMPTY_REPLY = "empty_reply"
    ROUND_LIMIT = "round_limit"
    BACKEND_ERROR = "backend_error"
    ERROR = "error"


class LLMResponse(BaseModel):
    """Final result of a turn. ``text`` is never empty."""

    text: str
    stop_reason: StopReason
    mode: str = ""
    tool_calls: list[ToolCall] = Field(default_factory=list)
    model: str = ""
    usage: TokenUsage = Field(default_factory=TokenUsage)
