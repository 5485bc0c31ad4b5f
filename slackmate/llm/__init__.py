"""
LLM Orchestration Layer.

Drives the tool-calling conversation loop against any chat-completions
backend reachable through LiteLLM:

    thread history  →  LLMOrchestrator.generate_response(history, project_id=...)
                                        ↓
                                   LLMResponse  →  chat layer posts the text

The orchestrator lives in ``slackmate.llm.orchestrator``; it is not
re-exported here because the tool registry imports these models.
"""

from slackmate.llm.models import (
    ChatMessage,
    LLMError,
    LLMResponse,
    StopReason,
    TokenUsage,
    ToolCall,
    ToolCallRequest,
)

__all__ = [
    "ChatMessage",
    "LLMError",
    "LLMResponse",
    "StopReason",
    "TokenUsage",
    "ToolCall",
    "ToolCallRequest",
]
