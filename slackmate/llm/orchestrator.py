"""
LLM Orchestrator, the conversation driver.

Takes the chat history of one thread, lets the model call tools through the
dispatcher, and returns a single reply.

Data flow:
    history (ChatMessage list) + optional project id
                     ↓
    select_mode() → system prompt + tool schemas
                     ↓
    LiteLLM acompletion()  ←→  ToolDispatcher (bounded loop)
                     ↓
    LLMResponse → chat layer

A turn moves between two states, waiting on the model and dispatching tool
calls, and ends only after a model answer. It never raises: a failed backend
call, an empty answer, an exhausted round budget and any unexpected error
each map to a fixed reply from AssistantSettings. Tool failures are not turn
failures; they go back to the model as tool results.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Sequence
from datetime import datetime
from typing import Any
from zoneinfo import ZoneInfo

from litellm import acompletion

from slackmate.config.settings import AssistantSettings, LLMSettings
from slackmate.llm.models import (
    ChatMessage,
    LLMError,
    LLMResponse,
    StopReason,
    TokenUsage,
    ToolCall,
    ToolCallRequest,
)
from slackmate.tools.dispatcher import ToolDispatcher
from slackmate.tools.registry import DEFAULT_MODE, Mode, build_system_prompt, select_mode

logger = logging.getLogger(__name__)

TIME_FORMAT = "%A, %Y-%m-%d %H:%M:%S"


def _keep_in_prompt(message: ChatMessage) -> bool:
    if message.role == "tool" or message.tool_calls:
        return True
    return bool(message.content and message.content.strip())


class LLMOrchestrator:
    """
    Runs one turn of the conversation loop.

    Each call to generate_response() is independent. The message list is
    rebuilt from the supplied history, grown append-only while tools run,
    and dropped once the reply is produced.

    Args:
        settings: LLM configuration (model, api_key, api_base, timeout, max_tool_rounds)
        dispatcher: Executes the tool calls the model requests
        assistant: Time zone and the fixed fallback replies
        clock: Returns the current time; defaults to now in ``assistant.timezone``
    """

    def __init__(
        self,
        settings: LLMSettings,
        dispatcher: ToolDispatcher,
        assistant: AssistantSettings | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self._settings = settings
        self._dispatcher = dispatcher
        self._assistant = assistant or AssistantSettings()
        self._clock = clock or (lambda: datetime.now(ZoneInfo(self._assistant.timezone)))

    def _build_messages(
        self,
        history: Sequence[ChatMessage],
        mode: Mode,
        project_id: str | None,
    ) -> list[dict[str, Any]]:
        """
        System prompt followed by the history in order.

        Messages with blank content are skipped, except assistant tool-call
        messages and tool results, which must stay paired.
        """
        current_time = self._clock().strftime(TIME_FORMAT)
        messages: list[dict[str, Any]] = [
            {"role": "system", "content": build_system_prompt(mode, current_time, project_id)}
        ]
        messages.extend(m.to_api() for m in history if _keep_in_prompt(m))
        return messages

    async def _complete(
        self,
        model: str,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]],
    ) -> Any:
        """One backend call. Any failure becomes LLMError."""
        if not self._settings.api_key:
            raise LLMError("API key not configured. Set LLM_API_KEY in your environment.")

        call_kwargs: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "api_key": self._settings.api_key,
            "timeout": self._settings.timeout,
        }
        if tools:
            call_kwargs["tools"] = tools
        if self._settings.api_base:
            call_kwargs["api_base"] = self._settings.api_base
        if self._settings.temperature is not None:
            call_kwargs["temperature"] = self._settings.temperature
        if self._settings.max_tokens is not None:
            call_kwargs["max_tokens"] = self._settings.max_tokens

        try:
            return await acompletion(**call_kwargs)
        except Exception as e:
            raise LLMError(f"LLM API call failed: {e}", cause=e) from e

    async def _run_tool_calls(
        self,
        requests: list[ToolCallRequest],
        messages: list[dict[str, Any]],
        recorded: list[ToolCall],
    ) -> None:
        """Dispatch each request in order and append one tool message per request."""
        for request in requests:
            logger.info(f"Tool call requested: {request.name} (id={request.id})")
            result = await self._dispatcher.dispatch(request.name, request.arguments)

            try:
                arguments = request.parse_arguments()
            except ValueError:
                arguments = {}
            recorded.append(
                ToolCall(id=request.id, name=request.name, arguments=arguments, result=result)
            )

            messages.append(
                ChatMessage(
                    role="tool",
                    tool_call_id=request.id,
                    name=request.name,
                    content=json.dumps(result, ensure_ascii=False),
                ).to_api()
            )

    async def generate_response(
        self,
        history: Sequence[ChatMessage],
        model: str | None = None,
        project_id: str | None = None,
    ) -> LLMResponse:
        """
        Produce the reply for a thread.

        Args:
            history: Thread messages in chronological order; empty ones are skipped
            model: LiteLLM model string; defaults to the configured model
            project_id: Redmine project the thread belongs to, added to the prompt

        Returns:
            LLMResponse whose text is never empty
        """
        model_name = model or self._settings.model
        mode = DEFAULT_MODE
        recorded: list[ToolCall] = []
        usage = TokenUsage()

        def finish(text: str, stop_reason: StopReason) -> LLMResponse:
            logger.info(
                f"Turn finished: {stop_reason.value} (mode={mode.name}, "
                f"tool_calls={len(recorded)}, tokens={usage.total_tokens})"
            )
            return LLMResponse(
                text=text,
                stop_reason=stop_reason,
                mode=mode.name,
                tool_calls=recorded,
                model=model_name,
                usage=usage,
            )

        try:
            mode = select_mode(history)
            messages = self._build_messages(history, mode, project_id)
            tools = mode.tool_schemas()
            logger.info(
                f"Starting turn: mode={mode.name}, model={model_name}, "
                f"messages={len(messages)}, tools={len(tools)}"
            )

            for round_number in range(1, self._settings.max_tool_rounds + 1):
                logger.debug(f"Model call {round_number}/{self._settings.max_tool_rounds}")
                response = await self._complete(model_name, messages, tools)

                if response_usage := getattr(response, "usage", None):
                    usage.prompt_tokens += getattr(response_usage, "prompt_tokens", 0) or 0
                    usage.completion_tokens += getattr(response_usage, "completion_tokens", 0) or 0
                model_name = getattr(response, "model", None) or model_name

                message = response.choices[0].message
                raw_tool_calls = getattr(message, "tool_calls", None) or []

                if not raw_tool_calls:
                    text = (message.content or "").strip()
                    if not text:
                        return finish(self._assistant.empty_reply, StopReason.EMPTY_REPLY)
                    return finish(text, StopReason.COMPLETED)

                requests = [ToolCallRequest.from_completion(tc) for tc in raw_tool_calls]
                messages.append(
                    ChatMessage(
                        role="assistant",
                        content=message.content,
                        tool_calls=requests,
                    ).to_api()
                )
                await self._run_tool_calls(requests, messages, recorded)

            logger.warning(f"Reached {self._settings.max_tool_rounds} model calls without a final answer")
            return finish(self._assistant.round_limit_reply, StopReason.ROUND_LIMIT)

        except LLMError as e:
            logger.error(f"LLM backend unavailable: {e}")
            return finish(self._assistant.unavailable_reply, StopReason.BACKEND_ERROR)
        except Exception as e:
            logger.exception(f"Unexpected error while generating a response: {e}")
            return finish(self._assistant.error_reply, StopReason.ERROR)
