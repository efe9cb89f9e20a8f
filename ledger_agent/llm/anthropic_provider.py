"""Anthropic Claude implementation of the LLM provider contract."""

from typing import Any

import anthropic
import structlog
from anthropic import AsyncAnthropic

from ledger_agent.config import Settings, settings
from ledger_agent.llm.base import (
    AnswerResponse,
    ChatMessage,
    LLMResponse,
    ToolCall,
    ToolCallsResponse,
    ToolSchema,
)
from ledger_agent.observability.tracing import traced_generation
from ledger_agent.orchestration.errors import LLMProviderError

logger = structlog.get_logger(__name__)


def _to_anthropic_messages(messages: list[ChatMessage]) -> tuple[str, list[dict[str, Any]]]:
    """Split the system prompt out and convert turns to content blocks.

    Consecutive turns that map to the same Anthropic role are merged, since
    tool results travel as ``user`` content blocks.
    """
    system_parts: list[str] = []
    converted: list[dict[str, Any]] = []

    for message in messages:
        if message.role == "system":
            system_parts.append(message.content)
            continue

        blocks: list[dict[str, Any]] = []
        if message.role == "tool":
            role = "user"
            blocks.append({
                "type": "tool_result",
                "tool_use_id": message.tool_call_id,
                "content": message.content,
                "is_error": message.is_error,
            })
        else:
            role = message.role
            if message.content:
                blocks.append({"type": "text", "text": message.content})
            for call in message.tool_calls:
                blocks.append({
                    "type": "tool_use",
                    "id": call.id,
                    "name": call.name,
                    "input": call.arguments,
                })

        if not blocks:
            continue
        if converted and converted[-1]["role"] == role:
            converted[-1]["content"].extend(blocks)
        else:
            converted.append({"role": role, "content": blocks})

    return "\n\n".join(system_parts), converted


def _to_anthropic_tools(tools: list[ToolSchema]) -> list[dict[str, Any]]:
    return [
        {"name": tool.name, "description": tool.description, "input_schema": tool.parameters}
        for tool in tools
    ]


class AnthropicLLMProvider:
    """Chat completions backed by Claude.

    Example:
        provider = AnthropicLLMProvider()
        response = await provider.complete(
            [ChatMessage(role="user", content="What is my cash balance?")],
            tools=registry.schemas(),
            temperature=0.3,
        )
    """

    def __init__(
        self,
        client: AsyncAnthropic | None = None,
        model: str | None = None,
        max_tokens: int | None = None,
        config: Settings | None = None,
    ) -> None:
        """Initialize the provider.

        Args:
            client: Optional Anthropic client. If not provided, creates a new one.
            model: Default model for completions.
            max_tokens: Default maximum tokens per response.
            config: Settings to read defaults from.
        """
        cfg = config or settings
        self.client = client or AsyncAnthropic()
        self.model = model or cfg.CHAT_MODEL
        self.max_tokens = cfg.MAX_RESPONSE_TOKENS if max_tokens is None else max_tokens
        self._logger = logger.bind(component="anthropic_provider")

    @traced_generation("llm_completion")
    async def complete(
        self,
        messages: list[ChatMessage],
        tools: list[ToolSchema] | None = None,
        *,
        temperature: float = 0.5,
        max_tokens: int | None = None,
        model: str | None = None,
    ) -> LLMResponse:
        """Make a single completion call.

        Raises:
            LLMProviderError: If the API is unreachable, times out, or errors.
        """
        system, converted = _to_anthropic_messages(messages)
        params: dict[str, Any] = {
            "model": model or self.model,
            "max_tokens": max_tokens or self.max_tokens,
            "messages": converted,
            "temperature": temperature,
        }
        if system:
            params["system"] = system
        if tools:
            params["tools"] = _to_anthropic_tools(tools)

        self._logger.debug(
            "calling_llm",
            message_count=len(converted),
            tool_count=len(tools or []),
            temperature=temperature,
        )

        try:
            response = await self.client.messages.create(**params)
        except (anthropic.APIConnectionError, anthropic.APITimeoutError) as e:
            raise LLMProviderError(f"LLM provider unreachable: {e}") from e
        except anthropic.APIStatusError as e:
            raise LLMProviderError(
                f"LLM provider returned {e.status_code}: {e.message}",
                details={"status_code": e.status_code},
            ) from e

        text_parts: list[str] = []
        calls: list[ToolCall] = []
        for block in response.content:
            if block.type == "text":
                text_parts.append(block.text)
            elif block.type == "tool_use":
                calls.append(ToolCall(id=block.id, name=block.name, arguments=dict(block.input)))

        self._logger.debug(
            "llm_response_received",
            stop_reason=response.stop_reason,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            tool_calls=len(calls),
        )

        text = "".join(text_parts).strip()
        if calls:
            return ToolCallsResponse(calls=tuple(calls), text=text)
        return AnswerResponse(text=text)
