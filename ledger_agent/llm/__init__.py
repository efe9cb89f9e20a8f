"""LLM provider contract and implementations."""

from ledger_agent.llm.anthropic_provider import AnthropicLLMProvider
from ledger_agent.llm.base import (
    AnswerResponse,
    ChatMessage,
    LLMProvider,
    LLMResponse,
    ToolCall,
    ToolCallsResponse,
    ToolSchema,
)

__all__ = [
    "AnswerResponse",
    "AnthropicLLMProvider",
    "ChatMessage",
    "LLMProvider",
    "LLMResponse",
    "ToolCall",
    "ToolCallsResponse",
    "ToolSchema",
]
