"""Provider-neutral chat completion contract.

A completion is either a plain answer or a batch of tool calls. The two
branches are modelled as separate types so callers branch with
``isinstance`` instead of probing optional fields.
"""

import uuid
from dataclasses import dataclass, field
from typing import Any, Literal, Protocol, runtime_checkable

Role = Literal["system", "user", "assistant", "tool"]


@dataclass(frozen=True)
class ToolCall:
    """A tool invocation proposed by the model."""

    name: str
    arguments: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: f"call_{uuid.uuid4().hex[:12]}")


@dataclass
class ChatMessage:
    """A single conversation turn.

    Attributes:
        role: Speaker of the message.
        content: Message text.
        tool_calls: Calls proposed by an assistant turn.
        tool_call_id: For ``tool`` turns, the call this message answers.
        is_error: For ``tool`` turns, whether the call failed.
    """

    role: Role
    content: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    tool_call_id: str | None = None
    is_error: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Convert to a plain role/content dict."""
        return {"role": self.role, "content": self.content}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ChatMessage":
        """Create a message from a ``{role, content}`` dict."""
        return cls(role=data["role"], content=str(data.get("content") or ""))


@dataclass(frozen=True)
class ToolSchema:
    """Model-facing description of a callable tool."""

    name: str
    description: str
    parameters: dict[str, Any]


@dataclass(frozen=True)
class AnswerResponse:
    """The model answered in plain text."""

    text: str
    kind: Literal["answer"] = "answer"


@dataclass(frozen=True)
class ToolCallsResponse:
    """The model asked for one or more tool calls."""

    calls: tuple[ToolCall, ...]
    text: str = ""
    kind: Literal["tool_calls"] = "tool_calls"


LLMResponse = AnswerResponse | ToolCallsResponse


@runtime_checkable
class LLMProvider(Protocol):
    """Chat completion provider used by the reasoning engine and memory manager."""

    async def complete(
        self,
        messages: list[ChatMessage],
        tools: list[ToolSchema] | None = None,
        *,
        temperature: float = 0.5,
        max_tokens: int | None = None,
        model: str | None = None,
    ) -> LLMResponse:
        """Return the model's next turn for ``messages``."""
        ...
