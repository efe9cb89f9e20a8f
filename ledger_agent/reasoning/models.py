"""Data models for the reasoning loop transcript and result."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from ledger_agent.llm.base import ChatMessage, ToolCall
from ledger_agent.memory.models import MemorySearchResult
from ledger_agent.tools.base import ToolCategory


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ReasoningStage(str, Enum):
    """Stage of the reasoning loop that produced a step."""

    PLANNING = "planning"
    ACTING = "acting"
    VALIDATING = "validating"
    ANSWERING = "answering"


class StopReason(str, Enum):
    """Why the loop stopped iterating."""

    NATURAL = "natural"  # Model declared sufficiency and validation passed
    BUDGET_EXHAUSTED = "budget_exhausted"  # Hit the iteration limit
    CONFIRMATION_REQUIRED = "confirmation_required"  # A tool awaits user confirmation


class ToolCallRecord(BaseModel):
    """Outcome of a single tool call. Never mutated once recorded."""

    model_config = ConfigDict(frozen=True)

    tool: str
    input: dict[str, Any] = Field(default_factory=dict)
    output: str = ""
    data: Any = None
    success: bool
    error: str | None = None
    duration_ms: float = 0.0
    call_id: str = ""
    pending_confirmation: bool = False


class ReasoningStep(BaseModel):
    """One entry of the reasoning transcript. Never mutated once appended."""

    model_config = ConfigDict(frozen=True)

    stage: ReasoningStage
    description: str
    tool_calls: tuple[ToolCallRecord, ...] = ()
    iteration: int = 0
    success: bool = True
    timestamp: datetime = Field(default_factory=_now)


class ReasoningResult(BaseModel):
    """Final outcome of a reasoning run.

    Attributes:
        final_answer: Answer shown to the user.
        steps: Full ordered transcript.
        tools_used: Distinct tool names invoked, in first-use order.
        iteration_count: Plan/act/validate cycles run.
        confidence: Trust score in [0, 1].
        sources: Distinct provenance tags that grounded the answer.
        stop_reason: Why the loop stopped.
        pending_confirmations: Tool calls waiting for user confirmation.
        validation_failures: Number of validation passes that found issues.
    """

    final_answer: str
    steps: list[ReasoningStep] = Field(default_factory=list)
    tools_used: list[str] = Field(default_factory=list)
    iteration_count: int = 0
    confidence: float = Field(ge=0.0, le=1.0)
    sources: list[str] = Field(default_factory=list)
    stop_reason: StopReason = StopReason.NATURAL
    pending_confirmations: list[ToolCall] = Field(default_factory=list)
    validation_failures: int = 0


@dataclass
class ReasoningContext:
    """Inputs to a reasoning run.

    Attributes:
        query: The user's question or instruction.
        system_prompt: Fully assembled system prompt.
        messages: Prior conversation turns.
        financial_context: Textual snapshot of the ledger.
        memories: Recalled memories.
        categories: Restrict the advertised tools to these categories.
    """

    query: str
    system_prompt: str = ""
    messages: list[ChatMessage] = field(default_factory=list)
    financial_context: str = ""
    memories: list[MemorySearchResult] = field(default_factory=list)
    categories: list[ToolCategory] | None = None
