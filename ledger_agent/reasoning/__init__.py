"""Multi-step reasoning loop: plan, act, validate, answer."""

from ledger_agent.reasoning.cancellation import CancellationToken
from ledger_agent.reasoning.engine import ReasoningEngine, ReasoningStream, compute_confidence
from ledger_agent.reasoning.models import (
    ReasoningContext,
    ReasoningResult,
    ReasoningStage,
    ReasoningStep,
    StopReason,
    ToolCallRecord,
)
from ledger_agent.reasoning.stream import StepStream
from ledger_agent.reasoning.validation import ResultValidator, ValidationResult

__all__ = [
    "CancellationToken",
    "ReasoningContext",
    "ReasoningEngine",
    "ReasoningResult",
    "ReasoningStage",
    "ReasoningStep",
    "ReasoningStream",
    "ResultValidator",
    "StepStream",
    "StopReason",
    "ToolCallRecord",
    "ValidationResult",
    "compute_confidence",
]
