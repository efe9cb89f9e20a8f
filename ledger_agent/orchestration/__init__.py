"""Error handling and recovery helpers shared by the agent core."""

from ledger_agent.orchestration.errors import (
    EmbeddingError,
    LedgerAgentError,
    LLMProviderError,
    MemoryStoreError,
    ReasoningCancelledError,
    ReasoningError,
    RetryConfig,
    StepTimeoutError,
    ToolExecutionError,
    call_with_retry,
    classify_error,
    execute_with_timeout,
)

__all__ = [
    "EmbeddingError",
    "LLMProviderError",
    "LedgerAgentError",
    "MemoryStoreError",
    "ReasoningCancelledError",
    "ReasoningError",
    "RetryConfig",
    "StepTimeoutError",
    "ToolExecutionError",
    "call_with_retry",
    "classify_error",
    "execute_with_timeout",
]
