"""Error taxonomy and recovery helpers for the agent core.

This module provides:
- Custom exception hierarchy for memory, tool and reasoning failures
- Retry logic with exponential backoff
- Per-step timeouts

Exception Hierarchy:
    LedgerAgentError (base)
    ├── EmbeddingError - Embedding provider unreachable or invalid response
    ├── MemoryStoreError - Memory persistence failures
    ├── ToolExecutionError - Tool failures (captured inline, never escapes the engine)
    ├── LLMProviderError - Chat completion provider failures
    ├── StepTimeoutError - A single reasoning step exceeded its timeout
    └── ReasoningError - The reasoning loop cannot make progress
        └── ReasoningCancelledError - The caller cancelled the request
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

logger = structlog.get_logger(__name__)

T = TypeVar("T")


# ============================================================================
# Exception Hierarchy
# ============================================================================


class LedgerAgentError(Exception):
    """Base exception for all agent core errors.

    Attributes:
        message: Human-readable error message.
        details: Additional error details.
        recoverable: Whether the caller can continue with a degraded result.
    """

    def __init__(
        self,
        message: str,
        *,
        details: dict[str, Any] | None = None,
        recoverable: bool = True,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.recoverable = recoverable

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for logging/API responses."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
        }


class EmbeddingError(LedgerAgentError):
    """Embedding provider unreachable, timed out, or returned an invalid vector."""


class MemoryStoreError(LedgerAgentError):
    """Memory persistence failed.

    Attributes:
        operation: Store operation that failed.
    """

    def __init__(
        self,
        message: str,
        *,
        operation: str = "unknown",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details=details, recoverable=True)
        self.operation = operation

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        base = super().to_dict()
        base["operation"] = self.operation
        return base


class ToolExecutionError(LedgerAgentError):
    """Tool execution failed.

    Attributes:
        tool_name: Name of the tool that failed.
        cause: Underlying exception, if any.
    """

    def __init__(self, tool_name: str, message: str, cause: Exception | None = None) -> None:
        super().__init__(f"{tool_name}: {message}", details={"tool_name": tool_name})
        self.tool_name = tool_name
        self.cause = cause


class LLMProviderError(LedgerAgentError):
    """Chat completion provider unreachable or returned an error."""


class StepTimeoutError(LedgerAgentError):
    """A single reasoning step exceeded its timeout.

    Attributes:
        timeout_seconds: The timeout that was exceeded.
        operation: Name of the operation that timed out.
    """

    def __init__(self, message: str, *, timeout_seconds: float, operation: str) -> None:
        super().__init__(
            message,
            details={"timeout_seconds": timeout_seconds, "operation": operation},
            recoverable=True,
        )
        self.timeout_seconds = timeout_seconds
        self.operation = operation


class ReasoningError(LedgerAgentError):
    """The reasoning loop cannot make progress.

    Raised when the LLM provider stays unreachable after retry or when the
    reasoning request itself is malformed.
    """

    def __init__(
        self,
        message: str,
        *,
        stage: str = "planning",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details=details, recoverable=False)
        self.stage = stage

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        base = super().to_dict()
        base["stage"] = self.stage
        return base


class ReasoningCancelledError(ReasoningError):
    """The caller cancelled the reasoning request."""


# ============================================================================
# Retry Configuration
# ============================================================================


@dataclass
class RetryConfig:
    """Configuration for retry behavior.

    Attributes:
        max_attempts: Maximum number of attempts (including initial).
        min_wait_seconds: Minimum wait between retries.
        max_wait_seconds: Maximum wait between retries.
        multiplier: Exponential backoff multiplier.
        retry_exceptions: Exception types to retry on.
    """

    max_attempts: int = 2
    min_wait_seconds: float = 0.5
    max_wait_seconds: float = 5.0
    multiplier: float = 1.0
    retry_exceptions: tuple[type[Exception], ...] = field(
        default_factory=lambda: (LLMProviderError, ConnectionError, TimeoutError)
    )


async def call_with_retry(
    fn: Callable[..., Awaitable[T]],
    *args: Any,
    config: RetryConfig | None = None,
    **kwargs: Any,
) -> T:
    """Await ``fn(*args, **kwargs)`` with exponential backoff.

    Args:
        fn: Coroutine function to call.
        config: Retry configuration. Defaults to one retry.

    Returns:
        The function result.

    Raises:
        Exception: The last error once attempts are exhausted.
    """
    retry_config = config or RetryConfig()
    attempt = 0

    async for attempt_context in AsyncRetrying(
        stop=stop_after_attempt(retry_config.max_attempts),
        wait=wait_exponential(
            multiplier=retry_config.multiplier,
            min=retry_config.min_wait_seconds,
            max=retry_config.max_wait_seconds,
        ),
        retry=retry_if_exception_type(retry_config.retry_exceptions),
        reraise=True,
    ):
        with attempt_context:
            attempt += 1
            if attempt > 1:
                logger.info(
                    "retry_attempt",
                    function=getattr(fn, "__name__", repr(fn)),
                    attempt=attempt,
                    max_attempts=retry_config.max_attempts,
                )
            return await fn(*args, **kwargs)

    # This should not be reached due to reraise=True
    raise RuntimeError("Retry loop exited unexpectedly")


# ============================================================================
# Utility Functions
# ============================================================================


async def execute_with_timeout(
    coro: Awaitable[T],
    timeout_seconds: float,
    operation_name: str = "operation",
) -> T:
    """Execute a coroutine with a timeout.

    Args:
        coro: The coroutine to execute.
        timeout_seconds: Maximum time to wait.
        operation_name: Name of operation for error messages.

    Returns:
        The coroutine result.

    Raises:
        StepTimeoutError: If the operation times out.
    """
    try:
        return await asyncio.wait_for(coro, timeout=timeout_seconds)
    except asyncio.TimeoutError as e:
        raise StepTimeoutError(
            f"{operation_name} timed out after {timeout_seconds}s",
            timeout_seconds=timeout_seconds,
            operation=operation_name,
        ) from e


def classify_error(error: Exception) -> tuple[str, bool]:
    """Classify an error for handling.

    Args:
        error: The error to classify.

    Returns:
        Tuple of (error_category, is_recoverable).
    """
    if isinstance(error, LedgerAgentError):
        return (type(error).__name__, error.recoverable)

    error_map: dict[type[Exception], tuple[str, bool]] = {
        TimeoutError: ("timeout", True),
        asyncio.TimeoutError: ("timeout", True),
        ConnectionError: ("connection", True),
        ValueError: ("validation", False),
        KeyError: ("state", False),
    }

    for exc_type, (category, recoverable) in error_map.items():
        if isinstance(error, exc_type):
            return (category, recoverable)

    return ("unknown", False)
