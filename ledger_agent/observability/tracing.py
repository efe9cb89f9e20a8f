"""Langfuse tracing integration for observability.

This module provides tracing for agent runs, LLM generations and tool
executions.

Span Hierarchy:
    Session (conversation)
    └── agent_run (single user request)
        ├── memory_recall
        ├── reasoning
        │   ├── llm_completion (planning)
        │   ├── tool_execution
        │   └── llm_completion (answer)
        └── post-answer memory pipeline
"""

import inspect
from collections.abc import Awaitable, Callable
from functools import wraps
from typing import Any, Literal, ParamSpec, TypeVar

import structlog
from langfuse import Langfuse, get_client, propagate_attributes
from langfuse import observe as langfuse_observe

from ledger_agent.config import settings

logger = structlog.get_logger(__name__)

P = ParamSpec("P")
R = TypeVar("R")

SpanType = Literal["span", "tool", "generation"]


def get_langfuse_client() -> Langfuse:
    """Get or create the Langfuse client.

    Uses the LANGFUSE_PUBLIC_KEY, LANGFUSE_SECRET_KEY and LANGFUSE_HOST
    settings when both keys are present.

    Returns:
        Configured Langfuse client instance.
    """
    if settings.LANGFUSE_PUBLIC_KEY and settings.LANGFUSE_SECRET_KEY:
        return Langfuse(
            public_key=settings.LANGFUSE_PUBLIC_KEY,
            secret_key=settings.LANGFUSE_SECRET_KEY,
            host=settings.LANGFUSE_HOST,
        )

    # Fall back to get_client which uses env vars automatically
    return get_client()


def _traced(
    name: str,
    as_type: SpanType,
    capture_input: bool,
    capture_output: bool,
    **log_context: Any,
) -> Callable[[Callable[P, Awaitable[R]]], Callable[P, Awaitable[R]]]:
    def decorator(func: Callable[P, Awaitable[R]]) -> Callable[P, Awaitable[R]]:
        if not inspect.iscoroutinefunction(func):
            raise TypeError(f"{func.__qualname__} must be a coroutine function to be traced")

        @wraps(func)
        @langfuse_observe(
            name=name,
            as_type=as_type,
            capture_input=capture_input,
            capture_output=capture_output,
        )
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            logger.debug(f"{as_type}_trace_start", name=name, **log_context)
            result = await func(*args, **kwargs)
            logger.debug(f"{as_type}_trace_end", name=name)
            return result

        return wrapper

    return decorator


def traced_agent(
    name: str,
    *,
    capture_input: bool = True,
    capture_output: bool = True,
) -> Callable[[Callable[P, Awaitable[R]]], Callable[P, Awaitable[R]]]:
    """Decorator for tracing an agent run or reasoning loop.

    Example:
        @traced_agent("agent_run")
        async def run(self, query: str) -> AgentResponse:
            ...
    """
    return _traced(name, "span", capture_input, capture_output)


def traced_tool(
    name: str,
    *,
    capture_input: bool = True,
    capture_output: bool = True,
) -> Callable[[Callable[P, Awaitable[R]]], Callable[P, Awaitable[R]]]:
    """Decorator for tracing tool execution.

    Example:
        @traced_tool("tool_execution")
        async def execute(self, input_data: dict) -> ToolOutput:
            ...
    """
    return _traced(name, "tool", capture_input, capture_output)


def traced_generation(
    name: str,
    *,
    model: str | None = None,
    capture_input: bool = True,
    capture_output: bool = True,
) -> Callable[[Callable[P, Awaitable[R]]], Callable[P, Awaitable[R]]]:
    """Decorator for tracing LLM generation calls.

    Example:
        @traced_generation("llm_completion")
        async def complete(self, messages: list[ChatMessage]) -> LLMResponse:
            ...
    """
    return _traced(name, "generation", capture_input, capture_output, model=model)


class TraceContext:
    """Context manager grouping traces of one conversation.

    Example:
        async with TraceContext(session_id=conversation_id, tags=["ask"]):
            response = await runner.run(query)
    """

    def __init__(
        self,
        session_id: str | None = None,
        user_id: str | None = None,
        metadata: dict[str, Any] | None = None,
        tags: list[str] | None = None,
    ) -> None:
        self.session_id = session_id
        self.user_id = user_id
        self.metadata = metadata or {}
        self.tags = tags or []
        self._context_manager: Any = None

    async def __aenter__(self) -> "TraceContext":
        """Enter async context and start trace session."""
        self._context_manager = propagate_attributes(
            session_id=self.session_id,
            user_id=self.user_id,
            metadata=self.metadata,
            tags=self.tags,
        )
        self._context_manager.__enter__()
        logger.debug("trace_context_started", session_id=self.session_id)
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Exit async context and end trace session."""
        if self._context_manager:
            self._context_manager.__exit__(exc_type, exc_val, exc_tb)
        logger.debug("trace_context_ended", session_id=self.session_id)


def flush_traces() -> None:
    """Flush any pending traces to Langfuse.

    Call this in short-lived processes (the CLI) so traces are sent before
    the process exits. Flush failures never break the caller.
    """
    try:
        get_client().flush()
        logger.debug("traces_flushed")
    except Exception as e:
        logger.warning("flush_traces_failed", error=str(e))

