"""Observability and tracing with Langfuse."""

from ledger_agent.observability.tracing import (
    TraceContext,
    flush_traces,
    get_langfuse_client,
    traced_agent,
    traced_generation,
    traced_tool,
)

__all__ = [
    "TraceContext",
    "flush_traces",
    "get_langfuse_client",
    "traced_agent",
    "traced_generation",
    "traced_tool",
]
