"""Agent runtime for the accounting assistant.

This module contains:
- AppContext: dependencies built once per process
- AgentRunner: memory-aware request/response cycle
- build_system_prompt: system prompt assembly
"""

from ledger_agent.agents.context import (
    AppContext,
    FinancialContextProvider,
    StaticFinancialContext,
    create_app_context,
)
from ledger_agent.agents.prompts import build_system_prompt
from ledger_agent.agents.runner import AgentResponse, AgentRunner, AgentRunStream

__all__ = [
    "AgentResponse",
    "AgentRunStream",
    "AgentRunner",
    "AppContext",
    "FinancialContextProvider",
    "StaticFinancialContext",
    "build_system_prompt",
    "create_app_context",
]
