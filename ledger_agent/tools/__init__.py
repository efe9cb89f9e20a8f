"""Tools available to the reasoning engine.

This module contains:
- The tool base class, output model and registry
- ``define_tool`` for wrapping plain coroutines
- Memory tools for searching and writing long-term memory
"""

from ledger_agent.tools.base import (
    BaseTool,
    FunctionTool,
    ToolCategory,
    ToolInput,
    ToolOutput,
    ToolRegistry,
    define_tool,
)
from ledger_agent.tools.memory_tools import create_memory_tools

__all__ = [
    "BaseTool",
    "FunctionTool",
    "ToolCategory",
    "ToolInput",
    "ToolOutput",
    "ToolRegistry",
    "create_memory_tools",
    "define_tool",
]
