"""Tools that let the model read and write its own long-term memory."""

import structlog
from pydantic import Field

from ledger_agent.memory.manager import MemoryManager
from ledger_agent.memory.models import MemoryType
from ledger_agent.tools.base import (
    FunctionTool,
    ToolCategory,
    ToolInput,
    ToolOutput,
    define_tool,
)

logger = structlog.get_logger(__name__)


class SearchMemoryInput(ToolInput):
    """Input for searching memory."""

    query: str = Field(min_length=1, description="What to look for")
    limit: int = Field(default=5, ge=1, le=20, description="Maximum results")


class RememberInput(ToolInput):
    """Input for storing a note in memory."""

    content: str = Field(min_length=1, description="The fact or note to remember")
    memory_type: MemoryType = Field(default=MemoryType.FACT, description="Kind of memory")
    importance: float = Field(default=0.5, ge=0.0, le=1.0, description="How important it is")


def create_memory_tools(manager: MemoryManager) -> list[FunctionTool]:
    """Build the ``search_memory`` and ``remember`` tools bound to ``manager``."""

    async def search_memory(args: SearchMemoryInput) -> ToolOutput:
        results = await manager.recall(args.query, limit=args.limit)
        if not results:
            return ToolOutput(result="No relevant memories found.", data=[])
        return ToolOutput(
            result=manager.format_for_context(results),
            data=[
                {"id": r.memory.id, "content": r.memory.content, "score": round(r.score, 3)}
                for r in results
            ],
        )

    async def remember(args: RememberInput) -> ToolOutput:
        memory = await manager.store(args.content, args.memory_type, importance=args.importance)
        logger.info("memory_saved_by_tool", memory_id=memory.id)
        return ToolOutput(result=f"Remembered: {memory.content}", data={"id": memory.id})

    return [
        define_tool(
            "search_memory",
            "Search long-term memory for facts, preferences and past conversations",
            ToolCategory.UTILITY,
            SearchMemoryInput,
            search_memory,
        ),
        define_tool(
            "remember",
            "Save a fact or note to long-term memory for future conversations",
            ToolCategory.UTILITY,
            RememberInput,
            remember,
            read_only=False,
        ),
    ]
