"""Process-wide dependencies for the agent.

Everything the runner needs is built once by ``create_app_context`` and
passed explicitly. Nothing in the package keeps module-level singletons for
these collaborators.
"""

from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

import structlog

from ledger_agent.config import Settings, settings
from ledger_agent.llm.anthropic_provider import AnthropicLLMProvider
from ledger_agent.llm.base import LLMProvider
from ledger_agent.memory.embeddings import EmbeddingService
from ledger_agent.memory.manager import MemoryManager
from ledger_agent.memory.store import MemoryStore
from ledger_agent.reasoning.engine import ReasoningEngine
from ledger_agent.tools.base import ToolRegistry
from ledger_agent.tools.memory_tools import create_memory_tools

logger = structlog.get_logger(__name__)


@runtime_checkable
class FinancialContextProvider(Protocol):
    """Source of the textual ledger snapshot injected into prompts."""

    async def get_context(self) -> str: ...


class StaticFinancialContext:
    """Financial context fixed at construction time."""

    def __init__(self, text: str = "") -> None:
        self.text = text

    async def get_context(self) -> str:
        return self.text


@dataclass
class AppContext:
    """Dependency container built once per process.

    Attributes:
        config: Settings every component was built from.
        llm: Chat completion provider.
        memory: Memory manager (owns the store and embedding service).
        tools: Tool registry offered to the reasoning engine.
        engine: Reasoning engine.
        financial_context: Provider of the ledger snapshot.
    """

    config: Settings
    llm: LLMProvider
    memory: MemoryManager
    tools: ToolRegistry
    engine: ReasoningEngine
    financial_context: FinancialContextProvider = field(default_factory=StaticFinancialContext)

    async def close(self) -> None:
        """Release the memory store connection."""
        await self.memory.close()
        logger.info("app_context_closed")


async def create_app_context(
    config: Settings | None = None,
    *,
    llm: LLMProvider | None = None,
    embedding_service: EmbeddingService | None = None,
    tools: ToolRegistry | None = None,
    financial_context: FinancialContextProvider | None = None,
) -> AppContext:
    """Build and initialize every collaborator.

    Any collaborator passed in is used as is; the rest are created from
    ``config``. The memory tools are registered on the tool registry unless
    a tool with the same name already exists.

    Args:
        config: Settings to build from. Defaults to the environment.
        llm: Chat completion provider.
        embedding_service: Embedding service for memories.
        tools: Registry of domain tools.
        financial_context: Provider of the ledger snapshot.

    Returns:
        Initialized application context. Call ``close()`` when done.
    """
    cfg = config or settings
    llm = llm or AnthropicLLMProvider(config=cfg)
    embedding_service = embedding_service or EmbeddingService(config=cfg)
    store = MemoryStore(db_path=cfg.MEMORY_DB_PATH, dimensions=embedding_service.dimensions)
    memory = MemoryManager(store, embedding_service, llm=llm, config=cfg)
    await memory.initialize()

    registry = tools or ToolRegistry()
    for tool in create_memory_tools(memory):
        if not registry.has(tool.name):
            registry.register(tool)

    engine = ReasoningEngine(llm, registry, config=cfg)

    logger.info(
        "app_context_created",
        tools=len(registry.list_tools()),
        memory_enabled=cfg.MEMORY_ENABLED,
        db_path=cfg.MEMORY_DB_PATH,
    )
    return AppContext(
        config=cfg,
        llm=llm,
        memory=memory,
        tools=registry,
        engine=engine,
        financial_context=financial_context or StaticFinancialContext(),
    )
