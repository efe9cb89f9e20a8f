"""Tests for the application context."""

from conftest import ScriptedLLM, make_settings
from ledger_agent.agents import FinancialContextProvider, StaticFinancialContext, create_app_context
from ledger_agent.memory.embeddings import EmbeddingService
from ledger_agent.tools.base import ToolCategory, ToolInput, ToolRegistry, define_tool


async def custom_remember(args: ToolInput) -> str:
    return "custom"


class TestCreateAppContext:
    """Tests for create_app_context."""

    async def test_wires_collaborators(self, db_path: str, embedding_service: EmbeddingService) -> None:
        llm = ScriptedLLM()
        ctx = await create_app_context(
            make_settings(MEMORY_DB_PATH=db_path, MAX_ITERATIONS=3),
            llm=llm,
            embedding_service=embedding_service,
        )
        try:
            assert ctx.llm is llm
            assert ctx.engine.llm is llm
            assert ctx.engine.tools is ctx.tools
            assert ctx.engine.max_iterations == 3
            assert ctx.tools.names() == ["search_memory", "remember"]
            assert (await ctx.memory.get_stats()).count == 0
            assert await ctx.financial_context.get_context() == ""
        finally:
            await ctx.close()

    async def test_existing_tools_kept(self, db_path: str, embedding_service: EmbeddingService) -> None:
        registry = ToolRegistry()
        registry.register(define_tool(
            "remember", "Custom remember", ToolCategory.UTILITY, ToolInput, custom_remember
        ))

        ctx = await create_app_context(
            make_settings(MEMORY_DB_PATH=db_path),
            llm=ScriptedLLM(),
            embedding_service=embedding_service,
            tools=registry,
        )
        try:
            assert ctx.tools is registry
            assert ctx.tools.get("remember").description == "Custom remember"
            assert ctx.tools.has("search_memory")
        finally:
            await ctx.close()


class TestFinancialContext:
    """Tests for financial context providers."""

    async def test_static_context(self) -> None:
        provider = StaticFinancialContext("Cash: $1,200.00")

        assert isinstance(provider, FinancialContextProvider)
        assert await provider.get_context() == "Cash: $1,200.00"

