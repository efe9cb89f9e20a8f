"""Tests for the agent runner."""

import pytest

from conftest import KeywordEmbeddingProvider, ScriptedLLM, make_settings
from ledger_agent.agents import AgentRunner, StaticFinancialContext, create_app_context
from ledger_agent.agents.runner import CONVERSATION_MEMORY_IMPORTANCE, SYSTEM_ERROR_ANSWER
from ledger_agent.llm.base import AnswerResponse, ChatMessage, ToolCall, ToolCallsResponse
from ledger_agent.memory.embeddings import EmbeddingService
from ledger_agent.memory.models import MemoryType
from ledger_agent.orchestration.errors import LLMProviderError, ReasoningCancelledError, RetryConfig
from ledger_agent.reasoning import CancellationToken, StopReason
from ledger_agent.tools.base import ToolCategory, ToolInput, ToolRegistry, define_tool

NO_WAIT_RETRY = RetryConfig(max_attempts=2, min_wait_seconds=0, max_wait_seconds=0)


class BrokenFinancialContext:
    async def get_context(self) -> str:
        raise RuntimeError("ledger database locked")


@pytest.fixture
def make_runner(db_path: str, embedding_service: EmbeddingService):
    """Factory building a runner over a fresh app context."""

    async def factory(llm: ScriptedLLM, **kwargs) -> AgentRunner:
        config = make_settings(MEMORY_DB_PATH=db_path, **kwargs.pop("settings", {}))
        ctx = await create_app_context(config, llm=llm, embedding_service=embedding_service, **kwargs)
        ctx.engine.retry_config = NO_WAIT_RETRY
        return AgentRunner(ctx)

    return factory


async def close_runner(runner: AgentRunner) -> None:
    await runner.drain()
    await runner.context.close()


class TestRun:
    """Tests for AgentRunner.run."""

    async def test_ok_run_uses_recalled_memories(self, make_runner) -> None:
        llm = ScriptedLLM([AnswerResponse(text="Acme usually pays within 45 days.")])
        runner = await make_runner(llm)
        try:
            await runner.store_memory("Acme Corp pays invoices net 45", importance=0.8)

            response = await runner.run("Acme Corp pays invoices net")

            assert response.status == "ok"
            assert response.answer == "Acme usually pays within 45 days."
            assert response.confidence == 1.0
            assert response.stop_reason == StopReason.NATURAL
            assert [r.memory.content for r in response.memories] == ["Acme Corp pays invoices net 45"]
            assert "memory" in response.sources
            system = llm.calls[0]["messages"][0].content
            assert "## Relevant Context from Previous Conversations" in system
            assert "- [Known fact] Acme Corp pays invoices net 45" in system
            assert "## Available Tools" in system
        finally:
            await close_runner(runner)

    async def test_preferences_and_financial_context_in_prompt(self, make_runner) -> None:
        llm = ScriptedLLM([AnswerResponse(text="Cash is healthy.")])
        runner = await make_runner(llm, financial_context=StaticFinancialContext("Cash: $12,000.00"))
        try:
            await runner.context.memory.set_preference("report_format", "summary")

            response = await runner.run("How is cash?")

            system = llm.calls[0]["messages"][0].content
            assert "## User Preferences\n- report_format: summary" in system
            assert "## Current Financial Status\nCash: $12,000.00" in system
            assert "financial_context" in response.sources
        finally:
            await close_runner(runner)

    async def test_history_passed_to_reasoning(self, make_runner) -> None:
        llm = ScriptedLLM([AnswerResponse(text="Yes, the same customer.")])
        runner = await make_runner(llm)
        history = [
            ChatMessage(role="user", content="Who is our largest customer?"),
            ChatMessage(role="assistant", content="Acme Corp."),
        ]
        try:
            await runner.run("Are they also the slowest payer?", messages=history)

            contents = [m.content for m in llm.calls[0]["messages"][1:]]
            assert contents == ["Who is our largest customer?", "Acme Corp.", "Are they also the slowest payer?"]
        finally:
            await close_runner(runner)

    async def test_degraded_when_financial_context_fails(self, make_runner) -> None:
        llm = ScriptedLLM([AnswerResponse(text="I can still help with that.")])
        runner = await make_runner(llm, financial_context=BrokenFinancialContext())
        try:
            response = await runner.run("What's my cash position?")

            assert response.status == "degraded"
            assert response.confidence == pytest.approx(0.9)
            assert response.warnings[0].startswith("Financial context unavailable")
            assert response.answer == "I can still help with that."
        finally:
            await close_runner(runner)

    async def test_degraded_when_recall_fails(
        self, make_runner, embedding_provider: KeywordEmbeddingProvider
    ) -> None:
        llm = ScriptedLLM([AnswerResponse(text="Here is what I know.")])
        runner = await make_runner(llm)
        embedding_provider.fail_with = ConnectionError("embedding service unreachable")
        try:
            response = await runner.run("What did we discuss last week?")

            assert response.status == "degraded"
            assert response.memories == []
            assert any(w.startswith("Memory recall unavailable") for w in response.warnings)
            assert response.confidence == pytest.approx(0.9)
        finally:
            await close_runner(runner)

    async def test_error_status_when_reasoning_fails(self, make_runner) -> None:
        llm = ScriptedLLM([LLMProviderError("overloaded"), LLMProviderError("overloaded")])
        runner = await make_runner(llm)
        try:
            response = await runner.run("Which invoices are overdue?")

            assert response.status == "error"
            assert response.answer == SYSTEM_ERROR_ANSWER
            assert response.confidence == 0.0
            assert "overloaded" in response.error
            assert runner.pending_background_tasks == 0
        finally:
            await close_runner(runner)

    async def test_cancellation_propagates(self, make_runner) -> None:
        llm = ScriptedLLM([AnswerResponse(text="never")])
        runner = await make_runner(llm)
        token = CancellationToken()
        token.cancel()
        try:
            with pytest.raises(ReasoningCancelledError):
                await runner.run("Hello", cancellation=token)
        finally:
            await close_runner(runner)

    async def test_confirmation_flow(self, make_runner) -> None:
        voided: list[str] = []

        async def void_invoice(args: ToolInput) -> str:
            voided.append("INV-001")
            return "Voided INV-001"

        registry = ToolRegistry()
        registry.register(define_tool(
            "void_invoice", "Void an invoice", ToolCategory.INVOICE, ToolInput, void_invoice,
            requires_confirmation=True, read_only=False,
        ))
        llm = ScriptedLLM([
            ToolCallsResponse(calls=(ToolCall("void_invoice"),)),
            AnswerResponse(text="Please confirm voiding the invoice."),
        ])
        runner = await make_runner(llm, tools=registry)
        try:
            response = await runner.run("Void INV-001")

            assert response.stop_reason == StopReason.CONFIRMATION_REQUIRED
            assert voided == []

            record = await runner.confirm(response.pending_confirmations[0])

            assert record.success is True
            assert voided == ["INV-001"]
        finally:
            await close_runner(runner)


class TestBackgroundLearning:
    """Tests for the post-answer memory pipeline."""

    async def test_conversation_summary_stored(self, make_runner) -> None:
        llm = ScriptedLLM([AnswerResponse(text="You have 3 overdue invoices.")])
        runner = await make_runner(llm)
        try:
            await runner.run("How many invoices are overdue?")
            await runner.drain()

            conversations = await runner.context.memory.memory_store.list_memories(
                memory_types=[MemoryType.CONVERSATION]
            )
            assert len(conversations) == 1
            assert conversations[0].importance == CONVERSATION_MEMORY_IMPORTANCE
            assert conversations[0].content == (
                "User asked: How many invoices are overdue?\n"
                "Agent responded: You have 3 overdue invoices."
            )
            assert runner.pending_background_tasks == 0
        finally:
            await close_runner(runner)

    async def test_facts_and_preferences_learned(self, make_runner) -> None:
        llm = ScriptedLLM([
            AnswerResponse(text="Noted, I'll report in euros."),
            AnswerResponse(text='[{"fact": "The business reports in euros", "importance": 0.8}]'),
            AnswerResponse(text='```json\n[{"key": "currency", "value": "EUR", "confidence": 0.9}]\n```'),
        ])
        runner = await make_runner(llm)
        try:
            await runner.run("Please always report in euros")
            await runner.drain()

            facts = await runner.context.memory.memory_store.list_memories(memory_types=[MemoryType.FACT])
            assert [f.content for f in facts] == ["The business reports in euros"]
            preference = await runner.context.memory.get_preference("currency")
            assert preference.value == "EUR"
            assert llm.calls[1]["model"] == runner.context.config.FAST_MODEL
        finally:
            await close_runner(runner)

    async def test_memory_disabled(self, make_runner) -> None:
        llm = ScriptedLLM([AnswerResponse(text="Hello!")])
        runner = await make_runner(llm, settings={"MEMORY_ENABLED": False})
        try:
            await runner.store_memory("Hello means greeting", importance=0.9)

            response = await runner.run("Hello")

            assert runner.memory_enabled is False
            assert response.memories == []
            assert runner.pending_background_tasks == 0
            assert (await runner.memory_stats()).count == 1
        finally:
            await close_runner(runner)


class TestRunStream:
    """Tests for AgentRunner.run_stream."""

    async def test_stream_steps_then_response(self, make_runner) -> None:
        llm = ScriptedLLM([AnswerResponse(text="All invoices are paid.")])
        runner = await make_runner(llm)
        try:
            stream = runner.run_stream("Any unpaid invoices?")
            with pytest.raises(RuntimeError):
                stream.result

            steps = [step async for step in stream]

            assert len(steps) == 3
            assert stream.result.answer == "All invoices are paid."
            assert stream.result.steps == steps
        finally:
            await close_runner(runner)

    async def test_stream_error_response(self, make_runner) -> None:
        llm = ScriptedLLM([LLMProviderError("down"), LLMProviderError("down")])
        runner = await make_runner(llm)
        try:
            stream = runner.run_stream("Any unpaid invoices?")

            steps = [step async for step in stream]

            assert steps == []
            assert stream.result.status == "error"
        finally:
            await close_runner(runner)


class TestMemoryAdministration:
    """Tests for direct memory operations on the runner."""

    async def test_store_stats_and_maintenance(self, make_runner) -> None:
        runner = await make_runner(ScriptedLLM())
        try:
            memory = await runner.store_memory("Rent is due on the 1st", MemoryType.TASK, importance=0.7)
            stats = await runner.memory_stats()
            maintenance = await runner.run_maintenance()

            assert memory.memory_type == MemoryType.TASK
            assert stats.count == 1
            assert stats.by_type["task"] == 1
            assert maintenance == {"forgotten": 0, "consolidated": 0}
        finally:
            await close_runner(runner)
