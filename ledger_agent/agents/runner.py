"""Agent runner: one request/response cycle with memory.

A run recalls relevant memories, assembles the system prompt, reasons over
the query and returns the answer. Learning from the exchange (conversation
summary, facts, preferences, consolidation) happens afterwards in a
background task so it never delays the response.
"""

import asyncio
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Literal

import structlog
from pydantic import BaseModel, ConfigDict, Field

from ledger_agent.agents.context import AppContext
from ledger_agent.agents.prompts import build_system_prompt
from ledger_agent.llm.base import ChatMessage, ToolCall
from ledger_agent.memory.models import Memory, MemorySearchResult, MemoryStats, MemoryType, UserPreference
from ledger_agent.observability.tracing import traced_agent
from ledger_agent.orchestration.errors import (
    EmbeddingError,
    LedgerAgentError,
    MemoryStoreError,
    ReasoningCancelledError,
    ReasoningError,
    classify_error,
)
from ledger_agent.reasoning.cancellation import CancellationToken
from ledger_agent.reasoning.models import (
    ReasoningContext,
    ReasoningResult,
    ReasoningStep,
    StopReason,
    ToolCallRecord,
)
from ledger_agent.reasoning.stream import StepStream

logger = structlog.get_logger(__name__)

SYSTEM_ERROR_ANSWER = "I couldn't complete that because of a system error."
DEGRADED_CONFIDENCE_FACTOR = 0.9
CONVERSATION_MEMORY_IMPORTANCE = 0.4
SUMMARY_SNIPPET_CHARS = 200

RunStatus = Literal["ok", "degraded", "error"]


class AgentResponse(BaseModel):
    """Outcome of one agent run.

    Attributes:
        answer: Text shown to the user.
        status: "ok", "degraded" when supporting context was unavailable,
            or "error" when reasoning could not complete.
        confidence: Trust score in [0, 1].
        steps: Reasoning transcript.
        tools_used: Distinct tools invoked.
        iterations: Reasoning iterations run.
        sources: Provenance tags that grounded the answer.
        memories: Memories recalled for this run.
        stop_reason: Why reasoning stopped, if it ran.
        pending_confirmations: Tool calls awaiting user confirmation.
        warnings: Supporting-context failures that degraded the run.
        error: Error message when status is "error".
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    answer: str
    status: RunStatus = "ok"
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    steps: list[ReasoningStep] = Field(default_factory=list)
    tools_used: list[str] = Field(default_factory=list)
    iterations: int = 0
    sources: list[str] = Field(default_factory=list)
    memories: list[MemorySearchResult] = Field(default_factory=list)
    stop_reason: StopReason | None = None
    pending_confirmations: list[ToolCall] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    error: str | None = None


AgentRunStream = StepStream[ReasoningStep, AgentResponse]


@dataclass
class _PreparedRun:
    context: ReasoningContext
    warnings: list[str] = field(default_factory=list)


class AgentRunner:
    """Runs the accounting agent against an application context.

    Example:
        ctx = await create_app_context()
        runner = AgentRunner(ctx)
        response = await runner.run("Which invoices are overdue?")
        print(response.answer)
        await runner.drain()
        await ctx.close()
    """

    def __init__(self, context: AppContext) -> None:
        self.context = context
        self._background: set[asyncio.Task[None]] = set()
        self._logger = logger.bind(component="agent_runner")

    @property
    def memory_enabled(self) -> bool:
        return self.context.config.MEMORY_ENABLED

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    @traced_agent("agent_run", capture_output=False)
    async def run(
        self,
        query: str,
        messages: list[ChatMessage] | None = None,
        cancellation: CancellationToken | None = None,
    ) -> AgentResponse:
        """Answer ``query`` in the context of ``messages``.

        Supporting-context failures degrade the response instead of failing
        it. A reasoning failure yields an error response.

        Raises:
            ReasoningCancelledError: If ``cancellation`` is triggered.
        """
        messages = list(messages or [])
        self._logger.info("agent_run_started", query_length=len(query), history=len(messages))

        prepared = await self._prepare(query, messages)
        try:
            result = await self.context.engine.reason(prepared.context, cancellation)
        except ReasoningCancelledError:
            self._logger.info("agent_run_cancelled")
            raise
        except ReasoningError as e:
            return self._error_response(e, prepared)

        return self._finish(query, messages, prepared, result)

    def run_stream(
        self,
        query: str,
        messages: list[ChatMessage] | None = None,
        cancellation: CancellationToken | None = None,
    ) -> AgentRunStream:
        """Run the agent one reasoning step per pull.

        Returns:
            Stream of reasoning steps; ``result`` holds the AgentResponse
            once the stream is exhausted.
        """
        holder: dict[str, AgentResponse] = {}
        history = list(messages or [])

        async def steps() -> AsyncIterator[ReasoningStep]:
            prepared = await self._prepare(query, history)
            try:
                stream = self.context.engine.reason_stream(prepared.context, cancellation)
                async for step in stream:
                    yield step
                result = stream.result
            except ReasoningCancelledError:
                self._logger.info("agent_run_cancelled")
                raise
            except ReasoningError as e:
                holder["response"] = self._error_response(e, prepared)
                return
            holder["response"] = self._finish(query, history, prepared, result)

        return StepStream(steps(), lambda: holder.get("response"))

    async def confirm(self, call: ToolCall) -> ToolCallRecord:
        """Execute a tool call the user confirmed."""
        return await self.context.engine.execute_confirmed(call)

    async def _prepare(self, query: str, messages: list[ChatMessage]) -> _PreparedRun:
        """Gather recalled memories, preferences and financial context."""
        warnings: list[str] = []
        memories: list[MemorySearchResult] = []
        preferences: list[UserPreference] = []

        if self.memory_enabled and query.strip():
            try:
                memories = await self.context.memory.recall(query)
                self._logger.debug("memories_recalled", count=len(memories))
            except (EmbeddingError, MemoryStoreError) as e:
                self._logger.warning("memory_recall_failed", error=str(e))
                warnings.append(f"Memory recall unavailable: {e.message}")

            try:
                preferences = await self.context.memory.get_preferences()
            except MemoryStoreError as e:
                self._logger.warning("preferences_unavailable", error=str(e))
                warnings.append(f"Preferences unavailable: {e.message}")

        financial_context = ""
        try:
            financial_context = await self.context.financial_context.get_context()
        except Exception as e:
            # Any provider failure degrades to an empty snapshot
            self._logger.warning("financial_context_failed", error=str(e))
            warnings.append(f"Financial context unavailable: {e}")

        system_prompt = build_system_prompt(
            memories=memories,
            financial_context=financial_context,
            preferences=preferences,
            tool_summary=self.context.tools.generate_tool_summary(),
            config=self.context.config,
        )
        return _PreparedRun(
            context=ReasoningContext(
                query=query,
                system_prompt=system_prompt,
                messages=messages,
                financial_context=financial_context,
                memories=memories,
            ),
            warnings=warnings,
        )

    def _finish(
        self,
        query: str,
        messages: list[ChatMessage],
        prepared: _PreparedRun,
        result: ReasoningResult,
    ) -> AgentResponse:
        degraded = bool(prepared.warnings)
        confidence = result.confidence * DEGRADED_CONFIDENCE_FACTOR if degraded else result.confidence

        if self.memory_enabled:
            self._schedule_learning(query, messages, result.final_answer)

        response = AgentResponse(
            answer=result.final_answer,
            status="degraded" if degraded else "ok",
            confidence=confidence,
            steps=result.steps,
            tools_used=result.tools_used,
            iterations=result.iteration_count,
            sources=result.sources,
            memories=prepared.context.memories,
            stop_reason=result.stop_reason,
            pending_confirmations=result.pending_confirmations,
            warnings=prepared.warnings,
        )
        self._logger.info(
            "agent_run_completed",
            status=response.status,
            iterations=response.iterations,
            tools_used=len(response.tools_used),
            confidence=round(response.confidence, 3),
            memories_recalled=len(response.memories),
        )
        return response

    def _error_response(self, error: ReasoningError, prepared: _PreparedRun) -> AgentResponse:
        self._logger.error("agent_run_failed", stage=error.stage, error=error.message)
        return AgentResponse(
            answer=SYSTEM_ERROR_ANSWER,
            status="error",
            confidence=0.0,
            memories=prepared.context.memories,
            warnings=prepared.warnings,
            error=error.message,
        )

    # ------------------------------------------------------------------
    # Background learning
    # ------------------------------------------------------------------

    def _schedule_learning(self, query: str, messages: list[ChatMessage], answer: str) -> None:
        task = asyncio.create_task(self._learn(query, messages, answer))
        self._background.add(task)
        task.add_done_callback(self._on_learning_done)

    def _on_learning_done(self, task: asyncio.Task[None]) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            category, recoverable = classify_error(error)
            self._logger.error(
                "memory_pipeline_failed",
                error=str(error),
                error_type=category,
                recoverable=recoverable,
            )

    async def _learn(self, query: str, messages: list[ChatMessage], answer: str) -> None:
        """Store what this exchange taught us. Each stage fails independently."""
        memory = self.context.memory
        exchange = [
            *messages,
            ChatMessage(role="user", content=query),
            ChatMessage(role="assistant", content=answer),
        ]
        stored = 0

        summary = (
            f"User asked: {query[:SUMMARY_SNIPPET_CHARS]}\n"
            f"Agent responded: {answer[:SUMMARY_SNIPPET_CHARS]}"
        )
        try:
            await memory.store(summary, MemoryType.CONVERSATION, importance=CONVERSATION_MEMORY_IMPORTANCE)
            stored += 1
        except LedgerAgentError as e:
            self._logger.warning("conversation_memory_failed", error=e.message)

        facts = await memory.extract_facts(exchange)
        stored += len(facts)
        preferences = await memory.learn_preferences(exchange)

        consolidated = 0
        try:
            consolidated = await memory.consolidate()
        except LedgerAgentError as e:
            self._logger.warning("consolidation_failed", error=e.message)

        self._logger.debug(
            "memory_pipeline_completed",
            memories_stored=stored,
            facts_extracted=len(facts),
            preferences_learned=len(preferences),
            consolidated=consolidated,
        )

    async def drain(self) -> None:
        """Wait for every scheduled background learning task."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    @property
    def pending_background_tasks(self) -> int:
        return len(self._background)

    # ------------------------------------------------------------------
    # Memory administration
    # ------------------------------------------------------------------

    async def memory_stats(self) -> MemoryStats:
        return await self.context.memory.get_stats()

    async def store_memory(
        self,
        content: str,
        memory_type: MemoryType = MemoryType.FACT,
        importance: float | None = None,
    ) -> Memory:
        """Store a memory directly, bypassing extraction."""
        return await self.context.memory.store(content, memory_type, importance=importance)

    async def run_maintenance(self) -> dict[str, int]:
        """Forget stale memories and consolidate near-duplicates."""
        return await self.context.memory.run_maintenance()
