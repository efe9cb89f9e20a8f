"""Bounded plan/act/validate reasoning loop.

Each iteration asks the model to either call tools or answer, executes the
proposed tool calls, then runs deterministic validation. Failed validation
sends the loop back to planning while budget remains. When the loop stops,
the answer is synthesised and a confidence score computed.

States:
    PLANNING -> ACTING -> VALIDATING -> (PLANNING | ANSWERING) -> DONE
"""

import asyncio
import json
import time
from collections.abc import AsyncIterator

import structlog

from ledger_agent.config import Settings, settings
from ledger_agent.llm.base import (
    AnswerResponse,
    ChatMessage,
    LLMProvider,
    LLMResponse,
    ToolCall,
    ToolCallsResponse,
    ToolSchema,
)
from ledger_agent.observability.tracing import traced_agent
from ledger_agent.orchestration.errors import (
    LLMProviderError,
    ReasoningError,
    RetryConfig,
    StepTimeoutError,
    call_with_retry,
    execute_with_timeout,
)
from ledger_agent.reasoning.cancellation import CancellationToken
from ledger_agent.reasoning.models import (
    ReasoningContext,
    ReasoningResult,
    ReasoningStage,
    ReasoningStep,
    StopReason,
    ToolCallRecord,
)
from ledger_agent.reasoning.prompts import (
    ANSWER_PROMPT,
    BUDGET_EXHAUSTED_NOTE,
    CONFIRMATION_NOTE,
    DEFAULT_SYSTEM_PROMPT,
    REASONING_PROMPT,
    UNVERIFIED_NOTE,
    VALIDATION_FEEDBACK,
)
from ledger_agent.reasoning.stream import StepStream
from ledger_agent.reasoning.validation import ResultValidator, ValidationResult
from ledger_agent.tools.base import ToolOutput, ToolRegistry

logger = structlog.get_logger(__name__)

ReasoningStream = StepStream[ReasoningStep, ReasoningResult]

# Confidence penalties
STOP_PENALTIES = {
    StopReason.NATURAL: 0.0,
    StopReason.CONFIRMATION_REQUIRED: 0.1,
    StopReason.BUDGET_EXHAUSTED: 0.3,
}
VALIDATION_PENALTY = 0.15
MAX_VALIDATION_PENALTY = 0.45
TOOL_FAILURE_WEIGHT = 0.4
TIMEOUT_PENALTY = 0.1

NO_INFORMATION_ANSWER = "I couldn't gather sufficient information to provide a complete answer."


def compute_confidence(
    stop_reason: StopReason,
    validation_failures: int,
    tool_calls: int,
    tool_failures: int,
    timeouts: int,
) -> float:
    """Score how far the final answer can be trusted.

    Natural completion with passing validation and no failed tools scores
    1.0. Budget exhaustion, failed validations, failed tools and timed-out
    steps each lower the score. The result is clamped to [0, 1].
    """
    confidence = 1.0
    confidence -= STOP_PENALTIES[stop_reason]
    confidence -= min(MAX_VALIDATION_PENALTY, VALIDATION_PENALTY * validation_failures)
    if tool_calls > 0:
        confidence -= TOOL_FAILURE_WEIGHT * (tool_failures / tool_calls)
    confidence -= TIMEOUT_PENALTY * timeouts
    return max(0.0, min(1.0, confidence))


def _describe_calls(calls: tuple[ToolCall, ...]) -> str:
    return ", ".join(call.name for call in calls)


class _ReasoningRun:
    """State of a single ``reason()`` invocation."""

    def __init__(
        self,
        engine: "ReasoningEngine",
        context: ReasoningContext,
        cancellation: CancellationToken | None,
    ) -> None:
        self.engine = engine
        self.context = context
        self.cancellation = cancellation
        self.transcript: list[ChatMessage] = []
        self.steps: list[ReasoningStep] = []
        self.records: list[ToolCallRecord] = []
        self.tools_used: dict[str, None] = {}
        self.sources: dict[str, None] = {}
        self.iteration_count = 0
        self.validation_failures = 0
        self.timeouts = 0
        self.draft_answer = ""
        self.pending: list[ToolCall] = []
        self.open_issues: list[str] = []
        self.result: ReasoningResult | None = None
        self._logger = engine._logger

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------

    def _step(
        self,
        stage: ReasoningStage,
        description: str,
        tool_calls: list[ToolCallRecord] | None = None,
        success: bool = True,
    ) -> ReasoningStep:
        step = ReasoningStep(
            stage=stage,
            description=description,
            tool_calls=tuple(tool_calls or ()),
            iteration=self.iteration_count,
            success=success,
        )
        self.steps.append(step)
        return step

    def _check_cancelled(self, stage: ReasoningStage) -> None:
        if self.cancellation is not None:
            self.cancellation.raise_if_cancelled(stage.value)

    def _initial_transcript(self) -> list[ChatMessage]:
        ctx = self.context
        if ctx.system_prompt:
            system = f"{ctx.system_prompt}\n\n{REASONING_PROMPT}"
        else:
            parts = [DEFAULT_SYSTEM_PROMPT, REASONING_PROMPT]
            if ctx.financial_context:
                parts.append(f"## Current Financial Context\n{ctx.financial_context}")
            if ctx.memories:
                parts.append("## Relevant Context from Memory\n" + "\n".join(
                    f"- {r.memory.content}" for r in ctx.memories
                ))
            system = "\n\n".join(parts)

        return [
            ChatMessage(role="system", content=system),
            *ctx.messages,
            ChatMessage(role="user", content=ctx.query),
        ]

    def _context_texts(self) -> list[str]:
        ctx = self.context
        texts = [ctx.query, ctx.financial_context, ctx.system_prompt]
        texts.extend(r.memory.content for r in ctx.memories)
        texts.extend(m.content for m in ctx.messages)
        return [t for t in texts if t]

    def _tool_failures(self) -> tuple[int, int]:
        executed = [r for r in self.records if not r.pending_confirmation]
        return len(executed), sum(1 for r in executed if not r.success)

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    async def run(self) -> AsyncIterator[ReasoningStep]:
        ctx = self.context
        if ctx.financial_context:
            self.sources["financial_context"] = None
        if ctx.memories:
            self.sources["memory"] = None
        if ctx.messages:
            self.sources["conversation"] = None

        self.transcript = self._initial_transcript()
        stop_reason: StopReason | None = None

        self._logger.info(
            "reasoning_started",
            query_length=len(ctx.query),
            max_iterations=self.engine.max_iterations,
            tool_count=len(self.engine.tools.list_tools(ctx.categories)),
        )

        while self.iteration_count < self.engine.max_iterations:
            self._check_cancelled(ReasoningStage.PLANNING)
            self.iteration_count += 1

            # Plan
            try:
                response = await self.engine._complete(
                    ReasoningStage.PLANNING,
                    self.transcript,
                    self.engine.tools.schemas(ctx.categories),
                    self.engine.planning_temperature,
                )
            except StepTimeoutError as e:
                self.timeouts += 1
                yield self._step(ReasoningStage.PLANNING, f"Planning timed out after {e.timeout_seconds}s", success=False)
                continue

            if isinstance(response, AnswerResponse):
                yield self._step(ReasoningStage.PLANNING, "Model has enough information to answer")
                self._check_cancelled(ReasoningStage.VALIDATING)

                validation = self._validate_answer(response.text)
                yield self._validation_step(validation, "answer")
                self.draft_answer = response.text
                if validation.passed:
                    stop_reason = StopReason.NATURAL
                    break

                self.transcript.append(ChatMessage(role="assistant", content=response.text))
                self.transcript.append(ChatMessage(
                    role="user",
                    content=VALIDATION_FEEDBACK.format(issues="\n".join(f"- {i}" for i in validation.issues)),
                ))
                continue

            if not isinstance(response, ToolCallsResponse):
                raise ReasoningError(
                    f"Unexpected planner response: {type(response).__name__}", stage="planning"
                )

            # Act
            yield self._step(
                ReasoningStage.PLANNING,
                f"Proposed {len(response.calls)} tool call(s): {_describe_calls(response.calls)}",
            )
            self.transcript.append(
                ChatMessage(role="assistant", content=response.text, tool_calls=list(response.calls))
            )
            self._check_cancelled(ReasoningStage.ACTING)

            records = await self._act(response.calls)
            self.records.extend(records)
            for record in records:
                self.transcript.append(self._tool_message(record))

            executed = [r for r in records if not r.pending_confirmation]
            failed = [r for r in executed if not r.success]
            description = f"Executed {len(executed)} tool call(s)"
            if failed:
                description += f", {len(failed)} failed"
            pending = [r for r in records if r.pending_confirmation]
            if pending:
                description += f", {len(pending)} awaiting confirmation"
            yield self._step(ReasoningStage.ACTING, description, records, success=not failed)
            self._check_cancelled(ReasoningStage.VALIDATING)

            # Validate
            validation = self._validate_tools(executed)
            yield self._validation_step(validation, "tool results")
            if not validation.passed:
                self.transcript.append(ChatMessage(
                    role="user",
                    content=VALIDATION_FEEDBACK.format(issues="\n".join(f"- {i}" for i in validation.issues)),
                ))

            if self.pending:
                stop_reason = StopReason.CONFIRMATION_REQUIRED
                break

        if stop_reason is None:
            stop_reason = StopReason.BUDGET_EXHAUSTED
            self._logger.warning(
                "max_iterations_reached",
                max_iterations=self.engine.max_iterations,
                tools_used=len(self.tools_used),
            )

        # Answer
        self._check_cancelled(ReasoningStage.ANSWERING)
        final_answer, answer_ok = await self._answer(stop_reason)
        yield self._step(ReasoningStage.ANSWERING, final_answer, success=answer_ok)

        tool_calls, tool_failures = self._tool_failures()
        confidence = compute_confidence(
            stop_reason,
            self.validation_failures,
            tool_calls,
            tool_failures,
            self.timeouts,
        )
        self.result = ReasoningResult(
            final_answer=final_answer,
            steps=list(self.steps),
            tools_used=list(self.tools_used),
            iteration_count=self.iteration_count,
            confidence=confidence,
            sources=list(self.sources),
            stop_reason=stop_reason,
            pending_confirmations=list(self.pending),
            validation_failures=self.validation_failures,
        )

        self._logger.info(
            "reasoning_completed",
            iterations=self.iteration_count,
            tools_used=len(self.tools_used),
            steps=len(self.steps),
            stop_reason=stop_reason.value,
            confidence=round(confidence, 3),
        )

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def _act(self, calls: tuple[ToolCall, ...]) -> list[ToolCallRecord]:
        """Execute proposed calls.

        Unknown tools fail without running. Tools that need confirmation are
        deferred. Consecutive read-only calls run concurrently; anything with
        side effects runs alone, in proposal order.
        """
        tools = self.engine.tools
        records: list[ToolCallRecord | None] = [None] * len(calls)
        runnable: list[tuple[int, ToolCall]] = []

        for index, call in enumerate(calls):
            if not tools.has(call.name):
                records[index] = ToolCallRecord(
                    tool=call.name,
                    input=call.arguments,
                    output=f"Unknown tool: {call.name}",
                    success=False,
                    error=f'Tool "{call.name}" not found in registry',
                    call_id=call.id,
                )
            elif tools.requires_confirmation(call.name):
                self.pending.append(call)
                records[index] = ToolCallRecord(
                    tool=call.name,
                    input=call.arguments,
                    output="Awaiting user confirmation",
                    success=False,
                    call_id=call.id,
                    pending_confirmation=True,
                )
            else:
                runnable.append((index, call))

        batch: list[tuple[int, ToolCall]] = []

        async def flush() -> None:
            if not batch:
                return
            outcomes = await asyncio.gather(*(self._execute(call) for _, call in batch))
            for (index, _), record in zip(batch, outcomes):
                records[index] = record
            batch.clear()

        for index, call in runnable:
            if tools.is_read_only(call.name):
                batch.append((index, call))
                continue
            await flush()
            records[index] = await self._execute(call)
        await flush()

        return [r for r in records if r is not None]

    async def _execute(self, call: ToolCall) -> ToolCallRecord:
        record, timed_out = await self.engine._run_tool(call)
        if timed_out:
            self.timeouts += 1
        self.tools_used[call.name] = None
        if record.success:
            self.sources[f"tool:{call.name}"] = None
        return record

    def _tool_message(self, record: ToolCallRecord) -> ChatMessage:
        content = record.output
        if record.success and record.data is not None:
            content = f"{record.output}\n\nData: {json.dumps(record.data, default=str)}"
        elif record.error and not record.pending_confirmation:
            content = f"{record.output}\nError: {record.error}"
        return ChatMessage(
            role="tool",
            content=content or "(no output)",
            tool_call_id=record.call_id,
            is_error=not record.success and not record.pending_confirmation,
        )

    def _validation_step(self, validation: ValidationResult, subject: str) -> ReasoningStep:
        if not self.engine.validation_enabled:
            return self._step(ReasoningStage.VALIDATING, "Validation disabled")
        if validation.passed:
            return self._step(ReasoningStage.VALIDATING, f"Validated {subject}: no issues")
        return self._step(
            ReasoningStage.VALIDATING,
            f"Validation of {subject} found {len(validation.issues)} issue(s): " + "; ".join(validation.issues),
            success=False,
        )

    def _validate_answer(self, answer: str) -> ValidationResult:
        if not self.engine.validation_enabled:
            return ValidationResult()
        validation = self.engine.validator.validate_answer(answer, self.records, self._context_texts())
        self.open_issues = list(validation.issues)
        if not validation.passed:
            self.validation_failures += 1
        return validation

    def _validate_tools(self, records: list[ToolCallRecord]) -> ValidationResult:
        if not self.engine.validation_enabled:
            return ValidationResult()
        validation = self.engine.validator.validate_tool_outputs(records)
        if not validation.passed:
            self.validation_failures += 1
        return validation

    def _summarize_observations(self) -> str:
        observations = [r.output for r in self.records if r.success and r.output][-3:]
        if not observations:
            return NO_INFORMATION_ANSWER
        return "\n\n".join(observations)

    async def _answer(self, stop_reason: StopReason) -> tuple[str, bool]:
        """Produce the final answer.

        A validated draft from a natural stop is used as is. Otherwise the
        model synthesises an answer from the transcript, falling back to the
        last draft or a summary of successful observations.
        """
        if stop_reason == StopReason.NATURAL and self.draft_answer.strip():
            return self.draft_answer.strip(), True

        instructions = [ANSWER_PROMPT.format(query=self.context.query)]
        if stop_reason == StopReason.BUDGET_EXHAUSTED:
            instructions.append(BUDGET_EXHAUSTED_NOTE)
        elif stop_reason == StopReason.CONFIRMATION_REQUIRED:
            actions = ", ".join(
                f"{call.name}({json.dumps(call.arguments, default=str)})" for call in self.pending
            )
            instructions.append(CONFIRMATION_NOTE.format(actions=actions))

        messages = [*self.transcript, ChatMessage(role="user", content="\n\n".join(instructions))]
        try:
            response = await self.engine._complete(
                ReasoningStage.ANSWERING,
                messages,
                self.engine.tools.schemas(self.context.categories),
                self.engine.response_temperature,
            )
        except StepTimeoutError:
            self.timeouts += 1
            response = None

        text = response.text.strip() if response is not None else ""
        if text:
            return text, True

        self._logger.warning("answer_synthesis_fallback", stop_reason=stop_reason.value)
        if self.draft_answer.strip():
            answer = self.draft_answer.strip()
            if self.open_issues:
                answer += "\n\n" + UNVERIFIED_NOTE.format(issues="; ".join(self.open_issues))
            return answer, False
        prefix = ""
        if stop_reason == StopReason.BUDGET_EXHAUSTED and any(r.success for r in self.records):
            prefix = "I've gathered a lot of information but need to stop here. Based on what I've found:\n\n"
        return prefix + self._summarize_observations(), False


class ReasoningEngine:
    """Runs the bounded iterative reasoning loop.

    Example:
        engine = ReasoningEngine(llm=provider, tools=registry)
        result = await engine.reason(ReasoningContext(query="Which invoices are overdue?"))

        stream = engine.reason_stream(context)
        async for step in stream:
            print(step.stage, step.description)
        print(stream.result.final_answer)
    """

    def __init__(
        self,
        llm: LLMProvider,
        tools: ToolRegistry | None = None,
        validator: ResultValidator | None = None,
        max_iterations: int | None = None,
        step_timeout_seconds: float | None = None,
        retry_config: RetryConfig | None = None,
        config: Settings | None = None,
    ) -> None:
        """Initialize the reasoning engine.

        Args:
            llm: Chat completion provider.
            tools: Registry of callable tools.
            validator: Deterministic validator for tool data and answers.
            max_iterations: Iteration budget per request.
            step_timeout_seconds: Timeout for each LLM call and tool call.
            retry_config: Retry policy for provider errors.
            config: Settings to read defaults from.

        Raises:
            ValueError: If the iteration budget or step timeout is not positive.
        """
        cfg = config or settings
        self.llm = llm
        self.tools = tools or ToolRegistry()
        self.validator = validator or ResultValidator()
        self.max_iterations = cfg.MAX_ITERATIONS if max_iterations is None else max_iterations
        self.step_timeout_seconds = (
            cfg.step_timeout_seconds if step_timeout_seconds is None else step_timeout_seconds
        )
        if self.max_iterations < 1:
            raise ValueError(f"max_iterations must be at least 1, got {self.max_iterations}")
        if self.step_timeout_seconds <= 0:
            raise ValueError(f"step_timeout_seconds must be positive, got {self.step_timeout_seconds}")
        self.retry_config = retry_config or RetryConfig(max_attempts=2)
        self.planning_temperature = cfg.PLANNING_TEMPERATURE
        self.response_temperature = cfg.RESPONSE_TEMPERATURE
        self.validation_enabled = cfg.VALIDATION_ENABLED
        self._logger = logger.bind(component="reasoning_engine")

    @traced_agent("reasoning", capture_output=False)
    async def reason(
        self,
        context: ReasoningContext,
        cancellation: CancellationToken | None = None,
    ) -> ReasoningResult:
        """Run the loop to completion.

        Raises:
            ReasoningError: If the query is empty or the LLM provider stays
                unreachable after retry.
            ReasoningCancelledError: If ``cancellation`` is triggered.
        """
        return await self.reason_stream(context, cancellation).collect()

    def reason_stream(
        self,
        context: ReasoningContext,
        cancellation: CancellationToken | None = None,
    ) -> ReasoningStream:
        """Run the loop one step per pull.

        Returns:
            Stream yielding each ReasoningStep; ``result`` holds the
            ReasoningResult once the stream is exhausted.

        Raises:
            ReasoningError: If the query is empty.
        """
        if not context.query or not context.query.strip():
            raise ReasoningError("Query must not be empty", stage="input")

        run = _ReasoningRun(self, context, cancellation)
        return StepStream(run.run(), lambda: run.result)

    async def execute_confirmed(self, call: ToolCall) -> ToolCallRecord:
        """Run a tool call that was deferred pending user confirmation."""
        record, _ = await self._run_tool(call)
        self._logger.info("confirmed_tool_executed", tool=call.name, success=record.success)
        return record

    async def _run_tool(self, call: ToolCall) -> tuple[ToolCallRecord, bool]:
        """Execute one call under the step timeout. Never raises for tool failures."""
        started = time.perf_counter()
        timed_out = False
        try:
            output = await execute_with_timeout(
                self.tools.execute(call.name, call.arguments),
                self.step_timeout_seconds,
                f"tool:{call.name}",
            )
        except StepTimeoutError as e:
            timed_out = True
            output = ToolOutput.failure(e.message)
        except Exception as e:
            # Registries other than ToolRegistry may raise; failures stay inside the loop
            self._logger.error("tool_raised", tool=call.name, error=str(e))
            output = ToolOutput.failure(str(e), result=f"Error executing {call.name}: {e}")

        record = ToolCallRecord(
            tool=call.name,
            input=call.arguments,
            output=output.result,
            data=output.data,
            success=output.success,
            error=output.error,
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
            call_id=call.id,
        )
        return record, timed_out

    async def _complete(
        self,
        stage: ReasoningStage,
        messages: list[ChatMessage],
        tools: list[ToolSchema],
        temperature: float,
    ) -> LLMResponse:
        """Call the LLM with retry; each attempt is bounded by the step timeout.

        Raises:
            StepTimeoutError: If an attempt exceeds the step timeout.
            ReasoningError: If the provider stays unreachable after retry.
        """

        async def attempt() -> LLMResponse:
            return await execute_with_timeout(
                self.llm.complete(messages, tools or None, temperature=temperature),
                self.step_timeout_seconds,
                f"{stage.value}_llm_call",
            )

        try:
            return await call_with_retry(attempt, config=self.retry_config)
        except (LLMProviderError, ConnectionError) as e:
            self._logger.error("llm_unavailable", stage=stage.value, error=str(e))
            raise ReasoningError(
                f"LLM provider unavailable during {stage.value}: {e}",
                stage=stage.value,
            ) from e


__all__ = [
    "ReasoningEngine",
    "ReasoningStream",
    "compute_confidence",
]
