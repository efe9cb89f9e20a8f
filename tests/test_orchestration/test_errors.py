"""Tests for error handling and recovery module."""

import asyncio

import pytest

from ledger_agent.orchestration.errors import (
    EmbeddingError,
    LedgerAgentError,
    LLMProviderError,
    MemoryStoreError,
    ReasoningCancelledError,
    ReasoningError,
    RetryConfig,
    StepTimeoutError,
    ToolExecutionError,
    call_with_retry,
    classify_error,
    execute_with_timeout,
)

FAST_RETRY = RetryConfig(max_attempts=3, min_wait_seconds=0, max_wait_seconds=0)


# ============================================================================
# Exception Hierarchy Tests
# ============================================================================


class TestLedgerAgentError:
    """Tests for base LedgerAgentError."""

    def test_basic_creation(self) -> None:
        """Test basic error creation."""
        error = LedgerAgentError("Test error")
        assert str(error) == "Test error"
        assert error.message == "Test error"
        assert error.recoverable is True
        assert error.details == {}

    def test_to_dict(self) -> None:
        """Test conversion to dictionary."""
        error = EmbeddingError("Quota exceeded", details={"provider": "openai"})
        result = error.to_dict()
        assert result["error_type"] == "EmbeddingError"
        assert result["message"] == "Quota exceeded"
        assert result["details"] == {"provider": "openai"}

    def test_subclasses(self) -> None:
        """Test every error derives from the base."""
        for error_type in (EmbeddingError, MemoryStoreError, LLMProviderError, ReasoningError):
            assert issubclass(error_type, LedgerAgentError)
        assert issubclass(ReasoningCancelledError, ReasoningError)


class TestMemoryStoreError:
    """Tests for MemoryStoreError."""

    def test_operation_in_dict(self) -> None:
        """Test to_dict includes the failed operation."""
        error = MemoryStoreError("disk full", operation="save")
        assert error.operation == "save"
        assert error.to_dict()["operation"] == "save"


class TestToolExecutionError:
    """Tests for ToolExecutionError."""

    def test_creation_with_tool_name(self) -> None:
        """Test error with tool name and cause."""
        cause = ValueError("bad amount")
        error = ToolExecutionError("record_payment", "Execution failed", cause=cause)
        assert error.tool_name == "record_payment"
        assert error.cause is cause
        assert error.message == "record_payment: Execution failed"
        assert error.details == {"tool_name": "record_payment"}


class TestReasoningError:
    """Tests for ReasoningError."""

    def test_not_recoverable(self) -> None:
        """Test reasoning errors carry their stage and are not recoverable."""
        error = ReasoningError("Provider down", stage="answering")
        assert error.recoverable is False
        assert error.to_dict()["stage"] == "answering"


# ============================================================================
# Retry Tests
# ============================================================================


class TestCallWithRetry:
    """Tests for call_with_retry."""

    async def test_successful_call_no_retry(self) -> None:
        """Test successful call doesn't retry."""
        call_count = 0

        async def successful_fn() -> str:
            nonlocal call_count
            call_count += 1
            return "success"

        assert await call_with_retry(successful_fn, config=FAST_RETRY) == "success"
        assert call_count == 1

    async def test_retries_on_provider_error(self) -> None:
        """Test transient provider errors are retried."""
        call_count = 0

        async def flaky_fn(value: str) -> str:
            nonlocal call_count
            call_count += 1
            if call_count < 3:
                raise LLMProviderError("overloaded")
            return value

        assert await call_with_retry(flaky_fn, "ok", config=FAST_RETRY) == "ok"
        assert call_count == 3

    async def test_exhausts_retries(self) -> None:
        """Test exhausts all retries and raises the last error."""
        call_count = 0

        async def always_failing() -> str:
            nonlocal call_count
            call_count += 1
            raise ConnectionError(f"refused {call_count}")

        with pytest.raises(ConnectionError, match="refused 3"):
            await call_with_retry(always_failing, config=FAST_RETRY)

        assert call_count == 3

    async def test_step_timeout_not_retried(self) -> None:
        """Test a step timeout is surfaced immediately."""
        call_count = 0

        async def timing_out() -> str:
            nonlocal call_count
            call_count += 1
            raise StepTimeoutError("slow", timeout_seconds=1.0, operation="planning")

        with pytest.raises(StepTimeoutError):
            await call_with_retry(timing_out, config=FAST_RETRY)

        assert call_count == 1

    async def test_non_transient_error_not_retried(self) -> None:
        """Test programming errors are not retried."""
        call_count = 0

        async def broken() -> str:
            nonlocal call_count
            call_count += 1
            raise KeyError("missing")

        with pytest.raises(KeyError):
            await call_with_retry(broken, config=FAST_RETRY)

        assert call_count == 1


# ============================================================================
# Timeout and Classification Tests
# ============================================================================


class TestExecuteWithTimeout:
    """Tests for execute_with_timeout."""

    async def test_completes_within_timeout(self) -> None:
        """Test successful completion within timeout."""

        async def quick_fn() -> str:
            return "done"

        result = await execute_with_timeout(quick_fn(), timeout_seconds=1.0)
        assert result == "done"

    async def test_raises_on_timeout(self) -> None:
        """Test raises StepTimeoutError on timeout."""

        async def slow_fn() -> str:
            await asyncio.sleep(10)
            return "never"

        with pytest.raises(StepTimeoutError) as exc_info:
            await execute_with_timeout(
                slow_fn(),
                timeout_seconds=0.01,
                operation_name="planning_llm_call",
            )

        assert exc_info.value.timeout_seconds == 0.01
        assert exc_info.value.operation == "planning_llm_call"


class TestClassifyError:
    """Tests for classify_error."""

    def test_classify_agent_error(self) -> None:
        """Test classifying a recoverable agent error."""
        assert classify_error(MemoryStoreError("locked")) == ("MemoryStoreError", True)

    def test_classify_reasoning_error(self) -> None:
        """Test classifying a non-recoverable agent error."""
        assert classify_error(ReasoningError("down")) == ("ReasoningError", False)

    def test_classify_timeout_error(self) -> None:
        """Test classifying TimeoutError."""
        assert classify_error(TimeoutError("Timeout")) == ("timeout", True)

    def test_classify_connection_error(self) -> None:
        """Test classifying ConnectionError."""
        assert classify_error(ConnectionError("Connection refused")) == ("connection", True)

    def test_classify_unknown_error(self) -> None:
        """Test classifying unknown error."""
        assert classify_error(RuntimeError("Unknown")) == ("unknown", False)
