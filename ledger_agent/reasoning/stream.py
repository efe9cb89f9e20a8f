"""Pull-based stream over a reasoning run.

The caller advances the run one step at a time; nothing executes between
pulls, so the consumer controls pacing. Once the stream is exhausted the
final result is available on ``result``.
"""

from collections.abc import AsyncIterator, Callable
from typing import Generic, TypeVar

StepT = TypeVar("StepT")
ResultT = TypeVar("ResultT")


class StepStream(Generic[StepT, ResultT]):
    """Async iterator of steps with a final result.

    Example:
        stream = engine.reason_stream(context)
        async for step in stream:
            render(step)
        answer = stream.result.final_answer
    """

    def __init__(
        self,
        steps: AsyncIterator[StepT],
        get_result: Callable[[], ResultT | None],
    ) -> None:
        self._steps = steps
        self._get_result = get_result
        self._exhausted = False

    def __aiter__(self) -> "StepStream[StepT, ResultT]":
        return self

    async def __anext__(self) -> StepT:
        try:
            return await self._steps.__anext__()
        except StopAsyncIteration:
            self._exhausted = True
            raise

    @property
    def done(self) -> bool:
        return self._exhausted

    @property
    def result(self) -> ResultT:
        """Final result, available once every step has been pulled.

        Raises:
            RuntimeError: If the stream has not been exhausted yet.
        """
        result = self._get_result()
        if result is None:
            raise RuntimeError("Stream has not finished; consume all steps first")
        return result

    async def collect(self) -> ResultT:
        """Drain the remaining steps and return the final result."""
        async for _ in self:
            pass
        return self.result

    async def aclose(self) -> None:
        """Stop the underlying run early."""
        aclose = getattr(self._steps, "aclose", None)
        if aclose is not None:
            await aclose()
