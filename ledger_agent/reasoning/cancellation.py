"""Cooperative cancellation for long-running reasoning requests."""

import asyncio

from ledger_agent.orchestration.errors import ReasoningCancelledError


class CancellationToken:
    """Flag checked by the reasoning loop between stages.

    Example:
        token = CancellationToken()
        task = asyncio.create_task(engine.reason(context, cancellation=token))
        ...
        token.cancel("user pressed Ctrl+C")
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self, reason: str = "cancelled by caller") -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    def raise_if_cancelled(self, stage: str) -> None:
        """Raise ReasoningCancelledError if cancellation was requested."""
        if self._event.is_set():
            raise ReasoningCancelledError(
                f"Reasoning cancelled: {self.reason}",
                stage=stage,
            )

    async def wait(self) -> None:
        await self._event.wait()
