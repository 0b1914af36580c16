import asyncio


class CancellationToken:
    """Cooperative cancellation signal for one invocation.

    Firing the token never interrupts work in flight. The orchestrator
    samples it at its suspension points (next model chunk, next tool
    result) and stops starting new work once it is set.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    def cancel(self, reason: str | None = None) -> None:
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()
