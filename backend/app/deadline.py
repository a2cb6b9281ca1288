"""Wall-clock budgets for best-effort loops (modal triggers, OAuth fallback)."""
import asyncio
import time


class Deadline:
    def __init__(self, budget_ms: int):
        self.budget_ms = budget_ms
        self.started = time.monotonic()

    @property
    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self.started) * 1000)

    @property
    def remaining_ms(self) -> int:
        return max(0, self.budget_ms - self.elapsed_ms)

    @property
    def expired(self) -> bool:
        return self.remaining_ms <= 0

    def cap(self, timeout_ms: int) -> int:
        """Clamp a per-step timeout so it never outlives the budget."""
        return min(timeout_ms, self.remaining_ms)

    async def run(self, coro, timeout_ms: int | None = None):
        """
        Await ``coro`` for at most the remaining budget (or ``timeout_ms`` if
        smaller). The child is cancelled when time runs out and
        ``asyncio.TimeoutError`` is raised.
        """
        limit = self.remaining_ms if timeout_ms is None else self.cap(timeout_ms)
        if limit <= 0:
            coro.close()
            raise asyncio.TimeoutError(f"budget of {self.budget_ms}ms exhausted")
        return await asyncio.wait_for(coro, timeout=limit / 1000)
