import asyncio
from collections.abc import Callable, Coroutine
from typing import Any

from genstore.logging.logger import Log


class BackgroundDispatcher:
    """Runs best-effort coroutines detached from the caller.

    Tasks are referenced until they finish so the event loop cannot collect
    them mid-flight. Their failures are logged here and go no further.
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def dispatch(
        self, factory: Callable[[], Coroutine[Any, Any, Any]], name: str = "background"
    ) -> asyncio.Task[Any]:
        task = asyncio.create_task(self._guarded(factory, name), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for outstanding tasks, cancelling whatever outlives ``timeout``."""
        if not self._tasks:
            return
        tasks = list(self._tasks)
        _, still_running = await asyncio.wait(tasks, timeout=timeout)
        for task in still_running:
            task.cancel()
        if still_running:
            Log.warning(f"Cancelled {len(still_running)} background task(s) on shutdown")
            await asyncio.gather(*still_running, return_exceptions=True)

    @staticmethod
    async def _guarded(factory: Callable[[], Coroutine[Any, Any, Any]], name: str) -> None:
        try:
            await factory()
        except Exception as exc:
            Log.error(f"Background task {name} failed: {exc}")
