from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

LOCATION_BACKGROUND = "location_background"
THEME_COLORS = "theme_colors"
MEMORY_DIGEST = "memory_digest"
SPATIAL_SNAPSHOT = "spatial_snapshot"


def location_background_key(location_id: str) -> str:
    return f"{LOCATION_BACKGROUND}:{location_id}"


class CancellationToken:
    def __init__(self) -> None:
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True


@dataclass(eq=False)
class TaskHandle:
    key: str
    scope: Optional[str]
    token: CancellationToken = field(default_factory=CancellationToken)
    task: Optional[asyncio.Task] = None

    def cancel(self) -> None:
        self.token.cancel()
        if self.task is not None and not self.task.done():
            self.task.cancel()

    async def wait(self) -> bool:
        if self.task is None:
            return False
        try:
            return await self.task
        except asyncio.CancelledError:
            return False


Work = Callable[[], Awaitable[Any]]
OnSuccess = Callable[[Any], Any]


class BackgroundTaskCoordinator:
    """Runs keyed jobs at most once at a time per (scope, key).

    A job whose key is already in flight is skipped, not queued. Failures are
    logged and swallowed. Results of a job whose token was cancelled are
    dropped instead of being handed to ``on_success``.
    """

    def __init__(self, logger_: logging.Logger | None = None):
        self._logger = logger_ or logger
        self._inflight: dict[tuple[Optional[str], str], TaskHandle] = {}
        self._handles: set[TaskHandle] = set()

    def is_running(self, key: str, *, scope: Optional[str] = None) -> bool:
        return (scope, key) in self._inflight

    def _claim(self, key: str, scope: Optional[str]) -> TaskHandle | None:
        marker = (scope, key)
        if marker in self._inflight:
            self._logger.debug("Skipping background job %s (scope=%s): already running", key, scope)
            return None
        handle = TaskHandle(key=key, scope=scope)
        self._inflight[marker] = handle
        self._handles.add(handle)
        return handle

    async def _run_claimed(self, handle: TaskHandle, work: Work, on_success: OnSuccess | None) -> bool:
        try:
            try:
                result = await work()
            except Exception:
                self._logger.exception("Background job %s failed (scope=%s)", handle.key, handle.scope)
                return False
            if handle.token.cancelled:
                self._logger.info("Dropping result of cancelled job %s (scope=%s)", handle.key, handle.scope)
                return False
            if on_success is not None:
                try:
                    applied = on_success(result)
                    if asyncio.iscoroutine(applied):
                        await applied
                except Exception:
                    self._logger.exception("Applying result of job %s failed (scope=%s)", handle.key, handle.scope)
                    return False
            return True
        finally:
            self._release(handle)

    def _release(self, handle: TaskHandle) -> None:
        marker = (handle.scope, handle.key)
        if self._inflight.get(marker) is handle:
            del self._inflight[marker]
        self._handles.discard(handle)

    async def run_exclusive(
        self,
        key: str,
        work: Work,
        on_success: OnSuccess | None = None,
        *,
        scope: Optional[str] = None,
    ) -> bool:
        """Await ``work`` unless ``key`` is already in flight.

        Returns True only when the job ran, succeeded and its result was
        applied.
        """
        handle = self._claim(key, scope)
        if handle is None:
            return False
        return await self._run_claimed(handle, work, on_success)

    def spawn(
        self,
        key: str,
        work: Work,
        on_success: OnSuccess | None = None,
        *,
        scope: Optional[str] = None,
    ) -> TaskHandle | None:
        handle = self._claim(key, scope)
        if handle is None:
            return None
        handle.task = asyncio.create_task(self._run_claimed(handle, work, on_success))
        # A task cancelled before its first step never reaches the finally block.
        handle.task.add_done_callback(lambda _task, h=handle: self._release(h))
        return handle

    def cancel_scope(self, scope: str) -> int:
        cancelled = 0
        for handle in list(self._handles):
            if handle.scope == scope:
                handle.cancel()
                cancelled += 1
        if cancelled:
            self._logger.info("Cancelled %d background job(s) for session %s", cancelled, scope)
        return cancelled

    def pending(self) -> list[TaskHandle]:
        return [h for h in self._handles if h.task is not None and not h.task.done()]

    async def wait_idle(self) -> None:
        while True:
            tasks = [h.task for h in self.pending() if h.task is not None]
            if not tasks:
                return
            await asyncio.gather(*tasks, return_exceptions=True)

    async def shutdown(self) -> None:
        handles = list(self._handles)
        for handle in handles:
            handle.cancel()
        tasks = [h.task for h in handles if h.task is not None]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
