"""Sequential FIFO write queue.

Every physical write goes through one WriteQueue so at most one write is in
flight at a time and writes start in submission order. Operations are not
cancellable: once submitted, an operation runs to completion even if the
submitter stops awaiting it.
"""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import Awaitable, Callable
from typing import Any

from statevault.observability.logging import get_logger

log = get_logger(__name__)


class WriteQueue:
    """FIFO queue draining one async operation at a time.

    Example:
        queue = WriteQueue()
        receipt = await queue.submit(lambda: engine._perform_save(key, data))
    """

    def __init__(self) -> None:
        self._pending: deque[tuple[Callable[[], Awaitable[Any]], asyncio.Future[Any]]] = (
            deque()
        )
        self._drain_task: asyncio.Task[None] | None = None
        self._in_flight = False
        self._completed = 0

    @property
    def pending(self) -> int:
        """Number of operations waiting to start."""
        return len(self._pending)

    @property
    def is_busy(self) -> bool:
        """True while an operation is executing."""
        return self._in_flight

    @property
    def completed(self) -> int:
        """Number of operations finished since creation."""
        return self._completed

    async def submit[T](self, operation: Callable[[], Awaitable[T]]) -> T:
        """Enqueue an operation and wait for its result.

        Args:
            operation: Zero-argument coroutine factory performing the write.

        Returns:
            Whatever the operation returns.

        Raises:
            Exception: Whatever the operation raises.
        """
        loop = asyncio.get_running_loop()
        future: asyncio.Future[T] = loop.create_future()
        self._pending.append((operation, future))
        if self._drain_task is None or self._drain_task.done():
            self._drain_task = loop.create_task(self._drain())
        return await asyncio.shield(future)

    async def join(self) -> None:
        """Wait until every queued operation has finished."""
        while self._drain_task is not None and not self._drain_task.done():
            await asyncio.shield(self._drain_task)

    async def _drain(self) -> None:
        while self._pending:
            operation, future = self._pending.popleft()
            self._in_flight = True
            try:
                result = await operation()
            except Exception as e:
                if not future.done():
                    future.set_exception(e)
                else:
                    log.warning("storage.queue.result_dropped", error=str(e))
            else:
                if not future.done():
                    future.set_result(result)
            finally:
                self._in_flight = False
                self._completed += 1
