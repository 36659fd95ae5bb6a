"""A bounded queue of background tasks served by a fixed set of workers."""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Optional

ErrorHandler = Callable[[BaseException], Any]


class AsyncTaskKeeper:
    """Runs objects with an async ``process()`` method in the background.

    Each task gets ``timeout`` seconds; failures and timeouts go to the
    error handler instead of the caller.
    """

    def __init__(
        self,
        queue_size: int = 1000,
        worker_size: int = 5,
        timeout: float = 20.0,
        error_handler: Optional[ErrorHandler] = None,
    ) -> None:
        if queue_size <= 0:
            raise ValueError("queue_size must be positive")
        if worker_size <= 0:
            raise ValueError("worker_size must be positive")
        if timeout <= 0:
            raise ValueError("timeout must be positive")
        self.queue_size = queue_size
        self.worker_size = worker_size
        self.timeout = timeout
        self._error_handler = error_handler
        self._queue: asyncio.Queue[Any] | None = None
        self._workers: list[asyncio.Task[None]] = []
        self._stopped = False

    def start(self) -> None:
        """Start the workers on the running event loop; idempotent."""
        if self._stopped:
            raise RuntimeError("task keeper is stopped")
        if self._workers:
            return
        asyncio.get_running_loop()
        self._queue = asyncio.Queue(maxsize=self.queue_size)
        self._workers = [asyncio.create_task(self._work()) for _ in range(self.worker_size)]

    async def add_task(self, task: Any) -> None:
        """Queue a task, waiting up to ``timeout`` seconds for room."""
        if not callable(getattr(task, "process", None)):
            raise TypeError("task must have a process() method")
        self.start()
        assert self._queue is not None
        try:
            await asyncio.wait_for(self._queue.put(task), self.timeout)
        except asyncio.TimeoutError:
            raise TimeoutError("task queue is full") from None

    async def join(self) -> None:
        """Wait until every queued task has been handled."""
        if self._queue is not None:
            await self._queue.join()

    async def stop(self) -> None:
        """Cancel the workers; no task can be added afterwards."""
        self._stopped = True
        workers, self._workers = self._workers, []
        for worker in workers:
            worker.cancel()
        await asyncio.gather(*workers, return_exceptions=True)

    def _report(self, exc: BaseException) -> None:
        if self._error_handler is not None:
            self._error_handler(exc)

    async def _work(self) -> None:
        assert self._queue is not None
        queue = self._queue
        while True:
            task = await queue.get()
            try:
                await asyncio.wait_for(task.process(), self.timeout)
            except asyncio.TimeoutError:
                self._report(TimeoutError(f"task timed out after {self.timeout}s"))
            except Exception as exc:
                self._report(exc)
            finally:
                queue.task_done()