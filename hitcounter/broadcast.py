"""Fan-out of messages to every connected websocket client."""

from __future__ import annotations

import asyncio
import contextlib
from typing import Any, Callable, Optional

from aiohttp import WSMsgType

ErrorHandler = Callable[[BaseException], Any]


def _payload(message: Any) -> bytes:
    get_message = getattr(message, "get_message", None)
    if callable(get_message):
        message = get_message()
    if isinstance(message, str):
        return message.encode("utf-8")
    if isinstance(message, (bytes, bytearray, memoryview)):
        return bytes(message)
    raise TypeError(f"cannot broadcast {type(message).__name__}")


class Broadcaster:
    """Keeps websocket clients and sends every broadcast message to all of them."""

    def __init__(
        self,
        max_read_limit: int = 1024,
        max_pool_length: int = 500,
        error_handler: Optional[ErrorHandler] = None,
    ) -> None:
        if max_read_limit <= 0:
            raise ValueError("max_read_limit must be positive")
        if max_pool_length <= 0:
            raise ValueError("max_pool_length must be positive")
        self.max_read_limit = max_read_limit
        self.max_pool_length = max_pool_length
        self._error_handler = error_handler
        self._clients: set[Any] = set()
        self._queue: asyncio.Queue[bytes] | None = None
        self._dispatcher: asyncio.Task[None] | None = None

    def __len__(self) -> int:
        return len(self._clients)

    async def register(self, ws: Any) -> None:
        """Serve a connected websocket until it closes, then forget it.

        Incoming messages are read and discarded; one longer than
        ``max_read_limit`` closes the connection.
        """
        self._clients.add(ws)
        try:
            async for message in ws:
                kind = getattr(message, "type", None)
                data = getattr(message, "data", None)
                if kind == WSMsgType.ERROR:
                    if isinstance(data, BaseException):
                        self._report(data)
                    break
                if isinstance(data, (str, bytes)) and len(data) > self.max_read_limit:
                    self._report(ValueError("websocket message exceeds read limit"))
                    await ws.close()
                    break
        finally:
            self.unregister(ws)

    def unregister(self, ws: Any) -> bool:
        """Forget a client; returns whether it was registered."""
        if ws in self._clients:
            self._clients.discard(ws)
            return True
        return False

    def broadcast(self, message: Any) -> bool:
        """Queue a message for every client; False when the pool is full."""
        payload = _payload(message)
        queue = self._ensure_dispatcher()
        try:
            queue.put_nowait(payload)
        except asyncio.QueueFull:
            self._report(OverflowError("broadcast message pool is full"))
            return False
        return True

    async def close(self) -> None:
        """Stop dispatching and close every client."""
        dispatcher, self._dispatcher = self._dispatcher, None
        self._queue = None
        if dispatcher is not None:
            dispatcher.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await dispatcher
        clients = list(self._clients)
        self._clients.clear()
        for ws in clients:
            try:
                await ws.close()
            except Exception as exc:
                self._report(exc)

    def _ensure_dispatcher(self) -> asyncio.Queue[bytes]:
        asyncio.get_running_loop()
        if self._queue is None:
            self._queue = asyncio.Queue(maxsize=self.max_pool_length)
        if self._dispatcher is None or self._dispatcher.done():
            self._dispatcher = asyncio.create_task(self._dispatch(self._queue))
        return self._queue

    def _report(self, exc: BaseException) -> None:
        if self._error_handler is not None:
            self._error_handler(exc)

    async def _dispatch(self, queue: asyncio.Queue[bytes]) -> None:
        while True:
            payload = await queue.get()
            text = payload.decode("utf-8", errors="replace")
            for ws in list(self._clients):
                if getattr(ws, "closed", False):
                    self._clients.discard(ws)
                    continue
                try:
                    await ws.send_str(text)
                except Exception as exc:
                    self._clients.discard(ws)
                    self._report(exc)
            queue.task_done()