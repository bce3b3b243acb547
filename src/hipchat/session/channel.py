"""Closable event channel between the read loop and the application."""

from __future__ import annotations

import asyncio
from typing import Generic, TypeVar

from loguru import logger

from hipchat.core.errors import ConnectionClosedError

T = TypeVar("T")

_CLOSED = object()


class Channel(Generic[T]):
    """asyncio.Queue with an explicit close.

    ``put`` blocks while the channel is full. After ``close`` the remaining
    items can still be drained; then ``get`` raises ConnectionClosedError and
    ``async for`` stops, so readers never block forever on a dead client.
    """

    def __init__(self, maxsize: int = 0, *, name: str = "channel") -> None:
        self._queue: asyncio.Queue[object] = asyncio.Queue(maxsize)
        self._name = name
        self._closed = False
        self._reason: BaseException | None = None

    @property
    def closed(self) -> bool:
        return self._closed

    async def put(self, item: T) -> None:
        if self._closed:
            raise ConnectionClosedError(f"{self._name} is closed", code="channel_closed")
        await self._queue.put(item)

    def put_nowait(self, item: T) -> None:
        if self._closed:
            raise ConnectionClosedError(f"{self._name} is closed", code="channel_closed")
        self._queue.put_nowait(item)

    def put_latest(self, item: T) -> None:
        """Put without blocking; a full channel drops its oldest item first."""
        if self._closed:
            raise ConnectionClosedError(f"{self._name} is closed", code="channel_closed")
        if self._queue.full():
            dropped = self._queue.get_nowait()
            logger.debug("{} full; dropped oldest item {!r}", self._name, dropped)
        self._queue.put_nowait(item)

    async def get(self) -> T:
        if self._closed and self._queue.empty():
            raise self._closed_error()
        item = await self._queue.get()
        if item is _CLOSED:
            # Leave the marker for the next waiter
            self._queue.put_nowait(_CLOSED)
            raise self._closed_error()
        return item  # type: ignore[return-value]

    def close(self, reason: BaseException | None = None) -> None:
        """Stop accepting items and wake every waiting reader. Idempotent."""
        if self._closed:
            return
        self._closed = True
        self._reason = reason
        # A full queue has no waiting readers; they see the flag once drained
        if not self._queue.full():
            self._queue.put_nowait(_CLOSED)

    def _closed_error(self) -> ConnectionClosedError:
        return ConnectionClosedError(
            f"{self._name} is closed",
            code="channel_closed",
            original_error=self._reason,
        )

    def __aiter__(self) -> Channel[T]:
        return self

    async def __anext__(self) -> T:
        try:
            return await self.get()
        except ConnectionClosedError:
            raise StopAsyncIteration from None
