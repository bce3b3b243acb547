"""Archive (MAM) page accumulation."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

from loguru import logger

from hipchat.events import Message


class HistoryAggregator:
    """Buffers archive results for the one fetch in flight.

    The single-slot lock is taken before the query goes out and is held until
    the end-of-archive marker resolves the page, so a second fetch cannot
    interleave its results with the first (results carry no correlation).
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._buffer: list[Message] = []
        self._waiter: asyncio.Future[list[Message]] | None = None
        self._query_id = ""

    @property
    def in_flight(self) -> bool:
        return self._waiter is not None

    @property
    def buffered(self) -> int:
        return len(self._buffer)

    def owns(self, stanza_id: str) -> bool:
        """True when ``stanza_id`` is the archive query currently in flight."""
        return bool(stanza_id) and self._waiter is not None and stanza_id == self._query_id

    async def fetch(self, send_query: Callable[[], Awaitable[None]], query_id: str = "") -> list[Message]:
        """Issue the query via ``send_query`` and wait for the complete page."""
        async with self._lock:
            self._buffer = []
            self._query_id = query_id
            self._waiter = asyncio.get_running_loop().create_future()
            try:
                await send_query()
                return await self._waiter
            finally:
                self._waiter = None
                self._query_id = ""
                self._buffer = []

    def add(self, message: Message) -> None:
        if self._waiter is None:
            logger.debug("Archive result with no fetch in flight; dropped (id={})", message.message_id)
            return
        self._buffer.append(message)

    def finish(self) -> None:
        """End-of-archive marker: hand the page to the waiting fetch."""
        waiter = self._waiter
        if waiter is None or waiter.done():
            logger.debug("End-of-archive marker with no fetch in flight")
            return
        page, self._buffer = self._buffer, []
        logger.debug("Archive page complete: {} messages", len(page))
        waiter.set_result(page)

    def fail(self, exc: BaseException) -> None:
        """Connection died: the outstanding fetch raises ``exc``."""
        self._buffer = []
        waiter = self._waiter
        if waiter is not None and not waiter.done():
            waiter.set_exception(exc)
