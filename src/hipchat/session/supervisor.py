"""Keep-alive, liveness and reconnection for a long-lived session."""

from __future__ import annotations

import asyncio
from typing import Protocol

from loguru import logger
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from hipchat.core.errors import AuthError, ConnectionLostError, ReconnectError, TransportError
from hipchat.xmpp import stanzas


class SupervisedSession(Protocol):
    """What the supervisor drives (implemented by ``Client``)."""

    @property
    def closed(self) -> bool: ...

    @property
    def jid(self) -> str: ...

    async def read_loop(self) -> None: ...
    async def establish(self) -> None: ...
    async def send(self, stanza: str) -> None: ...
    def connection_lost(self, exc: BaseException) -> None: ...
    def abort_connection(self) -> None: ...
    async def reconnected(self, attempt: int) -> None: ...
    async def shutdown(self, exc: BaseException | None = None) -> None: ...


class SessionSupervisor:
    """Owns the reader task's failure path plus the keep-alive and liveness timers."""

    def __init__(
        self,
        session: SupervisedSession,
        *,
        keepalive_mode: str = "ping",
        keepalive_interval: float = 120,
        keepalive_room: str = "",
        keepalive_nick: str = "",
        liveness_timeout: float = 300,
        reconnect_delay: float = 5,
        reconnect_max_delay: float = 60,
        reconnect_max_attempts: int = 10,
    ) -> None:
        self._session = session
        self._keepalive_mode = keepalive_mode
        self._keepalive_interval = keepalive_interval
        self._keepalive_room = keepalive_room
        self._keepalive_nick = keepalive_nick
        self._liveness_timeout = liveness_timeout
        self._reconnect_delay = reconnect_delay
        self._reconnect_max_delay = reconnect_max_delay
        self._reconnect_max_attempts = reconnect_max_attempts
        self._activity = asyncio.Event()
        self._rejoin_pending = False
        self.reconnect_count = 0

    def mark_alive(self) -> None:
        """Inbound traffic seen; resets the liveness timer."""
        self._activity.set()

    async def run(self) -> None:
        """Reader task: read until failure, then reconnect; ends on close or give-up."""
        while True:
            try:
                await self._session.read_loop()
                error: BaseException = TransportError("read loop ended", code="eof")
            except asyncio.CancelledError:
                raise
            except TransportError as exc:
                error = exc
            except Exception as exc:
                logger.exception("Read loop crashed: {}", exc)
                error = exc

            if self._session.closed:
                return
            logger.warning("Connection lost: {}", error)
            self._session.connection_lost(
                ConnectionLostError(f"connection lost: {error}", code="connection_lost", original_error=error)
            )
            try:
                await self.reconnect()
            except (ReconnectError, AuthError) as exc:
                logger.error("Session abandoned: {}", exc)
                await self._session.shutdown(exc)
                return

    async def reconnect(self) -> None:
        """Redial and renegotiate with bounded exponential backoff.

        Transport failures are retried up to ``reconnect_max_attempts`` times;
        an AuthError stops immediately. Exhaustion raises ReconnectError.
        """
        self._session.abort_connection()
        logger.info("Reconnecting in {:.1f}s", self._reconnect_delay)
        await asyncio.sleep(self._reconnect_delay)
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._reconnect_max_attempts),
            wait=wait_exponential(multiplier=max(self._reconnect_delay, 0.001), max=self._reconnect_max_delay),
            retry=retry_if_exception_type(TransportError),
            before_sleep=self._log_retry,
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    await self._session.establish()
        except TransportError as exc:
            raise ReconnectError(
                f"reconnect failed after {self._reconnect_max_attempts} attempts: {exc}",
                code="reconnect_exhausted",
                details={"attempts": self._reconnect_max_attempts},
                original_error=exc,
            ) from exc

        self.reconnect_count += 1
        self._rejoin_pending = False
        self.mark_alive()
        logger.info("Reconnected as {} (reconnect #{})", self._session.jid, self.reconnect_count)
        await self._session.reconnected(self.reconnect_count)

    def _log_retry(self, retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        wait = retry_state.next_action.sleep if retry_state.next_action else 0.0
        logger.warning(
            "Reconnect failed (attempt {}): {}, retrying in {:.1f}s",
            retry_state.attempt_number,
            exc,
            wait,
        )

    async def keep_alive(self) -> None:
        """Periodic keep-alive so the server does not drop an idle stream."""
        if self._keepalive_interval <= 0:
            return
        while True:
            await asyncio.sleep(self._keepalive_interval)
            if self._session.closed:
                return
            try:
                await self._session.send(self._keepalive_stanza())
                logger.debug("Keep-alive sent ({})", self._keepalive_mode)
            except TransportError as exc:
                # The read loop sees the same failure and reconnects
                logger.warning("Keep-alive failed: {}", exc)

    def _keepalive_stanza(self) -> str:
        if self._keepalive_mode == "whitespace":
            return stanzas.keepalive()
        if self._keepalive_mode == "rejoin":
            self._rejoin_pending = True
            return stanzas.muc_join(f"{self._keepalive_room}/{self._keepalive_nick}", self._session.jid, 1)
        return stanzas.ping(self._session.jid)

    async def watch_liveness(self) -> None:
        """Force-close the transport after ``liveness_timeout`` seconds without inbound traffic."""
        if self._liveness_timeout <= 0:
            return
        while True:
            self._activity.clear()
            try:
                await asyncio.wait_for(self._activity.wait(), self._liveness_timeout)
            except asyncio.TimeoutError:
                logger.warning("No inbound traffic for {:.0f}s; closing connection", self._liveness_timeout)
                self._session.abort_connection()
                # Timer restarts once the reconnect produces traffic again
                self._activity.clear()
                await self._activity.wait()
                continue
            if self._rejoin_pending:
                self._rejoin_pending = False
                try:
                    await self._session.send(
                        stanzas.muc_leave(f"{self._keepalive_room}/{self._keepalive_nick}", self._session.jid)
                    )
                except TransportError as exc:
                    logger.debug("Keep-alive leave failed: {}", exc)
