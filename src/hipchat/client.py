"""HipChat client: connection lifecycle plus the application-facing operations."""

from __future__ import annotations

import asyncio
import contextlib
import ssl
from collections.abc import Awaitable, Callable, Sequence
from datetime import datetime
from typing import Any

from loguru import logger

from hipchat.config import Config
from hipchat.core.constants import NS_DISCO_ITEMS, NS_ROSTER, RECONNECT_BACKLOG
from hipchat.core.errors import ConnectionClosedError, HipChatError
from hipchat.events import Attachment, Message, Reconnected, Room, User
from hipchat.session.channel import Channel
from hipchat.session.dispatcher import EventDispatcher, MentionDirectory, PendingReplies
from hipchat.session.history import HistoryAggregator
from hipchat.session.negotiator import AuthNegotiator, SessionIdentity
from hipchat.session.supervisor import SessionSupervisor
from hipchat.xmpp import stanzas
from hipchat.xmpp.connection import XMPPConnection
from hipchat.xmpp.transport import make_ssl_context

Dialer = Callable[[str, int, float], Awaitable[XMPPConnection]]


async def _dial(host: str, port: int, timeout: float) -> XMPPConnection:
    return await XMPPConnection.dial(host, port, timeout=timeout)


class Client:
    """A single always-on chat participant.

    ``connect()`` dials, runs the handshake and starts the reader, keep-alive
    and liveness tasks. Live messages arrive on ``messages``, invitations on
    ``invitations`` and reconnect notices on ``reconnects``; ``rooms()``,
    ``users()`` and ``load_history()`` wait for their correlated reply.

    Sends run on the caller's task and are not serialized against each other;
    callers issuing sends from several tasks must not rely on ordering between
    them.
    """

    def __init__(
        self,
        config: Config,
        *,
        dialer: Dialer | None = None,
        ssl_context: ssl.SSLContext | None = None,
    ) -> None:
        self._config = config
        self.identity = SessionIdentity(
            username=config.username,
            password=config.password,
            resource=config.resource,
            host=config.host,
        )
        self._dialer = dialer or _dial
        self._ssl_context = ssl_context or make_ssl_context(config.tls_verify)

        self.messages: Channel[Message] = Channel(config.message_queue_size, name="messages")
        self.invitations: Channel[list[Room]] = Channel(config.room_queue_size, name="invitations")
        self.reconnects: Channel[Reconnected] = Channel(RECONNECT_BACKLOG, name="reconnects")

        self._history = HistoryAggregator()
        self._replies = PendingReplies()
        self._mentions = MentionDirectory(config.mention_cache_ttl_seconds)
        self._connection: XMPPConnection | None = None
        self._dispatcher: EventDispatcher | None = None
        self._status: str | None = None
        self._joined: dict[str, str] = {}  # room JID -> nick
        self._tasks: set[asyncio.Task[Any]] = set()
        self._closed = False
        self.bound_jid = ""
        self.error: BaseException | None = None

        self._supervisor = SessionSupervisor(
            self,
            keepalive_mode=config.keepalive_mode,
            keepalive_interval=config.keepalive_interval,
            keepalive_room=config.keepalive_room,
            keepalive_nick=config.keepalive_nick,
            liveness_timeout=config.liveness_timeout,
            reconnect_delay=config.reconnect_delay,
            reconnect_max_delay=config.reconnect_max_delay,
            reconnect_max_attempts=config.reconnect_max_attempts,
        )

    @property
    def jid(self) -> str:
        return self.identity.jid

    @property
    def full_jid(self) -> str:
        return f"{self.identity.jid}/{self.identity.resource}"

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def connected(self) -> bool:
        return self._connection is not None and not self._connection.closed

    @property
    def supervisor(self) -> SessionSupervisor:
        return self._supervisor

    # -- lifecycle -----------------------------------------------------------

    async def connect(self) -> None:
        """Dial and authenticate; errors from this first attempt propagate."""
        if self._closed:
            raise ConnectionClosedError("client is closed", code="client_closed")
        await self.establish(restore=False)
        self._spawn(self._supervisor.run(), "reader")
        self._spawn(self._supervisor.keep_alive(), "keepalive")
        self._spawn(self._supervisor.watch_liveness(), "liveness")

    def _spawn(self, coro: Awaitable[Any], name: str) -> None:
        task = asyncio.ensure_future(coro)
        task.set_name(f"hipchat-{name}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def establish(self, *, restore: bool = True) -> None:
        """Dial, negotiate and install a new connection (used for connect and reconnect)."""
        conn = await self._dialer(self._config.host, self._config.port, self._config.connect_timeout)
        negotiator = AuthNegotiator(
            conn,
            self.identity,
            auth_mode=self._config.auth_mode,
            ssl_context=self._ssl_context,
        )
        try:
            await negotiator.negotiate()
            self.bound_jid = negotiator.bound_jid
            self._install(conn)
            if restore:
                await self._restore()
        except BaseException:
            conn.close()
            raise

    def _install(self, conn: XMPPConnection) -> None:
        self._connection = conn
        self._dispatcher = EventDispatcher(
            conn,
            messages=self.messages,
            invitations=self.invitations,
            history=self._history,
            replies=self._replies,
            mentions=self._mentions,
            on_activity=self._supervisor.mark_alive,
        )

    async def _restore(self) -> None:
        if self._status is not None:
            await self.send(stanzas.presence(self.jid, self._status))
        if self._config.rejoin_rooms:
            for room_jid, nick in self._joined.items():
                await self.send(stanzas.muc_join(f"{room_jid}/{nick}", self.jid, 0))

    async def read_loop(self) -> None:
        if self._dispatcher is None:
            raise ConnectionClosedError("not connected", code="not_connected")
        await self._dispatcher.run()

    def connection_lost(self, exc: BaseException) -> None:
        """Fail every reply that can no longer arrive on this connection."""
        self._replies.fail_all(exc)
        self._history.fail(exc)

    def abort_connection(self) -> None:
        if self._connection is not None:
            self._connection.close()

    async def reconnected(self, attempt: int) -> None:
        self.reconnects.put_latest(Reconnected(attempt=attempt, jid=self.jid))

    async def shutdown(self, exc: BaseException | None = None) -> None:
        """Close the connection and every channel; waiters see ConnectionClosedError."""
        if self._closed:
            return
        self._closed = True
        self.error = exc
        closed = ConnectionClosedError("client closed", code="client_closed", original_error=exc)
        self._replies.fail_all(closed)
        self._history.fail(closed)
        self.abort_connection()
        for channel in (self.messages, self.invitations, self.reconnects):
            channel.close(exc)
        current = asyncio.current_task()
        for task in list(self._tasks):
            if task is not current:
                task.cancel()

    async def close(self) -> None:
        logger.info("Closing XMPP connection")
        await self.shutdown()
        tasks = [t for t in self._tasks if t is not asyncio.current_task()]
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def __aenter__(self) -> Client:
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # -- operations ----------------------------------------------------------

    async def send(self, stanza: str) -> None:
        if self._closed:
            raise ConnectionClosedError("client is closed", code="client_closed")
        if self._connection is None:
            raise ConnectionClosedError("not connected", code="not_connected")
        await self._connection.send(stanza)

    async def status(self, show: str) -> None:
        """Presence: 'chat', 'away', 'xa', 'dnd'. Restored after reconnect."""
        self._status = show
        await self.send(stanzas.presence(self.jid, show))

    async def join(self, room_jid: str, nick: str, history: int = 0) -> None:
        """Enter ``room_jid`` as ``nick``, asking for up to ``history`` past messages."""
        await self.send(stanzas.muc_join(f"{room_jid}/{nick}", self.jid, history))
        self._joined[room_jid] = nick

    async def leave(self, room_jid: str, nick: str) -> None:
        await self.send(stanzas.muc_leave(f"{room_jid}/{nick}", self.jid))
        self._joined.pop(room_jid, None)

    async def say(self, room_jid: str, body: str, attachments: Sequence[Attachment] | None = None) -> None:
        await self.send(stanzas.groupchat(self.full_jid, room_jid, body, attachments))

    async def _request(self, build: Callable[[str], str]) -> Any:
        stanza_id = stanzas.new_id()
        future = self._replies.expect(stanza_id)
        try:
            await self.send(build(stanza_id))
        except HipChatError:
            self._replies.discard(stanza_id)
            raise
        return await future

    async def rooms(self) -> list[Room]:
        """Room directory from the conference service."""
        return await self._request(
            lambda sid: stanzas.query(self.jid, self._config.conference_host, NS_DISCO_ITEMS, stanza_id=sid)
        )

    async def users(self) -> list[User]:
        """Roster; also refreshes the mention names attached to incoming messages."""
        return await self._request(lambda sid: stanzas.query(self.jid, self._config.host, NS_ROSTER, stanza_id=sid))

    async def ping(self) -> None:
        """Round-trip an XMPP ping; raises QueryError if the server answers with an error."""
        await self._request(lambda sid: stanzas.ping(self.jid, stanza_id=sid))

    async def load_history(
        self,
        with_jid: str,
        start: datetime | None = None,
        limit: int | None = None,
    ) -> list[Message]:
        """One archive page for ``with_jid``; concurrent calls run one after another."""
        page_size = self._config.history_limit if limit is None else limit
        stanza_id = stanzas.new_id()

        async def send_query() -> None:
            await self.send(stanzas.history_query(with_jid, start, page_size, stanza_id=stanza_id))

        return await self._history.fetch(send_query, stanza_id)
