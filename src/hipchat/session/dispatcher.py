"""Read loop: classify each top-level element and route it to its consumer."""

from __future__ import annotations

import asyncio
import xml.etree.ElementTree as ET
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from cachetools import TTLCache
from loguru import logger
from slixmpp.jid import JID, InvalidJID

from hipchat.core.constants import (
    ATTACHMENT_BODY,
    EMPTY_BODY,
    NS_CLIENT,
    NS_DISCO_ITEMS,
    NS_MUC_ROOM,
    NS_ROSTER,
    NS_STREAM,
    STAMP_FORMAT,
)
from hipchat.core.errors import QueryError
from hipchat.events import Message, Room, User
from hipchat.formatting.attachments import extract_attachments
from hipchat.session.channel import Channel
from hipchat.session.history import HistoryAggregator
from hipchat.xmpp import decode, stanzas
from hipchat.xmpp.connection import XMPPConnection
from hipchat.xmpp.reader import StartElement

IQ = ("iq", NS_CLIENT)
MESSAGE = ("message", NS_CLIENT)
PRESENCE = ("presence", NS_CLIENT)
STREAM_ERROR = ("error", NS_STREAM)


def parse_stamp(stamp: str, *, now: Callable[[], datetime] | None = None) -> datetime:
    """Delay stamp as aware UTC datetime; receipt time when missing or malformed.

    The stamp is ``YYYY-MM-DDTHH:MM:SSZ`` with an optional fractional-second
    field before the ``Z`` (``19:41:35.316Z``), kept to microsecond precision.
    """
    base, dot, fraction = (stamp or "").partition(".")
    digits = fraction.removesuffix("Z")
    try:
        if dot:
            if not fraction.endswith("Z") or not (digits.isascii() and digits.isdigit()):
                raise ValueError(f"bad fractional seconds in {stamp!r}")
            base += "Z"
        parsed = datetime.strptime(base, STAMP_FORMAT)
    except ValueError:
        return now() if now else datetime.now(timezone.utc)
    if dot:
        parsed = parsed.replace(microsecond=int(digits[:6].ljust(6, "0")))
    return parsed.replace(tzinfo=timezone.utc)


class MentionDirectory:
    """Mention names from the latest roster result, by user JID and by display name."""

    def __init__(self, ttl_seconds: int = 3600) -> None:
        self._names: TTLCache[str, str] = TTLCache(maxsize=10000, ttl=ttl_seconds)

    def update(self, users: list[User]) -> None:
        for user in users:
            if not user.mention_name:
                continue
            if user.id:
                self._names[user.id] = user.mention_name
            if user.name:
                self._names[user.name] = user.mention_name

    def lookup(self, from_jid: str) -> str:
        """Room messages come from ``room@conf/Display Name``; direct ones from the user JID."""
        if not from_jid:
            return ""
        try:
            jid = JID(from_jid)
        except InvalidJID:
            bare, _, resource = from_jid.partition("/")
            return self._names.get(resource) or self._names.get(bare, "")
        if jid.resource and jid.resource in self._names:
            return self._names[jid.resource]
        return self._names.get(jid.bare, "")


class PendingReplies:
    """Futures for IQ requests awaiting a reply, keyed by stanza id."""

    def __init__(self) -> None:
        self._futures: dict[str, asyncio.Future[Any]] = {}

    def expect(self, stanza_id: str) -> asyncio.Future[Any]:
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._futures[stanza_id] = future
        return future

    def discard(self, stanza_id: str) -> None:
        self._futures.pop(stanza_id, None)

    def resolve(self, stanza_id: str, value: Any) -> bool:
        future = self._futures.pop(stanza_id, None)
        if future is None or future.done():
            return False
        future.set_result(value)
        return True

    def reject(self, stanza_id: str, exc: BaseException) -> bool:
        future = self._futures.pop(stanza_id, None)
        if future is None or future.done():
            return False
        future.set_exception(exc)
        return True

    def fail_all(self, exc: BaseException) -> None:
        futures, self._futures = self._futures, {}
        for future in futures.values():
            if not future.done():
                future.set_exception(exc)

    def __contains__(self, stanza_id: str) -> bool:
        return stanza_id in self._futures

    def __len__(self) -> int:
        return len(self._futures)


def to_message(incoming: decode.IncomingMessage, mention_name: str = "", *, stamp: str | None = None) -> Message:
    """Normalize a decoded message; ``@attachment`` bodies become empty."""
    body = incoming.body
    if body == ATTACHMENT_BODY:
        body = ""
    return Message(
        from_jid=incoming.from_jid,
        to_jid=incoming.to_jid,
        body=body,
        message_id=incoming.message_id,
        timestamp=parse_stamp(incoming.delay_stamp if stamp is None else stamp),
        mention_name=mention_name,
        attachments=extract_attachments(incoming.rich_body),
    )


class EventDispatcher:
    """Single reader over one connection. Returns only by raising the read failure."""

    def __init__(
        self,
        connection: XMPPConnection,
        *,
        messages: Channel[Message],
        invitations: Channel[list[Room]],
        history: HistoryAggregator,
        replies: PendingReplies,
        mentions: MentionDirectory,
        on_activity: Callable[[], None] | None = None,
    ) -> None:
        self._conn = connection
        self._messages = messages
        self._invitations = invitations
        self._history = history
        self._replies = replies
        self._mentions = mentions
        self._on_activity = on_activity

    async def run(self) -> None:
        while True:
            start = await self._conn.next_element()
            if self._on_activity:
                self._on_activity()
            elem = await self._conn.element(start)
            try:
                await self.dispatch(start, elem)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.exception("Failed to handle <{}> ({}): {}", start.name, start.namespace, exc)

    async def dispatch(self, start: StartElement, elem: ET.Element) -> None:
        if start.key == IQ:
            await self._handle_iq(start, elem)
        elif start.key == MESSAGE:
            await self._handle_message(elem)
        elif start.key == PRESENCE:
            logger.trace("Presence from {} type={}", start.get("from"), start.get("type", "available"))
        elif start.key == STREAM_ERROR:
            logger.warning("Stream error from server: {}", decode.error_condition(elem) or "unknown")
        else:
            logger.debug("Ignoring <{}> ({}) attrs={}", start.name, start.namespace, start.attrs)

    async def _handle_iq(self, start: StartElement, elem: ET.Element) -> None:
        iq_type = start.get("type")
        stanza_id = start.get("id")

        if iq_type == "get" and decode.is_ping(elem):
            await self._conn.send(stanzas.pong(start.get("from"), stanza_id))
            return

        if iq_type == "error":
            condition = decode.error_condition(elem) or "undefined-condition"
            error = QueryError(f"request {stanza_id} failed: {condition}", code=condition, details={"id": stanza_id})
            if self._history.owns(stanza_id):
                self._history.fail(error)
            elif not self._replies.reject(stanza_id, error):
                logger.debug("Unmatched IQ error id={} condition={}", stanza_id, condition)
            return

        if iq_type != "result":
            logger.debug("Ignoring IQ type={} id={}", iq_type, stanza_id)
            return

        if decode.has_fin(elem):
            # Archive completion reported on the query's own IQ result
            self._history.finish()
            self._replies.resolve(stanza_id, None)
            return

        query = decode.decode_query(elem)
        if query is None:
            if not self._replies.resolve(stanza_id, None):
                logger.trace("IQ result id={} with no waiter", stanza_id)
            return

        if query.namespace in (NS_DISCO_ITEMS, NS_MUC_ROOM):
            result: list[Room] | list[User] = [
                Room(id=item.jid, name=item.name, owner=item.owner, topic=item.topic) for item in query.items
            ]
        elif query.namespace == NS_ROSTER:
            result = [User(id=item.jid, name=item.name, mention_name=item.mention_name) for item in query.items]
            self._mentions.update(result)
        else:
            logger.debug("IQ result id={} with unhandled query {}", stanza_id, query.namespace)
            return

        if not self._replies.resolve(stanza_id, result):
            logger.debug("Dropping {} result id={}: no request waiting", query.namespace, stanza_id)

    async def _handle_message(self, elem: ET.Element) -> None:
        incoming = decode.decode_message(elem)

        if incoming.fin:
            self._history.finish()
            return

        if incoming.invite is not None:
            room = Room(id=incoming.invite.room_jid, topic=incoming.invite.reason)
            logger.info("Invited to {}", room.id)
            await self._invitations.put([room])
            return

        if incoming.result is not None:
            forwarded = incoming.result
            inner = forwarded.message
            self._history.add(
                to_message(inner, self._mentions.lookup(inner.from_jid), stamp=forwarded.delay_stamp or None)
            )
            return

        if incoming.body and incoming.body != EMPTY_BODY:
            await self._messages.put(to_message(incoming, self._mentions.lookup(incoming.from_jid)))
            return

        logger.trace("Ignoring message from {} with no body", incoming.from_jid)
