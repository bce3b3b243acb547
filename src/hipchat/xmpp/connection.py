"""One XMPP connection: a transport and the decode cursor reading from it."""

from __future__ import annotations

import ssl
import xml.etree.ElementTree as ET
from typing import Protocol

from loguru import logger

from hipchat.core.errors import StreamClosedError
from hipchat.xmpp.reader import StartElement, StreamReader
from hipchat.xmpp.transport import Transport


class ByteTransport(Protocol):
    """What a connection needs from its transport (``Transport`` or a test double)."""

    @property
    def closed(self) -> bool: ...

    async def read(self) -> bytes: ...
    async def write(self, data: str) -> None: ...
    async def start_tls(self, ssl_context: ssl.SSLContext, server_hostname: str | None = None) -> None: ...
    def close(self) -> None: ...


class XMPPConnection:
    """Owns the transport and its decode cursor; both are replaced together, never piecemeal."""

    def __init__(self, transport: ByteTransport) -> None:
        self._transport = transport
        self._reader = StreamReader()

    @classmethod
    async def dial(cls, host: str, port: int, *, timeout: float = 30.0) -> XMPPConnection:
        transport = await Transport.open(host, port, timeout=timeout)
        return cls(transport)

    @property
    def closed(self) -> bool:
        return self._transport.closed

    async def _fill(self) -> None:
        data = await self._transport.read()
        if not data:
            raise StreamClosedError("connection closed by peer", code="eof")
        self._reader.feed(data)

    async def next_element(self) -> StartElement:
        """Block until the next stream header or top-level stanza start."""
        while True:
            start = self._reader.next_start()
            if start is not None:
                return start
            await self._fill()

    async def element(self, start: StartElement) -> ET.Element:
        """Complete and return the element opened by ``start``."""
        while not self._reader.is_complete(start):
            await self._fill()
        assert start.element is not None
        return start.element

    async def send(self, stanza: str) -> None:
        logger.trace("SEND {} chars", len(stanza))
        await self._transport.write(stanza)

    async def upgrade_to_tls(self, ssl_context: ssl.SSLContext, server_hostname: str) -> None:
        """Encrypt the socket and discard the plaintext cursor with anything it buffered."""
        await self._transport.start_tls(ssl_context, server_hostname)
        self._reader = StreamReader()

    def restart_stream(self) -> None:
        """Fresh cursor for the new XML document the server opens after a stream restart."""
        self._reader = StreamReader()

    def close(self) -> None:
        self._transport.close()
