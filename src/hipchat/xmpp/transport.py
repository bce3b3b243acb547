"""TCP transport with in-place TLS upgrade."""

from __future__ import annotations

import asyncio
import ssl

from loguru import logger

from hipchat.core.errors import TransportError

_READ_SIZE = 65536


def make_ssl_context(verify: bool) -> ssl.SSLContext:
    """TLS policy for STARTTLS. The service default skips certificate verification."""
    context = ssl.create_default_context()
    if not verify:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    return context


class Transport:
    """Duplex byte stream to the server (asyncio streams)."""

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter, host: str) -> None:
        self._reader = reader
        self._writer = writer
        self._host = host
        self._closed = False

    @classmethod
    async def open(cls, host: str, port: int, *, timeout: float = 30.0) -> Transport:
        """Dial ``host:port``; failures raise TransportError."""
        try:
            reader, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout)
        except (OSError, asyncio.TimeoutError) as exc:
            raise TransportError(
                f"could not connect to {host}:{port}: {exc}",
                code="dial_failed",
                details={"host": host, "port": port},
                original_error=exc,
            ) from exc
        logger.debug("Connected to {}:{}", host, port)
        return cls(reader, writer, host)

    @property
    def closed(self) -> bool:
        return self._closed

    async def read(self) -> bytes:
        """Next chunk of bytes; empty at EOF."""
        try:
            return await self._reader.read(_READ_SIZE)
        except (OSError, ssl.SSLError) as exc:
            raise TransportError(f"read failed: {exc}", code="read_failed", original_error=exc) from exc

    async def write(self, data: str) -> None:
        if self._closed:
            raise TransportError("write on closed transport", code="closed")
        try:
            self._writer.write(data.encode("utf-8"))
            await self._writer.drain()
        except (OSError, ssl.SSLError) as exc:
            raise TransportError(f"write failed: {exc}", code="write_failed", original_error=exc) from exc

    async def start_tls(self, ssl_context: ssl.SSLContext, server_hostname: str | None = None) -> None:
        """Wrap the existing socket in TLS; the same reader continues with decrypted bytes."""
        try:
            await self._writer.start_tls(ssl_context, server_hostname=server_hostname or self._host)
        except (OSError, ssl.SSLError) as exc:
            raise TransportError(f"TLS upgrade failed: {exc}", code="tls_failed", original_error=exc) from exc
        logger.debug("TLS established with {}", self._host)

    def close(self) -> None:
        """Close the socket. Idempotent; a pending read then sees EOF."""
        if self._closed:
            return
        self._closed = True
        self._writer.close()
