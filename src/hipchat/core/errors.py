"""HipChat client exceptions."""

from __future__ import annotations


class HipChatError(Exception):
    """Base for client errors."""

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        details: dict[str, object] | None = None,
        original_error: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.details = details or {}
        self.original_error = original_error


class ConfigurationError(HipChatError):
    """Config validation or load failure."""


class TransportError(HipChatError):
    """Dial, read or write failure on the socket."""


class ProtocolError(TransportError):
    """Malformed XML or an element the stream reader cannot name."""


class StreamClosedError(TransportError):
    """Server closed the XML stream or the socket reached EOF."""


class AuthError(HipChatError):
    """Server rejected the credentials (SASL failure or IQ error)."""


class QueryError(HipChatError):
    """Server answered a request with an IQ error."""


class ConnectionClosedError(HipChatError):
    """Client is closed; no further results will be delivered."""


class ConnectionLostError(ConnectionClosedError):
    """Connection died while a reply was outstanding."""


class ReconnectError(HipChatError):
    """Reconnection gave up after the configured number of attempts."""
