"""Asyncio client for the HipChat XMPP service."""

from hipchat.client import Client
from hipchat.config import Config, load_config_with_env
from hipchat.core.errors import (
    AuthError,
    ConfigurationError,
    ConnectionClosedError,
    ConnectionLostError,
    HipChatError,
    ProtocolError,
    QueryError,
    ReconnectError,
    StreamClosedError,
    TransportError,
)
from hipchat.events import Attachment, Message, Reconnected, Room, User

__version__ = "0.1.0"

__all__ = [
    "Attachment",
    "AuthError",
    "Client",
    "Config",
    "ConfigurationError",
    "ConnectionClosedError",
    "ConnectionLostError",
    "HipChatError",
    "Message",
    "ProtocolError",
    "QueryError",
    "ReconnectError",
    "Reconnected",
    "Room",
    "StreamClosedError",
    "TransportError",
    "User",
    "__version__",
    "load_config_with_env",
]
