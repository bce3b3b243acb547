"""Event records handed to the application."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime


@dataclass(frozen=True)
class Attachment:
    """Inline image reference carried in a rich-text body."""

    image_url: str
    image_filename: str
    thumbnail_size: str
    thumbnail_url: str


@dataclass
class Message:
    """Normalized chat message (live or from the archive)."""

    from_jid: str
    to_jid: str
    body: str
    message_id: str
    timestamp: datetime
    mention_name: str = ""
    attachments: list[Attachment] = field(default_factory=list)


@dataclass(frozen=True)
class Room:
    """Group-chat room from a directory query or an invitation."""

    id: str
    name: str = ""
    owner: str = ""
    topic: str = ""


@dataclass(frozen=True)
class User:
    """Roster entry."""

    id: str
    name: str = ""
    mention_name: str = ""


@dataclass(frozen=True)
class Reconnected:
    """Session was re-established after a connection failure."""

    attempt: int
    jid: str
