"""Incremental stream reader: the decode cursor over one XML stream.

Bytes are fed as they arrive; ``next_start`` hands out the stream header and
each top-level stanza as soon as its start tag is parsed. The stanza's body is
only available once ``is_complete`` reports its end tag has been seen, so
callers that need the body keep feeding until then.
"""

from __future__ import annotations

import xml.etree.ElementTree as ET
from collections import deque
from dataclasses import dataclass, field

from hipchat.core.errors import ProtocolError, StreamClosedError


def split_tag(tag: str) -> tuple[str, str]:
    """Split ``{namespace}local`` into ``(local, namespace)``."""
    if tag.startswith("{"):
        namespace, _, local = tag[1:].partition("}")
        return local, namespace
    return tag, ""


@dataclass(frozen=True)
class StartElement:
    """Start tag of a top-level element: local name, namespace, local-name attributes."""

    name: str
    namespace: str
    attrs: dict[str, str] = field(default_factory=dict)
    element: ET.Element | None = field(default=None, repr=False, compare=False)

    @property
    def key(self) -> tuple[str, str]:
        return self.name, self.namespace

    def get(self, attr: str, default: str = "") -> str:
        return self.attrs.get(attr, default)


class StreamReader:
    """Pull parser wrapper tracking depth within one ``<stream:stream>`` document."""

    def __init__(self) -> None:
        self._parser = ET.XMLPullParser(events=("start", "end"))
        self._events: deque[tuple[str, ET.Element]] = deque()
        self._depth = 0
        self._root: ET.Element | None = None
        self._current: ET.Element | None = None
        self._complete: ET.Element | None = None
        self._closed = False

    def feed(self, data: bytes) -> None:
        """Feed raw bytes; malformed XML raises ProtocolError."""
        try:
            self._parser.feed(data)
            self._events.extend(self._parser.read_events())
        except ET.ParseError as exc:
            raise ProtocolError(f"malformed XML: {exc}", code="parse_error", original_error=exc) from exc

    def next_start(self) -> StartElement | None:
        """Next header or top-level start, or None when more bytes are needed."""
        while self._events:
            kind, elem = self._advance()
            if kind == "start" and self._depth <= 2:
                return self._start_of(elem)
        return None

    def is_complete(self, start: StartElement) -> bool:
        """Consume events up to the end tag of ``start``; True once it is closed."""
        target = start.element
        if target is None or target is not self._current:
            # Stream header, or a stanza whose end tag was already consumed
            return True
        while self._events:
            self._advance()
            if self._complete is target:
                return True
        return False

    def _advance(self) -> tuple[str, ET.Element]:
        kind, elem = self._events.popleft()
        if kind == "start":
            self._depth += 1
            if self._depth == 1:
                self._root = elem
            elif self._depth == 2:
                self._current = elem
                self._complete = None
            return kind, elem

        self._depth -= 1
        if self._depth == 1 and elem is self._current:
            self._complete = elem
            self._current = None
            # Detach finished stanzas so a long-lived stream does not grow
            if self._root is not None:
                self._root.remove(elem)
        elif self._depth == 0:
            self._closed = True
            raise StreamClosedError("server closed the XML stream", code="stream_end")
        return kind, elem

    def _start_of(self, elem: ET.Element) -> StartElement:
        name, namespace = split_tag(elem.tag)
        if not name:
            raise ProtocolError("invalid xml response", code="empty_name")
        attrs = {split_tag(k)[0]: v for k, v in elem.attrib.items()}
        return StartElement(name=name, namespace=namespace, attrs=attrs, element=elem)

    @property
    def closed(self) -> bool:
        return self._closed
