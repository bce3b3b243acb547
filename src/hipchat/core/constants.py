"""Protocol namespaces and service defaults."""

from __future__ import annotations

from typing import Literal

NS_CLIENT = "jabber:client"
NS_STREAM = "http://etherx.jabber.org/streams"
NS_IQ_AUTH = "jabber:iq:auth"
NS_ROSTER = "jabber:iq:roster"
NS_TLS = "urn:ietf:params:xml:ns:xmpp-tls"
NS_SASL = "urn:ietf:params:xml:ns:xmpp-sasl"
NS_BIND = "urn:ietf:params:xml:ns:xmpp-bind"
NS_SESSION = "urn:ietf:params:xml:ns:xmpp-session"
NS_DISCO_ITEMS = "http://jabber.org/protocol/disco#items"
NS_MUC = "http://jabber.org/protocol/muc"
NS_MUC_ROOM = "http://hipchat.com/protocol/muc#room"
NS_FORWARD = "urn:xmpp:forward:0"
NS_MAM = "urn:xmpp:mam:0"
NS_RSM = "http://jabber.org/protocol/rsm"
NS_DATA = "jabber:x:data"
NS_PING = "urn:xmpp:ping"
NS_HTML = "http://jabber.org/protocol/xhtml-im"
NS_XHTML = "http://www.w3.org/1999/xhtml"

DEFAULT_HOST = "chat.hipchat.com"
DEFAULT_CONFERENCE_HOST = "conf.hipchat.com"
DEFAULT_PORT = 5222

# Delay stamps and archive filters use second precision, always UTC
STAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

# Service placeholders for message bodies
ATTACHMENT_BODY = "@attachment"
EMPTY_BODY = "none"

AuthMode = Literal["sasl", "iq"]
AUTH_MODES: tuple[AuthMode, ...] = ("sasl", "iq")

KeepaliveMode = Literal["whitespace", "rejoin", "ping"]
KEEPALIVE_MODES: tuple[KeepaliveMode, ...] = ("whitespace", "rejoin", "ping")

# Unread reconnect notices kept; older ones are dropped
RECONNECT_BACKLOG = 10
