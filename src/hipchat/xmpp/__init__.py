"""XMPP wire layer: transport, stanza templates, stream reader, decoders."""

from hipchat.xmpp.connection import XMPPConnection
from hipchat.xmpp.reader import StartElement, StreamReader
from hipchat.xmpp.transport import Transport, make_ssl_context

__all__ = ["StartElement", "StreamReader", "Transport", "XMPPConnection", "make_ssl_context"]
