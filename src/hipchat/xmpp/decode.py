"""Typed decode targets for completed top-level elements.

The caller picks the target from the element's name and namespace; nothing
here inspects the stream or decides what an element means.
"""

from __future__ import annotations

import html
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field

from hipchat.core.constants import (
    NS_BIND,
    NS_CLIENT,
    NS_FORWARD,
    NS_HTML,
    NS_MAM,
    NS_PING,
    NS_SASL,
    NS_TLS,
    NS_XHTML,
)
from hipchat.xmpp.reader import split_tag


@dataclass
class Features:
    starttls_required: bool = False
    mechanisms: list[str] = field(default_factory=list)


@dataclass
class QueryItem:
    jid: str
    name: str = ""
    mention_name: str = ""
    topic: str = ""
    owner: str = ""


@dataclass
class Query:
    namespace: str
    items: list[QueryItem] = field(default_factory=list)


@dataclass
class Invite:
    room_jid: str
    reason: str


@dataclass
class IncomingMessage:
    from_jid: str = ""
    to_jid: str = ""
    message_id: str = ""
    body: str = ""
    delay_stamp: str = ""
    rich_body: str = ""
    invite: Invite | None = None
    result: Forwarded | None = None
    fin: bool = False


@dataclass
class Forwarded:
    message: IncomingMessage
    delay_stamp: str = ""


def _q(namespace: str, local: str) -> str:
    return f"{{{namespace}}}{local}"


def text_body(elem: ET.Element) -> str:
    """Concatenated character data of ``elem`` and its descendants."""
    return "".join(elem.itertext())


def render_inner(elem: ET.Element) -> str:
    """Inner markup of ``elem`` with local tag names and single-quoted attributes."""
    parts = [html.escape(elem.text or "", quote=False)]
    for child in elem:
        parts.append(_render(child))
        parts.append(html.escape(child.tail or "", quote=False))
    return "".join(parts)


def _render(elem: ET.Element) -> str:
    name, _ = split_tag(elem.tag)
    attrs = "".join(f" {split_tag(k)[0]}='{html.escape(v, quote=True)}'" for k, v in elem.attrib.items())
    if len(elem) == 0 and not elem.text:
        return f"<{name}{attrs}/>"
    return f"<{name}{attrs}>{render_inner(elem)}</{name}>"


def decode_features(elem: ET.Element) -> Features:
    """``<stream:features>``: mandatory STARTTLS flag and offered SASL mechanisms."""
    features = Features()
    starttls = elem.find(_q(NS_TLS, "starttls"))
    if starttls is not None and starttls.find(_q(NS_TLS, "required")) is not None:
        features.starttls_required = True
    mechanisms = elem.find(_q(NS_SASL, "mechanisms"))
    if mechanisms is not None:
        features.mechanisms = [
            (m.text or "").strip() for m in mechanisms.findall(_q(NS_SASL, "mechanism"))
        ]
    return features


def decode_query(elem: ET.Element) -> Query | None:
    """First ``<query>`` child of an IQ, whatever its namespace."""
    for child in elem:
        name, namespace = split_tag(child.tag)
        if name != "query":
            continue
        items = []
        for item in child:
            if split_tag(item.tag)[0] != "item":
                continue
            # Room details may sit on the item or inside a muc#room <x/>
            topic = item.find(".//{*}topic")
            owner = item.find(".//{*}owner")
            items.append(
                QueryItem(
                    jid=item.get("jid", ""),
                    name=item.get("name", ""),
                    mention_name=item.get("mention_name", ""),
                    topic=text_body(topic) if topic is not None else "",
                    owner=text_body(owner) if owner is not None else "",
                )
            )
        return Query(namespace=namespace, items=items)
    return None


def decode_bound_jid(elem: ET.Element) -> str:
    jid = elem.find(f"{_q(NS_BIND, 'bind')}/{_q(NS_BIND, 'jid')}")
    return text_body(jid).strip() if jid is not None else ""


def is_ping(elem: ET.Element) -> bool:
    return elem.find(_q(NS_PING, "ping")) is not None


def has_fin(elem: ET.Element) -> bool:
    return elem.find(_q(NS_MAM, "fin")) is not None


def decode_invite(elem: ET.Element) -> Invite | None:
    """Direct invitation ``<x jid=... reason=.../>``; None unless ``jid`` is set."""
    for child in elem:
        if split_tag(child.tag)[0] != "x":
            continue
        jid = child.get("jid", "")
        if jid:
            return Invite(room_jid=jid, reason=child.get("reason", ""))
    return None


def _delay_stamp(elem: ET.Element) -> str:
    # Archived payloads may omit their namespaces and inherit the envelope's
    delay = elem.find("{*}delay")
    return delay.get("stamp", "") if delay is not None else ""


def decode_message(elem: ET.Element) -> IncomingMessage:
    """``<message>`` with its optional rich body, delay, invite, archive result and fin."""
    msg = IncomingMessage(
        from_jid=elem.get("from", ""),
        to_jid=elem.get("to", ""),
        message_id=elem.get("id", ""),
    )
    body = elem.find("{*}body")
    if body is not None:
        msg.body = text_body(body)
    msg.delay_stamp = _delay_stamp(elem)
    rich = elem.find(f"{_q(NS_HTML, 'html')}/{_q(NS_XHTML, 'body')}")
    if rich is not None:
        msg.rich_body = render_inner(rich)
    msg.invite = decode_invite(elem)
    result = elem.find(_q(NS_MAM, "result"))
    if result is not None:
        msg.result = decode_forwarded(result)
    msg.fin = has_fin(elem)
    return msg


def decode_forwarded(elem: ET.Element) -> Forwarded | None:
    """``<forwarded>`` envelope inside an archive ``<result>`` (or the envelope itself)."""
    forwarded = elem if elem.tag == _q(NS_FORWARD, "forwarded") else elem.find(_q(NS_FORWARD, "forwarded"))
    if forwarded is None:
        return None
    inner = forwarded.find("{*}message")
    message = decode_message(inner) if inner is not None else IncomingMessage()
    return Forwarded(message=message, delay_stamp=_delay_stamp(forwarded))


def error_condition(elem: ET.Element) -> str:
    """Defined condition of a ``<stream:error>``, SASL ``<failure>`` or IQ ``<error>``."""
    error = elem.find(_q(NS_CLIENT, "error"))
    if error is not None:
        elem = error
    for child in elem:
        name, _ = split_tag(child.tag)
        if name != "text":
            return name
    return ""
