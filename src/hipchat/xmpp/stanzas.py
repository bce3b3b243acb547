"""Outgoing stanza templates.

Every request is rendered from explicit parameters into a literal XML string.
Text and attribute parameters are entity-escaped, so the result is well formed
whatever the caller passes in.
"""

from __future__ import annotations

import base64
import html
import secrets
from collections.abc import Sequence
from datetime import datetime, timezone

from hipchat.core.constants import (
    NS_BIND,
    NS_CLIENT,
    NS_DATA,
    NS_HTML,
    NS_IQ_AUTH,
    NS_MAM,
    NS_MUC,
    NS_PING,
    NS_RSM,
    NS_SASL,
    NS_SESSION,
    NS_STREAM,
    NS_TLS,
    NS_XHTML,
    STAMP_FORMAT,
)
from hipchat.events import Attachment
from hipchat.formatting.attachments import render_image_tags

STREAM = "<stream:stream from='{}' to='{}' version='1.0' xml:lang='en' xmlns='{}' xmlns:stream='{}'>"
START_TLS = "<starttls xmlns='{}'/>"
START_SESSION = "<iq type='set' id='{}'><session xmlns='{}'/></iq>"
IQ_AUTH = (
    "<iq type='set' id='{}'><query xmlns='{}'><username>{}</username>"
    "<password>{}</password><resource>{}</resource></query></iq>"
)
SASL_AUTH = "<auth xmlns='{}' mechanism='PLAIN'>{}</auth>"
IQ_BIND = "<iq type='set' id='{}'><bind xmlns='{}'><resource>{}</resource></bind></iq>"
IQ_GET = "<iq from='{}' to='{}' id='{}' type='get'><query xmlns='{}'/></iq>"
PRESENCE = "<presence from='{}'><show>{}</show></presence>"
MUC_PRESENCE = "<presence id='{}' to='{}' from='{}'><x xmlns='{}'><history maxstanzas='{}'/></x></presence>"
MUC_UNAVAILABLE = "<presence id='{}' from='{}' to='{}' type='unavailable'/>"
HTML_BODY = "<html xmlns='{}'><body xmlns='{}'><p>{}</p><p>{}</p></body></html>"
MUC_MESSAGE = "<message from='{}' id='{}' to='{}' type='groupchat'><body>{}</body>{}</message>"
PING = "<iq from='{}' id='{}' type='get'><ping xmlns='{}'/></iq>"
PONG = "<iq type='result' id='{}' to='{}'/>"
HISTORY_FILTER = "<field var='{}'><value>{}</value></field>"
HISTORY = (
    "<iq type='set' id='{}'><query xmlns='{}'><x xmlns='{}'>{}</x>"
    "<set xmlns='{}'><max>{}</max></set></query></iq>"
)
KEEPALIVE = " "


def _esc(value: object) -> str:
    return html.escape(str(value), quote=True)


def new_id() -> str:
    """Fresh correlation id: 8 random bytes from the OS CSPRNG, hex encoded."""
    return secrets.token_hex(8)


def sasl_plain_payload(username: str, password: str) -> str:
    """Base64 of ``\\0username\\0password`` (RFC 4616 with empty authzid)."""
    raw = "\x00" + username + "\x00" + password
    return base64.b64encode(raw.encode("utf-8")).decode("ascii")


def stream_open(jid: str, host: str) -> str:
    return STREAM.format(_esc(jid), _esc(host), NS_CLIENT, NS_STREAM)


def start_tls() -> str:
    return START_TLS.format(NS_TLS)


def iq_auth(username: str, password: str, resource: str, *, stanza_id: str | None = None) -> str:
    return IQ_AUTH.format(stanza_id or new_id(), NS_IQ_AUTH, _esc(username), _esc(password), _esc(resource))


def sasl_auth(username: str, password: str) -> str:
    return SASL_AUTH.format(NS_SASL, sasl_plain_payload(username, password))


def bind(resource: str, *, stanza_id: str | None = None) -> str:
    return IQ_BIND.format(stanza_id or new_id(), NS_BIND, _esc(resource))


def session(*, stanza_id: str | None = None) -> str:
    return START_SESSION.format(stanza_id or new_id(), NS_SESSION)


def query(from_jid: str, to_jid: str, namespace: str, *, stanza_id: str | None = None) -> str:
    """Disco or roster ``get``; ``namespace`` selects which."""
    return IQ_GET.format(_esc(from_jid), _esc(to_jid), stanza_id or new_id(), namespace)


def presence(jid: str, show: str) -> str:
    return PRESENCE.format(_esc(jid), _esc(show))


def muc_join(room_nick: str, jid: str, history: int, *, stanza_id: str | None = None) -> str:
    return MUC_PRESENCE.format(stanza_id or new_id(), _esc(room_nick), _esc(jid), NS_MUC, int(history))


def muc_leave(room_nick: str, jid: str, *, stanza_id: str | None = None) -> str:
    return MUC_UNAVAILABLE.format(stanza_id or new_id(), _esc(jid), _esc(room_nick))


def groupchat(
    from_jid: str,
    to_jid: str,
    body: str,
    attachments: Sequence[Attachment] | None = None,
    *,
    stanza_id: str | None = None,
) -> str:
    """Room message; attachments add an XHTML-IM body with one ``<img/>`` per image."""
    rich = ""
    if attachments:
        rich = HTML_BODY.format(NS_HTML, NS_XHTML, _esc(body), render_image_tags(attachments))
    return MUC_MESSAGE.format(_esc(from_jid), stanza_id or new_id(), _esc(to_jid), _esc(body), rich)


def history_query(
    with_jid: str,
    start: datetime | None,
    limit: int,
    *,
    stanza_id: str | None = None,
) -> str:
    """Archive query for messages exchanged with ``with_jid``, optionally since ``start``."""
    filters = [
        HISTORY_FILTER.format("FORM_TYPE", NS_MAM),
        HISTORY_FILTER.format("with", _esc(with_jid)),
    ]
    if start is not None:
        if start.tzinfo is not None:
            start = start.astimezone(timezone.utc)
        filters.append(HISTORY_FILTER.format("start", start.strftime(STAMP_FORMAT)))
    return HISTORY.format(stanza_id or new_id(), NS_MAM, NS_DATA, "".join(filters), NS_RSM, int(limit))


def ping(from_jid: str, *, stanza_id: str | None = None) -> str:
    return PING.format(_esc(from_jid), stanza_id or new_id(), NS_PING)


def pong(to_jid: str, stanza_id: str) -> str:
    return PONG.format(_esc(stanza_id), _esc(to_jid))


def keepalive() -> str:
    return KEEPALIVE
