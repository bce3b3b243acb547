"""Handshake: from a freshly dialed socket to an authenticated, bound session.

Two credential variants exist and a deployment uses exactly one of them:

``sasl``
    SASL PLAIN ``<auth/>``; on ``<success/>`` the stream is restarted and the
    resource bound, then a session opened. The bind result marks READY.
``iq``
    Legacy ``jabber:iq:auth`` set carrying username, password and resource in
    one IQ; its result marks READY.
"""

from __future__ import annotations

import enum
import ssl
from dataclasses import dataclass

from loguru import logger

from hipchat.core.constants import NS_CLIENT, NS_SASL, NS_STREAM, NS_TLS
from hipchat.core.errors import AuthError
from hipchat.xmpp import decode, stanzas
from hipchat.xmpp.connection import XMPPConnection
from hipchat.xmpp.reader import StartElement

STREAM = ("stream", NS_STREAM)
FEATURES = ("features", NS_STREAM)
PROCEED = ("proceed", NS_TLS)
SASL_SUCCESS = ("success", NS_SASL)
SASL_FAILURE = ("failure", NS_SASL)
IQ = ("iq", NS_CLIENT)


class NegotiationState(enum.Enum):
    CONNECTING = "connecting"
    STREAM_OPENED = "stream_opened"
    TLS_REQUESTED = "tls_requested"
    TLS_ESTABLISHED = "tls_established"
    AUTHENTICATING = "authenticating"
    AUTHENTICATED = "authenticated"
    READY = "ready"
    FAILED = "failed"


@dataclass(frozen=True)
class SessionIdentity:
    """Who we log in as; fixed for the lifetime of a client."""

    username: str
    password: str
    resource: str
    host: str

    @property
    def jid(self) -> str:
        return f"{self.username}@{self.host}"

    def __repr__(self) -> str:
        return f"SessionIdentity(jid={self.jid!r}, resource={self.resource!r})"


class AuthNegotiator:
    """Drives one connection through the handshake. Never retries; read errors propagate."""

    def __init__(
        self,
        connection: XMPPConnection,
        identity: SessionIdentity,
        *,
        auth_mode: str = "sasl",
        ssl_context: ssl.SSLContext | None = None,
    ) -> None:
        self._conn = connection
        self._identity = identity
        self._auth_mode = auth_mode
        self._ssl_context = ssl_context
        self.state = NegotiationState.CONNECTING
        self.bound_jid = ""

    async def negotiate(self) -> None:
        """Run the handshake until READY; AuthError on rejection, TransportError on I/O."""
        logger.debug("Opening stream to {} as {}", self._identity.host, self._identity.jid)
        await self._open_stream()
        while self.state is not NegotiationState.READY:
            start = await self._conn.next_element()
            await self.step(start)
        logger.info("Authenticated as {}", self.bound_jid or self._identity.jid)

    async def _open_stream(self) -> None:
        await self._conn.send(stanzas.stream_open(self._identity.jid, self._identity.host))

    def _fail(self, message: str, condition: str) -> AuthError:
        self.state = NegotiationState.FAILED
        return AuthError(message, code=condition or "not-authorized", details={"jid": self._identity.jid})

    async def step(self, start: StartElement) -> None:
        """Apply one top-level element to the state machine."""
        key = start.key
        if key == STREAM:
            if self.state in (NegotiationState.CONNECTING, NegotiationState.TLS_ESTABLISHED):
                self.state = NegotiationState.STREAM_OPENED
            logger.debug("Stream opened by {} (id={})", start.get("from"), start.get("id"))
        elif key == FEATURES:
            await self._on_features(decode.decode_features(await self._conn.element(start)))
        elif key == PROCEED:
            await self._on_proceed()
        elif key == SASL_SUCCESS:
            await self._on_success()
        elif key == SASL_FAILURE:
            condition = decode.error_condition(await self._conn.element(start))
            raise self._fail(f"could not authenticate: {condition or 'failure'}", condition)
        elif key == IQ:
            await self._on_iq(start)
        else:
            logger.debug("Ignoring <{}> ({}) during handshake", start.name, start.namespace)

    async def _on_features(self, features: decode.Features) -> None:
        if self.state in (NegotiationState.AUTHENTICATING, NegotiationState.AUTHENTICATED):
            # Post-auth features (bind/session) need no reply; bind is already sent
            return
        if features.starttls_required:
            logger.debug("Server requires STARTTLS")
            await self._conn.send(stanzas.start_tls())
            self.state = NegotiationState.TLS_REQUESTED
            return
        if "PLAIN" not in features.mechanisms:
            logger.warning("Server offers no PLAIN mechanism ({}); waiting", ", ".join(features.mechanisms) or "none")
            return
        if self._auth_mode == "iq":
            await self._conn.send(
                stanzas.iq_auth(self._identity.username, self._identity.password, self._identity.resource)
            )
        else:
            await self._conn.send(stanzas.sasl_auth(self._identity.username, self._identity.password))
        self.state = NegotiationState.AUTHENTICATING

    async def _on_proceed(self) -> None:
        context = self._ssl_context or ssl.create_default_context()
        await self._conn.upgrade_to_tls(context, self._identity.host)
        self.state = NegotiationState.TLS_ESTABLISHED
        await self._open_stream()

    async def _on_success(self) -> None:
        self.state = NegotiationState.AUTHENTICATED
        self._conn.restart_stream()
        await self._open_stream()
        await self._conn.send(stanzas.bind(self._identity.resource))
        await self._conn.send(stanzas.session())

    async def _on_iq(self, start: StartElement) -> None:
        iq_type = start.get("type")
        if iq_type == "result":
            self.bound_jid = decode.decode_bound_jid(await self._conn.element(start))
            self.state = NegotiationState.READY
        elif iq_type == "error":
            condition = decode.error_condition(await self._conn.element(start))
            raise self._fail(f"could not authenticate: {condition or 'iq error'}", condition)
        else:
            logger.debug("Ignoring IQ type={} during handshake", iq_type)
