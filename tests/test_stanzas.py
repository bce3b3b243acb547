"""Tests for outgoing stanza templates."""

from __future__ import annotations

import base64
import re
import xml.etree.ElementTree as ET
from datetime import datetime, timedelta, timezone

from hipchat.events import Attachment
from hipchat.xmpp import stanzas


class TestCorrelationIds:
    """Tests for request ids."""

    def test_id_is_sixteen_hex_chars(self):
        # Act
        stanza_id = stanzas.new_id()

        # Assert
        assert re.fullmatch(r"[0-9a-f]{16}", stanza_id)

    def test_ids_do_not_collide(self):
        # Act
        ids = {stanzas.new_id() for _ in range(10000)}

        # Assert
        assert len(ids) == 10000

    def test_request_without_explicit_id_gets_fresh_one(self):
        # Act
        first = stanzas.bind("bot")
        second = stanzas.bind("bot")

        # Assert
        assert re.search(r"id='([0-9a-f]{16})'", first).group(1) != re.search(r"id='([0-9a-f]{16})'", second).group(1)


class TestAuthStanzas:
    """Tests for handshake stanzas."""

    def test_sasl_plain_payload(self):
        # Act
        payload = stanzas.sasl_plain_payload("eve", "hunter2")

        # Assert
        assert payload == "AGV2ZQBoZW50ZXIy"
        assert base64.b64decode(payload) == b"\x00eve\x00hunter2"

    def test_sasl_auth_uses_plain_mechanism(self):
        # Act
        stanza = stanzas.sasl_auth("eve", "hunter2")

        # Assert
        assert stanza == (
            "<auth xmlns='urn:ietf:params:xml:ns:xmpp-sasl' mechanism='PLAIN'>AGV2ZQBoZW50ZXIy</auth>"
        )

    def test_stream_open(self):
        # Act
        stanza = stanzas.stream_open("1_1@chat.example.com", "chat.example.com")

        # Assert
        assert stanza == (
            "<stream:stream from='1_1@chat.example.com' to='chat.example.com' version='1.0' "
            "xml:lang='en' xmlns='jabber:client' xmlns:stream='http://etherx.jabber.org/streams'>"
        )

    def test_start_tls(self):
        assert stanzas.start_tls() == "<starttls xmlns='urn:ietf:params:xml:ns:xmpp-tls'/>"

    def test_iq_auth_escapes_credentials(self):
        # Act
        stanza = stanzas.iq_auth("eve", "p<w>&'d", "bot", stanza_id="abc")

        # Assert
        assert "<password>p&lt;w&gt;&amp;&#x27;d</password>" in stanza
        root = ET.fromstring(stanza)
        assert root.find("{jabber:iq:auth}query/{jabber:iq:auth}password").text == "p<w>&'d"

    def test_bind_and_session(self):
        # Act
        bind = stanzas.bind("bot", stanza_id="b1")
        session = stanzas.session(stanza_id="s1")

        # Assert
        assert bind == (
            "<iq type='set' id='b1'><bind xmlns='urn:ietf:params:xml:ns:xmpp-bind'>"
            "<resource>bot</resource></bind></iq>"
        )
        assert session == "<iq type='set' id='s1'><session xmlns='urn:ietf:params:xml:ns:xmpp-session'/></iq>"


class TestRoomStanzas:
    """Tests for presence and group-chat stanzas."""

    def test_join_sets_history_and_room_nick(self):
        # Act
        stanza = stanzas.muc_join("room@conf.example.com/alice", "alice@chat.example.com", 5)

        # Assert
        root = ET.fromstring(stanza)
        assert root.get("to") == "room@conf.example.com/alice"
        history = root.find("{http://jabber.org/protocol/muc}x/{http://jabber.org/protocol/muc}history")
        assert history.get("maxstanzas") == "5"

    def test_leave_is_unavailable_presence(self):
        # Act
        stanza = stanzas.muc_leave("room@conf.example.com/alice", "alice@chat.example.com", stanza_id="x")

        # Assert
        assert stanza == (
            "<presence id='x' from='alice@chat.example.com' to='room@conf.example.com/alice' type='unavailable'/>"
        )

    def test_presence_show(self):
        assert stanzas.presence("a@b", "dnd") == "<presence from='a@b'><show>dnd</show></presence>"

    def test_groupchat_without_attachments_has_no_html(self):
        # Act
        stanza = stanzas.groupchat("a@b/bot", "room@conf", "hi there", stanza_id="m1")

        # Assert
        assert stanza == "<message from='a@b/bot' id='m1' to='room@conf' type='groupchat'><body>hi there</body></message>"

    def test_groupchat_escapes_body(self):
        # Act
        stanza = stanzas.groupchat("a@b/bot", "room@conf", "<b>1 & 2</b>")

        # Assert
        root = ET.fromstring(stanza)
        assert root.find("{jabber:client}body") is None
        assert root.find("body").text == "<b>1 & 2</b>"

    def test_groupchat_with_attachments_adds_xhtml_body(self):
        # Arrange
        attachment = Attachment("https://x/a.png", "a.png", "100", "https://x/a_thumb.png")

        # Act
        stanza = stanzas.groupchat("a@b/bot", "room@conf", "look", [attachment], stanza_id="m1")

        # Assert
        assert (
            "<html xmlns='http://jabber.org/protocol/xhtml-im'><body xmlns='http://www.w3.org/1999/xhtml'>"
            "<p>look</p><p><img src='https://x/a.png' title='a.png' longdesc='100##https://x/a_thumb.png'/></p>"
            "</body></html>"
        ) in stanza
        ET.fromstring(stanza)


class TestQueryStanzas:
    """Tests for IQ queries."""

    def test_disco_query(self):
        # Act
        stanza = stanzas.query("a@b", "conf.example.com", "http://jabber.org/protocol/disco#items", stanza_id="q1")

        # Assert
        assert stanza == (
            "<iq from='a@b' to='conf.example.com' id='q1' type='get'>"
            "<query xmlns='http://jabber.org/protocol/disco#items'/></iq>"
        )

    def test_history_query_without_start(self):
        # Act
        stanza = stanzas.history_query("room@conf", None, 25, stanza_id="h1")

        # Assert
        assert stanza == (
            "<iq type='set' id='h1'><query xmlns='urn:xmpp:mam:0'><x xmlns='jabber:x:data'>"
            "<field var='FORM_TYPE'><value>urn:xmpp:mam:0</value></field>"
            "<field var='with'><value>room@conf</value></field>"
            "</x><set xmlns='http://jabber.org/protocol/rsm'><max>25</max></set></query></iq>"
        )

    def test_history_query_start_is_utc(self):
        # Arrange
        start = datetime(2024, 1, 2, 5, 4, 5, tzinfo=timezone(timedelta(hours=2)))

        # Act
        stanza = stanzas.history_query("room@conf", start, 10)

        # Assert
        assert "<field var='start'><value>2024-01-02T03:04:05Z</value></field>" in stanza

    def test_ping_and_pong(self):
        # Act
        ping = stanzas.ping("a@b", stanza_id="p1")
        pong = stanzas.pong("chat.example.com", "p2")

        # Assert
        assert ping == "<iq from='a@b' id='p1' type='get'><ping xmlns='urn:xmpp:ping'/></iq>"
        assert pong == "<iq type='result' id='p2' to='chat.example.com'/>"

    def test_keepalive_is_whitespace(self):
        assert stanzas.keepalive() == " "
