"""End-to-end client tests against the scripted server."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import pytest

from hipchat.client import Client
from hipchat.core.constants import NS_DISCO_ITEMS, RECONNECT_BACKLOG
from hipchat.core.errors import AuthError, ConnectionClosedError, ConnectionLostError, ReconnectError
from hipchat.events import Attachment, Reconnected, Room, User
from tests.harness import FakeHipChatServer, archive_result, make_config


async def _connected(server: FakeHipChatServer, **overrides) -> Client:
    client = Client(make_config(**overrides), dialer=server.dialer)
    await asyncio.wait_for(client.connect(), 1)
    return client


async def _eventually(predicate, timeout: float = 1.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


class TestConnect:
    """Tests for the first connection."""

    @pytest.mark.asyncio
    async def test_connect_records_bound_jid(self):
        # Arrange
        server = FakeHipChatServer()

        # Act
        client = await _connected(server)

        # Assert
        assert client.connected
        assert client.bound_jid == "1_1@chat.example.com/bot"
        assert client.jid == "1_1@chat.example.com"
        await client.close()

    @pytest.mark.asyncio
    async def test_auth_failure_propagates_and_closes_socket(self):
        # Arrange
        server = FakeHipChatServer(auth_ok=False)
        client = Client(make_config(), dialer=server.dialer)

        # Act & Assert
        with pytest.raises(AuthError):
            await asyncio.wait_for(client.connect(), 1)
        assert server.current.closed

    @pytest.mark.asyncio
    async def test_context_manager_closes_channels(self):
        # Arrange
        server = FakeHipChatServer()

        # Act
        async with Client(make_config(), dialer=server.dialer) as client:
            assert client.connected

        # Assert
        assert client.closed
        assert client.messages.closed
        assert client.invitations.closed
        assert client.reconnects.closed
        assert server.current.closed


class TestOperations:
    """Tests for room, roster and message operations."""

    @pytest.mark.asyncio
    async def test_rooms_and_users_resolve_concurrently(self):
        # Arrange
        server = FakeHipChatServer()
        client = await _connected(server)

        # Act
        rooms, users = await asyncio.wait_for(asyncio.gather(client.rooms(), client.users()), 1)

        # Assert
        assert rooms == [
            Room(id="1_lobby@conf.example.com", name="Lobby", owner="1_1@chat.example.com", topic="Welcome"),
            Room(id="1_dev@conf.example.com", name="Dev"),
        ]
        assert users == [
            User(id="1_2@chat.example.com", name="Alice Smith", mention_name="alice"),
            User(id="1_3@chat.example.com", name="Bob Jones", mention_name="bob"),
        ]
        disco = server.current.sent_containing(NS_DISCO_ITEMS)[0]
        assert "to='conf.example.com'" in disco
        await client.close()

    @pytest.mark.asyncio
    async def test_join_say_and_status_wire(self):
        # Arrange
        server = FakeHipChatServer()
        client = await _connected(server)

        # Act
        await client.status("dnd")
        await client.join("1_lobby@conf.example.com", "Demo Bot", history=5)
        await client.say(
            "1_lobby@conf.example.com",
            "look",
            [Attachment("https://s3/a.png", "a.png", "10x10", "https://s3/t.png")],
        )
        await client.leave("1_lobby@conf.example.com", "Demo Bot")

        # Assert
        sent = server.current.sent
        assert "<presence from='1_1@chat.example.com'><show>dnd</show></presence>" in sent
        join = server.current.sent_containing("maxstanzas")[0]
        assert "to='1_lobby@conf.example.com/Demo Bot'" in join
        assert "maxstanzas='5'" in join
        message = server.current.sent_containing("type='groupchat'")[0]
        assert "from='1_1@chat.example.com/bot'" in message
        assert "longdesc='10x10##https://s3/t.png'" in message
        assert server.current.sent_containing("type='unavailable'")
        await client.close()

    @pytest.mark.asyncio
    async def test_incoming_message_carries_mention_name(self):
        # Arrange
        server = FakeHipChatServer()
        client = await _connected(server)
        await asyncio.wait_for(client.users(), 1)

        # Act
        server.current.feed(
            "<message from='1_lobby@conf.example.com/Bob Jones' to='1_1@chat.example.com/bot' "
            "type='groupchat' id='m9'><body>@bot hi</body></message>"
        )
        message = await asyncio.wait_for(client.messages.get(), 1)

        # Assert
        assert message.body == "@bot hi"
        assert message.mention_name == "bob"
        await client.close()

    @pytest.mark.asyncio
    async def test_load_history_returns_page(self):
        # Arrange
        server = FakeHipChatServer(
            archive=[
                archive_result("first", "2024-01-02T03:04:05Z"),
                archive_result("second", "2024-01-02T03:05:00Z"),
            ]
        )
        client = await _connected(server)
        since = datetime(2024, 1, 1, tzinfo=timezone.utc)

        # Act
        page = await asyncio.wait_for(client.load_history("1_lobby@conf.example.com", since, 10), 1)

        # Assert
        assert [m.body for m in page] == ["first", "second"]
        assert page[1].timestamp == datetime(2024, 1, 2, 3, 5, tzinfo=timezone.utc)
        query = server.current.sent_containing("urn:xmpp:mam:0")[0]
        assert "<value>2024-01-01T00:00:00Z</value>" in query
        assert "<max>10</max>" in query
        await client.close()

    @pytest.mark.asyncio
    async def test_ping_round_trip(self):
        # Arrange
        server = FakeHipChatServer()
        client = await _connected(server)

        # Act & Assert
        await asyncio.wait_for(client.ping(), 1)
        await client.close()


class TestConnectionLoss:
    """Tests for reconnection as seen by the application."""

    @pytest.mark.asyncio
    async def test_pending_request_fails_when_connection_drops(self):
        # Arrange
        server = FakeHipChatServer()
        server.mute.add(NS_DISCO_ITEMS)
        client = await _connected(server)
        pending = asyncio.ensure_future(client.rooms())
        await asyncio.sleep(0.01)

        # Act
        server.current.close()

        # Assert
        with pytest.raises(ConnectionLostError):
            await asyncio.wait_for(pending, 1)
        await client.close()

    @pytest.mark.asyncio
    async def test_liveness_timeout_reconnects_and_restores_session(self):
        # Arrange
        server = FakeHipChatServer()
        client = await _connected(server, liveness_timeout=0.1)
        await client.status("chat")
        await client.join("1_lobby@conf.example.com", "Demo Bot", history=20)
        first = server.current

        # Act
        event = await asyncio.wait_for(client.reconnects.get(), 2)

        # Assert
        assert event == Reconnected(attempt=1, jid="1_1@chat.example.com")
        assert first.closed
        assert server.dial_count == 2
        second = server.transports[1]
        assert "<presence from='1_1@chat.example.com'><show>chat</show></presence>" in second.sent
        rejoin = second.sent_containing("to='1_lobby@conf.example.com/Demo Bot'")[0]
        assert "maxstanzas='0'" in rejoin
        await client.close()

    @pytest.mark.asyncio
    async def test_reconnect_retries_failed_dials(self):
        # Arrange
        server = FakeHipChatServer()
        client = await _connected(server, reconnect_max_attempts=5)
        server.fail_dials = 2

        # Act
        server.current.close()
        event = await asyncio.wait_for(client.reconnects.get(), 2)

        # Assert
        assert event.attempt == 1
        assert server.dial_count == 4
        assert client.connected
        await client.close()

    @pytest.mark.asyncio
    async def test_failed_restore_closes_connection_and_retries(self):
        # Arrange
        server = FakeHipChatServer()
        client = await _connected(server)
        await client.status("chat")
        server.fail_writes_on_dial[2] = {"<show>chat</show>"}

        # Act
        server.current.close()
        event = await asyncio.wait_for(client.reconnects.get(), 2)

        # Assert
        assert event.attempt == 1
        assert server.dial_count == 3
        assert server.transports[1].closed
        assert "<presence from='1_1@chat.example.com'><show>chat</show></presence>" in server.transports[2].sent
        assert client.connected
        await client.close()

    @pytest.mark.asyncio
    async def test_unread_reconnect_notices_are_bounded(self):
        # Arrange
        client = Client(make_config(), dialer=FakeHipChatServer().dialer)

        # Act
        for attempt in range(1, RECONNECT_BACKLOG + 6):
            await client.reconnected(attempt)

        # Assert
        client.reconnects.close()
        attempts = [event.attempt async for event in client.reconnects]
        assert attempts == list(range(6, RECONNECT_BACKLOG + 6))

    @pytest.mark.asyncio
    async def test_exhausted_reconnect_closes_client(self):
        # Arrange
        server = FakeHipChatServer()
        client = await _connected(server, reconnect_max_attempts=2)
        server.fail_dials = 10

        # Act
        server.current.close()
        with pytest.raises(ConnectionClosedError) as exc_info:
            await asyncio.wait_for(client.messages.get(), 2)

        # Assert
        assert isinstance(exc_info.value.original_error, ReconnectError)
        assert isinstance(client.error, ReconnectError)
        assert client.closed
        assert server.dial_count == 3
        with pytest.raises(ConnectionClosedError):
            await client.rooms()
        await client.close()

    @pytest.mark.asyncio
    async def test_close_fails_pending_requests(self):
        # Arrange
        server = FakeHipChatServer()
        server.mute.add(NS_DISCO_ITEMS)
        client = await _connected(server)
        pending = asyncio.ensure_future(client.rooms())
        await asyncio.sleep(0.01)

        # Act
        await client.close()

        # Assert
        with pytest.raises(ConnectionClosedError):
            await asyncio.wait_for(pending, 1)
        assert [m async for m in client.messages] == []
