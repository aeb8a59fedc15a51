"""Tests for the slixmpp connector, driven with fake stanzas."""

import asyncio
import xml.etree.ElementTree as ET
from unittest.mock import AsyncMock, MagicMock, call

import pytest
from slixmpp import JID

from mucbridge import xmpp
from mucbridge.adapter import SessionController, SessionState
from mucbridge.config import AdapterConfig
from mucbridge.identity import UserStore
from mucbridge.xmpp import SlixmppConnector, XMPPClient, room_address

DOMAIN = "conf.hipchat.com"
ROSTER_XML = (
    '<iq xmlns="jabber:client" type="result">'
    '<query xmlns="jabber:iq:roster">'
    '<item jid="1_1@chat.hipchat.com" name="Carl" mention_name="Carl"/>'
    '<item jid="1_2@chat.hipchat.com" name="Dana" mention_name="Dana"/>'
    "</query></iq>"
)


class FakeIq:
    def __init__(self, raw: str):
        self.xml = ET.fromstring(raw)


def _stanza(mtype: str, frm: str, body: str = "", mucnick: str = "") -> dict:
    return {"type": mtype, "from": JID(frm), "body": body, "mucnick": mucnick}


def _client() -> MagicMock:
    client = MagicMock()
    plugins = {"xep_0045": MagicMock(), "xep_0030": MagicMock()}
    plugins["xep_0045"].join_muc_wait = AsyncMock()
    plugins["xep_0030"].get_items = AsyncMock()
    client.__getitem__.side_effect = plugins.__getitem__
    client.plugins = plugins
    client.wait_connected = AsyncMock(return_value=True)
    client.get_roster = AsyncMock(return_value=FakeIq(ROSTER_XML))
    client.disconnect = MagicMock(return_value=None)
    return client


def _handler(client: MagicMock, event: str):
    for c in client.add_event_handler.call_args_list:
        if c.args[0] == event:
            return c.args[1]
    raise AssertionError(f"no handler for {event}")


@pytest.fixture
def robot():
    robot = MagicMock()
    robot.name = "Lita"
    return robot


@pytest.fixture
def client():
    return _client()


@pytest.fixture
def store():
    return UserStore()


@pytest.fixture
def connector(robot, client, store):
    return SlixmppConnector(
        robot,
        "bot@chat.hipchat.com",
        "secret",
        nick="Lita Bot",
        muc_domain=DOMAIN,
        users=store,
        client=client,
    )


async def _start(connector, client):
    await _handler(client, "session_start")(None)


def _received(robot):
    assert robot.receive.call_count == 1
    return robot.receive.call_args.args[0]


def test_room_address():
    assert room_address("room_1", DOMAIN) == f"room_1@{DOMAIN}"
    assert room_address("room_1@other.com", DOMAIN) == "room_1@other.com"
    assert room_address("room_1@other.com/nick", DOMAIN) == "room_1@other.com"


class TestSession:
    @pytest.mark.asyncio
    async def test_connect_waits_for_session(self, connector, client):
        await connector.connect()
        client.connect_to_server.assert_called_once_with(None, 5222)
        client.wait_connected.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_session_start_loads_roster(self, connector, client):
        await _start(connector, client)
        client.send_presence.assert_called_once()
        assert connector.roster.get("1_1@chat.hipchat.com").name == "Carl"
        client.set_connected.assert_called_once_with(True)

    def test_failed_auth_fails_connect(self, connector, client):
        _handler(client, "failed_auth")(None)
        (exc,), _ = client.fail_connect.call_args
        assert isinstance(exc, ConnectionError)

    @pytest.mark.asyncio
    async def test_shut_down_disconnects_without_reconnect(self, connector, client):
        await connector.shut_down()
        client.disconnect.assert_called_once()
        assert connector.shutting_down is True

        _handler(client, "disconnected")(None)
        assert connector._reconnect_task is None

    @pytest.mark.asyncio
    async def test_reconnects_after_drop(self, connector, client, monkeypatch):
        monkeypatch.setattr(xmpp, "RECONNECT_DELAY", 0)
        _handler(client, "disconnected")(None)
        client.set_connected.assert_called_with(False)
        await connector._reconnect_task
        client.connect_to_server.assert_called_once_with(None, 5222)

    @pytest.mark.asyncio
    async def test_rejoins_rooms_after_reconnect(self, connector, client):
        await connector.join(DOMAIN, "room_1")
        muc = client.plugins["xep_0045"]
        muc.join_muc_wait.reset_mock()
        await _start(connector, client)
        muc.join_muc_wait.assert_awaited_once_with(
            JID(f"room_1@{DOMAIN}"), "Lita Bot", maxstanzas=0
        )


class TestPrivateMessages:
    @pytest.mark.asyncio
    async def test_chat_reaches_robot_as_command(self, connector, client, robot):
        await _start(connector, client)
        _handler(client, "message")(
            _stanza("chat", "1_1@chat.hipchat.com/laptop", "hello")
        )
        message = _received(robot)
        assert message.body == "hello"
        assert message.command is True
        assert message.source.private_message is True
        assert message.source.user.id == "1_1@chat.hipchat.com"
        assert message.source.user.mention_name == "Carl"

    @pytest.mark.asyncio
    async def test_error_stanza_dropped(self, connector, client, robot):
        await _start(connector, client)
        _handler(client, "message")(
            _stanza("error", "1_1@chat.hipchat.com", "hello")
        )
        robot.receive.assert_not_called()

    @pytest.mark.asyncio
    async def test_bodyless_and_groupchat_ignored(self, connector, client, robot):
        await _start(connector, client)
        on_message = _handler(client, "message")
        on_message(_stanza("chat", "1_1@chat.hipchat.com"))
        on_message(_stanza("groupchat", f"room_1@{DOMAIN}/Carl", "hi"))
        robot.receive.assert_not_called()

    @pytest.mark.asyncio
    async def test_unknown_sender_logged_not_dispatched(
        self, connector, client, robot, caplog
    ):
        await _start(connector, client)
        _handler(client, "message")(_stanza("chat", "ghost@chat.hipchat.com", "boo"))
        robot.receive.assert_not_called()
        assert "Unhandled error (private message)" in caplog.text


class TestConnectFailures:
    @pytest.mark.asyncio
    async def test_refused_connection_fails_connect(self, robot):
        client = XMPPClient("bot@chat.hipchat.com", "secret")
        client.cancel_connection_attempt = MagicMock()
        connector = SlixmppConnector(
            robot,
            "bot@chat.hipchat.com",
            "secret",
            nick="Lita Bot",
            muc_domain=DOMAIN,
            client=client,
        )
        client.connect = MagicMock(
            side_effect=lambda *a, **kw: connector._on_connection_failed(
                OSError("Connection refused")
            )
        )
        with pytest.raises(ConnectionError):
            await asyncio.wait_for(connector.connect(), 1)
        client.cancel_connection_attempt.assert_called()
        assert connector.shutting_down is True

    def test_failed_reconnect_attempt_is_left_to_slixmpp(self, connector, client):
        _handler(client, "connection_failed")(OSError("Connection refused"))
        client.fail_connect.assert_not_called()
        client.cancel_connection_attempt.assert_not_called()

    @pytest.mark.asyncio
    async def test_no_reconnect_after_failed_connect(self, connector, client):
        client.wait_connected.side_effect = ConnectionError("XMPP authentication failed")
        with pytest.raises(ConnectionError):
            await connector.connect()
        client.cancel_connection_attempt.assert_called_once()

        _handler(client, "disconnected")(None)
        assert connector._reconnect_task is None

    @pytest.mark.asyncio
    async def test_failed_run_stops_transport(self, robot, connector, client):
        client.wait_connected.side_effect = ConnectionError("XMPP authentication failed")
        adapter = SessionController(
            robot, AdapterConfig(jid="bot@chat.hipchat.com", password="bad"), connector
        )
        with pytest.raises(ConnectionError):
            await adapter.run()
        assert adapter.state is SessionState.DISCONNECTED
        client.disconnect.assert_called_once()

        _handler(client, "disconnected")(None)
        assert connector._reconnect_task is None
        robot.trigger.assert_not_called()

    @pytest.mark.asyncio
    async def test_rejoin_failure_does_not_block_session(self, connector, client):
        await connector.join(DOMAIN, "room_1")
        await connector.join(DOMAIN, "room_2")
        muc = client.plugins["xep_0045"]
        muc.join_muc_wait.reset_mock()
        muc.join_muc_wait.side_effect = [TimeoutError("room gone"), None]
        await _start(connector, client)
        assert muc.join_muc_wait.await_count == 2
        client.set_connected.assert_called_once_with(True)


class TestRooms:
    @pytest.mark.asyncio
    async def test_join_qualifies_identifier(self, connector, client):
        await connector.join(DOMAIN, "room_1")
        client.plugins["xep_0045"].join_muc_wait.assert_awaited_once_with(
            JID(f"room_1@{DOMAIN}"), "Lita Bot", maxstanzas=0
        )
        assert list(connector.rooms) == [f"room_1@{DOMAIN}"]

    @pytest.mark.asyncio
    async def test_room_message_reaches_robot(self, connector, client, robot):
        await _start(connector, client)
        await connector.join(DOMAIN, "room_1")
        _handler(client, "groupchat_message")(
            _stanza("groupchat", f"room_1@{DOMAIN}/Carl", "foo", mucnick="Carl")
        )
        message = _received(robot)
        assert message.body == "foo"
        assert message.command is False
        assert message.source.room == f"room_1@{DOMAIN}"
        assert message.source.user.id == "1_1@chat.hipchat.com"

    @pytest.mark.asyncio
    async def test_joining_twice_does_not_duplicate(self, connector, client, robot):
        await _start(connector, client)
        await connector.join(DOMAIN, "room_1")
        await connector.join(DOMAIN, f"room_1@{DOMAIN}")
        _handler(client, "groupchat_message")(
            _stanza("groupchat", f"room_1@{DOMAIN}/Carl", "foo", mucnick="Carl")
        )
        assert robot.receive.call_count == 1

    @pytest.mark.asyncio
    async def test_ignores_own_nick_other_rooms_and_subjects(
        self, connector, client, robot
    ):
        await _start(connector, client)
        await connector.join(DOMAIN, "room_1")
        on_groupchat = _handler(client, "groupchat_message")
        on_groupchat(
            _stanza("groupchat", f"room_1@{DOMAIN}/Lita Bot", "me", mucnick="Lita Bot")
        )
        on_groupchat(
            _stanza("groupchat", f"room_2@{DOMAIN}/Carl", "elsewhere", mucnick="Carl")
        )
        on_groupchat(_stanza("groupchat", f"room_1@{DOMAIN}/Carl", "", mucnick="Carl"))
        robot.receive.assert_not_called()

    @pytest.mark.asyncio
    async def test_part(self, connector, client):
        await connector.join(DOMAIN, "room_1")
        connector.part(DOMAIN, "room_1")
        client.plugins["xep_0045"].leave_muc.assert_called_once_with(
            JID(f"room_1@{DOMAIN}"), "Lita Bot"
        )
        assert connector.rooms == {}

    @pytest.mark.asyncio
    async def test_list_rooms(self, connector, client):
        iq = {
            "disco_items": {
                "items": {
                    (JID(f"room_2@{DOMAIN}"), None, "Two"),
                    (JID(f"room_1@{DOMAIN}"), None, "One"),
                }
            }
        }
        client.plugins["xep_0030"].get_items.return_value = iq
        rooms = await connector.list_rooms(DOMAIN)
        assert rooms == [f"room_1@{DOMAIN}", f"room_2@{DOMAIN}"]
        client.plugins["xep_0030"].get_items.assert_awaited_once_with(jid=JID(DOMAIN))


class TestOutbound:
    def test_message_muc_sends_each_part_in_order(self, connector, client):
        connector.message_muc("room_1", ["one", "two"])
        room = JID(f"room_1@{DOMAIN}")
        assert client.send_message.call_args_list == [
            call(mto=room, mbody="one", mtype="groupchat"),
            call(mto=room, mbody="two", mtype="groupchat"),
        ]

    def test_message_jid(self, connector, client):
        connector.message_jid("1_1@chat.hipchat.com", ["hi"])
        client.send_message.assert_called_once_with(
            mto=JID("1_1@chat.hipchat.com"), mbody="hi", mtype="chat"
        )

    def test_set_topic(self, connector, client):
        connector.set_topic(f"room_1@{DOMAIN}", "Topic")
        client.plugins["xep_0045"].set_subject.assert_called_once_with(
            JID(f"room_1@{DOMAIN}"), "Topic"
        )


class TestRosterPush:
    @pytest.mark.asyncio
    async def test_push_refreshes_identity(self, connector, client, store):
        await _start(connector, client)
        connector.callback.resolver.resolve("1_1@chat.hipchat.com")
        _handler(client, "roster_update")(
            FakeIq(
                '<iq xmlns="jabber:client" type="set">'
                '<query xmlns="jabber:iq:roster">'
                '<item jid="1_1@chat.hipchat.com" name="Carl Jr" mention_name="CarlJr"/>'
                "</query></iq>"
            )
        )
        assert store.find_by_id("1_1@chat.hipchat.com").name == "Carl Jr"
        assert connector.roster.find_by_name("Carl Jr").mention_name == "CarlJr"


class TestXMPPClient:
    @pytest.mark.asyncio
    async def test_wait_connected(self):
        client = XMPPClient("bot@example.com", "secret")
        assert client.is_session_ready() is False
        client.set_connected(True)
        assert await client.wait_connected(timeout=1) is True
        assert client.is_session_ready() is True

    @pytest.mark.asyncio
    async def test_wait_connected_raises_connect_error(self):
        client = XMPPClient("bot@example.com", "secret")
        client.fail_connect(ConnectionError("XMPP authentication failed"))
        with pytest.raises(ConnectionError):
            await client.wait_connected(timeout=1)

    @pytest.mark.asyncio
    async def test_wait_connected_times_out(self):
        client = XMPPClient("bot@example.com", "secret")
        assert await client.wait_connected(timeout=0.01) is False
