"""Slixmpp transport for the adapter.

Provides:
- XMPPClient: ClientXMPP with the plugin set and connection state we need
- MUCRoom: a joined room with its own message handlers
- SlixmppConnector: the Connector implementation the session controller drives
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import TYPE_CHECKING, Any, Callable, Iterable, Sequence, cast

from slixmpp import JID
from slixmpp.clientxmpp import ClientXMPP

from mucbridge.callback import EventCallback
from mucbridge.identity import IdentityResolver, UserStore
from mucbridge.models import RosterEntry
from mucbridge.ports import (
    PrivateMessageEvent,
    PrivateMessageHandler,
    RoomMessageEvent,
    RoomMessageHandler,
    RosterUpdateHandler,
)
from mucbridge.roster import ROSTER_NS, RosterCache

if TYPE_CHECKING:
    from mucbridge.ports import Robot

log = logging.getLogger("xmpp")

PRIVATE_TYPES = ("chat", "normal", "error")
RECONNECT_DELAY = 5.0


def room_address(room: str, domain: str) -> str:
    """Qualify a room identifier with the MUC domain; bare addresses pass through."""
    room = room.split("/", 1)[0].strip()
    if "@" in room:
        return room
    return f"{room}@{domain}"


def _run_handler(handler: Callable[[Any], None], event: object, context: str) -> None:
    # Transport boundary: a failing handler must not take the stream down.
    try:
        handler(event)
    except Exception:
        log.exception("Unhandled error (%s)", context)


# =============================================================================
# Client
# =============================================================================


class XMPPClient(ClientXMPP):
    """ClientXMPP with common plugins and a connected flag."""

    def __init__(self, jid: str, password: str):
        super().__init__(jid, password)
        self._connected_event = asyncio.Event()
        self.connect_error: Exception | None = None

        self.register_plugin("xep_0030")  # Service Discovery
        self.register_plugin("xep_0045")  # Multi-User Chat
        self.register_plugin("xep_0199")  # Ping

    def connect_to_server(self, server: str | None = None, port: int = 5222):
        """Connect to an explicit host, or let slixmpp resolve the JID domain."""
        self.connect_error = None
        self._connected_event.clear()
        if server:
            self.connect(host=server, port=port)
        else:
            self.connect()

    def set_connected(self, connected: bool) -> None:
        if connected:
            self._connected_event.set()
        else:
            self._connected_event.clear()

    def fail_connect(self, exc: Exception) -> None:
        self.connect_error = exc
        self._connected_event.set()

    def is_session_ready(self) -> bool:
        return self._connected_event.is_set() and self.connect_error is None

    async def wait_connected(self, timeout: float | None = None) -> bool:
        try:
            await asyncio.wait_for(self._connected_event.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        if self.connect_error is not None:
            raise self.connect_error
        return True


# =============================================================================
# Rooms
# =============================================================================


class MUCRoom:
    def __init__(self, jid: str, nick: str):
        self.jid = jid
        self.nick = nick
        self._handlers: list[RoomMessageHandler] = []

    def on_message(self, handler: RoomMessageHandler) -> None:
        self._handlers.append(handler)

    def deliver(self, event: RoomMessageEvent) -> None:
        for handler in list(self._handlers):
            _run_handler(handler, event, f"room message {self.jid}")


# =============================================================================
# Connector
# =============================================================================


class SlixmppConnector:
    """Connector backed by a slixmpp client session."""

    def __init__(
        self,
        robot: "Robot",
        jid: str,
        password: str,
        *,
        nick: str,
        muc_domain: str,
        server: str | None = None,
        port: int = 5222,
        debug: bool = False,
        users: UserStore | None = None,
        client: XMPPClient | None = None,
    ):
        self.robot = robot
        self.nick = nick
        self.muc_domain = muc_domain
        self.server = server
        self.port = port
        self.shutting_down = False
        self.client = client or XMPPClient(jid, password)
        self.roster = RosterCache()
        self.rooms: dict[str, MUCRoom] = {}
        self._private_handlers: list[PrivateMessageHandler] = []
        self._roster_handlers: list[RosterUpdateHandler] = []
        self._reconnect_task: asyncio.Task | None = None
        self._connecting = False

        if debug:
            logging.getLogger("slixmpp").setLevel(logging.DEBUG)

        self.client.add_event_handler("session_start", self._on_session_start)
        self.client.add_event_handler("failed_auth", self._on_failed_auth)
        self.client.add_event_handler("connection_failed", self._on_connection_failed)
        self.client.add_event_handler("disconnected", self._on_disconnected)
        self.client.add_event_handler("message", self._on_message)
        self.client.add_event_handler("groupchat_message", self._on_groupchat_message)
        self.client.add_event_handler("roster_update", self._on_roster_update)

        self.callback = EventCallback(
            robot, self.roster, IdentityResolver(self.roster, users or UserStore())
        )
        self.callback.private_message(self)
        self.callback.roster_update(self)

    @property
    def _muc(self) -> Any:
        return cast(Any, self.client["xep_0045"])

    # -------------------------------------------------------------------------
    # Subscriptions
    # -------------------------------------------------------------------------

    def on_private_message(self, handler: PrivateMessageHandler) -> None:
        self._private_handlers.append(handler)

    def on_roster_update(self, handler: RosterUpdateHandler) -> None:
        self._roster_handlers.append(handler)

    # -------------------------------------------------------------------------
    # Session
    # -------------------------------------------------------------------------

    async def connect(self) -> None:
        self.shutting_down = False
        self._connecting = True
        try:
            self.client.connect_to_server(self.server, self.port)
            await self.client.wait_connected()
        except BaseException:
            # No session to keep alive: stop the transport from retrying.
            self.shutting_down = True
            if self._reconnect_task and not self._reconnect_task.done():
                self._reconnect_task.cancel()
            self.client.cancel_connection_attempt()
            raise
        finally:
            self._connecting = False

    async def shut_down(self) -> None:
        self.shutting_down = True
        if self._reconnect_task and not self._reconnect_task.done():
            self._reconnect_task.cancel()
        self.rooms.clear()
        result = self.client.disconnect()
        if inspect.isawaitable(result):
            await result

    async def _on_session_start(self, _event) -> None:
        self.client.send_presence()
        iq = await self.client.get_roster()
        if iq is not None:
            self._load_roster(iq, notify=False)
        for room in list(self.rooms.values()):
            # Reconnected: the server forgot our room presence.
            log.info("Rejoining %s", room.jid)
            try:
                await self._muc.join_muc_wait(JID(room.jid), self.nick, maxstanzas=0)
            except Exception:
                log.exception("Failed to rejoin %s", room.jid)
        log.info("Session started for %s", self.client.boundjid.bare)
        self.client.set_connected(True)

    def _on_failed_auth(self, _event) -> None:
        log.error("Authentication failed for %s", self.client.boundjid.bare)
        self.client.fail_connect(ConnectionError("XMPP authentication failed"))

    def _on_connection_failed(self, error) -> None:
        if not self._connecting:
            # Reconnect attempt: slixmpp keeps retrying on its own.
            log.warning("Reconnect attempt failed: %s", error)
            return
        log.error("Could not connect to XMPP server: %s", error)
        self.client.cancel_connection_attempt()
        self.client.fail_connect(ConnectionError(f"XMPP connection failed: {error}"))

    def _on_disconnected(self, _event) -> None:
        self.client.set_connected(False)
        if self.shutting_down:
            return
        log.warning("Disconnected, reconnecting in %.0fs...", RECONNECT_DELAY)
        self._reconnect_task = asyncio.ensure_future(self._reconnect())

    async def _reconnect(self) -> None:
        await asyncio.sleep(RECONNECT_DELAY)
        if self.shutting_down:
            return
        self.client.connect_to_server(self.server, self.port)

    # -------------------------------------------------------------------------
    # Inbound
    # -------------------------------------------------------------------------

    def _on_message(self, msg) -> None:
        msg_type = msg["type"]
        if msg_type not in PRIVATE_TYPES:
            return
        body = msg["body"] or ""
        # Chat states and receipts arrive as body-less chat messages.
        if not body and msg_type != "error":
            return
        event = PrivateMessageEvent(
            type=msg_type, sender=str(msg["from"].bare), body=body
        )
        for handler in list(self._private_handlers):
            _run_handler(handler, event, "private message")

    def _on_groupchat_message(self, msg) -> None:
        room = self.rooms.get(str(msg["from"].bare))
        if room is None:
            return
        nick = str(msg["mucnick"] or msg["from"].resource or "")
        body = msg["body"] or ""
        if not body or not nick or nick == room.nick:
            return
        room.deliver(RoomMessageEvent(nick=nick, body=body))

    def _on_roster_update(self, iq) -> None:
        self._load_roster(iq, notify=True)

    def _load_roster(self, iq, *, notify: bool) -> list[RosterEntry]:
        query = iq.xml.find(f"{{{ROSTER_NS}}}query")
        if query is None:
            return []
        changed = self.roster.load_query(query)
        if notify and changed:
            for handler in list(self._roster_handlers):
                _run_handler(handler, changed, "roster update")
        return changed

    # -------------------------------------------------------------------------
    # Rooms
    # -------------------------------------------------------------------------

    async def join(self, domain: str, room: str) -> None:
        room_jid = room_address(room, domain)
        await self._muc.join_muc_wait(JID(room_jid), self.nick, maxstanzas=0)
        if room_jid in self.rooms:
            return
        muc_room = MUCRoom(room_jid, self.nick)
        self.rooms[room_jid] = muc_room
        self.callback.room_message(muc_room)

    def part(self, domain: str, room: str) -> None:
        room_jid = room_address(room, domain)
        self._muc.leave_muc(JID(room_jid), self.nick)
        self.rooms.pop(room_jid, None)

    async def list_rooms(self, domain: str) -> list[str]:
        iq = await self.client["xep_0030"].get_items(jid=JID(domain))
        items: Iterable[tuple] = iq["disco_items"]["items"]
        return sorted(str(JID(item[0]).bare) for item in items)

    # -------------------------------------------------------------------------
    # Outbound
    # -------------------------------------------------------------------------

    def message_muc(self, room: str, strings: Sequence[str]) -> None:
        room_jid = JID(room_address(room, self.muc_domain))
        for text in strings:
            self.client.send_message(mto=room_jid, mbody=text, mtype="groupchat")

    def message_jid(self, user_id: str, strings: Sequence[str]) -> None:
        for text in strings:
            self.client.send_message(mto=JID(user_id), mbody=text, mtype="chat")

    def set_topic(self, room: str, topic: str) -> None:
        self._muc.set_subject(JID(room_address(room, self.muc_domain)), topic)
