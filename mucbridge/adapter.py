"""Session controller - owns the connector and the session lifecycle."""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import TYPE_CHECKING, Sequence

from mucbridge.config import AdapterConfig
from mucbridge.models import ALL_ROOMS, LifecycleEvent, Source

if TYPE_CHECKING:
    from mucbridge.ports import Connector, Robot

log = logging.getLogger("adapter")

MENTION_PREFIX = "@"


class SessionState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    JOINING_ROOMS = "joining_rooms"
    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"
    DISCONNECTED = "disconnected"


class SessionController:
    """Drives one chat session: connect, join rooms, run, shut down.

    The configuration is validated before anything else happens; missing
    credentials raise ConfigurationError and the caller decides whether to exit.
    """

    def __init__(
        self,
        robot: "Robot",
        config: AdapterConfig,
        connector: "Connector | None" = None,
    ):
        config.validate()
        self.robot = robot
        self.config = config
        self.connector: Connector = connector or self._build_connector()
        self.state = SessionState.IDLE
        self._stop: asyncio.Event | None = None

    def _build_connector(self) -> "Connector":
        from mucbridge.xmpp import SlixmppConnector

        return SlixmppConnector(
            self.robot,
            self.config.jid or "",
            self.config.password or "",
            nick=self.config.nick or self.robot.name,
            muc_domain=self.muc_domain,
            server=self.config.server,
            port=self.config.port,
            debug=self.config.debug,
            users=getattr(self.robot, "users", None),
        )

    @property
    def muc_domain(self) -> str:
        return self.config.resolved_muc_domain

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def run(self) -> None:
        if self.state is not SessionState.IDLE:
            raise RuntimeError(f"Session already started ({self.state.value})")

        self._stop = asyncio.Event()
        self.state = SessionState.CONNECTING
        try:
            await self.connector.connect()
        except BaseException:
            self.state = SessionState.DISCONNECTED
            await self._abort_connect()
            raise
        log.info("Connected as %s", self.config.jid)
        self.state = SessionState.JOINING_ROOMS
        self.robot.trigger(LifecycleEvent.CONNECTED.value)

        try:
            for room in await self.rooms():
                await self.join(room)
        except BaseException:
            log.error("Room setup failed, shutting down")
            await self.shut_down()
            raise

        self.state = SessionState.RUNNING
        try:
            await self.wait()
        except (KeyboardInterrupt, asyncio.CancelledError):
            log.info("Interrupted, shutting down...")
        await self.shut_down()

    async def _abort_connect(self) -> None:
        # Never connected, so no disconnected event; just stop the transport.
        try:
            await self.connector.shut_down()
        except Exception:
            log.exception("Failed to stop connector after connect failure")

    async def wait(self) -> None:
        """Block until shut_down() is requested."""
        if self._stop is None:
            self._stop = asyncio.Event()
        await self._stop.wait()

    async def rooms(self) -> list[str]:
        rooms = self.config.rooms
        if rooms == ALL_ROOMS:
            return list(await self.connector.list_rooms(self.muc_domain))
        if not rooms:
            return []
        return list(rooms)

    async def shut_down(self) -> None:
        if self.state in (SessionState.SHUTTING_DOWN, SessionState.DISCONNECTED):
            return
        self.state = SessionState.SHUTTING_DOWN
        try:
            await self.connector.shut_down()
        finally:
            self.state = SessionState.DISCONNECTED
            if self._stop is not None:
                self._stop.set()
        log.info("Disconnected")
        self.robot.trigger(LifecycleEvent.DISCONNECTED.value)

    # -------------------------------------------------------------------------
    # Rooms
    # -------------------------------------------------------------------------

    async def join(self, room: str) -> None:
        await self.connector.join(self.muc_domain, room)
        log.info("Joined %s", room)
        self.robot.trigger(LifecycleEvent.JOINED.value, room=room)

    def part(self, room: str) -> None:
        self.connector.part(self.muc_domain, room)
        log.info("Parted %s", room)
        self.robot.trigger(LifecycleEvent.PARTED.value, room=room)

    # -------------------------------------------------------------------------
    # Outbound
    # -------------------------------------------------------------------------

    def send_messages(self, source: Source, strings: Sequence[str]) -> None:
        if source.private_message:
            user_id = source.user.id  # type: ignore[union-attr]
            self.connector.message_jid(user_id, list(strings))
        else:
            self.connector.message_muc(source.room, list(strings))  # type: ignore[arg-type]

    def set_topic(self, source: Source, topic: str) -> None:
        if not source.room:
            raise ValueError("Topics can only be set on rooms")
        self.connector.set_topic(source.room, topic)

    def mention_format(self, name: str) -> str:
        return f"{MENTION_PREFIX}{name}"
