"""Ports for the adapter core.

These interfaces keep the callback and the session controller independent of
the XMPP transport and of the bot framework that consumes messages.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Iterable, Protocol, Sequence

from mucbridge.models import Message, RosterEntry, Source


# -----------------
# Inbound events
# -----------------


@dataclass(frozen=True)
class PrivateMessageEvent:
    type: str  # chat|normal|error
    sender: str  # bare contact id
    body: str


@dataclass(frozen=True)
class RoomMessageEvent:
    nick: str
    body: str


PrivateMessageHandler = Callable[[PrivateMessageEvent], None]
RoomMessageHandler = Callable[[RoomMessageEvent], None]
RosterUpdateHandler = Callable[[Iterable[RosterEntry]], None]


class RoomClient(Protocol):
    """A joined multi-user chat room."""

    @property
    def jid(self) -> str: ...

    def on_message(self, handler: RoomMessageHandler) -> None: ...


class Connector(Protocol):
    async def connect(self) -> None: ...

    async def join(self, domain: str, room: str) -> None: ...

    def part(self, domain: str, room: str) -> None: ...

    def message_muc(self, room: str, strings: Sequence[str]) -> None: ...

    def message_jid(self, user_id: str, strings: Sequence[str]) -> None: ...

    def set_topic(self, room: str, topic: str) -> None: ...

    async def list_rooms(self, domain: str) -> list[str]: ...

    async def shut_down(self) -> None: ...

    def on_private_message(self, handler: PrivateMessageHandler) -> None: ...

    def on_roster_update(self, handler: RosterUpdateHandler) -> None: ...


class Robot(Protocol):
    name: str

    def receive(self, message: Message) -> None: ...

    def trigger(self, event: str, **payload: object) -> None: ...

    def send_messages(self, source: Source, *strings: str) -> None: ...
