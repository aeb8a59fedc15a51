"""Bot-framework-neutral message envelope types."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from mucbridge.ports import Robot


ALL_ROOMS = "all"


class LifecycleEvent(str, Enum):
    CONNECTED = "connected"
    JOINED = "joined"
    PARTED = "parted"
    DISCONNECTED = "disconnected"


@dataclass(frozen=True)
class RosterEntry:
    """Roster item snapshot."""

    id: str
    name: str
    mention_name: str = ""


@dataclass(frozen=True)
class User:
    """Durable identity keyed by the protocol contact id."""

    id: str
    name: str
    mention_name: str = ""


@dataclass(frozen=True)
class Source:
    """Where a message came from, or where a reply should go.

    A Source with no room is a direct (1:1) conversation with ``user``.
    """

    user: User | None = None
    room: str | None = None

    def __post_init__(self) -> None:
        if self.room is None and self.user is None:
            raise ValueError("A direct source needs a user")

    @classmethod
    def direct(cls, user: User) -> "Source":
        return cls(user=user)

    @classmethod
    def for_room(cls, user: User | None, room: str) -> "Source":
        return cls(user=user, room=room)

    @property
    def private_message(self) -> bool:
        return self.room is None


@dataclass
class Message:
    robot: "Robot"
    body: str
    source: Source
    command: bool = field(default=False)

    def mark_command(self) -> None:
        """Treat the message as addressed to the bot."""
        self.command = True

    @property
    def user(self) -> User | None:
        return self.source.user

    @property
    def private_message(self) -> bool:
        return self.source.private_message

    def reply(self, *strings: str) -> None:
        self.robot.send_messages(self.source, *strings)
