"""Inbound event dispatch: protocol events -> normalized messages."""

from __future__ import annotations

from functools import partial
from typing import TYPE_CHECKING, Iterable

from mucbridge.identity import IdentityResolver, UserStore
from mucbridge.models import Message, RosterEntry, Source
from mucbridge.ports import PrivateMessageEvent, RoomClient, RoomMessageEvent
from mucbridge.roster import RosterCache

if TYPE_CHECKING:
    from mucbridge.ports import Connector, Robot

ERROR_TYPE = "error"


class EventCallback:
    """Turns connector events into Messages and hands them to the robot.

    Each handler call is independent; the connector may invoke the private and
    room handlers from different event streams in any interleaving.
    """

    def __init__(
        self,
        robot: "Robot",
        roster: RosterCache,
        resolver: IdentityResolver | None = None,
    ):
        self.robot = robot
        self.roster = roster
        self.resolver = resolver or IdentityResolver(roster, UserStore())

    # -------------------------------------------------------------------------
    # Subscription
    # -------------------------------------------------------------------------

    def private_message(self, client: "Connector") -> None:
        client.on_private_message(self.handle_private_message)

    def room_message(self, room: RoomClient) -> None:
        room.on_message(partial(self.handle_room_message, room))

    def roster_update(self, client: "Connector") -> None:
        client.on_roster_update(self.handle_roster_update)

    # -------------------------------------------------------------------------
    # Handlers
    # -------------------------------------------------------------------------

    def handle_private_message(self, event: PrivateMessageEvent) -> None:
        if event.type == ERROR_TYPE:
            return
        user = self.resolver.resolve(event.sender)
        message = Message(self.robot, event.body, Source.direct(user))
        message.mark_command()
        self.robot.receive(message)

    def handle_room_message(self, room: RoomClient, event: RoomMessageEvent) -> None:
        entry = self.roster.find_by_name(event.nick)
        user = self.resolver.resolve(entry.id)
        message = Message(self.robot, event.body, Source.for_room(user, room.jid))
        self.robot.receive(message)

    def handle_roster_update(self, entries: Iterable[RosterEntry]) -> None:
        for entry in entries:
            self.resolver.refresh(entry)
