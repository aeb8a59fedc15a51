"""Minimal message bus the adapter delivers into."""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import TYPE_CHECKING, Callable

from mucbridge.identity import UserStore
from mucbridge.models import Message, Source

if TYPE_CHECKING:
    from mucbridge.adapter import SessionController

log = logging.getLogger("robot")

MessageHandler = Callable[[Message], None]
EventHandler = Callable[..., None]


class Robot:
    """Fans messages and lifecycle events out to registered handlers.

    Handler exceptions propagate to the caller (the connector's event loop
    boundary logs them).
    """

    def __init__(self, name: str, users: UserStore | None = None):
        self.name = name
        self.users = users or UserStore()
        self.adapter: SessionController | None = None
        self._message_handlers: list[MessageHandler] = []
        self._event_handlers: dict[str, list[EventHandler]] = defaultdict(list)

    def on_message(self, handler: MessageHandler) -> None:
        self._message_handlers.append(handler)

    def on(self, event: str, handler: EventHandler) -> None:
        self._event_handlers[event].append(handler)

    def receive(self, message: Message) -> None:
        user = message.user
        log.debug(
            "Received %s from %s: %s",
            "command" if message.command else "message",
            user.id if user else "?",
            message.body[:50],
        )
        for handler in list(self._message_handlers):
            handler(message)

    def trigger(self, event: str, **payload: object) -> None:
        log.debug("Event %s %s", event, payload or "")
        for handler in list(self._event_handlers.get(event, ())):
            handler(**payload)

    def send_messages(self, source: Source, *strings: str) -> None:
        if self.adapter is None:
            raise RuntimeError("Robot has no adapter attached")
        self.adapter.send_messages(source, list(strings))

    def set_topic(self, source: Source, topic: str) -> None:
        if self.adapter is None:
            raise RuntimeError("Robot has no adapter attached")
        self.adapter.set_topic(source, topic)
