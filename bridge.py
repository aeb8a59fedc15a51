#!/usr/bin/env python3
"""
mucbridge - XMPP group-chat adapter

Connects one bot account to an XMPP (HipChat-style) server, joins the
configured rooms and hands every direct or room message to the robot.

Configuration comes from the environment (or a .env file next to this script):
XMPP_JID, XMPP_PASSWORD, XMPP_ROOMS (all | comma list), XMPP_MUC_DOMAIN,
XMPP_SERVER, XMPP_PORT, XMPP_NICK, XMPP_DEBUG, MUCBRIDGE_ROBOT_NAME.
"""

from __future__ import annotations

import asyncio
import logging
import os
import sys
from pathlib import Path

from mucbridge import (
    ConfigurationError,
    Message,
    Robot,
    SessionController,
    get_adapter_config,
    load_env,
)

load_env(Path(__file__).parent / ".env")

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%H:%M:%S",
)
log = logging.getLogger("bridge")


def _log_message(message: Message) -> None:
    user = message.user
    where = "direct" if message.private_message else message.source.room
    log.info("[%s] %s: %s", where, user.name if user else "?", message.body[:80])


async def main() -> None:
    config = get_adapter_config()
    robot = Robot(os.getenv("MUCBRIDGE_ROBOT_NAME", "").strip() or "bot")
    robot.on_message(_log_message)

    try:
        adapter = SessionController(robot, config)
    except ConfigurationError as exc:
        log.critical("%s", exc)
        sys.exit(1)
    robot.adapter = adapter

    await adapter.run()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        log.info("Shutting down...")
