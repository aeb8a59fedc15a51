"""Adapter configuration."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Union

from mucbridge.errors import ConfigurationError
from mucbridge.models import ALL_ROOMS

DEFAULT_MUC_DOMAIN = "conf.hipchat.com"
DEFAULT_PORT = 5222

RoomSet = Union[str, list[str], None]

_log = logging.getLogger("config")


def _parse_bool(value: object, default: bool = False) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return default
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def parse_rooms(value: object) -> RoomSet:
    """Normalize the room-set option.

    ``None``/empty means no auto-join, ``"all"`` joins every discoverable room,
    anything else is a list of room identifiers (a comma-separated string is
    split).
    """

    if value is None:
        return None
    if isinstance(value, str):
        raw = value.strip()
        if not raw or raw.lower() == "none":
            return None
        if raw.lower() == ALL_ROOMS:
            return ALL_ROOMS
        value = raw.split(",")
    rooms = [str(r).strip() for r in value]  # type: ignore[union-attr]
    return [r for r in rooms if r] or None


@dataclass(frozen=True)
class AdapterConfig:
    jid: str | None = None
    password: str | None = None
    rooms: RoomSet = None
    muc_domain: str | None = None
    server: str | None = None
    port: int = DEFAULT_PORT
    nick: str | None = None
    debug: bool = False

    def validate(self) -> None:
        missing = [key for key in ("jid", "password") if not getattr(self, key)]
        if missing:
            raise ConfigurationError(missing)

    @property
    def resolved_muc_domain(self) -> str:
        return self.muc_domain or DEFAULT_MUC_DOMAIN


# =============================================================================
# Environment Loading
# =============================================================================


def load_env(env_path: Path | None = None) -> None:
    """Load .env file into os.environ. Handles quoted values and spaces."""
    if env_path is None:
        env_path = Path(__file__).parent.parent / ".env"

    if not env_path.exists():
        return

    for line in env_path.read_text().splitlines():
        line = line.strip()
        if line and not line.startswith("#") and "=" in line:
            key, val = line.split("=", 1)
            val = val.strip().strip('"').strip("'")
            os.environ[key.strip()] = val


def get_adapter_config() -> AdapterConfig:
    """Get adapter configuration from environment (call load_env() first)."""
    raw_port = os.getenv("XMPP_PORT", "").strip()
    try:
        port = int(raw_port) if raw_port else DEFAULT_PORT
    except ValueError:
        _log.warning("Invalid XMPP_PORT %r; using %d", raw_port, DEFAULT_PORT)
        port = DEFAULT_PORT

    return AdapterConfig(
        jid=os.getenv("XMPP_JID", "").strip() or None,
        password=os.getenv("XMPP_PASSWORD", "") or None,
        rooms=parse_rooms(os.getenv("XMPP_ROOMS")),
        muc_domain=os.getenv("XMPP_MUC_DOMAIN", "").strip() or None,
        server=os.getenv("XMPP_SERVER", "").strip() or None,
        port=port,
        nick=os.getenv("XMPP_NICK", "").strip() or None,
        debug=_parse_bool(os.getenv("XMPP_DEBUG")),
    )
