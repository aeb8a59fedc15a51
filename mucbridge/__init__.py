"""XMPP group-chat adapter for a chat-bot message bus."""

from mucbridge.adapter import SessionController, SessionState
from mucbridge.callback import EventCallback
from mucbridge.config import AdapterConfig, get_adapter_config, load_env
from mucbridge.errors import ConfigurationError, MucBridgeError, RosterLookupError
from mucbridge.identity import IdentityResolver, UserStore
from mucbridge.models import LifecycleEvent, Message, RosterEntry, Source, User
from mucbridge.robot import Robot
from mucbridge.roster import RosterCache

__all__ = [
    "AdapterConfig",
    "ConfigurationError",
    "EventCallback",
    "IdentityResolver",
    "LifecycleEvent",
    "Message",
    "MucBridgeError",
    "Robot",
    "RosterCache",
    "RosterEntry",
    "RosterLookupError",
    "SessionController",
    "SessionState",
    "Source",
    "User",
    "UserStore",
    "get_adapter_config",
    "load_env",
]
