"""Identity store and roster-backed identity resolution."""

from __future__ import annotations

import logging
import threading

from mucbridge.models import RosterEntry, User
from mucbridge.roster import RosterCache

log = logging.getLogger("identity")


class UserStore:
    """In-memory store of durable users keyed by contact id."""

    def __init__(self):
        self._lock = threading.Lock()
        self._users: dict[str, User] = {}

    def create(self, user_id: str, *, name: str, mention_name: str = "") -> User:
        """Return the stored user for ``user_id``, creating it on first sight."""
        with self._lock:
            user = self._users.get(user_id)
            if user is None:
                user = User(id=user_id, name=name, mention_name=mention_name)
                self._users[user_id] = user
                log.debug("Created user %s (%s)", user_id, name)
            return user

    def update(self, user_id: str, *, name: str, mention_name: str = "") -> User:
        user = User(id=user_id, name=name, mention_name=mention_name)
        with self._lock:
            self._users[user_id] = user
        return user

    def find_by_id(self, user_id: str) -> User | None:
        return self._users.get(user_id)

    def find_by_mention_name(self, mention_name: str) -> User | None:
        wanted = mention_name.lstrip("@").lower()
        with self._lock:
            users = list(self._users.values())
        for user in users:
            if user.mention_name.lstrip("@").lower() == wanted:
                return user
        return None


class IdentityResolver:
    """Resolve contact ids to users through the roster.

    Users are cached by contact id so the store sees at most one create per id,
    even when first sightings race on different event streams.
    """

    def __init__(self, roster: RosterCache, store: UserStore):
        self.roster = roster
        self.store = store
        self._lock = threading.Lock()
        self._cache: dict[str, User] = {}

    def resolve(self, contact_id: str) -> User:
        user = self._cache.get(contact_id)
        if user is not None:
            return user
        with self._lock:
            user = self._cache.get(contact_id)
            if user is None:
                entry = self.roster.get(contact_id)
                user = self.store.create(
                    entry.id, name=entry.name, mention_name=entry.mention_name
                )
                self._cache[contact_id] = user
            return user

    def refresh(self, entry: RosterEntry) -> User:
        log.debug("Updating record for user with ID: %s", entry.id)
        with self._lock:
            user = self.store.update(
                entry.id, name=entry.name, mention_name=entry.mention_name
            )
            self._cache[entry.id] = user
        return user
