"""Roster cache: contact id -> RosterEntry."""

from __future__ import annotations

import logging
import threading

from slixmpp.xmlstream import ET

from mucbridge.errors import RosterLookupError
from mucbridge.models import RosterEntry

ROSTER_NS = "jabber:iq:roster"

log = logging.getLogger("roster")


def parse_roster_query(query: ET.Element) -> tuple[list[RosterEntry], list[str]]:
    """Read a jabber:iq:roster <query/> element.

    HipChat adds a ``mention_name`` attribute to each roster item. Returns
    (entries to upsert, contact ids to drop).
    """

    entries: list[RosterEntry] = []
    removed: list[str] = []
    for item in query.findall(f"{{{ROSTER_NS}}}item"):
        jid = (item.get("jid") or "").split("/", 1)[0].strip()
        if not jid:
            continue
        if (item.get("subscription") or "") == "remove":
            removed.append(jid)
            continue
        entries.append(
            RosterEntry(
                id=jid,
                name=item.get("name") or "",
                mention_name=item.get("mention_name") or "",
            )
        )
    return entries, removed


class RosterCache:
    """Read side of the connector's roster.

    The connector keeps it fresh; the callback path only reads from it.
    """

    def __init__(self, entries: list[RosterEntry] | None = None):
        self._lock = threading.Lock()
        self._items: dict[str, RosterEntry] = {}
        for entry in entries or []:
            self._items[entry.id] = entry

    def __getitem__(self, contact_id: str) -> RosterEntry:
        return self.get(contact_id)

    def __contains__(self, contact_id: object) -> bool:
        return contact_id in self._items

    def __len__(self) -> int:
        return len(self._items)

    def get(self, contact_id: str) -> RosterEntry:
        entry = self._items.get(contact_id)
        if entry is None:
            raise RosterLookupError(contact_id)
        return entry

    def find_by_name(self, name: str) -> RosterEntry:
        for entry in self.items():
            if entry.name == name:
                return entry
        raise RosterLookupError(name, by="name")

    def items(self) -> list[RosterEntry]:
        with self._lock:
            return list(self._items.values())

    def update(self, entry: RosterEntry) -> bool:
        with self._lock:
            changed = self._items.get(entry.id) != entry
            self._items[entry.id] = entry
        return changed

    def remove(self, contact_id: str) -> None:
        with self._lock:
            self._items.pop(contact_id, None)

    def load_query(self, query: ET.Element) -> list[RosterEntry]:
        """Apply a roster result or push; return the entries that changed."""
        entries, removed = parse_roster_query(query)
        changed = [entry for entry in entries if self.update(entry)]
        for contact_id in removed:
            self.remove(contact_id)
        log.debug(
            "Roster now has %d item(s) (%d changed, %d removed)",
            len(self),
            len(changed),
            len(removed),
        )
        return changed
