"""Adapter exceptions.

These exception types let the entry point and the transport boundary tell
configuration problems apart from roster/identity inconsistencies without
scraping strings.
"""

from __future__ import annotations


class MucBridgeError(RuntimeError):
    """Base class for adapter errors."""


class ConfigurationError(MucBridgeError):
    """Required adapter configuration is missing."""

    def __init__(self, missing: list[str]):
        self.missing = list(missing)
        super().__init__(self.__str__())

    def __str__(self) -> str:
        return f"Missing required adapter config: {', '.join(self.missing)}"


class RosterLookupError(MucBridgeError, KeyError):
    """A contact id or nick delivered by the connector is not in the roster."""

    def __init__(self, key: str, *, by: str = "id"):
        self.key = key
        self.by = by
        super().__init__(key)

    def __str__(self) -> str:
        return f"No roster entry with {self.by} {self.key!r}"
