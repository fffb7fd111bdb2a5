from __future__ import annotations

import logging
from typing import Any, Dict, List

from .ws import Connection

"""
Presence registry
-----------------
Maps an alias to the set of live connections registered under it. An alias can
be held by many connections at once (several tabs or devices); it disappears
from the registry as soon as its last connection goes away.

The registry is purely in-memory and starts empty on every process start.
Pushes are best-effort: closed connections are skipped, never raised.
"""


log = logging.getLogger("timechat.core.presence")


class PresenceRegistry:
    def __init__(self) -> None:
        # dicts keep insertion order, so pushes reach connections in join order
        self._by_alias: Dict[str, Dict[Connection, None]] = {}

    def register(self, alias: str, conn: Connection) -> int:
        """Admit ``conn`` under ``alias``; returns the alias's connection count."""

        if not alias:
            raise ValueError("alias is required")
        members = self._by_alias.setdefault(alias, {})
        members[conn] = None
        return len(members)

    def unregister(self, alias: str | None, conn: Connection) -> int:
        """Remove ``conn`` from ``alias``; returns how many connections remain."""

        if not alias:
            return 0
        members = self._by_alias.get(alias)
        if members is None:
            return 0
        members.pop(conn, None)
        if not members:
            del self._by_alias[alias]
            log.debug("Alias %s has no live connections left", alias)
            return 0
        return len(members)

    def connections(self, alias: str) -> List[Connection]:
        return list(self._by_alias.get(alias, ()))

    def is_online(self, alias: str) -> bool:
        return alias in self._by_alias

    async def push(self, alias: str, frame: Dict[str, Any]) -> bool:
        """Deliver ``frame`` to every live connection of ``alias``.

        Returns True if at least one connection accepted it.
        """

        reached = False
        for conn in self.connections(alias):
            if await conn.try_send(frame):
                reached = True
        return reached


__all__ = ["PresenceRegistry"]
