from __future__ import annotations

import logging
from typing import Dict, List, Optional

from .ws import Connection

log = logging.getLogger("timechat.core.rooms")


class RoomRegistry:
    """Room id -> member connections. A room exists only while it has members."""

    def __init__(self) -> None:
        self._rooms: Dict[str, Dict[Connection, None]] = {}

    def join(self, conn: Connection, room_id: str) -> int:
        """Move ``conn`` into ``room_id``; returns the room's member count."""

        if conn.room == room_id and room_id in self._rooms:
            return len(self._rooms[room_id])
        self.leave(conn)
        members = self._rooms.setdefault(room_id, {})
        members[conn] = None
        conn.room = room_id
        log.info("JOIN %s by %s (members: %d)", room_id, conn.describe(), len(members))
        return len(members)

    def leave(self, conn: Connection) -> Optional[str]:
        """Drop ``conn`` from its current room, if any; returns that room id."""

        room_id = conn.room
        if room_id is None:
            return None
        conn.room = None
        members = self._rooms.get(room_id)
        if members is not None:
            members.pop(conn, None)
            if not members:
                del self._rooms[room_id]
        return room_id

    def members(self, room_id: str) -> List[Connection]:
        return list(self._rooms.get(room_id, ()))

    def has_room(self, room_id: str) -> bool:
        return room_id in self._rooms

    async def broadcast(self, conn: Connection, text: str) -> int:
        """Relay ``text`` verbatim to the other members of ``conn``'s room."""

        if conn.room is None:
            return 0
        reached = 0
        for member in self.members(conn.room):
            if member is conn:
                continue
            if await member.try_send_text(text):
                reached += 1
        return reached


__all__ = ["RoomRegistry"]
