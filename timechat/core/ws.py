from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import websockets

log = logging.getLogger("timechat.core.ws")


@dataclass(slots=True, eq=False)
class Connection:
    """State owned by the task serving one websocket.

    Registries only hold references to it; identity is the object itself.
    """

    websocket: Any
    alias: Optional[str] = None
    room: Optional[str] = None
    send_lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    async def send(self, frame: Dict[str, Any]) -> None:
        await self.send_text(json.dumps(frame, separators=(",", ":")))

    async def send_text(self, text: str) -> None:
        async with self.send_lock:
            await self.websocket.send(text)

    async def try_send(self, frame: Dict[str, Any]) -> bool:
        """Best-effort send; a closed connection yields False."""

        try:
            await self.send(frame)
        except websockets.ConnectionClosed:
            log.debug("Dropped %s frame for closed connection %s", frame.get("type"), self.describe())
            return False
        return True

    async def try_send_text(self, text: str) -> bool:
        try:
            await self.send_text(text)
        except websockets.ConnectionClosed:
            log.debug("Dropped relay frame for closed connection %s", self.describe())
            return False
        return True

    def describe(self) -> str:
        peer = getattr(self.websocket, "remote_address", None)
        if isinstance(peer, tuple):
            where = f"{peer[0]}:{peer[1]}"
        else:
            where = str(peer)
        return f"{self.alias or '?'}@{where}"


__all__ = ["Connection"]
