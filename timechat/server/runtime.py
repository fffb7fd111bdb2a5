from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Optional

import websockets
from websockets.asyncio.server import Server, ServerConnection, serve

from timechat.core.contacts import ContactEngine
from timechat.core.presence import PresenceRegistry
from timechat.core.rooms import RoomRegistry
from timechat.core.router import Router
from timechat.core.store import DurableStore
from timechat.core.ws import Connection

log = logging.getLogger("timechat.server.runtime")


class ServerRuntime:
    """Relay server: one task per websocket, shared registries and store."""

    def __init__(self, config: Dict[str, Any]) -> None:
        self.cfg = config
        self.listen_host = config.get("host", "0.0.0.0")
        self.listen_port = int(config.get("port", 8080))
        self.data_file = Path(config.get("data_file", "data.json"))

        self.store = DurableStore(self.data_file)
        self.presence = PresenceRegistry()
        self.rooms = RoomRegistry()
        self.engine: Optional[ContactEngine] = None
        self.router: Optional[Router] = None

        self._connections: list[Connection] = []
        self._ws_server: Optional[Server] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        self.engine = ContactEngine(self.store, self.presence)
        self.router = Router(self.engine, self.rooms)

        self._ws_server = await serve(self._handle_connection, self.listen_host, self.listen_port)
        log.info("Timechat relay listening on ws://%s:%d (store: %s)", self.listen_host, self.port, self.data_file)

    async def stop(self) -> None:
        for conn in list(self._connections):
            try:
                await conn.websocket.close()
            except websockets.WebSocketException:
                log.debug("Error closing %s", conn.describe())
        self._connections.clear()

        if self._ws_server is not None:
            self._ws_server.close()
            await self._ws_server.wait_closed()
            self._ws_server = None

    @property
    def port(self) -> int:
        """Bound port; differs from the configured one when that was 0."""

        if self._ws_server is None:
            return self.listen_port
        for sock in self._ws_server.sockets:
            return sock.getsockname()[1]
        return self.listen_port

    # ------------------------------------------------------------------
    # Connection handling
    # ------------------------------------------------------------------

    async def _handle_connection(self, websocket: ServerConnection) -> None:
        assert self.router is not None
        conn = Connection(websocket=websocket)
        self._connections.append(conn)
        log.debug("Accepted connection from %s", conn.describe())
        try:
            async for raw in websocket:
                await self.router.handle_text(conn, raw)
        except websockets.ConnectionClosed:
            pass
        finally:
            await self.router.disconnect(conn)
            try:
                self._connections.remove(conn)
            except ValueError:
                pass


__all__ = ["ServerRuntime"]
