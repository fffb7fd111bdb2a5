from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional, TypeVar

from pydantic import BaseModel, ValidationError

from . import proto
from .contacts import ContactEngine
from .rooms import RoomRegistry
from .ws import Connection

log = logging.getLogger("timechat.core.router")

M = TypeVar("M", bound=BaseModel)


class Router:
    """Routes inbound text frames to the contact engine or the room relay."""

    def __init__(self, engine: ContactEngine, rooms: RoomRegistry) -> None:
        self.engine = engine
        self.rooms = rooms

    async def handle_text(self, conn: Connection, raw: str | bytes) -> None:
        if isinstance(raw, bytes):
            try:
                raw = raw.decode("utf-8")
            except UnicodeDecodeError:
                log.debug("Dropped non UTF-8 frame from %s", conn.describe())
                return
        try:
            data = json.loads(raw)
        except ValueError:
            log.debug("Dropped malformed JSON from %s", conn.describe())
            return
        if not isinstance(data, dict):
            log.debug("Dropped non-object frame from %s", conn.describe())
            return
        await self._dispatch(conn, data, raw)

    async def disconnect(self, conn: Connection) -> None:
        remaining = self.engine.presence.unregister(conn.alias, conn)
        room = self.rooms.leave(conn)
        if conn.alias:
            log.info("CLOSE %s (connections left: %d, room: %s)", conn.alias, remaining, room)
            if not self.engine.presence.is_online(conn.alias):
                log.info("OFFLINE %s", conn.alias)
        if room is not None and not self.rooms.has_room(room):
            log.debug("Room %s is empty and was dropped", room)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def _dispatch(self, conn: Connection, data: Dict[str, Any], raw: str) -> None:
        type_ = data.get("type")
        if type_ in proto.RELAY_TYPES:
            await self._relay(conn, type_, raw)
        elif type_ == "register":
            await self._handle_register(conn, data)
        elif type_ == "join":
            await self._handle_join(conn, data)
        elif type_ == "request_send":
            await self._handle_request_send(conn, data)
        elif type_ == "request_accept":
            await self._handle_request_decision(conn, data, accept=True)
        elif type_ == "request_reject":
            await self._handle_request_decision(conn, data, accept=False)
        elif type_ == "contact_delete":
            await self._handle_contact_delete(conn, data)
        else:
            log.debug("Ignored frame type %r from %s", type_, conn.describe())

    async def _handle_register(self, conn: Connection, data: Dict[str, Any]) -> None:
        frame = self._parse(proto.RegisterFrame, data)
        if frame is None:
            return
        await self.engine.register(conn, frame.alias)

    async def _handle_join(self, conn: Connection, data: Dict[str, Any]) -> None:
        frame = self._parse(proto.JoinFrame, data)
        if frame is None:
            return
        self.rooms.join(conn, frame.room)

    async def _handle_request_send(self, conn: Connection, data: Dict[str, Any]) -> None:
        frame = self._parse(proto.RequestSendFrame, data)
        if frame is None:
            return
        sender = self._acting_alias(conn, frame.from_)
        ack = await self.engine.send_request(sender, frame.to, frame.request_id)
        await conn.try_send(ack)

    async def _handle_request_decision(self, conn: Connection, data: Dict[str, Any], *, accept: bool) -> None:
        frame = self._parse(proto.RequestDecisionFrame, data)
        if frame is None:
            return
        actor = self._acting_alias(conn, frame.from_)
        if accept:
            ack = await self.engine.accept_request(actor, frame.request_id)
        else:
            ack = await self.engine.reject_request(actor, frame.request_id)
        await conn.try_send(ack)

    async def _handle_contact_delete(self, conn: Connection, data: Dict[str, Any]) -> None:
        frame = self._parse(proto.ContactDeleteFrame, data)
        if frame is None:
            return
        actor = self._acting_alias(conn, frame.from_)
        ack = await self.engine.delete_contact(actor, frame.with_)
        await conn.try_send(ack)

    async def _relay(self, conn: Connection, type_: str, raw: str) -> None:
        if conn.room is None:
            log.debug("Dropped %s from %s: not in a room", type_, conn.describe())
            return
        reached = await self.rooms.broadcast(conn, raw)
        log.debug("RELAY %s in %s to %d member(s)", type_, conn.room, reached)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _parse(model: type[M], data: Dict[str, Any]) -> Optional[M]:
        try:
            return model.model_validate(data)
        except ValidationError:
            log.debug("Dropped invalid %s frame", data.get("type"))
            return None

    @staticmethod
    def _acting_alias(conn: Connection, claimed: Optional[str]) -> str:
        """The connection's alias; an explicit ``from`` only counts before registration."""

        if conn.alias:
            return conn.alias
        return proto.normalize_alias(claimed)


__all__ = ["Router"]
