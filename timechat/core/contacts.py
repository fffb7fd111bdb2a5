from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from . import proto
from .presence import PresenceRegistry
from .proto import ContactRequest, IdFactory, NowFn, build_frame, normalize_alias
from .store import DurableStore, StoreState
from .ws import Connection

log = logging.getLogger("timechat.core.contacts")

Frame = Dict[str, Any]


class ContactEngine:
    """Contact-request state machine over the durable store.

    Every mutation is saved before any notification goes out. Operations
    return the acknowledgement frame for the requester; pushes to other
    aliases happen inside the operation.
    """

    def __init__(
        self,
        store: DurableStore,
        presence: PresenceRegistry,
        *,
        state: Optional[StoreState] = None,
        now: NowFn = proto.now_ms,
        new_id: IdFactory = proto.new_request_id,
    ) -> None:
        self.store = store
        self.presence = presence
        self.state = state if state is not None else store.load()
        self.now = now
        self.new_id = new_id

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def contacts_of(self, alias: str) -> List[str]:
        return list(self.state.contacts_by_alias.get(alias, ()))

    def pending_for(self, alias: str) -> List[ContactRequest]:
        """Pending requests addressed to ``alias``."""

        return [req for req in self.state.requests_by_to.get(alias, ()) if req.is_pending]

    def pending_between(self, a: str, b: str) -> List[ContactRequest]:
        found = []
        for to in (a, b):
            found.extend(req for req in self.state.requests_by_to.get(to, ()) if req.is_pending and req.involves(a, b))
        return found

    def are_contacts(self, a: str, b: str) -> bool:
        return b in self.state.contacts_by_alias.get(a, ())

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    async def register(self, conn: Connection, alias: str) -> bool:
        """Bind ``conn`` to ``alias`` and send it the bootstrap snapshot."""

        alias = normalize_alias(alias)
        if not alias:
            return False
        if conn.alias and conn.alias != alias:
            self.presence.unregister(conn.alias, conn)
        conn.alias = alias
        count = self.presence.register(alias, conn)
        log.info("REGISTER %s (connections: %d)", alias, count)

        await conn.try_send(build_frame("registered", alias=alias))
        await conn.try_send(
            build_frame(
                "bootstrap",
                alias=alias,
                contacts=self.contacts_of(alias),
                pendingRequests=[req.to_wire() for req in self.pending_for(alias)],
            )
        )
        return True

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    async def send_request(self, sender: str, target: str, request_id: Optional[str] = None) -> Frame:
        sender = normalize_alias(sender)
        target = normalize_alias(target)

        def refuse(reason: str) -> Frame:
            log.info("REQUEST %s -> %s refused: %s", sender or "?", target or "?", reason)
            return build_frame("request_sent", ok=False, to=target, requestId=request_id, reason=reason)

        if not sender or not target or sender == target:
            return refuse(proto.REASON_BAD_REQUEST)
        if self.are_contacts(sender, target):
            return refuse(proto.REASON_ALREADY_CONTACTS)
        if self.pending_between(sender, target):
            return refuse(proto.REASON_ALREADY_PENDING)

        taken = {req.id for req in self.state.requests_by_to.get(target, ())}
        if not request_id:
            request_id = self.new_id(taken)
        elif request_id in taken:
            return refuse(proto.REASON_DUPLICATE_ID)

        request = ContactRequest(id=request_id, from_=sender, to=target, created_at=self.now())
        self.state.requests_by_to.setdefault(target, []).append(request)
        self.store.save(self.state)
        log.info("REQUEST %s -> %s (%s)", sender, target, request.id)

        await self.presence.push(target, build_frame("request_received", request=request.to_wire()))
        return build_frame("request_sent", ok=True, to=target, requestId=request.id)

    async def accept_request(self, acceptor: str, request_id: str) -> Frame:
        acceptor = normalize_alias(acceptor)
        request = self._find_pending(acceptor, request_id)
        if request is None:
            log.info("ACCEPT by %s of unknown request %s", acceptor or "?", request_id)
            return build_frame("request_accept_ok", ok=False, requestId=request_id, reason=proto.REASON_NOT_FOUND)

        requester = request.from_
        request.status = proto.ACCEPTED
        request.updated_at = self.now()
        self._link(requester, acceptor)
        purged = self._purge_pair(requester, acceptor)
        self.store.save(self.state)
        log.info("ACCEPT %s accepted %s (%s, %d pending purged)", acceptor, requester, request.id, len(purged))

        room = proto.room_id_for(requester, acceptor)
        await self.presence.push(requester, build_frame("request_accepted", by=acceptor, requestId=request.id))
        for me, other in ((requester, acceptor), (acceptor, requester)):
            await self.presence.push(me, build_frame("contact_added", {"with": other}))
            await self.presence.push(me, build_frame("open_chat", {"with": other}, room=room))
        return build_frame("request_accept_ok", {"with": requester}, ok=True, requestId=request.id)

    async def reject_request(self, rejector: str, request_id: str) -> Frame:
        rejector = normalize_alias(rejector)
        request = self._find_pending(rejector, request_id)
        if request is None:
            log.info("REJECT by %s of unknown request %s", rejector or "?", request_id)
            return build_frame("request_reject_ok", ok=False, requestId=request_id, reason=proto.REASON_NOT_FOUND)

        requester = request.from_
        request.status = proto.REJECTED
        request.updated_at = self.now()
        purged = self._purge_pair(requester, rejector)
        self.store.save(self.state)
        log.info("REJECT %s rejected %s (%s, %d pending purged)", rejector, requester, request.id, len(purged))

        await self.presence.push(requester, build_frame("request_rejected", by=rejector, requestId=request.id))
        return build_frame("request_reject_ok", ok=True, requestId=request.id)

    # ------------------------------------------------------------------
    # Contacts
    # ------------------------------------------------------------------

    async def delete_contact(self, me: str, other: str) -> Frame:
        me = normalize_alias(me)
        other = normalize_alias(other)
        if not me or not other or me == other:
            return build_frame("contact_delete_ok", {"with": other}, ok=False, reason=proto.REASON_BAD_REQUEST)

        removed = self._unlink(me, other)
        purged = self._purge_pair(me, other)
        self.store.save(self.state)
        log.info("DELETE %s removed %s (edge: %s, %d pending purged)", me, other, removed, len(purged))

        await self.presence.push(me, build_frame("contact_removed", {"with": other}))
        await self.presence.push(other, build_frame("contact_removed", {"with": me}))
        return build_frame("contact_delete_ok", {"with": other}, ok=True)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _find_pending(self, to: str, request_id: Any) -> Optional[ContactRequest]:
        if not to or not isinstance(request_id, str) or not request_id:
            return None
        for req in self.state.requests_by_to.get(to, ()):
            if req.id == request_id and req.is_pending:
                return req
        return None

    def _link(self, a: str, b: str) -> None:
        for me, other in ((a, b), (b, a)):
            contacts = self.state.contacts_by_alias.setdefault(me, [])
            if other not in contacts:
                contacts.append(other)

    def _unlink(self, a: str, b: str) -> bool:
        removed = False
        for me, other in ((a, b), (b, a)):
            contacts = self.state.contacts_by_alias.get(me)
            if contacts and other in contacts:
                contacts.remove(other)
                removed = True
                if not contacts:
                    del self.state.contacts_by_alias[me]
        return removed

    def _purge_pair(self, a: str, b: str) -> List[ContactRequest]:
        """Remove every request between ``a`` and ``b``, in either direction."""

        purged: List[ContactRequest] = []
        for to in (a, b):
            requests = self.state.requests_by_to.get(to)
            if not requests:
                continue
            kept = []
            for req in requests:
                (purged if req.involves(a, b) else kept).append(req)
            if kept:
                self.state.requests_by_to[to] = kept
            else:
                del self.state.requests_by_to[to]
        return purged


__all__ = ["ContactEngine"]
