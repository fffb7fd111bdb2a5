from __future__ import annotations

import logging
import os
import threading
from pathlib import Path
from typing import Dict, List, Set, Tuple

import orjson
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .proto import ContactRequest, normalize_alias

log = logging.getLogger("timechat.core.store")

# One writer at a time per process, whatever the target file.
_SAVE_LOCK = threading.Lock()


class StoreState(BaseModel):
    """Everything that survives a restart: requests by recipient and the contact graph."""

    requests_by_to: Dict[str, List[ContactRequest]] = Field(default_factory=dict, alias="requestsByTo")
    contacts_by_alias: Dict[str, List[str]] = Field(default_factory=dict, alias="contactsByAlias")

    model_config = ConfigDict(populate_by_name=True)

    def to_document(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class DurableStore:
    """JSON document on disk, read once at startup and rewritten after every mutation."""

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)

    def load(self) -> StoreState:
        """Last persisted state, reconciled; an empty state if the file is missing or unreadable."""

        try:
            raw = self.path.read_bytes()
        except FileNotFoundError:
            log.info("No store at %s, starting empty", self.path)
            return StoreState()
        except OSError:
            log.exception("Could not read store %s, starting empty", self.path)
            return StoreState()

        try:
            state = StoreState.model_validate(orjson.loads(raw))
        except (orjson.JSONDecodeError, ValidationError) as exc:
            log.error("Corrupt store %s (%s), starting empty", self.path, exc.__class__.__name__)
            return StoreState()

        reconcile(state)
        log.info(
            "Loaded store %s: %d alias(es) with contacts, %d pending request(s)",
            self.path,
            len(state.contacts_by_alias),
            sum(len(reqs) for reqs in state.requests_by_to.values()),
        )
        return state

    def save(self, state: StoreState) -> bool:
        """Overwrite the document with ``state``. Failures are logged, never raised."""

        data = orjson.dumps(state.to_document(), option=orjson.OPT_INDENT_2)
        tmp = self.path.with_name(self.path.name + ".tmp")
        with _SAVE_LOCK:
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                tmp.write_bytes(data)
                os.replace(tmp, self.path)
            except OSError:
                log.exception("Failed to persist store to %s", self.path)
                return False
        return True


# ---------------------------------------------------------------------------
# Reconciliation
# ---------------------------------------------------------------------------

def reconcile(state: StoreState) -> int:
    """Repair a loaded document in place so the engine's invariants hold.

    Returns the number of repairs made.
    """

    fixes = _reconcile_contacts(state)
    fixes += _reconcile_requests(state)
    if fixes:
        log.warning("Reconciled store: %d repair(s) applied", fixes)
    return fixes


def _reconcile_contacts(state: StoreState) -> int:
    fixes = 0
    cleaned: Dict[str, List[str]] = {}
    for alias, others in state.contacts_by_alias.items():
        alias = alias.strip()
        if not alias:
            fixes += 1
            continue
        bucket = cleaned.setdefault(alias, [])
        for other in others:
            other = other.strip()
            if not other or other == alias or other in bucket:
                log.warning("Dropping contact entry %r for %s", other, alias)
                fixes += 1
                continue
            bucket.append(other)

    # edges only come from accepted requests, so a one-sided edge is completed
    for alias, others in list(cleaned.items()):
        for other in others:
            back = cleaned.setdefault(other, [])
            if alias not in back:
                log.warning("Restoring missing contact edge %s -> %s", other, alias)
                back.append(alias)
                fixes += 1

    state.contacts_by_alias = {alias: others for alias, others in cleaned.items() if others}
    return fixes


def _reconcile_requests(state: StoreState) -> int:
    fixes = 0
    contacts = state.contacts_by_alias
    pairs: Set[Tuple[str, str]] = set()
    ids: Set[Tuple[str, str]] = set()

    for to, reqs in state.requests_by_to.items():
        for req in reqs:
            from_, target = normalize_alias(req.from_), normalize_alias(req.to)
            if (from_, target) != (req.from_, req.to):
                log.warning("Trimming aliases of request %s", req.id)
                req.from_, req.to = from_, target
                fixes += 1
            if req.to != to:
                log.warning("Re-filing request %s under %r", req.id, req.to)
                fixes += 1

    ordered = sorted(
        (req for reqs in state.requests_by_to.values() for req in reqs),
        key=lambda req: req.created_at,
    )
    rebuilt: Dict[str, List[ContactRequest]] = {}
    for req in ordered:
        pair = tuple(sorted((req.from_, req.to)))
        if not req.is_pending:
            log.warning("Dropping %s request %s", req.status, req.id)
        elif not req.from_ or not req.to or req.from_ == req.to:
            log.warning("Dropping malformed request %s", req.id)
        elif req.to in contacts.get(req.from_, ()):
            log.warning("Dropping request %s between existing contacts %s/%s", req.id, req.from_, req.to)
        elif pair in pairs:
            log.warning("Dropping duplicate pending request %s for %s/%s", req.id, req.from_, req.to)
        elif (req.to, req.id) in ids:
            log.warning("Dropping request from %s reusing id %s pending for %s", req.from_, req.id, req.to)
        else:
            pairs.add(pair)
            ids.add((req.to, req.id))
            rebuilt.setdefault(req.to, []).append(req)
            continue
        fixes += 1

    state.requests_by_to = rebuilt
    return fixes


__all__ = ["DurableStore", "StoreState", "reconcile"]
