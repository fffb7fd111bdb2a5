from __future__ import annotations

import time
import uuid
from typing import Any, Callable, Container, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictStr, field_validator


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

ROOM_SEPARATOR = "_"

PENDING = "pending"
ACCEPTED = "accepted"
REJECTED = "rejected"

RequestStatus = Literal["pending", "accepted", "rejected"]

REASON_BAD_REQUEST = "bad_request"
REASON_ALREADY_CONTACTS = "already_contacts"
REASON_ALREADY_PENDING = "already_pending"
REASON_DUPLICATE_ID = "duplicate_id"
REASON_NOT_FOUND = "not_found"

# Frames relayed verbatim to the other members of the sender's room.
RELAY_TYPES = frozenset({"message", "typing", "left"})


# ---------------------------------------------------------------------------
# Utility helpers
# ---------------------------------------------------------------------------

def now_ms() -> int:
    """Milliseconds since the Unix epoch."""

    return int(time.time() * 1000)


def normalize_alias(value: Any) -> str:
    """Trimmed alias, or "" for anything that is not a usable string."""

    if not isinstance(value, str):
        return ""
    return value.strip()


def room_id_for(a: str, b: str) -> str:
    """Deterministic two-party room id; both sides compute the same value."""

    first, second = sorted((a, b))
    return f"{first}{ROOM_SEPARATOR}{second}"


def new_request_id(taken: Container[str] = ()) -> str:
    """Fresh request id that is not in ``taken``."""

    while True:
        candidate = uuid.uuid4().hex
        if candidate not in taken:
            return candidate


IdFactory = Callable[[Container[str]], str]
NowFn = Callable[[], int]


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

class ContactRequest(BaseModel):
    """Directed request from one alias to another to become contacts."""

    id: str
    from_: str = Field(alias="from")
    to: str
    status: RequestStatus = PENDING
    created_at: int = Field(alias="createdAt", default_factory=now_ms)
    updated_at: Optional[int] = Field(default=None, alias="updatedAt")

    model_config = ConfigDict(populate_by_name=True)

    @property
    def is_pending(self) -> bool:
        return self.status == PENDING

    def involves(self, a: str, b: str) -> bool:
        """True when the request is between ``a`` and ``b`` in either direction."""

        return {self.from_, self.to} == {a, b}

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


# ---------------------------------------------------------------------------
# Inbound frames
# ---------------------------------------------------------------------------

class _Frame(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class RegisterFrame(_Frame):
    alias: StrictStr


class JoinFrame(_Frame):
    room: StrictStr

    @field_validator("room")
    @classmethod
    def _room_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("room must not be blank")
        return value


class RequestSendFrame(_Frame):
    to: StrictStr
    request_id: Optional[StrictStr] = Field(default=None, alias="requestId")
    from_: Optional[StrictStr] = Field(default=None, alias="from")


class RequestDecisionFrame(_Frame):
    """Shared shape of ``request_accept`` and ``request_reject``."""

    request_id: StrictStr = Field(alias="requestId")
    from_: Optional[StrictStr] = Field(default=None, alias="from")


class ContactDeleteFrame(_Frame):
    with_: StrictStr = Field(alias="with")
    from_: Optional[StrictStr] = Field(default=None, alias="from")


# ---------------------------------------------------------------------------
# Outbound frames
# ---------------------------------------------------------------------------

def build_frame(type: str, fields: Optional[Dict[str, Any]] = None, **extra: Any) -> Dict[str, Any]:
    """Outbound frame dict; ``None`` values are left out.

    Keys that are Python keywords (``with``) go through ``fields``.
    """

    merged = dict(fields or {})
    merged.update(extra)
    frame: Dict[str, Any] = {"type": type}
    frame.update({key: value for key, value in merged.items() if value is not None})
    return frame


__all__ = [
    "ACCEPTED",
    "PENDING",
    "REJECTED",
    "REASON_ALREADY_CONTACTS",
    "REASON_ALREADY_PENDING",
    "REASON_BAD_REQUEST",
    "REASON_DUPLICATE_ID",
    "REASON_NOT_FOUND",
    "RELAY_TYPES",
    "ContactRequest",
    "RegisterFrame",
    "JoinFrame",
    "RequestSendFrame",
    "RequestDecisionFrame",
    "ContactDeleteFrame",
    "build_frame",
    "new_request_id",
    "normalize_alias",
    "now_ms",
    "room_id_for",
]
