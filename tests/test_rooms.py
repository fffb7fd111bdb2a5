from __future__ import annotations

import pytest


def test_join_replaces_previous_membership(rooms, make_conn):
    conn = make_conn()

    rooms.join(conn, "a_b")
    rooms.join(conn, "a_c")

    assert conn.room == "a_c"
    assert rooms.members("a_c") == [conn]
    # the old room had no other member, so it is gone
    assert not rooms.has_room("a_b")


def test_leave_deletes_empty_room_only(rooms, make_conn):
    a, b = make_conn(), make_conn()
    rooms.join(a, "r")
    rooms.join(b, "r")

    assert rooms.leave(a) == "r"
    assert rooms.has_room("r")
    assert rooms.members("r") == [b]

    rooms.leave(b)
    assert not rooms.has_room("r")
    assert b.room is None


def test_leave_without_room_is_noop(rooms, make_conn):
    assert rooms.leave(make_conn()) is None


def test_rejoin_same_room_keeps_single_membership(rooms, make_conn):
    conn = make_conn()
    rooms.join(conn, "r")
    assert rooms.join(conn, "r") == 1


@pytest.mark.asyncio
async def test_broadcast_excludes_sender_and_is_verbatim(rooms, make_conn):
    sender, other, outsider = make_conn(), make_conn(), make_conn()
    rooms.join(sender, "cat_dog")
    rooms.join(other, "cat_dog")
    rooms.join(outsider, "elsewhere")
    raw = '{"type":"message","payload":{"body":"hi"}}'

    reached = await rooms.broadcast(sender, raw)

    assert reached == 1
    assert other.websocket.sent == [raw]
    assert sender.websocket.sent == []
    assert outsider.websocket.sent == []


@pytest.mark.asyncio
async def test_broadcast_outside_room_is_noop(rooms, make_conn):
    assert await rooms.broadcast(make_conn(), "{}") == 0


@pytest.mark.asyncio
async def test_broadcast_ignores_closed_members(rooms, make_conn):
    sender, dead = make_conn(), make_conn()
    dead.websocket.closed = True
    rooms.join(sender, "r")
    rooms.join(dead, "r")

    assert await rooms.broadcast(sender, "{}") == 0
