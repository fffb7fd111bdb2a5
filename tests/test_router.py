from __future__ import annotations

import json
import logging

import pytest


def _text(frame):
    return json.dumps(frame)


async def _register(router, conn, alias):
    await router.handle_text(conn, _text({"type": "register", "alias": alias}))
    return conn


# -----------------------------
# Malformed input
# -----------------------------

@pytest.mark.asyncio
@pytest.mark.parametrize(
    "raw",
    [
        "{not json",
        "[1, 2, 3]",
        '"register"',
        b"\xff\xfe",
        _text({"type": "register", "alias": 7}),
        _text({"type": "register"}),
        _text({"type": "request_send", "to": None}),
        _text({"type": "request_accept"}),
        _text({"type": "join", "room": ""}),
        _text({"type": "no_such_type"}),
    ],
)
async def test_malformed_frames_are_dropped_silently(router, engine, make_conn, raw):
    conn = make_conn()

    await router.handle_text(conn, raw)

    assert conn.websocket.sent == []
    assert conn.alias is None
    assert conn.room is None
    assert engine.state.requests_by_to == {}


# -----------------------------
# Contact flow
# -----------------------------

@pytest.mark.asyncio
async def test_cat_and_dog_become_contacts_and_get_a_room(router, make_conn):
    cat = await _register(router, make_conn(), "cat")
    dog = await _register(router, make_conn(), "dog")
    assert cat.websocket.last("registered") == {"type": "registered", "alias": "cat"}

    await router.handle_text(cat, _text({"type": "request_send", "to": "dog"}))
    sent = cat.websocket.last("request_sent")
    received = dog.websocket.last("request_received")["request"]
    assert sent["ok"] is True
    assert received["id"] == sent["requestId"]
    assert received["from"] == "cat"

    await router.handle_text(dog, _text({"type": "request_accept", "requestId": received["id"]}))

    assert dog.websocket.last("request_accept_ok") == {
        "type": "request_accept_ok",
        "ok": True,
        "requestId": received["id"],
        "with": "cat",
    }
    for conn, other in ((cat, "dog"), (dog, "cat")):
        assert conn.websocket.last("contact_added")["with"] == other
        assert conn.websocket.last("open_chat")["room"] == "cat_dog"


@pytest.mark.asyncio
async def test_reject_and_delete_are_acknowledged(router, make_conn):
    cat = await _register(router, make_conn(), "cat")
    dog = await _register(router, make_conn(), "dog")

    await router.handle_text(cat, _text({"type": "request_send", "to": "dog", "requestId": "r1"}))
    await router.handle_text(dog, _text({"type": "request_reject", "requestId": "r1"}))
    assert dog.websocket.last("request_reject_ok")["ok"] is True
    assert cat.websocket.last("request_rejected")["by"] == "dog"

    await router.handle_text(cat, _text({"type": "contact_delete", "with": "dog"}))
    assert cat.websocket.last("contact_delete_ok") == {"type": "contact_delete_ok", "with": "dog", "ok": True}
    assert dog.websocket.last("contact_removed")["with"] == "cat"


@pytest.mark.asyncio
async def test_unregistered_connection_may_name_itself_with_from(router, make_conn):
    anon = make_conn()
    dog = await _register(router, make_conn(), "dog")

    await router.handle_text(anon, _text({"type": "request_send", "from": "cat", "to": "dog", "requestId": "r1"}))

    assert anon.websocket.last("request_sent")["ok"] is True
    assert dog.websocket.last("request_received")["request"]["from"] == "cat"


@pytest.mark.asyncio
async def test_registered_alias_wins_over_claimed_from(router, make_conn):
    cat = await _register(router, make_conn(), "cat")
    dog = await _register(router, make_conn(), "dog")

    await router.handle_text(cat, _text({"type": "request_send", "from": "fox", "to": "dog"}))

    assert dog.websocket.last("request_received")["request"]["from"] == "cat"


@pytest.mark.asyncio
async def test_request_without_any_alias_is_bad_request(router, make_conn):
    anon = make_conn()

    await router.handle_text(anon, _text({"type": "request_send", "to": "dog"}))

    assert anon.websocket.last("request_sent")["reason"] == "bad_request"


# -----------------------------
# Room relay
# -----------------------------

@pytest.mark.asyncio
async def test_message_and_typing_relay_verbatim_within_room(router, make_conn):
    cat, dog, fox = make_conn(), make_conn(), make_conn()
    for conn in (cat, dog):
        await router.handle_text(conn, _text({"type": "join", "room": "cat_dog"}))
    await router.handle_text(fox, _text({"type": "join", "room": "fox_owl"}))

    raw = '{"type": "message", "payload": {"from": "cat", "body": "hola"}}'
    await router.handle_text(cat, raw)
    await router.handle_text(cat, '{"type":"typing","payload":{"from":"cat"}}')

    assert dog.websocket.sent == [raw, '{"type":"typing","payload":{"from":"cat"}}']
    assert cat.websocket.sent == []
    assert fox.websocket.sent == []


@pytest.mark.asyncio
async def test_message_outside_room_is_dropped(router, make_conn):
    cat = make_conn()
    await router.handle_text(cat, _text({"type": "message", "payload": {"body": "hi"}}))
    assert cat.websocket.sent == []


# -----------------------------
# Disconnect
# -----------------------------

@pytest.mark.asyncio
async def test_disconnect_removes_connection_from_every_registry(router, presence, rooms, make_conn):
    first = await _register(router, make_conn(), "x")
    second = await _register(router, make_conn(), "x")
    await router.handle_text(first, _text({"type": "join", "room": "x_y"}))

    await router.disconnect(first)

    assert presence.connections("x") == [second]
    assert not rooms.has_room("x_y")

    await router.disconnect(second)

    assert not presence.is_online("x")


@pytest.mark.asyncio
async def test_disconnect_of_anonymous_connection(router, make_conn):
    await router.disconnect(make_conn())


@pytest.mark.asyncio
async def test_disconnect_logs_when_alias_goes_offline_and_room_empties(router, make_conn, caplog):
    caplog.set_level(logging.DEBUG, logger="timechat.core.router")
    first = await _register(router, make_conn(), "x")
    second = await _register(router, make_conn(), "x")
    await router.handle_text(first, _text({"type": "join", "room": "x_y"}))
    await router.handle_text(second, _text({"type": "join", "room": "x_y"}))

    await router.disconnect(first)
    assert "OFFLINE x" not in caplog.text
    assert "Room x_y is empty" not in caplog.text

    await router.disconnect(second)
    assert "OFFLINE x" in caplog.text
    assert "Room x_y is empty" in caplog.text
