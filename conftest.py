import json

import pytest
import websockets

from timechat.core.contacts import ContactEngine
from timechat.core.presence import PresenceRegistry
from timechat.core.rooms import RoomRegistry
from timechat.core.router import Router
from timechat.core.store import DurableStore
from timechat.core.ws import Connection


class FakeWebSocket:
    """Stands in for a websocket: records text frames, raises once closed."""

    def __init__(self, port=50000):
        self.sent = []
        self.closed = False
        self.remote_address = ("127.0.0.1", port)

    async def send(self, text):
        if self.closed:
            raise websockets.ConnectionClosed(None, None)
        self.sent.append(text)

    def frames(self, type_=None):
        decoded = [json.loads(text) for text in self.sent]
        if type_ is None:
            return decoded
        return [frame for frame in decoded if frame.get("type") == type_]

    def last(self, type_):
        matching = self.frames(type_)
        assert matching, f"no {type_} frame sent; got {[f.get('type') for f in self.frames()]}"
        return matching[-1]


@pytest.fixture
def make_conn():
    counter = {"port": 50000}

    def _make():
        counter["port"] += 1
        return Connection(websocket=FakeWebSocket(counter["port"]))

    return _make


@pytest.fixture
def store(tmp_path):
    return DurableStore(tmp_path / "data.json")


@pytest.fixture
def presence():
    return PresenceRegistry()


@pytest.fixture
def rooms():
    return RoomRegistry()


@pytest.fixture
def engine(store, presence):
    return ContactEngine(store, presence)


@pytest.fixture
def router(engine, rooms):
    return Router(engine, rooms)
