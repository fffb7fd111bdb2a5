from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
import sys
from typing import Any, Dict, Optional

import websockets
from websockets.asyncio.client import ClientConnection, connect

from timechat.core import proto

log = logging.getLogger("timechat.cmd.client")

HELP = (
    "Commands: /request <alias>, /accept <id>, /reject <id>, /delete <alias>, "
    "/join <room>, /chat <alias>, /typing, /quit. Anything else is sent to the current room."
)


def parse_command(line: str, alias: str, room: Optional[str] = None) -> Optional[Dict[str, Any]]:
    """Turn one input line into an outbound frame, or None if there is nothing to send."""

    line = line.strip()
    if not line:
        return None
    if not line.startswith("/"):
        if room is None:
            return None
        return {"type": "message", "payload": {"from": alias, "body": line, "ts": proto.now_ms()}}

    parts = line.split(maxsplit=1)
    cmd = parts[0]
    arg = parts[1].strip() if len(parts) > 1 else ""
    if cmd == "/request" and arg:
        return {"type": "request_send", "to": arg}
    if cmd == "/accept" and arg:
        return {"type": "request_accept", "requestId": arg}
    if cmd == "/reject" and arg:
        return {"type": "request_reject", "requestId": arg}
    if cmd == "/delete" and arg:
        return {"type": "contact_delete", "with": arg}
    if cmd == "/join" and arg:
        return {"type": "join", "room": arg}
    if cmd == "/chat" and arg:
        return {"type": "join", "room": proto.room_id_for(alias, arg)}
    if cmd == "/typing" and room is not None:
        return {"type": "typing", "payload": {"from": alias}}
    return None


class ClientApp:
    def __init__(self, server_url: str, alias: str) -> None:
        self.server_url = server_url
        self.alias = alias
        self.room: Optional[str] = None
        self.ws: Optional[ClientConnection] = None
        self.stop_event = asyncio.Event()

    async def run(self) -> None:
        async with connect(self.server_url) as ws:
            self.ws = ws
            await self._send({"type": "register", "alias": self.alias})
            receiver = asyncio.create_task(self._rx_loop())
            try:
                await self._command_loop()
            finally:
                self.stop_event.set()
                receiver.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await receiver

    async def _command_loop(self) -> None:
        loop = asyncio.get_running_loop()
        print(f"Timechat client ready as {self.alias}. {HELP}")
        while not self.stop_event.is_set():
            line = await loop.run_in_executor(None, sys.stdin.readline)
            if not line:
                break
            if line.strip() in {"/quit", "/exit"}:
                break
            frame = parse_command(line, self.alias, self.room)
            if frame is None:
                print(HELP if line.strip().startswith("/") else "Join a room first (/chat <alias>)")
                continue
            if frame["type"] == "join":
                self.room = frame["room"]
            await self._send(frame)

    async def _rx_loop(self) -> None:
        assert self.ws is not None
        try:
            async for raw in self.ws:
                try:
                    frame = json.loads(raw)
                except ValueError:
                    log.warning("Dropped invalid frame: %s", raw)
                    continue
                await self._handle_incoming(frame)
        except websockets.ConnectionClosed:
            pass
        finally:
            self.stop_event.set()

    async def _handle_incoming(self, frame: Dict[str, Any]) -> None:
        typ = frame.get("type")
        if typ == "bootstrap":
            print(f"Contacts: {', '.join(frame.get('contacts') or []) or '-'}")
            for req in frame.get("pendingRequests") or []:
                print(f"Pending request {req.get('id')} from {req.get('from')}")
        elif typ == "request_received":
            req = frame.get("request") or {}
            print(f"Request {req.get('id')} from {req.get('from')} (/accept or /reject)")
        elif typ == "open_chat":
            self.room = frame.get("room")
            await self._send({"type": "join", "room": self.room})
            print(f"Chat with {frame.get('with')} open in room {self.room}")
        elif typ == "message":
            payload = frame.get("payload") or {}
            print(f"<{payload.get('from', '?')}> {payload.get('body', '')}")
        elif typ == "typing":
            log.debug("%s is typing", (frame.get("payload") or {}).get("from"))
        else:
            print(json.dumps(frame))

    async def _send(self, frame: Dict[str, Any]) -> None:
        assert self.ws is not None
        await self.ws.send(json.dumps(frame))


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Timechat terminal client")
    parser.add_argument("--server", default="ws://127.0.0.1:8080", help="ws://host:port of the relay")
    parser.add_argument("--alias", required=True, help="Alias to register under")
    parser.add_argument("--verbose", action="store_true")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app = ClientApp(args.server, args.alias.strip())
    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(app.run())


if __name__ == "__main__":
    main()
