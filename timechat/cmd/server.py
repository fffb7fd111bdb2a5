from __future__ import annotations

import argparse
import asyncio
import logging
import signal
from pathlib import Path

from timechat.server.config import load_config
from timechat.server.runtime import ServerRuntime

log = logging.getLogger("timechat.cmd.server")


async def _run(config: dict) -> None:
    runtime = ServerRuntime(config)
    await runtime.start()

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    try:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop_event.set)
    except NotImplementedError:
        pass

    log.info("Server running. Press Ctrl+C to stop.")
    try:
        await stop_event.wait()
    finally:
        await runtime.stop()


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Timechat contact and room relay")
    parser.add_argument("--config", default=None, help="Optional YAML config file")
    parser.add_argument("--port", type=int, default=None, help="Listening port (overrides config and PORT)")
    parser.add_argument("--data-file", default=None, help="Store path (overrides config and TIMECHAT_DATA_FILE)")
    args = parser.parse_args(argv)

    config = load_config(Path(args.config) if args.config else None)
    if args.port is not None:
        config["port"] = args.port
    if args.data_file:
        config["data_file"] = args.data_file

    logging.basicConfig(level=config["log_level"], format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    asyncio.run(_run(config))


if __name__ == "__main__":
    main()
