from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import os
import signal
from pathlib import Path
from typing import Any, Dict, Mapping

import yaml

from chatd.server.runtime import ServerRuntime

log = logging.getLogger("chatd.cmd.server")


def load_config(path: Path | None, environ: Mapping[str, str] = os.environ) -> Dict[str, Any]:
    """Read the YAML config (if any) and apply environment overrides."""
    config: Dict[str, Any] = {}
    if path is not None:
        config = yaml.safe_load(path.read_text()) or {}

    if environ.get("CHATD_DB_PATH"):
        config["db_path"] = environ["CHATD_DB_PATH"]
    if environ.get("JWT_SECRET_KEY"):
        config.setdefault("auth", {})["secret"] = environ["JWT_SECRET_KEY"]
    if environ.get("PORT"):
        http = config.setdefault("http", {})
        host = str(http.get("listen", "0.0.0.0:8000")).rsplit(":", 1)[0]
        http["listen"] = f"{host}:{int(environ['PORT'])}"
    return config


async def serve_until_signalled(runtime: ServerRuntime, stopped: asyncio.Event | None = None) -> None:
    """Run ``runtime`` until SIGINT/SIGTERM (or until ``stopped`` is set), then shut it down."""
    if stopped is None:
        stopped = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stopped.set)

    await runtime.start()
    log.info("chatd up on socket port %d; SIGINT/SIGTERM to stop", runtime.listen_port)
    try:
        await stopped.wait()
    finally:
        await runtime.stop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(NotImplementedError):
                loop.remove_signal_handler(sig)
        log.info("chatd stopped")


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="chatd real-time chat server")
    parser.add_argument("--config", help="Path to server YAML config")
    parser.add_argument("--log-level", help="Overrides log_level from the config")
    args = parser.parse_args(argv)

    config = load_config(Path(args.config) if args.config else None)
    level = (args.log_level or config.get("log_level") or "INFO").upper()
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    asyncio.run(serve_until_signalled(ServerRuntime(config)))


if __name__ == "__main__":
    main()
