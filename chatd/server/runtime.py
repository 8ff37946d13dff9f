from __future__ import annotations

import asyncio
import contextlib
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

import uvicorn
import websockets
from pydantic import ValidationError as PayloadError
from websockets.asyncio.server import Server, ServerConnection, serve

from chatd.core import proto
from chatd.core.auth import Authenticator
from chatd.core.presence import PresenceEntry, PresenceRegistry, snapshot_payload
from chatd.core.router import DeliveryRouter
from chatd.core.store import Store
from chatd.server.api import create_app

log = logging.getLogger("chatd.server.runtime")

DEFAULT_SECRET = "THIS_IS_A_JWT_SECRET_KEY"


@dataclass(slots=True)
class Connection:
    websocket: ServerConnection
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    send_lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    async def send(self, frame: Dict[str, Any]) -> None:
        text = proto.encode_frame(frame)
        async with self.send_lock:
            await self.websocket.send(text)


Handler = Callable[[Connection, Any], Awaitable[None]]


class _EmbeddedHTTPServer(uvicorn.Server):
    """uvicorn server that leaves signal handling to the owning process."""

    def capture_signals(self):
        return contextlib.nullcontext()


class ServerRuntime:
    """WebSocket presence/delivery server, with the HTTP API on the same loop."""

    def __init__(self, config: Dict[str, Any]) -> None:
        self.cfg = config
        self.listen_host, self.listen_port = self._parse_listen(config.get("listen", "0.0.0.0:8001"))
        http_cfg = config.get("http") or {}
        self.http_enabled = bool(http_cfg.get("enabled", True))
        self.http_host, self.http_port = self._parse_listen(http_cfg.get("listen", "0.0.0.0:8000"))
        self.cors_origins: List[str] = list(http_cfg.get("cors_origins", ["http://localhost:3000"]))
        auth_cfg = config.get("auth") or {}
        delivery_cfg = config.get("delivery") or {}

        self.store = Store(config.get("db_path", "chatd.db"))
        self.auth = Authenticator(
            auth_cfg.get("secret") or DEFAULT_SECRET,
            token_ttl=int(auth_cfg.get("token_ttl", 84600)),
        )
        self.registry = PresenceRegistry(on_change=self._on_presence_change)
        self.router = DeliveryRouter(
            self.registry,
            self.store,
            self.emit_to,
            persist=bool(delivery_cfg.get("persist_messages", True)),
        )

        self._connections: Dict[str, Connection] = {}
        self._handlers: Dict[str, Handler] = {
            proto.REGISTER: self._handle_register,
            proto.SEND_MESSAGE: self._handle_send_message,
        }

        self._ws_server: Optional[Server] = None
        self._http_server: Optional[_EmbeddedHTTPServer] = None
        self._tasks: list[asyncio.Task] = []
        self._broadcasts: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        await self.store.open()

        self._ws_server = await serve(self._handle_connection, self.listen_host, self.listen_port)
        # port 0 picks a free port; keep the real one
        self.listen_port = next(iter(self._ws_server.sockets)).getsockname()[1]
        log.info("chatd socket server listening on ws://%s:%d", self.listen_host, self.listen_port)

        if self.http_enabled:
            app = create_app(self.store, self.auth, cors_origins=self.cors_origins)
            config = uvicorn.Config(app, host=self.http_host, port=self.http_port, log_config=None)
            self._http_server = _EmbeddedHTTPServer(config)
            self._tasks.append(asyncio.create_task(self._http_server.serve(), name="http"))
            log.info("chatd HTTP API listening on http://%s:%d", self.http_host, self.http_port)

    async def stop(self) -> None:
        if self._http_server is not None:
            self._http_server.should_exit = True
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        self._http_server = None

        if self._ws_server is not None:
            self._ws_server.close()
            await self._ws_server.wait_closed()
            self._ws_server = None
        self._connections.clear()

        if self._broadcasts:
            await asyncio.gather(*self._broadcasts, return_exceptions=True)
        await self.store.close()

    # ------------------------------------------------------------------
    # Connection handling
    # ------------------------------------------------------------------

    async def _handle_connection(self, websocket: ServerConnection) -> None:
        conn = Connection(websocket=websocket)
        self._connections[conn.id] = conn
        log.debug("Accepted connection %s from %s", conn.id, self._fmt_remote(websocket))
        try:
            async for raw in websocket:
                await self.handle_raw(conn, raw)
        except websockets.ConnectionClosed:
            pass
        finally:
            self._connections.pop(conn.id, None)
            self.on_disconnect(conn)

    async def handle_raw(self, conn: Connection, raw: str | bytes) -> None:
        try:
            frame = proto.parse_frame(raw)
        except ValueError as exc:
            await self._send_error(conn, "BAD_FRAME", f"invalid frame: {exc}")
            return
        await self.dispatch(conn, frame)

    async def dispatch(self, conn: Connection, frame: proto.Frame) -> None:
        handler = self._handlers.get(frame.type)
        if handler is None:
            await self._send_error(conn, "UNKNOWN_TYPE", f"unsupported type {frame.type}")
            return
        await handler(conn, frame.payload)

    def on_disconnect(self, conn: Connection) -> None:
        self.registry.unregister(conn.id)
        log.debug("Connection %s closed", conn.id)

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------

    async def _handle_register(self, conn: Connection, payload: Any) -> None:
        user_id = payload.get("userId") if isinstance(payload, dict) else payload
        if not isinstance(user_id, str) or not user_id:
            await self._send_error(conn, "VALIDATION", "register needs a userId")
            return
        self.registry.register(user_id, conn.id)

    async def _handle_send_message(self, conn: Connection, payload: Any) -> None:
        if not isinstance(payload, dict):
            await self._send_error(conn, "VALIDATION", "sendMessage payload must be an object")
            return
        try:
            event = proto.MessageEvent.model_validate(payload)
        except PayloadError as exc:
            await self._send_error(conn, "VALIDATION", f"malformed sendMessage payload: {exc.error_count()} error(s)")
            return
        await self.router.route(event)

    # ------------------------------------------------------------------
    # Emission
    # ------------------------------------------------------------------

    async def emit_to(self, connection_id: str, type_: str, payload: Any) -> None:
        """Send one frame to a live connection. KeyError when it is not connected."""
        conn = self._connections[connection_id]
        await conn.send(proto.build_frame(type_, payload))

    async def broadcast(self, type_: str, payload: Any) -> None:
        frame = proto.build_frame(type_, payload)
        for conn in list(self._connections.values()):
            try:
                await conn.send(frame)
            except websockets.ConnectionClosed:
                log.debug("Skipped broadcast to closed connection %s", conn.id)

    def _on_presence_change(self, snapshot: List[PresenceEntry]) -> None:
        task = asyncio.get_running_loop().create_task(
            self.broadcast(proto.PRESENCE_SNAPSHOT, snapshot_payload(snapshot))
        )
        self._broadcasts.add(task)
        task.add_done_callback(self._broadcasts.discard)

    # ------------------------------------------------------------------
    # Utilities
    # ------------------------------------------------------------------

    async def _send_error(self, conn: Connection, code: str, detail: str) -> None:
        log.warning("Rejected frame from %s: %s", conn.id, detail)
        try:
            await conn.send(proto.build_frame(proto.ERROR, {"code": code, "detail": detail}))
        except websockets.ConnectionClosed:
            pass

    @staticmethod
    def _parse_listen(value: str) -> tuple[str, int]:
        host, port = value.rsplit(":", 1)
        return host, int(port)

    @staticmethod
    def _fmt_remote(websocket: ServerConnection) -> str:
        peer = websocket.remote_address
        if isinstance(peer, tuple):
            return f"{peer[0]}:{peer[1]}"
        return str(peer)


__all__ = ["ServerRuntime", "Connection"]
