"""Direct WebSocket links between peers.

Every peer serves a small FastAPI app under uvicorn. Other peers dial its
``/peer/{token}`` endpoint with the ``websockets`` client. The full URL of
that endpoint is the peer's identity, so a host's id is also the address
guests join.
"""

from __future__ import annotations

import asyncio
import json
import socket
import uuid
from typing import Any, Awaitable, Callable, Dict, Optional

import uvicorn
import websockets
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI

from ..errors import TransportError
from ..logging_config import get_logger
from ..protocol import PROTO_VERSION
from .base import ConnectionState, Link, PeerEventHandlers, PeerTransport

logger = get_logger(__name__)

PEER_PATH = "/peer/{token}"
CLOSE_UNKNOWN_PEER = 4404
CLOSE_PROTOCOL_MISMATCH = 4400


class _SocketLink(Link):
    """Wraps either side of a WebSocket behind an ordered writer queue."""

    def __init__(
        self,
        write: Callable[[str], Awaitable[None]],
        close: Callable[[], Awaitable[None]],
    ) -> None:
        self._write = write
        self._close = close
        self._open = True
        self._outbox: "asyncio.Queue[Optional[str]]" = asyncio.Queue()
        self._writer = asyncio.get_running_loop().create_task(self._drain())

    @property
    def open(self) -> bool:
        return self._open

    def send(self, frame: Dict[str, Any]) -> None:
        if self._open:
            self._outbox.put_nowait(json.dumps(frame, separators=(",", ":")))

    def close(self) -> None:
        if not self._open:
            return
        self._open = False
        self._outbox.put_nowait(None)

    def mark_closed(self) -> None:
        self._open = False
        self._writer.cancel()

    async def wait_closed(self, timeout: float = 1.0) -> None:
        await asyncio.wait({self._writer}, timeout=timeout)

    async def _drain(self) -> None:
        while True:
            text = await self._outbox.get()
            if text is None:
                break
            try:
                await self._write(text)
            except (ConnectionClosed, RuntimeError, OSError):
                logger.debug("Write on a closing socket dropped", exc_info=True)
                self._open = False
                return
        try:
            await self._close()
        except (ConnectionClosed, RuntimeError, OSError):
            pass


def build_peer_app(transport: "WebSocketTransport") -> FastAPI:
    app = FastAPI(title="peerplay", description="peer-to-peer room endpoint")

    @app.websocket(PEER_PATH)
    async def peer_channel(websocket: WebSocket, token: str) -> None:
        await websocket.accept()
        if token != transport.token or transport.peer_id is None:
            await websocket.close(code=CLOSE_UNKNOWN_PEER)
            return

        try:
            hello = await websocket.receive_json()
        except WebSocketDisconnect:
            return
        if (
            not isinstance(hello, dict)
            or hello.get("type") != "hello"
            or hello.get("proto") != PROTO_VERSION
            or not hello.get("peerId")
        ):
            await websocket.close(code=CLOSE_PROTOCOL_MISMATCH)
            return

        remote_id = str(hello["peerId"])
        link = _SocketLink(websocket.send_text, websocket.close)
        transport._opened(remote_id, link, inbound=True)
        try:
            while True:
                frame = await websocket.receive_json()
                transport._deliver(frame, remote_id)
        except (WebSocketDisconnect, RuntimeError):
            pass
        except ValueError:
            logger.warning("Non-JSON frame from %s; closing link", remote_id)
        finally:
            link.mark_closed()
            transport._closed(remote_id, link)

    return app


class WebSocketTransport(PeerTransport):
    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = 0,
        advertise_host: Optional[str] = None,
        connect_timeout: float = 10.0,
    ) -> None:
        super().__init__()
        self.host = host
        self.port = port
        self.advertise_host = advertise_host
        self.connect_timeout = connect_timeout
        self.token = uuid.uuid4().hex[:16]
        self.app = build_peer_app(self)
        self._server: Optional[uvicorn.Server] = None
        self._server_task: Optional[asyncio.Task] = None
        self._readers: Dict[str, asyncio.Task] = {}

    def _public_host(self) -> str:
        if self.advertise_host:
            return self.advertise_host
        if self.host in ("0.0.0.0", "::", ""):
            return socket.gethostbyname(socket.gethostname())
        return self.host

    async def initialize(self, handlers: Optional[PeerEventHandlers] = None) -> str:
        if handlers is not None:
            self._handlers = handlers
        if self._peer_id and self._state == ConnectionState.CONNECTED:
            return self._peer_id

        await self.cleanup()
        self._state = ConnectionState.CONNECTING
        self.token = uuid.uuid4().hex[:16]
        try:
            sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((self.host, self.port))
        except OSError as exc:
            error = TransportError(f"Unable to listen on {self.host}:{self.port}: {exc}")
            self._state = ConnectionState.ERROR
            logger.error("%s", error)
            if self._handlers.on_error:
                self._handlers.on_error(error)
            raise error from exc

        bound_port = sock.getsockname()[1]
        config = uvicorn.Config(
            self.app, log_level="warning", lifespan="off", access_log=False
        )
        self._server = uvicorn.Server(config)
        self._server_task = asyncio.create_task(self._server.serve(sockets=[sock]))
        while not self._server.started:
            if self._server_task.done():
                self._state = ConnectionState.ERROR
                error = TransportError("Peer endpoint failed to start")
                if self._handlers.on_error:
                    self._handlers.on_error(error)
                raise error
            await asyncio.sleep(0.01)

        self.port = bound_port
        self._peer_id = f"ws://{self._public_host()}:{bound_port}/peer/{self.token}"
        self._state = ConnectionState.CONNECTED
        logger.info("Connected with ID: %s", self._peer_id)
        if self._handlers.on_open:
            self._handlers.on_open(self._peer_id)
        return self._peer_id

    async def connect_to_peer(self, remote_peer_id: str) -> None:
        self_id = self._require_initialized()
        existing = self._links.get(remote_peer_id)
        if existing is not None and existing.open:
            return

        try:
            ws = await asyncio.wait_for(
                websockets.connect(remote_peer_id), timeout=self.connect_timeout
            )
            await ws.send(
                json.dumps({"type": "hello", "peerId": self_id, "proto": PROTO_VERSION})
            )
        except asyncio.TimeoutError as exc:
            raise TransportError("Connection timeout") from exc
        except (OSError, InvalidHandshake, InvalidURI, ConnectionClosed) as exc:
            raise TransportError(f"Could not connect to peer {remote_peer_id}: {exc}") from exc

        link = _SocketLink(ws.send, ws.close)
        self._opened(remote_peer_id, link, inbound=False)
        self._readers[remote_peer_id] = asyncio.create_task(
            self._read(remote_peer_id, ws, link)
        )

    async def _read(self, remote_id: str, ws: Any, link: _SocketLink) -> None:
        try:
            async for raw in ws:
                try:
                    frame = json.loads(raw)
                except ValueError:
                    logger.warning("Non-JSON frame from %s dropped", remote_id)
                    continue
                self._deliver(frame, remote_id)
        except ConnectionClosed:
            pass
        finally:
            link.mark_closed()
            if self._readers.get(remote_id) is asyncio.current_task():
                del self._readers[remote_id]
            self._closed(remote_id, link)

    async def cleanup(self) -> None:
        links = [link for link in self._links.values() if isinstance(link, _SocketLink)]
        await super().cleanup()
        if links:
            await asyncio.gather(*(link.wait_closed() for link in links))
        readers = list(self._readers.values())
        self._readers.clear()
        for task in readers:
            task.cancel()
        await asyncio.gather(*readers, return_exceptions=True)
        if self._server is not None and self._server_task is not None:
            self._server.should_exit = True
            await asyncio.gather(self._server_task, return_exceptions=True)
        self._server = None
        self._server_task = None
