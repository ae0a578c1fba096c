"""WebSocket Server for file sync.

This module exposes a ``SyncEngine`` over WebSocket: every connection gets
its own ``SyncSession`` which receives the initial snapshot and then the
engine's broadcasts.

Usage:
    from syncserver.websocket import SyncWSServer

    server = SyncWSServer("/repo/flows", host="localhost", port=3001)
    await server.start()  # Blocks until shutdown
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from websockets.asyncio.server import Server, ServerConnection, serve
from websockets.exceptions import ConnectionClosed

from .config import SyncConfig
from .engine import SyncEngine
from .events import PROTOCOL_VERSION, Event, serialize_event
from .session import SyncSession


logger = logging.getLogger(__name__)


@dataclass
class ClientConnection:
    """Represents a connected client."""
    websocket: ServerConnection
    client_id: str
    connected_at: str
    session: SyncSession


class SyncWSServer:
    """WebSocket server wrapping SyncEngine.

    Handles:
    - Multiple client connections
    - Per-client initial-sync and broadcast delivery
    - Client write/delete requests
    - Connection lifecycle

    Example:
        server = SyncWSServer("/repo/flows", port=3001)

        # Option 1: Run standalone
        asyncio.run(server.start())

        # Option 2: Start in background
        await server.start_background()
        # ... do other things ...
        await server.stop()
    """

    def __init__(
        self,
        watch_dir: str,
        project_root: Optional[str] = None,
        host: Optional[str] = None,
        port: Optional[int] = None,
        config: Optional[SyncConfig] = None,
        engine: Optional[SyncEngine] = None,
        watch: bool = True,
    ):
        """Initialize the WebSocket server.

        Args:
            watch_dir: Directory to mirror.
            project_root: Root for wire paths; defaults to the parent of
                ``watch_dir``.
            host: Host to bind to; overrides ``config.host``.
            port: Port to bind to (0 picks a free one); overrides
                ``config.port``.
            config: Server tunables; read from the environment when None.
            engine: Pre-built engine, mainly for tests.
            watch: Whether to start the filesystem watcher.
        """
        self.config = config if config is not None else SyncConfig()
        self.host = host if host is not None else self.config.host
        self.port = port if port is not None else self.config.port
        self.engine = engine if engine is not None else SyncEngine(
            watch_dir, project_root=project_root, config=self.config,
        )
        self._watch = watch

        # Server state
        self._server: Optional[Server] = None
        self._clients: Dict[str, ClientConnection] = {}
        self._client_counter = 0
        self._lock = asyncio.Lock()

        self._ready = asyncio.Event()
        self._shutdown_event = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        """Start the server and block until shutdown.

        This method:
        1. Starts the filesystem watcher
        2. Starts the WebSocket server
        3. Blocks until stop() is called
        """
        if self._watch:
            self.engine.start()

        try:
            async with serve(
                self._handle_client,
                self.host,
                self.port,
                ping_interval=30,
                ping_timeout=10,
                max_size=None,
            ) as server:
                self._server = server
                self.port = self._bound_port(server)
                logger.info("WebSocket server listening on ws://%s:%s", self.host, self.port)
                self._ready.set()

                await self._shutdown_event.wait()
                await self._close_clients()
        finally:
            self._server = None
            await self.engine.stop()

        logger.info("Server stopped")

    def _bound_port(self, server: Server) -> int:
        for sock in server.sockets:
            return sock.getsockname()[1]
        return self.port

    async def start_background(self) -> None:
        """Start the server in a background task.

        Returns once the listening socket is bound. Use stop() to shut down.

        Raises:
            OSError: If the server could not bind.
        """
        self._task = asyncio.create_task(self.start())
        ready = asyncio.create_task(self._ready.wait())
        done, _ = await asyncio.wait({self._task, ready}, return_when=asyncio.FIRST_COMPLETED)
        if self._task in done:
            ready.cancel()
            self._task.result()

    async def stop(self) -> None:
        """Stop the server gracefully."""
        self._shutdown_event.set()
        task, self._task = self._task, None
        if task is not None:
            await task

    async def _close_clients(self) -> None:
        async with self._lock:
            clients = list(self._clients.values())
            self._clients.clear()
        for client in clients:
            await client.session.close()
            try:
                await client.websocket.close(1001, "Server shutting down")
            except ConnectionClosed:
                pass

    async def _handle_client(self, websocket: ServerConnection) -> None:
        """Handle a single client connection."""
        async def send(event: Event) -> None:
            await websocket.send(serialize_event(event))

        async with self._lock:
            self._client_counter += 1
            client_id = f"client_{self._client_counter}"
            session = SyncSession(self.engine, send, client_id)
            self._clients[client_id] = ClientConnection(
                websocket=websocket,
                client_id=client_id,
                connected_at=datetime.now(timezone.utc).isoformat(),
                session=session,
            )

        logger.info("Client connected: %s from %s", client_id, websocket.remote_address)

        try:
            if not await session.start():
                return

            async for message in websocket:
                await session.handle_message(message)

        except ConnectionClosed:
            pass
        except Exception as e:
            logger.error("Client error %s: %s", client_id, e)
        finally:
            await session.close()
            async with self._lock:
                self._clients.pop(client_id, None)
            logger.info("Client disconnected: %s", client_id)

    # =========================================================================
    # Status Methods
    # =========================================================================

    @property
    def client_count(self) -> int:
        """Get number of connected clients."""
        return len(self._clients)

    @property
    def is_running(self) -> bool:
        """Check if server is running."""
        return self._server is not None and not self._shutdown_event.is_set()

    def get_server_info(self) -> Dict[str, Any]:
        """Get server status information."""
        return {
            "host": self.host,
            "port": self.port,
            "is_running": self.is_running,
            "client_count": self.client_count,
            "protocol_version": PROTOCOL_VERSION,
            "watch_dir": self.engine.watch_dir,
            "project_root": self.engine.project_root,
            "active_files": self.engine.active_count,
        }
