"""Per-client sync session.

A session is transport-agnostic: it is given a coroutine that delivers one
event to its client. Broadcasts from the engine land in the session's own
queue and a pump task drains it, so one slow or dead client never delays the
others and every client sees events in broadcast order.

Connect sequence:
    1. subscribe to engine broadcasts (queued, not yet delivered)
    2. await the engine's initial snapshot and send it
    3. start delivering the queue

Anything broadcast while the snapshot was being prepared is delivered right
after it, so no change is lost in between.
"""

import asyncio
import base64
import binascii
import logging
import os
from typing import Awaitable, Callable, Optional

from .engine import SyncEngine
from .events import (
    DELETE,
    ClientFileChangeRequest,
    ErrorEvent,
    Event,
    ProtocolError,
    parse_client_request,
)

logger = logging.getLogger(__name__)

SendFunc = Callable[[Event], Awaitable[None]]


def _write_file(path: str, data: bytes) -> None:
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "wb") as f:
        f.write(data)


def _remove_file(path: str) -> bool:
    try:
        os.remove(path)
    except FileNotFoundError:
        return False
    return True


class SyncSession:
    """One connected client of a ``SyncEngine``."""

    def __init__(self, engine: SyncEngine, send: SendFunc, client_id: str):
        """Initialize the session.

        Args:
            engine: Engine whose broadcasts this client receives.
            send: Coroutine delivering one event; raising marks the client
                as gone.
            client_id: Identifier used for logging and subscription.
        """
        self.engine = engine
        self.client_id = client_id
        self._send = send
        self._queue: "asyncio.Queue[Event]" = asyncio.Queue()
        self._pump_task: Optional[asyncio.Task] = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def start(self) -> bool:
        """Subscribe, send the initial snapshot and begin delivery.

        Returns:
            True when the snapshot was sent. On failure the error is logged
            and the session is closed.
        """
        self.engine.subscribe(self.client_id, self._enqueue)
        try:
            snapshot = await self.engine.initial_snapshot()
        except Exception:
            logger.exception("initial-sync failed for %s", self.client_id)
            await self.close()
            return False

        try:
            await self._send(snapshot)
        except Exception as e:
            logger.info("Client %s went away before initial-sync: %s", self.client_id, e)
            await self.close()
            return False

        logger.info("initial-sync sent to %s (%d files)", self.client_id, len(snapshot.files))
        self.engine.mark_live(self.client_id)
        self._pump_task = asyncio.create_task(self._pump())
        return True

    def _enqueue(self, event: Event) -> None:
        if not self._closed:
            self._queue.put_nowait(event)

    async def _pump(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self._send(event)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.info("Dropping client %s after failed send: %s", self.client_id, e)
                self._queue.task_done()
                self._detach()
                self._drain()
                return
            self._queue.task_done()

    def _drain(self) -> None:
        while not self._queue.empty():
            self._queue.get_nowait()
            self._queue.task_done()

    async def flush(self) -> None:
        """Wait until every queued event has been handed to ``send``."""
        if self._pump_task is None:
            return
        await self._queue.join()

    def _detach(self) -> None:
        self._closed = True
        self.engine.unsubscribe(self.client_id)

    async def close(self) -> None:
        """Unsubscribe and stop delivery. Safe to call more than once."""
        self._detach()
        task, self._pump_task = self._pump_task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._drain()

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    async def handle_message(self, raw) -> None:
        """Handle one frame from the client. Never raises for bad input."""
        if isinstance(raw, bytes):
            try:
                raw = raw.decode("utf-8")
            except UnicodeDecodeError:
                self._reply_error("Binary frames are not supported")
                return
        try:
            request = parse_client_request(raw)
        except ProtocolError as e:
            logger.warning("Protocol error from %s: %s", self.client_id, e)
            self._reply_error(str(e))
            return
        await self.apply_client_change(request)

    def _reply_error(self, message: str, error_type: str = "ProtocolError") -> None:
        self._enqueue(ErrorEvent(error=message, error_type=error_type))

    async def apply_client_change(self, request: ClientFileChangeRequest) -> bool:
        """Apply a client write or delete to disk.

        The registry is not touched here: the rebuild that follows observes
        the new disk state and broadcasts it to every client, the sender
        included.

        Returns:
            True when the filesystem was changed.
        """
        target = self.engine.resolve_client_path(request.path)
        if target is None:
            logger.warning("Blocked client %s outside watchDir: %s", request.event, request.path)
            self._reply_error(f"Path outside watch directory: {request.path}", "PermissionError")
            return False

        data = b""
        if request.event != DELETE:
            try:
                data = base64.b64decode(request.content or "", validate=True)
            except (binascii.Error, ValueError):
                logger.warning("Invalid base64 content from %s for %s", self.client_id, request.path)
                self._reply_error(f"Invalid base64 content for {request.path}")
                return False

        loop = asyncio.get_running_loop()
        changed = False
        try:
            if request.event == DELETE:
                changed = await loop.run_in_executor(None, _remove_file, target)
                if changed:
                    logger.info("Client delete applied: %s", target)
                else:
                    logger.warning("Client delete for missing file: %s", target)
            else:
                await loop.run_in_executor(None, _write_file, target, data)
                changed = True
                logger.info("Client write applied: %s (%d bytes)", target, len(data))
        except (OSError, ValueError) as e:
            logger.error("Failed to apply client %s to %s: %s", request.event, target, e)
            self._reply_error(str(e), type(e).__name__)
        finally:
            self.engine.schedule_rebuild(structural=True)
        return changed
