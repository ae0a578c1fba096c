"""File Sync Server - incremental source mirroring over WebSocket.

This package provides:
- SyncEngine: desired-set resolution, diffing and broadcast
- SyncSession: per-client initial-sync, delivery and write handling
- Event protocol: typed messages for client-server communication
- WebSocket server: real-time delivery to connected clients

Usage:
    python -m syncserver ./flows --port 3001
"""

from .events import (
    # Base
    Event,
    EventType,
    ProtocolError,
    # Server -> Client events
    InitialSyncEvent,
    FileChangeEvent,
    ErrorEvent,
    # Client -> Server events
    ClientFileChangeRequest,
    # Serialization
    serialize_event,
    deserialize_event,
    parse_client_request,
)

from .config import SyncConfig
from .engine import FileMeta, SyncEngine
from .session import SyncSession
from .watcher import Debouncer, FileWatcher
from .websocket import SyncWSServer
