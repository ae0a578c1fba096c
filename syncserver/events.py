"""Wire protocol for the file sync server.

Messages are JSON-serializable dataclasses sent as one WebSocket text frame
each, shaped ``{"type": ..., "timestamp": ..., <fields>}``.

Message Flow:
    Server -> Client: initial-sync on connect (and on rehydration), then
                      one file-change per added/changed/deleted file
    Client -> Server: client-file-change to write or delete a file

Protocol Version: 1.0
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
import json


PROTOCOL_VERSION = "1.0"


# =============================================================================
# Message Types
# =============================================================================

class EventType(str, Enum):
    """All message types in the protocol."""

    # Server -> Client
    INITIAL_SYNC = "initial-sync"
    FILE_CHANGE = "file-change"
    ERROR = "error"

    # Client -> Server
    CLIENT_FILE_CHANGE = "client-file-change"


# file-change ``event`` values
ADD = "add"
CHANGE = "change"
DELETE = "delete"

# client-file-change ``event`` values
WRITE = "write"
CLIENT_ACTIONS = (WRITE, DELETE)


class ProtocolError(ValueError):
    """A client message that cannot be decoded or violates the protocol."""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


# =============================================================================
# Base Event
# =============================================================================

@dataclass
class Event:
    """Base class for all messages."""
    type: EventType
    timestamp: str = field(default_factory=_now)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        d = asdict(self)
        if isinstance(d.get('type'), EventType):
            d['type'] = d['type'].value
        return d

    def to_json(self) -> str:
        """Serialize to JSON string."""
        return json.dumps(self.to_dict())


# =============================================================================
# Server -> Client Events
# =============================================================================

@dataclass
class InitialSyncEvent(Event):
    """Full snapshot of every mirrored file, sorted by wire path."""
    type: EventType = field(default=EventType.INITIAL_SYNC)
    files: List[Dict[str, str]] = field(default_factory=list)
    # ^ List of {path: wire path, content: base64}
    directory: str = ""

    @property
    def paths(self) -> List[str]:
        return [f["path"] for f in self.files]


@dataclass
class FileChangeEvent(Event):
    """One file was added, changed or deleted."""
    type: EventType = field(default=EventType.FILE_CHANGE)
    event: str = ""  # "add", "change", "delete"
    path: str = ""
    content: Optional[str] = None  # base64; absent for deletes

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        if d.get('content') is None:
            d.pop('content', None)
        return d


@dataclass
class ErrorEvent(Event):
    """Sent to a single client whose request could not be handled."""
    type: EventType = field(default=EventType.ERROR)
    error: str = ""
    error_type: str = ""


# =============================================================================
# Client -> Server Requests
# =============================================================================

@dataclass
class ClientFileChangeRequest(Event):
    """Client asks the server to write or delete a file."""
    type: EventType = field(default=EventType.CLIENT_FILE_CHANGE)
    event: str = ""  # "write" or "delete"
    path: str = ""  # wire path
    content: Optional[str] = None  # base64; required for writes

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        if d.get('content') is None:
            d.pop('content', None)
        return d


# =============================================================================
# Serialization Helpers
# =============================================================================

# Map of message type -> event class
_EVENT_CLASSES: Dict[str, type] = {
    EventType.INITIAL_SYNC.value: InitialSyncEvent,
    EventType.FILE_CHANGE.value: FileChangeEvent,
    EventType.ERROR.value: ErrorEvent,
    EventType.CLIENT_FILE_CHANGE.value: ClientFileChangeRequest,
}


def serialize_event(event: Event) -> str:
    """Serialize an event to JSON string."""
    return event.to_json()


def deserialize_event(json_str: str) -> Event:
    """Deserialize a JSON string to an event object.

    Args:
        json_str: JSON string representing an event.

    Returns:
        The deserialized event object.

    Raises:
        ProtocolError: If the JSON is invalid, not an object, or the
            message type is unknown.
    """
    try:
        data = json.loads(json_str)
    except (TypeError, ValueError) as e:
        raise ProtocolError(f"Invalid JSON: {e}") from e

    if not isinstance(data, dict):
        raise ProtocolError("Message must be a JSON object")

    event_type = data.get("type")
    if event_type not in _EVENT_CLASSES:
        raise ProtocolError(f"Unknown event type: {event_type}")

    event_class = _EVENT_CLASSES[event_type]
    data["type"] = EventType(event_type)

    # Remove unknown fields (forward compatibility)
    known_fields = {f.name for f in event_class.__dataclass_fields__.values()}
    filtered_data = {k: v for k, v in data.items() if k in known_fields}

    return event_class(**filtered_data)


def parse_client_request(json_str: str) -> ClientFileChangeRequest:
    """Decode and validate a client-file-change message.

    Raises:
        ProtocolError: If the message is not a well-formed write/delete
            request. A write without content is rejected here.
    """
    event = deserialize_event(json_str)
    if not isinstance(event, ClientFileChangeRequest):
        raise ProtocolError(f"Unexpected message type from client: {event.type.value}")
    if event.event not in CLIENT_ACTIONS:
        raise ProtocolError(f"Unknown client-file-change event: {event.event!r}")
    if not isinstance(event.path, str) or not event.path:
        raise ProtocolError("client-file-change requires a non-empty path")
    if "\x00" in event.path:
        raise ProtocolError(f"client-file-change path contains a NUL byte: {event.path!r}")
    if event.event == WRITE and not isinstance(event.content, str):
        raise ProtocolError(f"client write without content: {event.path}")
    return event
