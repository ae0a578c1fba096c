"""Mapping between absolute filesystem paths and wire paths.

Wire paths are what clients see. They always start with ``/``:

    in-root file       /<posix path relative to the project root>
    node_modules file  /.external/node_modules/<module subpath>
    any other file     /.external/other/<16-char hash>_<basename>

The forward direction is a pure function of the absolute path and the
project root. The hash in ``/.external/other/...`` cannot be inverted, so
the codec remembers every virtual path it produces. That reverse index is
derived state: ``rebuild()`` regenerates it from the set of currently
mirrored paths, e.g. when a client reconnects.

If a client references a virtual path that the index has never seen, the
codec falls back to joining the project root with the wire path. That
reconstruction is lossy and only a last resort.
"""

import base64
import hashlib
import logging
import os
import posixpath
import threading
from typing import Dict, Iterable, Optional

from .path_utils import to_posix

logger = logging.getLogger(__name__)

EXTERNAL_PREFIX = "/.external/"
EXTERNAL_NODE_MODULES = "/.external/node_modules/"
EXTERNAL_OTHER = "/.external/other/"

_VIRTUAL_HASH_LENGTH = 16


def virtual_hash(abs_path: str) -> str:
    """Deterministic 16-character alphanumeric tag for *abs_path*."""
    digest = hashlib.sha256(to_posix(abs_path).encode('utf-8')).digest()
    encoded = base64.b64encode(digest).decode('ascii')
    return ''.join(ch for ch in encoded if ch.isalnum())[:_VIRTUAL_HASH_LENGTH]


def _relative_posix(abs_path: str, project_root: str) -> Optional[str]:
    """Project-relative POSIX path, or None when *abs_path* is outside the root."""
    try:
        rel = os.path.relpath(os.path.abspath(abs_path), os.path.abspath(project_root))
    except ValueError:
        # Different drive on Windows.
        return None
    rel = to_posix(rel)
    if rel == '..' or rel.startswith('../') or posixpath.isabs(rel):
        return None
    return rel


def is_virtual(wire_path: str) -> bool:
    """True for wire paths in the ``/.external/`` namespace."""
    return wire_path.startswith(EXTERNAL_PREFIX)


class WirePathCodec:
    """Bidirectional absolute path <-> wire path mapping.

    The forward mapping needs no state. The reverse index for virtual paths
    is guarded by a lock because watchdog callbacks and executor threads may
    touch it alongside the event loop.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._virtual: Dict[str, str] = {}

    def to_wire(self, abs_path: str, project_root: str) -> str:
        """Map an absolute path to its wire path.

        Args:
            abs_path: Absolute filesystem path.
            project_root: Root that in-root wire paths are relative to.

        Returns:
            The wire path. Virtual paths are also recorded for ``from_wire``.
        """
        rel = _relative_posix(abs_path, project_root)
        if rel is not None:
            return '/' + rel if rel != '.' else '/'

        posix_abs = to_posix(os.path.abspath(abs_path))
        marker = '/node_modules/'
        idx = posix_abs.rfind(marker)
        if idx != -1 and idx + len(marker) < len(posix_abs):
            wire = EXTERNAL_NODE_MODULES + posix_abs[idx + len(marker):]
        else:
            basename = posixpath.basename(posix_abs)
            wire = f"{EXTERNAL_OTHER}{virtual_hash(posix_abs)}_{basename}"

        with self._lock:
            self._virtual[wire] = os.path.abspath(abs_path)
        return wire

    def from_wire(self, wire_path: str, project_root: str) -> str:
        """Map a wire path back to an absolute filesystem path.

        In-root wire paths are inverted exactly. Virtual paths are looked up
        in the reverse index; on a miss the result is a best-effort join with
        the project root and a warning is logged.
        """
        if is_virtual(wire_path):
            with self._lock:
                hit = self._virtual.get(wire_path)
            if hit is not None:
                return hit
            logger.warning(
                "No mapping for virtual path %s; falling back to project-relative join",
                wire_path,
            )

        rel = wire_path.lstrip('/')
        return os.path.normpath(os.path.join(os.path.abspath(project_root), *rel.split('/')))

    def rebuild(self, abs_paths: Iterable[str], project_root: str) -> int:
        """Regenerate the reverse index from the currently mirrored paths.

        Returns:
            Number of virtual mappings after the rebuild.
        """
        with self._lock:
            self._virtual.clear()
        for abs_path in abs_paths:
            self.to_wire(abs_path, project_root)
        with self._lock:
            count = len(self._virtual)
        logger.debug("Wire path cache rebuilt: %d virtual mappings", count)
        return count

    def clear(self) -> None:
        """Forget every virtual mapping."""
        with self._lock:
            self._virtual.clear()

    @property
    def virtual_count(self) -> int:
        with self._lock:
            return len(self._virtual)


# Process-wide codec used when callers do not supply their own.
_default_codec = WirePathCodec()


def default_codec() -> WirePathCodec:
    return _default_codec


def to_wire_path(abs_path: str, project_root: str) -> str:
    """``to_wire`` on the process-wide codec."""
    return _default_codec.to_wire(abs_path, project_root)


def from_wire_path(wire_path: str, project_root: str) -> str:
    """``from_wire`` on the process-wide codec."""
    return _default_codec.from_wire(wire_path, project_root)


def rebuild_wire_path_cache(abs_paths: Iterable[str], project_root: str) -> int:
    """``rebuild`` on the process-wide codec."""
    return _default_codec.rebuild(abs_paths, project_root)
