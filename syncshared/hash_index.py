"""Content fingerprints for mirrored files.

The fingerprint is only used for change detection, so a fast
non-cryptographic digest is enough. Every accessor degrades to ``None`` (or
``0`` for sizes) when the file cannot be read; callers skip such files for
the current cycle instead of treating the failure as an error.

Reads are blocking, so the async accessors hand them to the loop's default
executor to keep the event loop responsive.
"""

import asyncio
import base64
import hashlib
import logging
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FileEntry:
    """One consistent read of a file: fingerprint plus encoded content."""
    path: str
    hash: str
    size: int
    content: str  # base64


def fingerprint(data: bytes) -> str:
    """Hex digest of *data*."""
    return hashlib.md5(data, usedforsecurity=False).hexdigest()


def encode_content(data: bytes) -> str:
    """Base64-encode raw file bytes for the wire."""
    return base64.b64encode(data).decode('ascii')


def _read_bytes(path: str) -> Optional[bytes]:
    try:
        with open(path, 'rb') as f:
            return f.read()
    except OSError as e:
        logger.debug("Could not read %s: %s", path, e)
        return None


class HashIndex:
    """Reads files and derives hash, size and wire content from them.

    Example:
        index = HashIndex()
        entry = await index.read_entry("/project/flows/app.ts")
        if entry is None:
            ...  # vanished between discovery and read
    """

    async def _read(self, path: str) -> Optional[bytes]:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, _read_bytes, path)

    async def hash(self, path: str) -> Optional[str]:
        """Fingerprint of the file's bytes, or None if unreadable."""
        data = await self._read(path)
        if data is None:
            return None
        return fingerprint(data)

    async def size(self, path: str) -> int:
        """Size in bytes, or 0 if unreadable."""
        data = await self._read(path)
        return len(data) if data is not None else 0

    async def read_encoded(self, path: str) -> Optional[str]:
        """Base64 content, or None if unreadable."""
        data = await self._read(path)
        if data is None:
            return None
        return encode_content(data)

    async def read_entry(self, path: str) -> Optional[FileEntry]:
        """Hash, size and content from a single read.

        Deriving all three from the same bytes guarantees the registry entry
        describes exactly what is sent to clients.
        """
        data = await self._read(path)
        if data is None:
            return None
        return FileEntry(
            path=path,
            hash=fingerprint(data),
            size=len(data),
            content=encode_content(data),
        )
