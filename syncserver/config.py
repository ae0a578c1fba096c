"""Configuration for the file sync server.

Values default from environment variables so a ``.env`` file (loaded by the
CLI through python-dotenv) can tune a deployment without flags.

Environment Variables:
    FILE_SYNC_HOST: Bind address (default: localhost)
    FILE_SYNC_PORT: WebSocket port (default: 3001)
    FILE_SYNC_DEBOUNCE_MS: Quiet period before a rebuild (default: 100)
    FILE_SYNC_CACHE_TTL_MS: Desired-set cache window (default: 1000)
    FILE_SYNC_EXTENSIONS: Comma-separated tracked suffixes
    FILE_SYNC_MAX_ANCESTORS: node_modules ancestor levels to probe (default: 8)
    FILE_SYNC_IGNORE: Comma-separated extra ignore patterns
    FILE_SYNC_RESTRICT_WRITES: Refuse client writes outside the watch dir
        unless set to '0', 'false' or 'no' (default: true)
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from syncshared.discovery.resolver import DEFAULT_EXTENSIONS
from syncshared.discovery.dts import DEFAULT_MAX_ANCESTORS

DEFAULT_HOST = "localhost"
DEFAULT_PORT = 3001
DEFAULT_DEBOUNCE_MS = 100
DEFAULT_CACHE_TTL_MS = 1000


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def _env_list(name: str) -> List[str]:
    raw = os.environ.get(name, "")
    return [item.strip() for item in raw.split(",") if item.strip()]


def _env_flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name, "").strip().lower()
    if not raw:
        return default
    return raw not in ("0", "false", "no")


def _extensions_from_env() -> Tuple[str, ...]:
    items = _env_list("FILE_SYNC_EXTENSIONS")
    if not items:
        return DEFAULT_EXTENSIONS
    return tuple(e if e.startswith(".") else f".{e}" for e in items)


@dataclass
class SyncConfig:
    """Tunables for one sync server instance."""
    host: str = field(default_factory=lambda: os.environ.get("FILE_SYNC_HOST", DEFAULT_HOST))
    port: int = field(default_factory=lambda: _env_int("FILE_SYNC_PORT", DEFAULT_PORT))
    debounce_seconds: float = field(
        default_factory=lambda: _env_int("FILE_SYNC_DEBOUNCE_MS", DEFAULT_DEBOUNCE_MS) / 1000.0
    )
    cache_ttl_seconds: float = field(
        default_factory=lambda: _env_int("FILE_SYNC_CACHE_TTL_MS", DEFAULT_CACHE_TTL_MS) / 1000.0
    )
    extensions: Tuple[str, ...] = field(default_factory=_extensions_from_env)
    max_ancestor_levels: int = field(
        default_factory=lambda: _env_int("FILE_SYNC_MAX_ANCESTORS", DEFAULT_MAX_ANCESTORS)
    )
    ignore_patterns: List[str] = field(default_factory=lambda: _env_list("FILE_SYNC_IGNORE"))
    restrict_writes_to_watch_dir: bool = field(
        default_factory=lambda: _env_flag("FILE_SYNC_RESTRICT_WRITES", True)
    )

    def __post_init__(self):
        if not 0 <= self.port < 65536:
            raise ValueError(f"port out of range: {self.port}")
        if self.debounce_seconds < 0:
            raise ValueError(f"debounce must be non-negative: {self.debounce_seconds}")
        if self.cache_ttl_seconds < 0:
            raise ValueError(f"cache TTL must be non-negative: {self.cache_ttl_seconds}")
        if self.max_ancestor_levels < 1:
            raise ValueError(f"max ancestor levels must be >= 1: {self.max_ancestor_levels}")

    @classmethod
    def from_env(cls, **overrides) -> "SyncConfig":
        """Build from the environment, letting non-None *overrides* win.

        Raises:
            ValueError: If an environment value or override is invalid.
        """
        values = {k: v for k, v in overrides.items() if v is not None}
        return cls(**values)


def parse_address(address: Optional[str], default_host: str, default_port: int) -> Tuple[str, int]:
    """Parse ``host:port``, ``:port`` or ``port`` into a (host, port) pair."""
    if not address:
        return default_host, default_port
    if ":" in address:
        if address.startswith(":"):
            return "0.0.0.0", int(address[1:])
        host, port_str = address.rsplit(":", 1)
        return host, int(port_str)
    return "0.0.0.0", int(address)
