"""Desired-set discovery: source walk, bare imports, declaration probing."""

from .resolver import (
    DEFAULT_EXTENSIONS,
    DependencyDiscovery,
    DesiredSetResolver,
    DiscoveryResult,
    dedupe_declarations_by_package,
    discover_source_files,
)

__all__ = [
    "DEFAULT_EXTENSIONS",
    "DependencyDiscovery",
    "DesiredSetResolver",
    "DiscoveryResult",
    "dedupe_declarations_by_package",
    "discover_source_files",
]
