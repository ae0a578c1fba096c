"""Desired-set resolution.

Produces the canonical set of absolute paths to mirror for a watch root:
every source file with a tracked extension, plus at most one entry
declaration file per external package those sources import.

Pipeline:
    1. Walk the watch root for source files (ignore rules applied).
    2. Merge in files from the optional dependency-graph collaborator.
    3. Harvest bare imports; merge with the collaborator's externals.
    4. Derive candidate ``node_modules`` roots from every source directory
       and the project root, plus the stable ``server/node_modules`` root.
    5. Probe each package (then its ``@types`` alias) for an entry ``.d.ts``.
    6. Merge with the collaborator's typings and keep one file per package.

Failures inside a single probe just drop that candidate. A failure of the
whole pipeline is logged with its traceback and yields an empty set.
"""

import asyncio
import logging
import os
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set, Union

from ..path_utils import package_key, score_path, uniq
from ..utils.ignore import IgnoreMatcher
from .bare_imports import collect_bare_imports
from .dts import (
    DEFAULT_MAX_ANCESTORS,
    nm_roots_for_bases,
    pnpm_then_length,
    probe_entry_dts_for_packages,
    stable_candidate_nm_roots,
)

logger = logging.getLogger(__name__)

DEFAULT_EXTENSIONS = ('.ts', '.tsx', '.mts', '.cts', '.js', '.jsx', '.mjs', '.cjs', '.json')

PathList = Union[List[str], Dict[str, List[str]]]


@dataclass
class DiscoveryResult:
    """Output of a dependency-graph discovery collaborator.

    Attributes:
        files: Absolute source files the graph reached.
        externals: Package names referenced by those files.
        typings: Declaration files, flat or keyed by package.
    """
    files: PathList = field(default_factory=list)
    externals: List[str] = field(default_factory=list)
    typings: PathList = field(default_factory=list)


# Called with the watch root; may raise, in which case it is treated as absent.
DependencyDiscovery = Callable[[str], DiscoveryResult]


def flatten_paths(value: Optional[PathList]) -> List[str]:
    """Flatten a list or a ``{key: [paths]}`` map into one list."""
    if not value:
        return []
    if isinstance(value, dict):
        out: List[str] = []
        for paths in value.values():
            out.extend(paths)
        return out
    return list(value)


def discover_source_files(
    watch_dir: str,
    extensions: Sequence[str] = DEFAULT_EXTENSIONS,
    ignore: Optional[IgnoreMatcher] = None,
) -> List[str]:
    """All files under *watch_dir* with a tracked extension, sorted.

    Raises:
        FileNotFoundError: If *watch_dir* does not exist.
    """
    root = os.path.abspath(watch_dir)
    if not os.path.isdir(root):
        raise FileNotFoundError(f"Watch directory does not exist: {root}")

    exts = tuple(e.lower() for e in extensions)
    found: List[str] = []
    for dirpath, dirnames, filenames in os.walk(root):
        if ignore is not None:
            # Prune in place so os.walk never descends into ignored dirs.
            dirnames[:] = [
                d for d in dirnames
                if not ignore.is_ignored(os.path.join(dirpath, d), is_dir=True)
            ]
        dirnames.sort()
        for name in filenames:
            if not name.lower().endswith(exts):
                continue
            full = os.path.join(dirpath, name)
            if ignore is not None and ignore.is_ignored(full, is_dir=False):
                continue
            found.append(full)
    return sorted(found)


def dedupe_declarations_by_package(paths: Iterable[str]) -> List[str]:
    """Keep the best-scoring declaration file per package, sorted."""
    ordered = sorted(uniq(paths), key=pnpm_then_length)
    best: Dict[str, str] = {}
    for p in ordered:
        key = package_key(p)
        prev = best.get(key)
        if prev is None or score_path(p) < score_path(prev):
            best[key] = p
    return sorted(best.values())


def _sample(items: Sequence[str], n: int = 5) -> List[str]:
    return list(items[:n])


class DesiredSetResolver:
    """Computes the desired set for a watch root.

    Example:
        resolver = DesiredSetResolver(extensions=(".ts",))
        desired = await resolver.compute("/repo/flows", "/repo")
    """

    def __init__(
        self,
        extensions: Sequence[str] = DEFAULT_EXTENSIONS,
        discovery: Optional[DependencyDiscovery] = None,
        ignore_patterns: Optional[Sequence[str]] = None,
        max_ancestor_levels: int = DEFAULT_MAX_ANCESTORS,
    ):
        """Initialize the resolver.

        Args:
            extensions: File suffixes that count as source files.
            discovery: Optional dependency-graph collaborator.
            ignore_patterns: Extra ignore patterns on top of the defaults
                and the watch root's .gitignore.
            max_ancestor_levels: How far up to look for ``node_modules``.
        """
        self.extensions = tuple(extensions)
        self.discovery = discovery
        self.ignore_patterns = list(ignore_patterns or [])
        self.max_ancestor_levels = max_ancestor_levels

    async def compute(self, watch_dir: str, project_root: str) -> Set[str]:
        """Resolve the desired set without blocking the event loop."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.compute_sync, watch_dir, project_root)

    def compute_sync(self, watch_dir: str, project_root: str) -> Set[str]:
        """Blocking resolution; never raises."""
        try:
            return self._resolve(os.path.abspath(watch_dir), os.path.abspath(project_root))
        except Exception:
            logger.exception("Desired-set resolution failed for %s; using empty set", watch_dir)
            return set()

    def _run_discovery(self, watch_dir: str) -> Optional[DiscoveryResult]:
        if self.discovery is None:
            return None
        try:
            return self.discovery(watch_dir)
        except Exception as e:
            logger.warning("Dependency discovery unavailable, using filesystem probing only: %s", e)
            return None

    def _resolve(self, watch_dir: str, project_root: str) -> Set[str]:
        ignore = IgnoreMatcher(watch_dir, extra_patterns=self.ignore_patterns)
        graph = self._run_discovery(watch_dir)

        files = discover_source_files(watch_dir, self.extensions, ignore)
        if graph is not None:
            files = uniq(files + [os.path.abspath(p) for p in flatten_paths(graph.files)])

        base_dirs = uniq([project_root] + [os.path.dirname(f) for f in files])
        nm_roots = uniq(
            nm_roots_for_bases(base_dirs, self.max_ancestor_levels)
            + stable_candidate_nm_roots(project_root, self.max_ancestor_levels)
        )
        logger.debug("nm-roots (candidates): %s", _sample(nm_roots, 8))

        externals = collect_bare_imports(files)
        if graph is not None:
            externals = sorted(set(externals) | set(graph.externals))

        dts_from_graph = [os.path.abspath(p) for p in flatten_paths(graph.typings)] if graph else []
        dts_from_probe = probe_entry_dts_for_packages(nm_roots, externals)
        dts = dedupe_declarations_by_package(dts_from_graph + dts_from_probe)

        logger.debug(
            "resolved files=%d dts=%d externals=%d (sample files=%s dts=%s)",
            len(files), len(dts), len(externals), _sample(files), _sample(dts),
        )
        if not dts and externals:
            logger.debug("No .d.ts discovered for externals: %s", _sample(externals))

        outside = [p for p in files + dts if not p.startswith(project_root + os.sep)]
        if outside:
            logger.debug("%d desired files lie outside the project root", len(outside))

        return set(files) | set(dts)
