"""Locate entry type-declaration files for external packages.

No crawling: for each package only a handful of well-known locations are
probed inside each candidate ``node_modules`` root.
"""

import json
import logging
import os
from typing import Any, Dict, Iterable, List, Optional

from ..path_utils import pick_best, to_posix, uniq

logger = logging.getLogger(__name__)

DEFAULT_MAX_ANCESTORS = 8


def read_json_if_exists(path: str) -> Optional[Dict[str, Any]]:
    """Parse a JSON object from *path*; None when missing or malformed."""
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
    except (OSError, ValueError):
        return None
    return data if isinstance(data, dict) else None


def types_alias(pkg: str) -> str:
    """DefinitelyTyped name for *pkg*: ``@scope/name`` -> ``@types/scope__name``."""
    if pkg.startswith('@'):
        scope, _, name = pkg.partition('/')
        return f"@types/{scope[1:]}__{name}"
    return f"@types/{pkg}"


def nm_roots_for_bases(bases: Iterable[str], max_up: int = DEFAULT_MAX_ANCESTORS) -> List[str]:
    """``node_modules`` under each base directory and up to *max_up* ancestors.

    Args:
        bases: Directories to start from.
        max_up: Number of levels to consider per base (the base included).

    Returns:
        Candidate roots in discovery order, deduplicated. Existence is not
        checked here.
    """
    roots: List[str] = []
    for base in bases:
        cur = os.path.abspath(base)
        for _ in range(max_up):
            roots.append(os.path.join(cur, 'node_modules'))
            parent = os.path.dirname(cur)
            if parent == cur:
                break
            cur = parent
    return uniq(roots)


def stable_candidate_nm_roots(project_root: str, max_up: int = DEFAULT_MAX_ANCESTORS) -> List[str]:
    """Roots derived from the project root alone, plus ``server/node_modules``.

    Keeps probing deterministic even when there are few or no source files.
    """
    roots = nm_roots_for_bases([project_root], max_up)
    roots.append(os.path.join(os.path.abspath(project_root), 'server', 'node_modules'))
    return uniq(roots)


def probe_entry_dts_in_root(nm_root: str, pkg: str) -> Optional[str]:
    """Entry declaration file of *pkg* inside one ``node_modules`` root.

    Priority: ``types``/``typings`` from package.json, ``index.d.ts``,
    ``dist/index.d.ts``.
    """
    pkg_dir = os.path.join(nm_root, *pkg.split('/'))

    manifest = read_json_if_exists(os.path.join(pkg_dir, 'package.json'))
    if manifest is not None:
        rel = manifest.get('types', manifest.get('typings'))
        if isinstance(rel, str) and rel:
            candidate = os.path.normpath(os.path.join(pkg_dir, rel))
            if os.path.isfile(candidate):
                return candidate

    for rel in ('index.d.ts', os.path.join('dist', 'index.d.ts')):
        candidate = os.path.join(pkg_dir, rel)
        if os.path.isfile(candidate):
            return candidate

    return None


def probe_entry_dts_for_package(nm_roots: Iterable[str], pkg: str) -> Optional[str]:
    """Best entry declaration for *pkg* across all roots, trying ``@types`` last."""
    roots = list(nm_roots)
    for name in (pkg, types_alias(pkg)):
        candidates = []
        for nm in roots:
            hit = probe_entry_dts_in_root(nm, name)
            if hit is not None:
                candidates.append(hit)
        if candidates:
            return pick_best(candidates)
    return None


def probe_entry_dts_for_packages(nm_roots: Iterable[str], pkgs: Iterable[str]) -> List[str]:
    """At most one entry declaration per package; misses are logged and omitted."""
    roots = list(nm_roots)
    out: List[str] = []
    for pkg in pkgs:
        hit = probe_entry_dts_for_package(roots, pkg)
        if hit is None:
            logger.debug("dts-probe: no entry .d.ts found for %s", pkg)
            continue
        out.append(hit)
    return uniq(out)


def pnpm_then_length(path: str):
    """Sort key placing non-``.pnpm`` paths first, then shorter paths."""
    p = to_posix(path)
    return (1 if '/.pnpm/' in p else 0, len(p))
