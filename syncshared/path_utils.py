"""Path helpers shared by the resolver and the wire path codec.

All paths handled by the sync engine are absolute filesystem paths. Wire
paths and the scoring heuristics operate on their POSIX form, so Windows
separators are folded to ``/`` before any string comparison.

This module provides:
- POSIX normalisation for comparison and display
- ``node_modules`` package-name extraction
- The candidate scoring comparator used to pick one declaration file
"""

import os
import re
from typing import Iterable, List, Optional, Sequence, Tuple, TypeVar

T = TypeVar('T')

# Matches one package segment after a node_modules directory, including
# scoped packages: node_modules/@scope/name or node_modules/name.
_PKG_IN_NM_RE = re.compile(r'/node_modules/((?:@[^/]+/)?[^/]+)')

# Collapses runs of slashes left over from joining segments.
_MULTI_SLASH_RE = re.compile(r'/{2,}')


def to_posix(path: str) -> str:
    """Convert separators to forward slashes and collapse duplicates.

    Args:
        path: Path string in native or POSIX form.

    Returns:
        The same path with ``/`` separators only.
    """
    if not path:
        return path
    return _MULTI_SLASH_RE.sub('/', path.replace('\\', '/'))


def uniq(items: Iterable[T]) -> List[T]:
    """Deduplicate while keeping first-seen order."""
    seen = set()
    out: List[T] = []
    for item in items:
        if item in seen:
            continue
        seen.add(item)
        out.append(item)
    return out


def is_within(path: str, root: str) -> bool:
    """Check whether *path* is *root* or lies beneath it.

    Both arguments are normalised with ``os.path.abspath`` first. Paths on
    different Windows drives are never within each other.
    """
    path = os.path.abspath(path)
    root = os.path.abspath(root)
    try:
        common = os.path.commonpath([path, root])
    except ValueError:
        return False
    return common == root


def untyped_package_name(pkg: str) -> str:
    """Map a DefinitelyTyped package name back to the package it types.

    ``@types/lodash`` becomes ``lodash`` and ``@types/scope__name`` becomes
    ``@scope/name``. Any other name is returned unchanged.
    """
    if not pkg.startswith('@types/'):
        return pkg
    name = pkg[len('@types/'):]
    if '__' in name:
        scope, _, rest = name.partition('__')
        return f"@{scope}/{rest}"
    return name


def pkg_name_from_path(path: str) -> Optional[str]:
    """Extract the npm package a file inside ``node_modules`` belongs to.

    The innermost ``node_modules`` segment wins, so pnpm store layouts like
    ``node_modules/.pnpm/zod@3/node_modules/zod/index.d.ts`` resolve to
    ``zod`` rather than ``.pnpm``.

    Args:
        path: Absolute file path.

    Returns:
        The package name (with ``@types/`` folded away), or None when the
        path is not inside any ``node_modules`` directory.
    """
    matches = _PKG_IN_NM_RE.findall(to_posix(path))
    if not matches:
        return None
    return untyped_package_name(matches[-1])


def package_key(path: str) -> str:
    """Dedupe key for a declaration file.

    Files under ``node_modules`` share their package name as key. Anything
    else is keyed by its own absolute path, so two unrelated local
    declaration files never displace each other.
    """
    pkg = pkg_name_from_path(path)
    if pkg is not None:
        return pkg
    return os.path.abspath(path)


# =============================================================================
# Candidate scoring
# =============================================================================

def score_path(path: str) -> Tuple[int, int, str]:
    """Score a candidate declaration path; lower sorts first.

    Bonuses:
        -10 when under a ``server/node_modules`` root,
        -3 when not inside a ``.pnpm`` staging directory,
        -1 when inside any ``node_modules`` directory.

    Remaining ties go to the shorter path, then to plain string order so the
    result is total and deterministic.
    """
    p = to_posix(path)
    bonus = 0
    if '/server/node_modules/' in p:
        bonus -= 10
    if '/.pnpm/' not in p:
        bonus -= 3
    if '/node_modules/' in p:
        bonus -= 1
    return (bonus, len(p), p)


def pick_best(candidates: Sequence[str]) -> Optional[str]:
    """Return the best-scoring candidate, or None for an empty sequence."""
    if not candidates:
        return None
    return min(candidates, key=score_path)
