"""Harvest package ("bare") import specifiers from JS/TS sources.

This is a lexical scan, not a parse: it recognises the common static and
dynamic import forms and ignores everything else. False positives only cost
a failed declaration probe.
"""

import logging
import re
from typing import Iterable, List, Set

logger = logging.getLogger(__name__)

SCRIPT_EXTENSIONS = ('.ts', '.tsx', '.mts', '.cts', '.js', '.jsx', '.mjs', '.cjs')

BARE_IMPORT_RE = re.compile(
    r"""\bfrom\s+['"]([^'"]+)['"]"""
    r"""|\bimport\s+['"]([^'"]+)['"]"""
    r"""|\brequire\(\s*['"]([^'"]+)['"]\s*\)"""
    r"""|\bimport\(\s*['"]([^'"]+)['"]\s*\)"""
)


def is_bare(spec: str) -> bool:
    """True for specifiers that name a package rather than a file or builtin."""
    return (
        bool(spec)
        and not spec.startswith('.')
        and not spec.startswith('/')
        and not spec.startswith('node:')
    )


def base_package_of(spec: str) -> str:
    """Reduce ``pkg/sub/path`` to ``pkg`` and ``@scope/pkg/sub`` to ``@scope/pkg``."""
    if spec.startswith('@'):
        parts = spec.split('/')
        return '/'.join(parts[:2]) if len(parts) >= 2 else spec
    return spec.split('/', 1)[0]


def bare_imports_in_source(source: str) -> Set[str]:
    """Base package names imported by one source text."""
    pkgs: Set[str] = set()
    for match in BARE_IMPORT_RE.finditer(source):
        raw = next((g for g in match.groups() if g is not None), '').strip()
        if is_bare(raw):
            pkgs.add(base_package_of(raw))
    return pkgs


def collect_bare_imports(files: Iterable[str]) -> List[str]:
    """Union of bare imports across *files*, sorted.

    Non-script files are skipped. Unreadable files are skipped silently;
    they will be reported by the hashing pass if they are in the desired set.
    """
    pkgs: Set[str] = set()
    for path in files:
        if not path.lower().endswith(SCRIPT_EXTENSIONS):
            continue
        try:
            with open(path, 'r', encoding='utf-8', errors='replace') as f:
                source = f.read()
        except OSError as e:
            logger.debug("bare-imports: skip unreadable %s: %s", path, e)
            continue
        pkgs |= bare_imports_in_source(source)
    return sorted(pkgs)
