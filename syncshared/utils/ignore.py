"""Ignore rules for the watched tree.

Both the source discovery walk and the filesystem watcher consult the same
matcher so that a path skipped during discovery never triggers a rebuild.

Supports:
- Glob patterns (*, ?, [...])
- Directory-only patterns (trailing /) matching any ancestor directory
- Negation patterns (leading !)
- Anchored patterns containing a slash, matched against the relative path
- Only the watch root's .gitignore is read; nested ones are not
"""

import fnmatch
import os
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from ..path_utils import to_posix


class IgnoreMatcher:
    """Decides whether a path under the watch root is excluded from sync.

    ``DEFAULT_PATTERNS`` are always applied first, so a root ``.gitignore``
    may re-include one of them with ``!pattern``. ``extra_patterns`` are
    applied last and win over both.
    """

    DEFAULT_PATTERNS: List[str] = [
        "node_modules/",
        ".git/",
        ".pnpm-store/",
        ".turbo/",
        ".DS_Store",
        "*.swp",
        "*.swo",
        "*~",
    ]

    def __init__(
        self,
        root: str,
        include_defaults: bool = True,
        extra_patterns: Optional[Sequence[str]] = None,
        read_gitignore: bool = True,
    ):
        """Initialize the matcher.

        Args:
            root: Directory that relative patterns are anchored to.
            include_defaults: Whether to start from ``DEFAULT_PATTERNS``.
            extra_patterns: Additional patterns, highest priority.
            read_gitignore: Whether to load ``<root>/.gitignore``.
        """
        self.root = os.path.abspath(root)
        self._rules: List[Tuple[str, bool, bool]] = []  # (pattern, negated, dir_only)

        if include_defaults:
            self._add_all(self.DEFAULT_PATTERNS)
        if read_gitignore:
            self._add_all(self._read_gitignore())
        if extra_patterns:
            self._add_all(extra_patterns)

    @property
    def patterns(self) -> List[str]:
        """Rules in evaluation order, rendered back to gitignore syntax."""
        out = []
        for pattern, negated, dir_only in self._rules:
            text = pattern + ("/" if dir_only else "")
            out.append(("!" + text) if negated else text)
        return out

    def _read_gitignore(self) -> List[str]:
        path = Path(self.root) / ".gitignore"
        try:
            return path.read_text(encoding="utf-8").splitlines()
        except (OSError, UnicodeDecodeError):
            return []

    def _add_all(self, lines: Sequence[str]) -> None:
        for raw in lines:
            line = raw.strip()
            if not line or line.startswith("#"):
                continue
            negated = line.startswith("!")
            if negated:
                line = line[1:]
            dir_only = line.endswith("/")
            line = line.rstrip("/")
            if line.startswith("/"):
                line = line[1:]
            if line:
                self._rules.append((line, negated, dir_only))

    def _relative(self, path: str) -> Optional[str]:
        try:
            rel = os.path.relpath(os.path.abspath(path), self.root)
        except ValueError:
            return None
        rel = to_posix(rel)
        if rel == "." or rel.startswith("../"):
            return None
        return rel

    def is_ignored(self, path: str, is_dir: Optional[bool] = None) -> bool:
        """Check whether *path* is excluded.

        Args:
            path: Absolute path, or a path relative to the matcher root.
            is_dir: Whether *path* is a directory. When None it is probed on
                disk; deleted paths therefore count as files.

        Returns:
            True if the last matching rule excludes the path. Paths outside
            the root are never ignored.
        """
        full = path if os.path.isabs(path) else os.path.join(self.root, path)
        rel = self._relative(full)
        if rel is None:
            return False
        if is_dir is None:
            is_dir = os.path.isdir(full)

        parts = rel.split("/")
        # Directory components that a dir-only rule may match.
        dir_parts = parts if is_dir else parts[:-1]

        ignored = False
        for pattern, negated, dir_only in self._rules:
            if dir_only:
                if "/" in pattern:
                    matches = any(
                        fnmatch.fnmatchcase("/".join(parts[:i + 1]), pattern)
                        for i in range(len(dir_parts))
                    )
                else:
                    matches = any(fnmatch.fnmatchcase(p, pattern) for p in dir_parts)
            elif "/" in pattern:
                matches = fnmatch.fnmatchcase(rel, pattern) or any(
                    fnmatch.fnmatchcase("/".join(parts[:i + 1]), pattern)
                    for i in range(len(parts) - 1)
                )
            else:
                matches = any(fnmatch.fnmatchcase(p, pattern) for p in parts)

            if matches:
                ignored = not negated

        return ignored
