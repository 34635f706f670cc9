"""Deterministic source tree walker.

Enumerates candidate files under a root depth-first, with the entries of
every directory sorted lexically, and records (rather than raises) the
directories and files it could not read.
"""

import logging
import os
from typing import Iterable, Iterator, Optional

from triage.analyzers.base import ScanWarning

logger = logging.getLogger(__name__)


class FileWalker:
    """Lazy, restartable walk over a source tree.

    Iterating yields posix paths relative to ``root``. Each new iteration
    starts from scratch and replaces ``warnings``.
    """

    def __init__(
        self,
        root: str,
        exclude_dirs: Iterable[str] = (),
        include_extensions: Iterable[str] = (),
        max_file_size: Optional[int] = None,
    ):
        self.root = os.fspath(root)
        self.exclude_dirs = frozenset(exclude_dirs)
        self.include_extensions = tuple(ext.lower() for ext in include_extensions)
        self.max_file_size = max_file_size
        self.warnings: list[ScanWarning] = []

    def __iter__(self) -> Iterator[str]:
        self.warnings = []
        return self._walk()

    def _included(self, name: str) -> bool:
        if not self.include_extensions:
            return True
        lowered = name.lower()
        return any(lowered.endswith(ext) for ext in self.include_extensions)

    def _warn(self, path: str, kind: str, message: str) -> None:
        logger.warning("Walker skipped %s (%s): %s", path or ".", kind, message)
        self.warnings.append(ScanWarning(path=path, kind=kind, message=message))

    def _walk(self) -> Iterator[str]:
        if not os.path.isdir(self.root):
            self._warn("", "missing_root", f"Root is not a directory: {self.root}")
            return

        # One iterator of (relative_path, entry) pairs per open directory.
        stack: list[Iterator[tuple[str, os.DirEntry]]] = []
        listing = self._list_dir("", self.root)
        if listing is None:
            return
        stack.append(iter(listing))

        while stack:
            try:
                rel_path, entry = next(stack[-1])
            except StopIteration:
                stack.pop()
                continue

            try:
                is_dir = entry.is_dir(follow_symlinks=False)
            except OSError as exc:
                self._warn(rel_path, "unreadable_dir", str(exc))
                continue

            if is_dir:
                if entry.name in self.exclude_dirs:
                    continue
                listing = self._list_dir(rel_path, entry.path)
                if listing is not None:
                    stack.append(iter(listing))
                continue

            if not self._included(entry.name):
                continue

            if self.max_file_size is not None:
                try:
                    size = entry.stat().st_size
                except OSError as exc:
                    self._warn(rel_path, "unreadable_file", str(exc))
                    continue
                if size > self.max_file_size:
                    self._warn(rel_path, "too_large", f"{size} bytes exceeds {self.max_file_size}")
                    continue

            yield rel_path

    def _list_dir(self, rel_dir: str, abs_dir: str) -> Optional[list[tuple[str, os.DirEntry]]]:
        try:
            with os.scandir(abs_dir) as it:
                entries = sorted(it, key=lambda e: e.name)
        except OSError as exc:
            self._warn(rel_dir, "unreadable_dir", str(exc))
            return None
        return [
            (f"{rel_dir}/{entry.name}" if rel_dir else entry.name, entry)
            for entry in entries
        ]


def walk(
    root: str,
    exclude_dirs: Iterable[str] = (),
    include_exts: Iterable[str] = (),
    max_file_size: Optional[int] = None,
) -> FileWalker:
    """Build a walker over ``root``; iterate it (possibly more than once) for paths."""
    return FileWalker(root, exclude_dirs, include_exts, max_file_size)
