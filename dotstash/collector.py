from __future__ import annotations

import os
import stat
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .errors import CollectionError
from .exclude import is_excluded
from .logs import get_logger
from .pathutil import norm_path

LOGGER = get_logger(__name__)


@dataclass(frozen=True)
class BackupItem:
    """A configured home-relative path (file, symlink or directory)."""

    path: str


@dataclass
class FileDescriptor:
    full_path: str
    relative_path: str  # forward slashes, never contains '..'
    size: int
    mtime: float
    is_sensitive: bool = False


@dataclass
class CollectionStats:
    files_backed_up: int = 0
    files_skipped: int = 0
    files_excluded: int = 0
    sensitive_files: int = 0
    total_size: int = 0

    def as_dict(self) -> Dict[str, int]:
        return asdict(self)


def _descriptor(full: str, rel: str, st: os.stat_result) -> FileDescriptor:
    return FileDescriptor(full_path=full, relative_path=rel, size=st.st_size, mtime=st.st_mtime)


def _resolve_item(home: str, item: str) -> Tuple[str, str]:
    """Return (full path, archive-relative path) for a configured item."""
    if os.path.isabs(item):
        rel = os.path.relpath(item, home)
    else:
        rel = item
    try:
        rel = norm_path(rel)
    except ValueError as exc:
        raise CollectionError(f"item escapes the home directory: {item}") from exc
    if not rel:
        raise CollectionError(f"item resolves to the home directory itself: {item}")
    return os.path.join(home, *rel.split("/")), rel


class _Walker:
    """One collection pass. Owns its stats; never shared."""

    def __init__(self, home: str, patterns: Sequence[str]):
        self.home = home
        self.patterns = list(patterns)
        self.stats = CollectionStats()

    def _skip(self, path: str, exc: BaseException) -> None:
        LOGGER.debug("Skipping %s: %s", path, exc)
        self.stats.files_skipped += 1

    def _excluded(self, rel: str) -> bool:
        if is_excluded(rel, self.patterns):
            self.stats.files_excluded += 1
            return True
        return False

    def _rel(self, full: str) -> str:
        return norm_path(os.path.relpath(full, self.home))

    def collect_item(self, item: str) -> List[FileDescriptor]:
        try:
            full, rel = _resolve_item(self.home, item)
            st = os.lstat(full)
        except (OSError, CollectionError) as exc:
            self._skip(item, exc)
            return []

        if stat.S_ISLNK(st.st_mode) or not stat.S_ISDIR(st.st_mode):
            if self._excluded(rel):
                return []
            return [_descriptor(full, rel, st)]

        if self._excluded(rel):
            return []
        return self._walk_dir(full)

    def _walk_dir(self, top: str) -> List[FileDescriptor]:
        files: List[FileDescriptor] = []

        def _onerror(exc: OSError) -> None:
            self._skip(exc.filename or top, exc)

        for root, dirnames, filenames in os.walk(top, onerror=_onerror, followlinks=False):
            dirnames.sort()
            keep: List[str] = []
            for d in dirnames:
                sub = os.path.join(root, d)
                rel = self._rel(sub)
                if os.path.islink(sub):
                    # record the link itself; os.walk never descends into it
                    if self._excluded(rel):
                        continue
                    try:
                        files.append(_descriptor(sub, rel, os.lstat(sub)))
                    except OSError as exc:
                        self._skip(sub, exc)
                    continue
                if self._excluded(rel):
                    continue
                keep.append(d)
            dirnames[:] = keep

            for f in sorted(filenames):
                full = os.path.join(root, f)
                rel = self._rel(full)
                if self._excluded(rel):
                    continue
                try:
                    st = os.lstat(full)
                except OSError as exc:
                    self._skip(full, exc)
                    continue
                files.append(_descriptor(full, rel, st))
        return files


def collect(
    items: Iterable[BackupItem | str],
    exclude_patterns: Sequence[str],
    include_sensitive: bool = False,
    *,
    sensitive_items: Iterable[BackupItem | str] = (),
    home: Optional[os.PathLike | str] = None,
) -> Tuple[List[FileDescriptor], CollectionStats]:
    """Collect file descriptors for the configured items.

    Args:
        items: Regular-tier items, home-relative.
        exclude_patterns: Patterns passed to :func:`is_excluded`.
        include_sensitive: Read ``sensitive_items`` from disk as well. Only
            pass True when the resulting archive will be encrypted.
        sensitive_items: Sensitive-tier items; ignored unless
            ``include_sensitive`` is set.
        home: Base directory items are relative to (defaults to ``~``).

    Returns:
        The descriptors (regular items first, then sensitive ones) and the
        stats for this pass.
    """
    base = os.fspath(home) if home is not None else str(Path.home())
    walker = _Walker(base, exclude_patterns)
    files: List[FileDescriptor] = []

    for item in items:
        path = item.path if isinstance(item, BackupItem) else item
        files.extend(walker.collect_item(path))

    if include_sensitive:
        for item in sensitive_items:
            path = item.path if isinstance(item, BackupItem) else item
            collected = walker.collect_item(path)
            for fd in collected:
                fd.is_sensitive = True
            walker.stats.sensitive_files += len(collected)
            files.extend(collected)

    walker.stats.files_backed_up = len(files)
    walker.stats.total_size = sum(fd.size for fd in files)
    return files, walker.stats
