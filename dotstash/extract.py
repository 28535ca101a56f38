from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import BinaryIO, List, Optional, Sequence, Union

from .categories import DEFAULT_CATEGORIES, CategoryTable, matches_category
from .constants import (
    ARCHIVE_FILE_MODE,
    COPY_BUFFER_SIZE,
    KIND_DIR,
    KIND_FILE,
    KIND_SYMLINK,
    MAX_EXTRACT_FILE_SIZE,
    MAX_EXTRACT_TOTAL_SIZE,
    PARENT_DIR_MODE,
    PERM_MASK,
)
from .errors import FileSizeExceededError, TotalSizeExceededError, UnsafePathError
from .logs import get_logger
from .pathutil import is_safe_relative_path, is_within_base
from .reader import ArchiveEntry, ArchiveReader
from .sysutil import format_size

LOGGER = get_logger(__name__)


@dataclass(frozen=True)
class ExtractLimits:
    """Byte ceilings for one extraction; breaching either aborts it."""

    max_file_size: int = MAX_EXTRACT_FILE_SIZE
    max_total_size: int = MAX_EXTRACT_TOTAL_SIZE


@dataclass
class ExtractResult:
    files_extracted: int = 0
    entries: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    total_size: int = 0
    dry_run: bool = False


def _check_name(name: str) -> None:
    if not is_safe_relative_path(name):
        raise UnsafePathError(f"Skipping unsafe path: {name}")


def _check_target(target: str, home: str, name: str) -> None:
    if not is_within_base(target, home):
        raise UnsafePathError(f"Skipping path that escapes home directory: {name}")


def _check_link(entry: ArchiveEntry, target: str, home: str) -> None:
    link = entry.link_target
    if not link or not is_safe_relative_path(link):
        raise UnsafePathError(f"Skipping symlink with unsafe target: {entry.name} -> {link}")
    if not is_within_base(os.path.join(os.path.dirname(target), link), home):
        raise UnsafePathError(f"Skipping symlink that escapes home: {entry.name} -> {link}")


def _copy_bounded(src: BinaryIO, dst: BinaryIO, limit: int) -> int:
    written = 0
    while written < limit:
        chunk = src.read(min(COPY_BUFFER_SIZE, limit - written))
        if not chunk:
            return written
        dst.write(chunk)
        written += len(chunk)
    if src.read(1):
        raise FileSizeExceededError(f"file exceeds maximum size limit of {limit} bytes")
    return written


def _extract_file(src: BinaryIO, target: str, mode: int, limit: int) -> int:
    # an existing link at the target is replaced, never written through
    if os.path.islink(target):
        os.unlink(target)
    flags = os.O_CREAT | os.O_WRONLY | os.O_TRUNC | getattr(os, "O_NOFOLLOW", 0)
    fd = os.open(target, flags, ARCHIVE_FILE_MODE)
    try:
        with os.fdopen(fd, "wb") as out:
            os.fchmod(out.fileno(), mode)
            return _copy_bounded(src, out, limit)
    except FileSizeExceededError:
        os.remove(target)
        raise


def _replace_with_symlink(link: str, target: str) -> None:
    try:
        os.remove(target)
    except FileNotFoundError:
        pass
    os.symlink(link, target)


def extract_archive(
    source: Union[str, os.PathLike, BinaryIO],
    home: Union[str, os.PathLike],
    *,
    categories: Optional[Sequence[str]] = None,
    dry_run: bool = False,
    limits: ExtractLimits = ExtractLimits(),
    table: CategoryTable = DEFAULT_CATEGORIES,
) -> ExtractResult:
    """Extract a tar.gz archive under ``home``.

    Entries with unsafe names, names that resolve outside ``home`` and
    symlinks with unsafe targets are logged and skipped. With a non-empty
    ``categories`` selection only matching entries are considered. Quota
    breaches raise :class:`QuotaExceededError` subclasses; entries written
    before the breach stay on disk.

    Only regular files count towards ``files_extracted``.
    """
    base = os.fspath(home)
    result = ExtractResult(dry_run=dry_run)
    total = 0

    with ArchiveReader(source) as reader:
        for entry in reader.entries():
            name = entry.name
            try:
                _check_name(name)
                if categories and not matches_category(name, categories, table):
                    continue
                target = os.path.join(base, name)
                _check_target(target, base, name)
                if entry.kind == KIND_SYMLINK:
                    _check_link(entry, target, base)
            except UnsafePathError as exc:
                LOGGER.warning("%s", exc)
                result.skipped.append(name)
                continue

            if dry_run:
                result.entries.append(name)
                if entry.kind == KIND_FILE:
                    result.files_extracted += 1
                    result.total_size += entry.size
                continue

            if entry.size > limits.max_file_size:
                raise FileSizeExceededError(
                    f"{name}: file exceeds maximum size limit of {limits.max_file_size} bytes"
                )
            if total + entry.size > limits.max_total_size:
                raise TotalSizeExceededError(
                    f"total extracted size exceeds limit of {format_size(limits.max_total_size)}"
                )

            try:
                os.makedirs(os.path.dirname(target), PARENT_DIR_MODE, exist_ok=True)
            except OSError as exc:
                LOGGER.warning("Failed to create directory for %s: %s", name, exc)
                result.skipped.append(name)
                continue

            try:
                if entry.kind == KIND_DIR:
                    os.makedirs(target, entry.mode & PERM_MASK, exist_ok=True)
                elif entry.kind == KIND_FILE:
                    written = _extract_file(reader.content(entry), target, entry.mode & PERM_MASK, limits.max_file_size)
                    total += written
                    result.total_size += written
                    result.files_extracted += 1
                elif entry.kind == KIND_SYMLINK:
                    _replace_with_symlink(entry.link_target, target)
                else:
                    LOGGER.warning("Skipping unsupported entry type: %s", name)
                    result.skipped.append(name)
                    continue
            except OSError as exc:
                LOGGER.warning("Failed to extract %s: %s", name, exc)
                result.skipped.append(name)
                continue
            result.entries.append(name)

    return result
