from __future__ import annotations

from fnmatch import fnmatchcase
from typing import Iterable


def _glob_match(pattern: str, path: str) -> bool:
    """Shell-style match where '*' and '?' never cross a '/' boundary."""
    pat_parts = pattern.split("/")
    path_parts = path.split("/")
    if len(pat_parts) != len(path_parts):
        return False
    return all(fnmatchcase(seg, pat) for seg, pat in zip(path_parts, pat_parts))


def is_excluded(relative_path: str, patterns: Iterable[str]) -> bool:
    """Return True when any pattern excludes ``relative_path``.

    Each pattern is tried, in order, as a glob against the base name, as a
    glob against the whole relative path, as an exact base-name match, and
    as a path component at the start, end, or interior of the path. A
    pattern like ".git" therefore excludes ".git" and "a/.git/objects" but
    not ".gitconfig".
    """
    path = relative_path.replace("\\", "/")
    name = path.rsplit("/", 1)[-1]
    for pattern in patterns:
        if not pattern:
            continue
        if _glob_match(pattern, name):
            return True
        if _glob_match(pattern, path):
            return True
        if name == pattern:
            return True
        if path.startswith(pattern + "/") or path.endswith("/" + pattern):
            return True
        if ("/" + pattern + "/") in path:
            return True
    return False
