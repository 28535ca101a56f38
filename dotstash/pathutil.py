from __future__ import annotations

import os


def norm_path(p: str) -> str:
    """Normalize a home-relative path to the canonical archive form.

    Rules:
    - Convert the platform separator and backslashes to slashes
    - Strip leading/trailing slashes
    - Remove empty and '.' segments
    - Reject '..' segments
    """
    p = p.replace(os.sep, "/").replace("\\", "/").strip("/")
    parts = [q for q in p.split("/") if q not in ("", ".")]
    for q in parts:
        if q == "..":
            raise ValueError("Path may not contain '..'")
    return "/".join(parts)


def is_safe_relative_path(path: str) -> bool:
    """Return True when an untrusted archive path may be joined under a base.

    "" and "." are no-op entries and count as safe. Absolute paths, paths
    starting with "~", NUL bytes and any ".." component are rejected.
    """
    if path == "":
        return True
    if "\x00" in path:
        return False
    if os.path.isabs(path) or path.startswith("/") or path.startswith("~"):
        return False
    cleaned = os.path.normpath(path)
    if cleaned == ".." or cleaned.startswith(".." + os.sep) or cleaned.startswith("../"):
        return False
    if ".." in path.split("/"):
        return False
    if ".." in path.split(os.sep):
        return False
    return True


def is_within_base(target: str, base: str) -> bool:
    """Return True when ``target`` resolves to ``base`` or somewhere below it.

    Intermediate directories of ``target`` and all of ``base`` are resolved,
    so a symlinked directory cannot carry a syntactically safe path outside
    ``base``.
    """
    try:
        parent, leaf = os.path.split(os.path.abspath(target))
        # the last component is not followed; extraction replaces links there
        abs_target = os.path.join(os.path.realpath(parent), leaf) if leaf else os.path.realpath(parent)
        abs_base = os.path.realpath(os.path.abspath(base))
    except (OSError, ValueError):
        return False
    if abs_target == abs_base:
        return True
    return abs_target.startswith(abs_base.rstrip(os.sep) + os.sep)
