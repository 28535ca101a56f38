from __future__ import annotations

import os
import plistlib
import socket
from pathlib import Path
from typing import Optional
from xml.parsers.expat import ExpatError

from .constants import BACKUP_DIR_MODE


def home_dir() -> Path:
    return Path.home()


def short_hostname() -> str:
    """Hostname without its domain part ("unknown" if it cannot be read)."""
    try:
        name = socket.gethostname()
    except OSError:
        return "unknown"
    return name.split(".", 1)[0] or "unknown"


MACOS_VERSION_PLIST = "/System/Library/CoreServices/SystemVersion.plist"
OS_RELEASE = "/etc/os-release"


def os_version(plist_path: str = MACOS_VERSION_PLIST, os_release: str = OS_RELEASE) -> str:
    """Human readable OS version, or "" when it cannot be determined."""
    try:
        with open(plist_path, "rb") as fh:
            info = plistlib.load(fh)
    except (OSError, ValueError, ExpatError):
        info = None
    if isinstance(info, dict) and info.get("ProductVersion"):
        return f"macOS {info['ProductVersion']}"
    try:
        with open(os_release, "r", encoding="utf-8", errors="replace") as fh:
            for line in fh:
                if line.startswith("PRETTY_NAME="):
                    return line[len("PRETTY_NAME="):].strip().strip('"')
    except OSError:
        pass
    return ""


def format_size(size: int) -> str:
    kb = 1024
    mb = kb * 1024
    gb = mb * 1024
    if size >= gb:
        return f"{size / gb:.2f} GB"
    if size >= mb:
        return f"{size / mb:.2f} MB"
    if size >= kb:
        return f"{size / kb:.2f} KB"
    return f"{size} bytes"


def private_temp_dir(home: Optional[Path] = None) -> Path:
    """~/.cache/dotstash/tmp, mode 0700. Decrypted archives are staged here."""
    base = Path(home) if home is not None else home_dir()
    path = base / ".cache" / "dotstash" / "tmp"
    path.mkdir(parents=True, exist_ok=True, mode=BACKUP_DIR_MODE)
    os.chmod(path, BACKUP_DIR_MODE)
    return path
