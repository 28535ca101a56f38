from __future__ import annotations

import json
import os
import re
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from .collector import CollectionStats
from .constants import (
    ARCHIVE_FILE_MODE,
    ARCHIVE_PREFIX,
    ARCHIVE_SUFFIX,
    ENCRYPTED_SUFFIXES,
    METADATA_TIMESTAMP_FORMAT,
    TIMESTAMP_FORMAT,
)
from .encryption import EncryptionMethod
from .sysutil import os_version, short_hostname

_TIMESTAMP_RE = re.compile(r"(\d{8}_\d{6})")

# keys dropped from JSON output when empty
_OMIT_EMPTY = ("archive", "encryption_method", "error", "safety_backup", "categories", "os_version",
               "encryption", "hostname", "file_count", "metadata_path")


def _compact(d: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in d.items() if not (k in _OMIT_EMPTY and not v)}


@dataclass
class Metadata:
    """Descriptive JSON sidecar written next to each archive."""

    timestamp: str
    hostname: str
    os_version: str = ""
    encrypted: bool = False
    encryption_method: str = ""
    stats: CollectionStats = field(default_factory=CollectionStats)

    @classmethod
    def new(cls, method: EncryptionMethod = EncryptionMethod.NONE,
            stats: Optional[CollectionStats] = None, now: Optional[datetime] = None) -> "Metadata":
        return cls(
            timestamp=(now or datetime.now()).strftime(METADATA_TIMESTAMP_FORMAT),
            hostname=short_hostname(),
            os_version=os_version(),
            encrypted=method is not EncryptionMethod.NONE,
            encryption_method=method.value,
            stats=stats or CollectionStats(),
        )

    def to_dict(self) -> Dict[str, Any]:
        return _compact(asdict(self))

    def save(self, path: str) -> None:
        data = json.dumps(self.to_dict(), indent=2)
        fd = os.open(path, os.O_CREAT | os.O_WRONLY | os.O_TRUNC, ARCHIVE_FILE_MODE)
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(data)

    @classmethod
    def load(cls, path: str) -> "Metadata":
        with open(path, "r", encoding="utf-8") as fh:
            raw = json.load(fh)
        stats_raw = raw.get("stats") or {}
        known = CollectionStats.__dataclass_fields__
        stats = CollectionStats(**{k: int(v) for k, v in stats_raw.items() if k in known})
        return cls(
            timestamp=str(raw.get("timestamp", "")),
            hostname=str(raw.get("hostname", "")),
            os_version=str(raw.get("os_version", "")),
            encrypted=bool(raw.get("encrypted", False)),
            encryption_method=str(raw.get("encryption_method", "")),
            stats=stats,
        )


def metadata_path(archive_path: str) -> str:
    """archive.tar.gz[.age|.gpg] -> archive.json"""
    base = archive_path
    for ext in ENCRYPTED_SUFFIXES:
        if base.endswith(ext):
            base = base[: -len(ext)]
            break
    if base.endswith(".tar.gz"):
        base = base[: -len(".tar.gz")]
    elif base.endswith(".tar"):
        base = base[: -len(".tar")]
    return base + ".json"


def archive_name(backup_dir: str, method: EncryptionMethod = EncryptionMethod.NONE,
                 now: Optional[datetime] = None) -> str:
    ts = (now or datetime.now()).strftime(TIMESTAMP_FORMAT)
    return os.path.join(backup_dir, f"{ARCHIVE_PREFIX}{ts}{ARCHIVE_SUFFIX}{method.suffix}")


def is_archive_file(name: str) -> bool:
    if not name.startswith(ARCHIVE_PREFIX):
        return False
    return any(name.endswith(ARCHIVE_SUFFIX + s) for s in ("",) + ENCRYPTED_SUFFIXES)


def extract_timestamp(name: str) -> str:
    """dotfiles-20240115_143022.tar.gz -> "2024-01-15 14:30:22" ("" if absent)."""
    m = _TIMESTAMP_RE.search(os.path.basename(name))
    if not m:
        return ""
    ts = m.group(1)
    return f"{ts[0:4]}-{ts[4:6]}-{ts[6:8]} {ts[9:11]}:{ts[11:13]}:{ts[13:15]}"


@dataclass
class BackupResult:
    success: bool = False
    archive: str = ""
    encrypted: bool = False
    encryption_method: str = ""
    stats: CollectionStats = field(default_factory=CollectionStats)
    error: str = ""
    dry_run: bool = False
    files: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        d = _compact(asdict(self))
        if not self.dry_run:
            d.pop("files", None)
        return d


@dataclass
class RestoreResult:
    success: bool = False
    archive: str = ""
    safety_backup: str = ""
    categories: List[str] = field(default_factory=list)
    dry_run: bool = False
    files_restored: int = 0
    files: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    error: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return _compact(asdict(self))


@dataclass
class BackupInfo:
    archive: str
    timestamp: str = ""
    size: int = 0
    encrypted: bool = False
    encryption: str = ""
    hostname: str = ""
    file_count: int = 0
    metadata_path: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return _compact(asdict(self))


@dataclass
class ListResult:
    success: bool = False
    backups: List[BackupInfo] = field(default_factory=list)
    error: str = ""

    def to_dict(self) -> Dict[str, Any]:
        d = {"success": self.success, "backups": [b.to_dict() for b in self.backups]}
        if self.error:
            d["error"] = self.error
        return d
