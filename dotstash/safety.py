"""Pre-restore safety backups of files a restore is about to overwrite."""
from __future__ import annotations

import enum
import os
import sys
from datetime import datetime
from typing import BinaryIO, Callable, List, Optional, Sequence, TextIO, Union

from .categories import DEFAULT_CATEGORIES, CategoryTable, matches_category
from .collector import FileDescriptor
from .constants import (
    ARCHIVE_SUFFIX,
    BACKUP_DIR_MODE,
    KIND_DIR,
    PRE_RESTORE_DIRNAME,
    PRE_RESTORE_PREFIX,
    SENSITIVE_PREFIXES,
    TIMESTAMP_FORMAT,
)
from .encryption import EncryptionMethod, EncryptionOptions, Encryptor, new_encryptor
from .errors import UserCancelledError
from .logs import get_logger
from .pathutil import is_safe_relative_path, is_within_base
from .reader import ArchiveReader
from .writer import create_archive, create_encrypted_archive

LOGGER = get_logger(__name__)


class SafetyChoice(enum.Enum):
    SAVE_UNENCRYPTED = "1"
    SKIP_SENSITIVE = "2"
    CANCEL = "3"


PromptFn = Callable[[Sequence[str]], SafetyChoice]


def is_sensitive(path: str) -> bool:
    return any(path.startswith(p) for p in SENSITIVE_PREFIXES)


def contains_sensitive(files: Sequence[str]) -> bool:
    return any(is_sensitive(f) for f in files)


def filter_sensitive(files: Sequence[str]) -> List[str]:
    return [f for f in files if not is_sensitive(f)]


def usable_encryption(options: EncryptionOptions) -> EncryptionMethod:
    """Configured method whose tool and key material are actually present."""
    if options.age_recipients_file and os.path.exists(options.age_recipients_file):
        if new_encryptor(EncryptionMethod.AGE, options).available():
            return EncryptionMethod.AGE
    if options.gpg_recipient and new_encryptor(EncryptionMethod.GPG, options).available():
        return EncryptionMethod.GPG
    return EncryptionMethod.NONE


def prompt_sensitive_choice(
    files: Sequence[str],
    stdin: Optional[TextIO] = None,
    stdout: Optional[TextIO] = None,
) -> SafetyChoice:
    """Ask how to handle sensitive files when the backup cannot be encrypted.

    Empty input means cancel; end of input or an unknown answer raises
    UserCancelledError.
    """
    stdin = stdin or sys.stdin
    stdout = stdout or sys.stdout
    print("Safety backup contains sensitive files but no encryption is configured.", file=stdout)
    print("Options:", file=stdout)
    print("  1. Save without encryption", file=stdout)
    print("  2. Skip sensitive files", file=stdout)
    print("  3. Cancel restore", file=stdout)
    print("\nChoice [1/2/3]: ", end="", file=stdout)
    stdout.flush()

    line = stdin.readline()
    if not line:
        raise UserCancelledError("cancelled: no input received")
    choice = line.strip()
    if choice == "":
        return SafetyChoice.CANCEL
    for c in SafetyChoice:
        if c.value == choice:
            return c
    raise UserCancelledError(f"invalid choice: {choice}")


def find_files_to_backup(
    source: Union[str, os.PathLike, BinaryIO],
    home: Union[str, os.PathLike],
    categories: Optional[Sequence[str]] = None,
    table: CategoryTable = DEFAULT_CATEGORIES,
) -> List[str]:
    """Names of archive entries whose target already exists under ``home``."""
    base = os.fspath(home)
    found: List[str] = []
    with ArchiveReader(source) as reader:
        for entry in reader.entries():
            if entry.kind == KIND_DIR or not is_safe_relative_path(entry.name):
                continue
            if categories and not matches_category(entry.name, categories, table):
                continue
            target = os.path.join(base, entry.name)
            if os.path.lexists(target) and is_within_base(target, base):
                found.append(entry.name)
    return found


def _descriptors(home: str, names: Sequence[str]) -> List[FileDescriptor]:
    out: List[FileDescriptor] = []
    for rel in names:
        full = os.path.join(home, rel)
        try:
            st = os.lstat(full)
        except OSError as exc:
            LOGGER.debug("Failed to backup %s: %s", rel, exc)
            continue
        out.append(FileDescriptor(full_path=full, relative_path=rel, size=st.st_size, mtime=st.st_mtime))
    return out


def safety_backup_path(backup_dir: str, method: EncryptionMethod, now: Optional[datetime] = None) -> str:
    ts = (now or datetime.now()).strftime(TIMESTAMP_FORMAT)
    name = f"{PRE_RESTORE_PREFIX}{ts}{ARCHIVE_SUFFIX}{method.suffix}"
    return os.path.join(backup_dir, PRE_RESTORE_DIRNAME, name)


def create_safety_backup(
    source: Union[str, os.PathLike],
    *,
    home: Union[str, os.PathLike],
    backup_dir: Union[str, os.PathLike],
    categories: Optional[Sequence[str]] = None,
    encryptor: Optional[Encryptor] = None,
    sensitive_encryptor: Optional[Encryptor] = None,
    prompt: PromptFn = prompt_sensitive_choice,
    now: Optional[datetime] = None,
    table: CategoryTable = DEFAULT_CATEGORIES,
) -> Optional[str]:
    """Archive the files a restore of ``source`` would overwrite.

    Returns the path of the new archive, or None when nothing needs saving.

    ``encryptor`` is set when the archive being restored was encrypted; the
    safety backup then goes through the same encryptor and a failure is
    raised rather than falling back to plaintext. Otherwise, if sensitive
    paths are involved, ``sensitive_encryptor`` (a usable configured
    method) is used, and without one ``prompt`` decides.
    """
    home = os.fspath(home)
    files = find_files_to_backup(source, home, categories, table)
    if not files:
        LOGGER.info("No existing files to backup")
        return None

    if encryptor is None and contains_sensitive(files):
        if sensitive_encryptor is not None:
            encryptor = sensitive_encryptor
        else:
            choice = prompt(files)
            if choice is SafetyChoice.CANCEL:
                raise UserCancelledError("restore cancelled by user")
            if choice is SafetyChoice.SKIP_SENSITIVE:
                files = filter_sensitive(files)
            if not files:
                LOGGER.info("No files to backup after filtering")
                return None

    method = encryptor.method if encryptor is not None else EncryptionMethod.NONE
    path = safety_backup_path(os.fspath(backup_dir), method, now)
    os.makedirs(os.path.dirname(path), BACKUP_DIR_MODE, exist_ok=True)

    descriptors = _descriptors(home, files)
    if encryptor is not None:
        create_encrypted_archive(path, descriptors, encryptor)
    else:
        create_archive(path, descriptors)
    return path
