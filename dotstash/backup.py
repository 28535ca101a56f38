from __future__ import annotations

import os
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from .collector import collect
from .config import Config
from .constants import ARCHIVE_PREFIX, BACKUP_DIR_MODE, DEFAULT_MAX_BACKUPS
from .encryption import EncryptionMethod, EncryptionOptions, Encryptor, new_encryptor
from .errors import DotstashError, EncryptionError
from .logs import get_logger
from .metadata import BackupResult, Metadata, archive_name, metadata_path
from .sysutil import home_dir
from .writer import ProgressFn, create_archive, create_encrypted_archive

LOGGER = get_logger(__name__)


@dataclass
class BackupOptions:
    dry_run: bool = False
    estimate: bool = False
    encryption: str = ""  # overrides the config; "none" disables
    include_secrets: bool = True
    recipients_file: str = ""
    gpg_recipient: str = ""
    progress: Optional[ProgressFn] = None


def resolve_encryption(cfg: Config, options: BackupOptions) -> Tuple[EncryptionMethod, EncryptionOptions]:
    """Pick the method for this run and check its key material is configured."""
    method = EncryptionMethod.parse(options.encryption or cfg.backup.encryption)
    enc_opts = cfg.encryption_options()
    if method is EncryptionMethod.AGE:
        recipients = options.recipients_file or enc_opts.age_recipients_file
        if not recipients:
            raise EncryptionError("age encryption requested but no recipients file specified")
        if not os.path.exists(recipients):
            raise EncryptionError(f"age recipients file not found: {recipients}")
        enc_opts = replace(enc_opts, age_recipients_file=recipients)
    elif method is EncryptionMethod.GPG:
        recipient = options.gpg_recipient or enc_opts.gpg_recipient
        if not recipient:
            raise EncryptionError("gpg encryption requested but no recipient specified")
        enc_opts = replace(enc_opts, gpg_recipient=recipient)
    return method, enc_opts


def cleanup_old_backups(backup_dir: str, max_backups: int) -> List[str]:
    """Keep the newest ``max_backups`` timestamp groups; returns removed paths.

    Archives and their sidecars share a timestamp and are removed together.
    Zero falls back to the default count.
    """
    if max_backups <= 0:
        max_backups = DEFAULT_MAX_BACKUPS
    try:
        names = os.listdir(backup_dir)
    except OSError as exc:
        LOGGER.debug("Cannot read backup directory for cleanup: %s", exc)
        return []

    groups: Dict[str, List[str]] = {}
    for name in names:
        if not name.startswith(ARCHIVE_PREFIX):
            continue
        ts = name[len(ARCHIVE_PREFIX):].split(".", 1)[0]
        groups.setdefault(ts, []).append(os.path.join(backup_dir, name))

    removed: List[str] = []
    stale = sorted(groups)[: max(0, len(groups) - max_backups)]
    for ts in stale:
        for path in sorted(groups[ts]):
            LOGGER.info("Removing old backup: %s", os.path.basename(path))
            try:
                os.remove(path)
            except OSError as exc:
                LOGGER.warning("Failed to remove old backup %s: %s", os.path.basename(path), exc)
                continue
            removed.append(path)
    return removed


def run_backup(
    cfg: Config,
    options: Optional[BackupOptions] = None,
    *,
    home: Optional[os.PathLike | str] = None,
    encryptor: Optional[Encryptor] = None,
    now: Optional[datetime] = None,
) -> BackupResult:
    """Collect, archive (optionally encrypted) and rotate.

    Failures come back as ``success=False`` with a message. ``encryptor``
    replaces the collaborator the configuration would select.
    """
    opts = options or BackupOptions()
    base = os.fspath(home) if home is not None else os.fspath(home_dir())
    result = BackupResult(dry_run=opts.dry_run)
    backup_dir = cfg.backup.backup_dir

    try:
        os.makedirs(backup_dir, BACKUP_DIR_MODE, exist_ok=True)
    except OSError as exc:
        result.error = f"creating backup directory: {exc}"
        return result

    try:
        if encryptor is not None:
            method = encryptor.method
        else:
            method, enc_opts = resolve_encryption(cfg, opts)
            if method is not EncryptionMethod.NONE:
                encryptor = new_encryptor(method, enc_opts)
    except EncryptionError as exc:
        result.error = str(exc)
        return result
    encrypted = method is not EncryptionMethod.NONE
    result.encrypted = encrypted
    result.encryption_method = method.value

    files, stats = collect(
        cfg.backup_items(),
        cfg.excludes,
        include_sensitive=encrypted and opts.include_secrets,
        sensitive_items=cfg.sensitive_items(),
        home=base,
    )
    result.stats = stats
    if not files:
        result.error = "no files to backup"
        return result

    if opts.estimate:
        result.success = True
        return result
    if opts.dry_run:
        result.files = [fd.relative_path for fd in files]
        result.success = True
        return result

    path = archive_name(backup_dir, method, now)
    try:
        if encryptor is not None:
            create_encrypted_archive(path, files, encryptor, progress=opts.progress)
        else:
            create_archive(path, files, progress=opts.progress)
    except (DotstashError, OSError) as exc:
        result.error = f"creating encrypted archive: {exc}" if encrypted else str(exc)
        return result

    meta = Metadata.new(method, stats, now)
    try:
        meta.save(metadata_path(path))
    except OSError as exc:
        LOGGER.warning("Failed to save metadata: %s", exc)

    cleanup_old_backups(backup_dir, cfg.backup.max_backups)

    result.archive = path
    result.success = True
    return result
