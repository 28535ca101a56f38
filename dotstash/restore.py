from __future__ import annotations

import contextlib
import difflib
import os
import tempfile
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Iterator, List, Optional

from .config import Config
from .constants import DIFF_MAX_CONTENT_BYTES, DIFF_MAX_LINE_LENGTH, DIFF_MAX_LINES, KIND_FILE
from .encryption import EncryptionMethod, Encryptor, detect_method, new_encryptor
from .errors import DotstashError, EncryptionError, UserCancelledError
from .extract import extract_archive
from .logs import get_logger
from .metadata import BackupInfo, ListResult, Metadata, RestoreResult, extract_timestamp, is_archive_file, metadata_path
from .reader import ArchiveEntry, ArchiveReader
from .safety import PromptFn, create_safety_backup, prompt_sensitive_choice, usable_encryption
from .sysutil import home_dir, private_temp_dir

LOGGER = get_logger(__name__)


@dataclass
class RestoreOptions:
    dry_run: bool = False
    no_backup: bool = False
    categories: List[str] = field(default_factory=list)


def _encryptor_for(cfg: Config, method: EncryptionMethod, encryptor: Optional[Encryptor]) -> Encryptor:
    if encryptor is not None:
        return encryptor
    return new_encryptor(method, cfg.encryption_options())


@contextlib.contextmanager
def decrypted_archive(
    cfg: Config,
    archive: str,
    *,
    home: Optional[str] = None,
    encryptor: Optional[Encryptor] = None,
) -> Iterator[str]:
    """Yield a path to the plaintext tar.gz for ``archive``.

    Encrypted archives are decrypted into a 0600 file under the private temp
    dir, which is removed on exit. Plain archives are yielded unchanged.
    """
    method = detect_method(archive)
    if method is EncryptionMethod.NONE:
        yield archive
        return

    enc = _encryptor_for(cfg, method, encryptor)
    tmp_dir = private_temp_dir(home)
    fd, tmp_path = tempfile.mkstemp(prefix="dotstash-decrypt-", suffix=".tar.gz", dir=tmp_dir)
    os.close(fd)
    try:
        enc.decrypt(archive, tmp_path)
        yield tmp_path
    finally:
        try:
            os.remove(tmp_path)
        except FileNotFoundError:
            pass


def find_latest_backup(backup_dir: str) -> Optional[str]:
    try:
        names = os.listdir(backup_dir)
    except OSError:
        return None
    archives = sorted(n for n in names if is_archive_file(n))
    if not archives:
        return None
    return os.path.join(backup_dir, archives[-1])


def run_restore(
    cfg: Config,
    archive: str,
    options: Optional[RestoreOptions] = None,
    *,
    home: Optional[os.PathLike | str] = None,
    prompt: PromptFn = prompt_sensitive_choice,
    encryptor: Optional[Encryptor] = None,
) -> RestoreResult:
    """Restore ``archive`` into ``home``.

    The safety backup is taken before anything is overwritten; if it cannot
    be created (or the user cancels), nothing is extracted.
    """
    opts = options or RestoreOptions()
    base = os.fspath(home) if home is not None else os.fspath(home_dir())
    result = RestoreResult(archive=archive, categories=list(opts.categories), dry_run=opts.dry_run)

    if not os.path.exists(archive):
        result.error = f"archive not found: {archive}"
        return result

    method = detect_method(archive)
    try:
        source_enc = _encryptor_for(cfg, method, encryptor) if method is not EncryptionMethod.NONE else None
        with decrypted_archive(cfg, archive, home=base, encryptor=source_enc) as tar_path:
            _restore_plain(cfg, tar_path, opts, base, prompt, source_enc, result)
    except (EncryptionError, OSError) as exc:
        result.error = f"decryption failed: {exc}"
    return result


def _restore_plain(
    cfg: Config,
    tar_path: str,
    opts: RestoreOptions,
    home: str,
    prompt: PromptFn,
    source_enc: Optional[Encryptor],
    result: RestoreResult,
) -> None:
    if not opts.no_backup and not opts.dry_run:
        try:
            sensitive_enc = None
            if source_enc is None:
                enc_opts = cfg.encryption_options()
                m = usable_encryption(enc_opts)
                if m is not EncryptionMethod.NONE:
                    sensitive_enc = new_encryptor(m, enc_opts)
            safety = create_safety_backup(
                tar_path,
                home=home,
                backup_dir=cfg.backup.backup_dir,
                categories=opts.categories,
                encryptor=source_enc,
                sensitive_encryptor=sensitive_enc,
                prompt=prompt,
            )
        except UserCancelledError as exc:
            result.error = str(exc)
            return
        except (DotstashError, OSError) as exc:
            result.error = f"safety backup failed: {exc}"
            return
        if safety:
            result.safety_backup = safety

    try:
        extracted = extract_archive(tar_path, home, categories=opts.categories, dry_run=opts.dry_run)
    except (DotstashError, OSError) as exc:
        result.error = f"extraction failed: {exc}"
        return
    result.files_restored = extracted.files_extracted
    result.files = extracted.entries
    result.skipped = extracted.skipped
    result.success = True


def list_contents(
    cfg: Config,
    archive: str,
    *,
    home: Optional[str] = None,
    encryptor: Optional[Encryptor] = None,
) -> List[ArchiveEntry]:
    with decrypted_archive(cfg, archive, home=home, encryptor=encryptor) as tar_path:
        with ArchiveReader(tar_path) as reader:
            return reader.list()


@dataclass
class ModifiedFile:
    name: str
    diff: List[str] = field(default_factory=list)


@dataclass
class DiffReport:
    new: List[str] = field(default_factory=list)
    modified: List[ModifiedFile] = field(default_factory=list)
    unchanged: List[str] = field(default_factory=list)

    def summary(self) -> str:
        return f"{len(self.new)} new, {len(self.modified)} modified, {len(self.unchanged)} unchanged"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _diff_lines(current: bytes, archived: bytes) -> List[str]:
    """Changed lines between the file on disk and the archived copy."""
    a = current.decode("utf-8", errors="replace").splitlines()
    b = archived.decode("utf-8", errors="replace").splitlines()
    changes: List[str] = []
    for line in difflib.unified_diff(a, b, lineterm="", n=0):
        if line.startswith(("---", "+++", "@@")):
            continue
        text = line[1:]
        if len(text) > DIFF_MAX_LINE_LENGTH:
            text = text[:DIFF_MAX_LINE_LENGTH] + "..."
        changes.append(f"{line[0]} {text}")
    if len(changes) > DIFF_MAX_LINES:
        more = len(changes) - DIFF_MAX_LINES
        changes = changes[:DIFF_MAX_LINES] + [f"... and {more} more changes"]
    return changes


def _read_file(path: str) -> Optional[bytes]:
    try:
        with open(path, "rb") as fh:
            return fh.read()
    except OSError:
        return None


def diff_archive(
    cfg: Config,
    archive: str,
    *,
    home: Optional[str] = None,
    verbose: bool = False,
    encryptor: Optional[Encryptor] = None,
) -> DiffReport:
    """Compare the regular files in ``archive`` with what is under ``home``.

    Files are compared by size, then by content when the archived copy is
    small enough to read. Unreadable files on disk count as modified.
    """
    base = home if home is not None else os.fspath(home_dir())
    report = DiffReport()
    with decrypted_archive(cfg, archive, home=base, encryptor=encryptor) as tar_path:
        with ArchiveReader(tar_path) as reader:
            for entry in reader.entries():
                if entry.kind != KIND_FILE:
                    continue
                current = os.path.join(base, entry.name)
                try:
                    st = os.stat(current)
                except FileNotFoundError:
                    report.new.append(entry.name)
                    continue
                except OSError:
                    report.modified.append(ModifiedFile(entry.name))
                    continue

                archived = b""
                if entry.size < DIFF_MAX_CONTENT_BYTES:
                    archived = reader.content(entry).read()

                modified = st.st_size != entry.size
                on_disk: Optional[bytes] = None
                if not modified and archived:
                    on_disk = _read_file(current)
                    modified = on_disk is not None and on_disk != archived

                if not modified:
                    report.unchanged.append(entry.name)
                    continue
                mf = ModifiedFile(entry.name)
                if verbose and archived:
                    if on_disk is None:
                        on_disk = _read_file(current)
                    if on_disk is not None:
                        mf.diff = _diff_lines(on_disk, archived)
                report.modified.append(mf)
    return report


def list_backups(backup_dir: str) -> ListResult:
    """Archives in ``backup_dir``, newest first, with sidecar details."""
    try:
        names = os.listdir(backup_dir)
    except OSError as exc:
        return ListResult(error=f"reading backup directory: {exc}")

    backups: List[BackupInfo] = []
    for name in names:
        if not is_archive_file(name):
            continue
        path = os.path.join(backup_dir, name)
        try:
            size = os.stat(path).st_size
        except OSError:
            continue
        method = detect_method(name)
        info = BackupInfo(
            archive=path,
            timestamp=extract_timestamp(name),
            size=size,
            encrypted=method is not EncryptionMethod.NONE,
            encryption=method.value,
        )
        side = metadata_path(path)
        try:
            meta = Metadata.load(side)
        except (OSError, ValueError) as exc:
            LOGGER.debug("No metadata for %s: %s", name, exc)
        else:
            info.hostname = meta.hostname
            info.file_count = meta.stats.files_backed_up
            info.encryption = meta.encryption_method or info.encryption
            info.metadata_path = side
        backups.append(info)

    backups.sort(key=lambda b: b.timestamp, reverse=True)
    return ListResult(success=True, backups=backups)

