from __future__ import annotations

import concurrent.futures as _fut
import os
import stat
import tarfile
from typing import BinaryIO, Callable, Optional, Sequence, Tuple

from .collector import FileDescriptor
from .constants import ARCHIVE_FILE_MODE, KIND_DIR, KIND_FILE, KIND_SYMLINK, PERM_MASK
from .encryption import Encryptor
from .errors import ArchiveError, EncryptionError
from .logs import get_logger
from .pathutil import norm_path

LOGGER = get_logger(__name__)

_TAR_TYPES = {
    KIND_FILE: tarfile.REGTYPE,
    KIND_DIR: tarfile.DIRTYPE,
    KIND_SYMLINK: tarfile.SYMTYPE,
}

ProgressFn = Callable[[int, int, str], None]


def build_header(
    name: str,
    kind: str,
    *,
    mode: int,
    size: int = 0,
    mtime: float = 0,
    link_target: str = "",
) -> tarfile.TarInfo:
    """Construct a normalized archive header.

    ``name`` is stored as a relative, '/'-separated path; a '..' component
    or an empty name raises ValueError. Only the 9 permission bits of
    ``mode`` are kept. Symlinks and directories carry no content.
    """
    if kind not in _TAR_TYPES:
        raise ValueError(f"unsupported entry kind: {kind}")
    arc = norm_path(name)
    if not arc:
        raise ValueError("empty archive entry name")
    info = tarfile.TarInfo(arc)
    info.type = _TAR_TYPES[kind]
    info.mode = mode & PERM_MASK
    info.mtime = int(mtime)
    info.size = size if kind == KIND_FILE else 0
    if kind == KIND_SYMLINK:
        info.linkname = link_target
    return info


def header_for_path(full_path: str, rel_path: str) -> Tuple[tarfile.TarInfo, Optional[BinaryIO]]:
    """Stat ``full_path`` without following links and return (header, content).

    Regular files come back with an open handle the caller must close;
    symlinks and directories have no content.
    """
    st = os.lstat(full_path)
    if stat.S_ISLNK(st.st_mode):
        target = os.readlink(full_path)
        return build_header(rel_path, KIND_SYMLINK, mode=st.st_mode, mtime=st.st_mtime, link_target=target), None
    if stat.S_ISDIR(st.st_mode):
        return build_header(rel_path, KIND_DIR, mode=st.st_mode, mtime=st.st_mtime), None
    if not stat.S_ISREG(st.st_mode):
        raise ValueError("not a regular file, directory or symlink")
    info = build_header(rel_path, KIND_FILE, mode=st.st_mode, size=st.st_size, mtime=st.st_mtime)
    fh = open(full_path, "rb")
    return info, fh


class ArchiveWriter:
    """Streaming tar+gzip writer over any binary sink (file or pipe)."""

    def __init__(self, sink: BinaryIO, *, progress: Optional[ProgressFn] = None):
        self.sink = sink
        self.progress = progress
        self.tar: Optional[tarfile.TarFile] = None
        self.written = 0
        self.skipped = 0

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def open(self):
        if self.tar is not None:
            return
        self.tar = tarfile.open(fileobj=self.sink, mode="w|gz", format=tarfile.PAX_FORMAT)

    def close(self):
        if self.tar is not None:
            tar, self.tar = self.tar, None
            tar.close()

    def add_path(self, full_path: str, rel_path: str) -> bool:
        """Append one file or symlink. Returns False if it was skipped.

        Problems with the source entry (vanished, unreadable, unsupported
        type, bad name) are logged and skipped. Errors writing to the sink
        propagate.
        """
        if self.tar is None:
            raise RuntimeError("writer is not open")
        try:
            info, content = header_for_path(full_path, rel_path)
        except (OSError, ValueError) as exc:
            LOGGER.warning("Failed to add %s: %s", rel_path, exc)
            self.skipped += 1
            return False
        try:
            self.tar.addfile(info, content)
        finally:
            if content is not None:
                content.close()
        self.written += 1
        return True

    def add_all(self, files: Sequence[FileDescriptor]) -> int:
        total = len(files)
        for i, fd in enumerate(files, 1):
            if self.progress is not None:
                self.progress(i, total, fd.relative_path)
            self.add_path(fd.full_path, fd.relative_path)
        return self.written


def write_archive(sink: BinaryIO, files: Sequence[FileDescriptor], *, progress: Optional[ProgressFn] = None) -> int:
    """Serialize ``files`` as a gzip-compressed tar stream into ``sink``.

    Returns the number of entries written. Per-file failures are skipped;
    a failing sink raises.
    """
    with ArchiveWriter(sink, progress=progress) as w:
        w.add_all(files)
    return w.written


def _remove_partial(path: str) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
    except OSError as exc:
        LOGGER.warning("Failed to remove partial archive %s: %s", path, exc)


def create_archive(output_path: str, files: Sequence[FileDescriptor], *, progress: Optional[ProgressFn] = None) -> int:
    """Write an unencrypted archive to ``output_path`` (0600, truncated)."""
    try:
        fd = os.open(output_path, os.O_CREAT | os.O_WRONLY | os.O_TRUNC, ARCHIVE_FILE_MODE)
        with os.fdopen(fd, "wb") as out:
            return write_archive(out, files, progress=progress)
    except (OSError, tarfile.TarError) as exc:
        _remove_partial(output_path)
        raise ArchiveError(f"creating archive: {exc}") from exc


def _write_to_pipe(write_fd: int, files: Sequence[FileDescriptor], progress: Optional[ProgressFn]) -> int:
    # closing the write end is what lets the encryptor see EOF
    with os.fdopen(write_fd, "wb") as sink:
        return write_archive(sink, files, progress=progress)


def create_encrypted_archive(
    output_path: str,
    files: Sequence[FileDescriptor],
    encryptor: Encryptor,
    *,
    progress: Optional[ProgressFn] = None,
) -> int:
    """Stream the archive through ``encryptor`` into ``output_path``.

    The tar+gzip stream is produced by a worker thread into an OS pipe whose
    read end is the encryptor's stdin, so plaintext only ever exists in the
    pipe buffer. If the encryptor fails, closing the read end makes the
    worker's next write fail with a broken pipe; that error is collected and
    reported alongside the encryption error. Nothing is left at
    ``output_path`` on failure.
    """
    read_fd, write_fd = os.pipe()
    enc_error: Optional[EncryptionError] = None
    with _fut.ThreadPoolExecutor(max_workers=1, thread_name_prefix="dotstash-writer") as pool:
        future = pool.submit(_write_to_pipe, write_fd, files, progress)
        source = os.fdopen(read_fd, "rb", buffering=0)
        try:
            encryptor.encrypt_stream(source, output_path)
        except EncryptionError as exc:
            enc_error = exc
        finally:
            source.close()
        write_error = future.exception()

    if enc_error is not None:
        _remove_partial(output_path)
        if write_error is not None and not isinstance(write_error, BrokenPipeError):
            raise EncryptionError(f"{enc_error}; write error: {write_error}") from enc_error
        raise enc_error
    if write_error is not None:
        _remove_partial(output_path)
        raise ArchiveError(f"writing archive stream: {write_error}") from write_error
    return future.result()

