from __future__ import annotations

import os
import tarfile
import zlib
from dataclasses import dataclass, field
from typing import BinaryIO, Iterator, List, Optional, Union

from .constants import KIND_DIR, KIND_FILE, KIND_OTHER, KIND_SYMLINK, PERM_MASK
from .errors import ArchiveError

_READ_ERRORS = (tarfile.TarError, OSError, EOFError, zlib.error)


@dataclass
class ArchiveEntry:
    name: str
    kind: str
    mode: int = 0
    size: int = 0
    link_target: str = ""
    mtime: int = 0
    member: Optional[tarfile.TarInfo] = field(default=None, repr=False, compare=False)


def _kind_of(member: tarfile.TarInfo) -> str:
    if member.isreg():
        return KIND_FILE
    if member.isdir():
        return KIND_DIR
    if member.issym():
        return KIND_SYMLINK
    return KIND_OTHER


def entry_from_member(member: tarfile.TarInfo) -> ArchiveEntry:
    return ArchiveEntry(
        name=member.name,
        kind=_kind_of(member),
        mode=member.mode & PERM_MASK,
        size=member.size if member.isreg() else 0,
        link_target=member.linkname if member.issym() else "",
        mtime=int(member.mtime),
        member=member,
    )


class ArchiveReader:
    """Sequential reader over a tar+gzip archive (path or byte stream).

    Entries are yielded in archive order; content is only readable for the
    current entry, which is what lets extraction work on a pipe.
    """

    def __init__(self, source: Union[str, os.PathLike, BinaryIO]):
        self.source = source
        self.tar: Optional[tarfile.TarFile] = None
        self._fh: Optional[BinaryIO] = None

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def open(self):
        if self.tar is not None:
            return
        if isinstance(self.source, (str, os.PathLike)):
            try:
                self._fh = open(self.source, "rb")
            except OSError as exc:
                raise ArchiveError(f"cannot open archive {os.fspath(self.source)}: {exc}") from exc
            fileobj = self._fh
        else:
            fileobj = self.source
        try:
            self.tar = tarfile.open(fileobj=fileobj, mode="r|gz")
        except _READ_ERRORS as exc:
            self.close()
            raise ArchiveError(f"not a readable tar.gz archive: {exc}") from exc

    def close(self):
        if self.tar is not None:
            tar, self.tar = self.tar, None
            tar.close()
        if self._fh is not None:
            fh, self._fh = self._fh, None
            fh.close()

    def entries(self) -> Iterator[ArchiveEntry]:
        if self.tar is None:
            raise RuntimeError("reader is not open")
        it = iter(self.tar)
        while True:
            try:
                member = next(it)
            except StopIteration:
                return
            except _READ_ERRORS as exc:
                raise ArchiveError(f"reading archive: {exc}") from exc
            yield entry_from_member(member)

    def content(self, entry: ArchiveEntry) -> BinaryIO:
        """Readable stream for the current regular-file entry."""
        if self.tar is None or entry.member is None:
            raise RuntimeError("entry is not readable")
        fh = self.tar.extractfile(entry.member)
        if fh is None:
            raise ArchiveError(f"entry has no content: {entry.name}")
        return fh

    def list(self) -> List[ArchiveEntry]:
        return list(self.entries())


def list_entries(source: Union[str, os.PathLike, BinaryIO]) -> List[ArchiveEntry]:
    with ArchiveReader(source) as r:
        return r.list()
