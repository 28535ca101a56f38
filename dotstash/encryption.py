from __future__ import annotations

import enum
import os
import shutil
import subprocess
from dataclasses import dataclass, field
from typing import BinaryIO, List, Optional, Sequence

from .constants import METHOD_AGE, METHOD_GPG
from .errors import EncryptionError
from .logs import get_logger

LOGGER = get_logger(__name__)


class EncryptionMethod(str, enum.Enum):
    NONE = ""
    AGE = METHOD_AGE
    GPG = METHOD_GPG

    @property
    def suffix(self) -> str:
        return f".{self.value}" if self.value else ""

    @classmethod
    def parse(cls, value: Optional[str]) -> "EncryptionMethod":
        v = (value or "").strip().lower()
        if v in ("", "none"):
            return cls.NONE
        for m in cls:
            if m.value == v:
                return m
        raise EncryptionError(f"unknown encryption method: {value}")


def detect_method(path: str) -> EncryptionMethod:
    """Encryption method implied by an archive's file extension."""
    if path.endswith(EncryptionMethod.AGE.suffix):
        return EncryptionMethod.AGE
    if path.endswith(EncryptionMethod.GPG.suffix):
        return EncryptionMethod.GPG
    return EncryptionMethod.NONE


def has_tool(name: str) -> bool:
    return shutil.which(name) is not None


@dataclass
class EncryptionOptions:
    age_recipients_file: str = ""
    age_identity_files: List[str] = field(default_factory=list)
    gpg_recipient: str = ""


class Encryptor:
    """External encryption collaborator.

    ``encrypt_stream`` consumes a plaintext byte stream and leaves ciphertext
    at ``output_path``; ``decrypt`` is file to file. Failures surface as
    :class:`EncryptionError` carrying the tool's diagnostic text.
    """

    method: EncryptionMethod = EncryptionMethod.NONE
    tool: str = ""

    def available(self) -> bool:
        return has_tool(self.tool)

    def encrypt_stream(self, source: BinaryIO, output_path: str) -> None:
        raise NotImplementedError

    def decrypt(self, input_path: str, output_path: str) -> None:
        raise NotImplementedError

    def _run(self, args: Sequence[str], *, what: str, stdin=subprocess.DEVNULL) -> None:
        try:
            proc = subprocess.run(
                list(args),
                stdin=stdin,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
            )
        except OSError as exc:
            raise EncryptionError(f"{what} failed: cannot run {args[0]}: {exc}") from exc
        if proc.returncode != 0:
            detail = proc.stderr.decode("utf-8", errors="replace").strip()
            raise EncryptionError(f"{what} failed: {detail or f'exit status {proc.returncode}'}")


class AgeEncryptor(Encryptor):
    method = EncryptionMethod.AGE
    tool = "age"

    def __init__(self, recipients_file: str = "", identity_files: Sequence[str] = ()):
        self.recipients_file = recipients_file
        self.identity_files = [p.strip() for p in identity_files if p and p.strip()]

    def encrypt_stream(self, source: BinaryIO, output_path: str) -> None:
        if not self.recipients_file:
            raise EncryptionError("age recipients file not specified")
        if not os.path.exists(self.recipients_file):
            raise EncryptionError(f"age recipients file not found: {self.recipients_file}")
        self._run(
            [self.tool, "-e", "-R", self.recipients_file, "-o", output_path],
            what="age encryption",
            stdin=source,
        )

    def decrypt(self, input_path: str, output_path: str) -> None:
        identity = self._find_identity_file()
        self._run(
            [self.tool, "-d", "-i", identity, "-o", output_path, input_path],
            what="age decryption",
        )

    def _find_identity_file(self) -> str:
        if not self.identity_files:
            raise EncryptionError("no age identity files configured")
        for loc in self.identity_files:
            if os.path.exists(loc):
                return loc
        raise EncryptionError(f"age identity file not found in configured locations: {self.identity_files}")


class GPGEncryptor(Encryptor):
    """GnuPG in batch mode. Decryption needs the whole archive as a file."""

    method = EncryptionMethod.GPG
    tool = "gpg"

    def __init__(self, recipient: str = ""):
        self.recipient = recipient

    def encrypt_stream(self, source: BinaryIO, output_path: str) -> None:
        args = [self.tool, "--batch", "--yes", "--encrypt", "--output", output_path]
        if self.recipient:
            args += ["--recipient", self.recipient]
        self._run(args, what="gpg encryption", stdin=source)

    def decrypt(self, input_path: str, output_path: str) -> None:
        # stdin stays attached so gpg can ask for a passphrase
        self._run(
            [self.tool, "--yes", "--decrypt", "--output", output_path, input_path],
            what="gpg decryption",
            stdin=None,
        )


def new_encryptor(method: EncryptionMethod, options: Optional[EncryptionOptions] = None) -> Encryptor:
    """Resolve a method to its collaborator once, at the start of an operation."""
    opts = options or EncryptionOptions()
    if method is EncryptionMethod.AGE:
        return AgeEncryptor(opts.age_recipients_file, opts.age_identity_files)
    if method is EncryptionMethod.GPG:
        return GPGEncryptor(opts.gpg_recipient)
    raise EncryptionError("no encryption method specified")
