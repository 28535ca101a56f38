from __future__ import annotations

import io
import os
import shutil
import subprocess
import tempfile
import unittest
from pathlib import Path

from dotstash.encryption import (
    AgeEncryptor,
    EncryptionMethod,
    EncryptionOptions,
    GPGEncryptor,
    detect_method,
    new_encryptor,
)
from dotstash.errors import EncryptionError


class MethodTests(unittest.TestCase):
    def test_parse(self):
        self.assertIs(EncryptionMethod.parse(""), EncryptionMethod.NONE)
        self.assertIs(EncryptionMethod.parse("none"), EncryptionMethod.NONE)
        self.assertIs(EncryptionMethod.parse(" AGE "), EncryptionMethod.AGE)
        self.assertIs(EncryptionMethod.parse("gpg"), EncryptionMethod.GPG)
        with self.assertRaises(EncryptionError):
            EncryptionMethod.parse("rot13")

    def test_suffix_and_detect(self):
        self.assertEqual(EncryptionMethod.NONE.suffix, "")
        self.assertEqual(EncryptionMethod.AGE.suffix, ".age")
        self.assertIs(detect_method("dotfiles-x.tar.gz.age"), EncryptionMethod.AGE)
        self.assertIs(detect_method("dotfiles-x.tar.gz.gpg"), EncryptionMethod.GPG)
        self.assertIs(detect_method("dotfiles-x.tar.gz"), EncryptionMethod.NONE)

    def test_new_encryptor(self):
        opts = EncryptionOptions(age_recipients_file="/r", age_identity_files=[" /k ", ""], gpg_recipient="me")
        age = new_encryptor(EncryptionMethod.AGE, opts)
        self.assertIsInstance(age, AgeEncryptor)
        self.assertEqual(age.identity_files, ["/k"])
        gpg = new_encryptor(EncryptionMethod.GPG, opts)
        self.assertIsInstance(gpg, GPGEncryptor)
        self.assertEqual(gpg.recipient, "me")
        with self.assertRaises(EncryptionError):
            new_encryptor(EncryptionMethod.NONE, opts)


class AgePreconditionTests(unittest.TestCase):
    def test_missing_recipients(self):
        with tempfile.TemporaryDirectory() as tmp:
            out = os.path.join(tmp, "a.age")
            with self.assertRaises(EncryptionError) as ctx:
                AgeEncryptor("").encrypt_stream(io.BytesIO(b"x"), out)
            self.assertIn("not specified", str(ctx.exception))
            with self.assertRaises(EncryptionError) as ctx:
                AgeEncryptor(os.path.join(tmp, "nope")).encrypt_stream(io.BytesIO(b"x"), out)
            self.assertIn("age recipients file not found", str(ctx.exception))

    def test_missing_identity(self):
        with self.assertRaises(EncryptionError) as ctx:
            AgeEncryptor("r").decrypt("in.age", "out")
        self.assertIn("no age identity files configured", str(ctx.exception))
        with self.assertRaises(EncryptionError) as ctx:
            AgeEncryptor("r", ["/nonexistent/key.txt"]).decrypt("in.age", "out")
        self.assertIn("not found in configured locations", str(ctx.exception))

    def test_missing_tool(self):
        enc = AgeEncryptor()
        enc.tool = "dotstash-no-such-binary"
        self.assertFalse(enc.available())


@unittest.skipUnless(shutil.which("age") and shutil.which("age-keygen"), "age not installed")
class AgeRoundTripTests(unittest.TestCase):
    def test_roundtrip(self):
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            key = root / "key.txt"
            subprocess.run(["age-keygen", "-o", str(key)], check=True, capture_output=True)
            pub = subprocess.run(["age-keygen", "-y", str(key)], check=True, capture_output=True, text=True)
            recipients = root / "recipients.txt"
            recipients.write_text(pub.stdout)

            enc = AgeEncryptor(str(recipients), [str(root / "missing.txt"), str(key)])
            plain = root / "plain.bin"
            plain.write_bytes(os.urandom(4096))
            with open(plain, "rb") as src:
                enc.encrypt_stream(src, str(root / "c.age"))
            enc.decrypt(str(root / "c.age"), str(root / "back.bin"))
            self.assertEqual((root / "back.bin").read_bytes(), plain.read_bytes())


if __name__ == "__main__":
    unittest.main()
