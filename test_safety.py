from __future__ import annotations

import io
import os
import stat
import tempfile
import unittest
from datetime import datetime
from pathlib import Path
from unittest import mock

from dotstash.categories import CategoryTable
from dotstash.collector import collect
from dotstash.encryption import EncryptionMethod, EncryptionOptions
from dotstash.errors import EncryptionError, UserCancelledError
from dotstash.extract import extract_archive
from dotstash.reader import list_entries
from dotstash.safety import (
    SafetyChoice,
    contains_sensitive,
    create_safety_backup,
    filter_sensitive,
    find_files_to_backup,
    is_sensitive,
    prompt_sensitive_choice,
    safety_backup_path,
    usable_encryption,
)
from dotstash.writer import create_archive
from test_archive import FailingEncryptor, XorEncryptor

NOW = datetime(2024, 1, 15, 14, 30, 22)


class SensitiveHelpersTests(unittest.TestCase):
    def test_prefixes(self):
        self.assertTrue(is_sensitive(".ssh/id_ed25519"))
        self.assertTrue(is_sensitive(".aws/credentials"))
        self.assertTrue(is_sensitive(".config/gcloud/adc.json"))
        self.assertFalse(is_sensitive(".zshrc"))
        self.assertFalse(is_sensitive(".config/nvim/init.lua"))

    def test_filter_and_contains(self):
        files = [".zshrc", ".ssh/config", ".gitconfig", ".gnupg/pubring.kbx"]
        self.assertTrue(contains_sensitive(files))
        self.assertEqual(filter_sensitive(files), [".zshrc", ".gitconfig"])
        self.assertFalse(contains_sensitive(filter_sensitive(files)))

    def test_usable_encryption_requires_key_material(self):
        self.assertIs(usable_encryption(EncryptionOptions()), EncryptionMethod.NONE)
        missing = EncryptionOptions(age_recipients_file="/nonexistent/recipients.txt")
        self.assertIs(usable_encryption(missing), EncryptionMethod.NONE)

    def test_usable_encryption_follows_tool_availability(self):
        with tempfile.TemporaryDirectory() as tmp:
            rec = Path(tmp) / "recipients.txt"
            rec.write_text("age1example\n")
            opts = EncryptionOptions(age_recipients_file=str(rec), gpg_recipient="me@example.com")
            with mock.patch("dotstash.encryption.shutil.which", side_effect=lambda name: f"/usr/bin/{name}"):
                self.assertIs(usable_encryption(opts), EncryptionMethod.AGE)
            only_gpg = lambda name: "/usr/bin/gpg" if name == "gpg" else None
            with mock.patch("dotstash.encryption.shutil.which", side_effect=only_gpg):
                self.assertIs(usable_encryption(opts), EncryptionMethod.GPG)
            with mock.patch("dotstash.encryption.shutil.which", return_value=None):
                self.assertIs(usable_encryption(opts), EncryptionMethod.NONE)

    def test_safety_backup_path(self):
        p = safety_backup_path("/b", EncryptionMethod.NONE, NOW)
        self.assertEqual(p, "/b/pre-restore/pre-restore-20240115_143022.tar.gz")
        p = safety_backup_path("/b", EncryptionMethod.GPG, NOW)
        self.assertTrue(p.endswith("pre-restore-20240115_143022.tar.gz.gpg"))


class PromptTests(unittest.TestCase):
    def ask(self, answer: str) -> SafetyChoice:
        out = io.StringIO()
        choice = prompt_sensitive_choice([".ssh/config"], stdin=io.StringIO(answer), stdout=out)
        self.assertIn("3. Cancel restore", out.getvalue())
        return choice

    def test_valid_answers(self):
        self.assertIs(self.ask("1\n"), SafetyChoice.SAVE_UNENCRYPTED)
        self.assertIs(self.ask("2\n"), SafetyChoice.SKIP_SENSITIVE)
        self.assertIs(self.ask(" 3 \n"), SafetyChoice.CANCEL)

    def test_empty_line_cancels(self):
        self.assertIs(self.ask("\n"), SafetyChoice.CANCEL)

    def test_end_of_input_raises(self):
        with self.assertRaises(UserCancelledError):
            self.ask("")

    def test_invalid_answer_raises(self):
        with self.assertRaises(UserCancelledError) as ctx:
            self.ask("yes\n")
        self.assertIn("invalid choice: yes", str(ctx.exception))


class SafetyBackupTests(unittest.TestCase):
    def run_with_tmpdir(self, func):
        with tempfile.TemporaryDirectory() as tmp:
            root = Path(tmp)
            src = root / "src"
            home = root / "home"
            backups = root / "backups"
            for d in (src, home, backups):
                d.mkdir()
            func(root, src, home, backups)

    def _archive(self, src: Path, out: Path, items) -> Path:
        files, _ = collect(items, [], True, home=src)
        create_archive(str(out), files)
        return out

    def test_backup_holds_previous_content(self):
        def scenario(root: Path, src: Path, home: Path, backups: Path):
            (src / ".zshrc").write_text("new\n")
            (src / ".vimrc").write_text("set nu\n")
            (home / ".zshrc").write_text("old\n")
            archive = self._archive(src, root / "in.tar.gz", [".zshrc", ".vimrc"])

            self.assertEqual(find_files_to_backup(str(archive), home), [".zshrc"])
            path = create_safety_backup(str(archive), home=home, backup_dir=backups, now=NOW)
            self.assertEqual(path, str(backups / "pre-restore" / "pre-restore-20240115_143022.tar.gz"))
            self.assertEqual(stat.S_IMODE(os.stat(backups / "pre-restore").st_mode), 0o700)

            restored = root / "check"
            restored.mkdir()
            extract_archive(path, restored)
            self.assertEqual((restored / ".zshrc").read_text(), "old\n")
            self.assertFalse((restored / ".vimrc").exists())

        self.run_with_tmpdir(scenario)

    def test_nothing_to_save(self):
        def scenario(root: Path, src: Path, home: Path, backups: Path):
            (src / ".zshrc").write_text("new\n")
            archive = self._archive(src, root / "in.tar.gz", [".zshrc"])
            self.assertIsNone(create_safety_backup(str(archive), home=home, backup_dir=backups))
            self.assertFalse((backups / "pre-restore").exists())

        self.run_with_tmpdir(scenario)

    def test_category_selection_limits_backup(self):
        def scenario(root: Path, src: Path, home: Path, backups: Path):
            for name in (".zshrc", ".gitconfig"):
                (src / name).write_text("new")
                (home / name).write_text("old")
            archive = self._archive(src, root / "in.tar.gz", [".zshrc", ".gitconfig"])
            path = create_safety_backup(str(archive), home=home, backup_dir=backups, categories=["git"])
            self.assertEqual([e.name for e in list_entries(path)], [".gitconfig"])
            table = CategoryTable({"mine": [".zsh"]})
            self.assertEqual(find_files_to_backup(str(archive), home, ["MINE"], table), [".zshrc"])

        self.run_with_tmpdir(scenario)

    def _sensitive_setup(self, root: Path, src: Path, home: Path) -> Path:
        (src / ".ssh").mkdir()
        (src / ".ssh" / "config").write_text("Host new\n")
        (src / ".zshrc").write_text("new\n")
        (home / ".ssh").mkdir()
        (home / ".ssh" / "config").write_text("Host old\n")
        (home / ".zshrc").write_text("old\n")
        return self._archive(src, root / "in.tar.gz", [".zshrc", ".ssh"])

    def test_prompt_skip_sensitive(self):
        def scenario(root: Path, src: Path, home: Path, backups: Path):
            archive = self._sensitive_setup(root, src, home)
            asked = []

            def prompt(files):
                asked.append(list(files))
                return SafetyChoice.SKIP_SENSITIVE

            path = create_safety_backup(str(archive), home=home, backup_dir=backups, prompt=prompt)
            self.assertEqual(asked, [[".zshrc", ".ssh/config"]])
            self.assertEqual([e.name for e in list_entries(path)], [".zshrc"])

        self.run_with_tmpdir(scenario)

    def test_prompt_save_unencrypted(self):
        def scenario(root: Path, src: Path, home: Path, backups: Path):
            archive = self._sensitive_setup(root, src, home)
            path = create_safety_backup(
                str(archive), home=home, backup_dir=backups, prompt=lambda files: SafetyChoice.SAVE_UNENCRYPTED
            )
            self.assertEqual(sorted(e.name for e in list_entries(path)), [".ssh/config", ".zshrc"])

        self.run_with_tmpdir(scenario)

    def test_prompt_cancel(self):
        def scenario(root: Path, src: Path, home: Path, backups: Path):
            archive = self._sensitive_setup(root, src, home)
            with self.assertRaises(UserCancelledError):
                create_safety_backup(str(archive), home=home, backup_dir=backups,
                                     prompt=lambda files: SafetyChoice.CANCEL)
            self.assertEqual(list(backups.rglob("*.tar.gz*")), [])

        self.run_with_tmpdir(scenario)

    def test_configured_encryption_avoids_prompt(self):
        def scenario(root: Path, src: Path, home: Path, backups: Path):
            archive = self._sensitive_setup(root, src, home)

            def prompt(files):
                raise AssertionError("prompt should not be used")

            path = create_safety_backup(str(archive), home=home, backup_dir=backups,
                                        sensitive_encryptor=XorEncryptor(), prompt=prompt, now=NOW)
            self.assertTrue(path.endswith(".tar.gz.age"))

        self.run_with_tmpdir(scenario)

    def test_encrypted_source_encrypts_backup(self):
        def scenario(root: Path, src: Path, home: Path, backups: Path):
            archive = self._sensitive_setup(root, src, home)
            path = create_safety_backup(str(archive), home=home, backup_dir=backups,
                                        encryptor=XorEncryptor(), now=NOW)
            self.assertEqual(path, str(backups / "pre-restore" / "pre-restore-20240115_143022.tar.gz.age"))
            plain = root / "plain.tar.gz"
            XorEncryptor().decrypt(path, str(plain))
            self.assertEqual(sorted(e.name for e in list_entries(str(plain))), [".ssh/config", ".zshrc"])

        self.run_with_tmpdir(scenario)

    def test_encryption_failure_has_no_plaintext_fallback(self):
        def scenario(root: Path, src: Path, home: Path, backups: Path):
            archive = self._sensitive_setup(root, src, home)
            with self.assertRaises(EncryptionError):
                create_safety_backup(str(archive), home=home, backup_dir=backups, encryptor=FailingEncryptor())
            self.assertEqual(list(backups.rglob("*.tar.gz*")), [])

        self.run_with_tmpdir(scenario)


if __name__ == "__main__":
    unittest.main()
