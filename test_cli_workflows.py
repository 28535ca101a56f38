from __future__ import annotations

import os
import json
import subprocess
import sys
import tempfile
import unittest
from pathlib import Path


def _build_home(home: Path) -> None:
    (home / ".zshrc").write_text("export EDITOR=nvim\n")
    (home / ".gitconfig").write_text("[user]\n  name = someone\n")
    nv = home / ".config" / "nvim"
    nv.mkdir(parents=True)
    (nv / "init.lua").write_text("vim.o.number = true\n")
    (nv / "debug.log").write_text("noise\n")
    (home / ".ssh").mkdir()
    (home / ".ssh" / "id_ed25519").write_text("PRIVATE\n")


class CLIIntegrationTests(unittest.TestCase):
    def run_cli(self, args, *, home: Path, expect: int | None = 0, stdin: str | None = None):
        cmd = [sys.executable, "-m", "dotstash.cli"] + list(args)
        env = os.environ.copy()
        repo_root = Path(__file__).resolve().parent
        existing = env.get("PYTHONPATH", "")
        env["PYTHONPATH"] = str(repo_root) if not existing else f"{repo_root}{os.pathsep}{existing}"
        env["HOME"] = str(home)
        proc = subprocess.run(
            cmd,
            input=stdin,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            env=env,
        )
        if expect is not None and proc.returncode != expect:
            raise AssertionError(
                f"CLI exited {proc.returncode}, expected {expect}\nCommand: {' '.join(cmd)}\nSTDOUT:\n{proc.stdout}\nSTDERR:\n{proc.stderr}"
            )
        return proc

    def make_home(self):
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        home = Path(tmp.name)
        _build_home(home)
        cfg = home / ".config" / "dotstash" / "config.toml"
        self.run_cli(["--config", str(cfg), "config", "init"], home=home)
        return home, cfg

    def test_version(self):
        with tempfile.TemporaryDirectory() as tmp:
            proc = self.run_cli(["version"], home=Path(tmp))
            self.assertEqual(proc.stdout.strip(), "dotstash 0.1")

    def test_config_init_and_validate(self):
        home, cfg = self.make_home()
        self.assertTrue(cfg.exists())
        self.assertIn("[backup]", cfg.read_text())

        again = self.run_cli(["--config", str(cfg), "config", "init"], home=home, expect=2)
        self.assertIn("config already exists", again.stderr)
        self.run_cli(["--config", str(cfg), "config", "init", "--force"], home=home)

        proc = self.run_cli(["--config", str(cfg), "config", "validate"], home=home)
        self.assertIn("Config is valid", proc.stdout)
        self.assertIn(str(home / "backups" / "dotfiles"), proc.stdout)

    def test_invalid_config_exits_2(self):
        with tempfile.TemporaryDirectory() as tmp:
            home = Path(tmp)
            broken = home / "broken.toml"
            broken.write_text("items = [\n")
            proc = self.run_cli(["--config", str(broken), "list"], home=home, expect=2)
            self.assertIn("parsing config", proc.stderr)

            odd = home / "odd.toml"
            odd.write_text('items = ["../outside"]\n[backup]\nencryption = "rot13"\n')
            proc = self.run_cli(["--json", "--config", str(odd), "config", "validate"], home=home, expect=2)
            payload = json.loads(proc.stdout)
            self.assertFalse(payload["valid"])
            self.assertEqual(len(payload["problems"]), 2)

    def test_backup_list_contents_diff_restore(self):
        home, cfg = self.make_home()
        base = ["--config", str(cfg)]

        dry = self.run_cli(base + ["backup", "--dry-run"], home=home)
        self.assertIn("Dry run - would backup:", dry.stdout)
        self.assertIn(".config/nvim/init.lua", dry.stdout)
        self.assertNotIn("debug.log", dry.stdout)

        proc = self.run_cli(base + ["backup"], home=home)
        self.assertIn("Backup complete: dotfiles-", proc.stdout)
        backup_dir = home / "backups" / "dotfiles"
        archives = sorted(backup_dir.glob("dotfiles-*.tar.gz"))
        self.assertEqual(len(archives), 1)
        archive = str(archives[0])

        listing = json.loads(self.run_cli(["--json"] + base + ["list"], home=home).stdout)
        self.assertTrue(listing["success"])
        self.assertEqual([b["archive"] for b in listing["backups"]], [archive])
        self.assertEqual(listing["backups"][0]["file_count"], 3)

        contents = self.run_cli(base + ["contents", archive], home=home)
        self.assertIn("file\t", contents.stdout)
        self.assertIn(".zshrc", contents.stdout)
        # plaintext archives never carry sensitive files
        self.assertNotIn(".ssh", contents.stdout)

        (home / ".zshrc").write_text("export EDITOR=vim\n")
        diff = self.run_cli(base + ["diff", archive, "--verbose-diff"], home=home)
        self.assertIn("~ .zshrc", diff.stdout)
        self.assertIn("- export EDITOR=vim", diff.stdout)
        self.assertIn("Summary: 0 new, 1 modified, 2 unchanged", diff.stdout)

        restored = self.run_cli(base + ["restore", "--force"], home=home)
        self.assertIn("Using latest backup", restored.stdout)
        self.assertIn("Created safety backup: pre-restore-", restored.stdout)
        self.assertIn("Restored 3 files", restored.stdout)
        self.assertEqual((home / ".zshrc").read_text(), "export EDITOR=nvim\n")
        self.assertTrue(list((backup_dir / "pre-restore").glob("pre-restore-*.tar.gz")))

    def test_restore_confirmation_declined(self):
        home, cfg = self.make_home()
        base = ["--config", str(cfg)]
        self.run_cli(base + ["backup"], home=home)
        (home / ".zshrc").write_text("local edit\n")

        proc = self.run_cli(base + ["restore"], home=home, stdin="n\n")
        self.assertIn("Canceled.", proc.stdout)
        self.assertEqual((home / ".zshrc").read_text(), "local edit\n")

    def test_restore_only_category_json(self):
        home, cfg = self.make_home()
        base = ["--config", str(cfg)]
        self.run_cli(base + ["backup"], home=home)
        (home / ".zshrc").write_text("local edit\n")
        (home / ".gitconfig").write_text("local edit\n")

        proc = self.run_cli(["--json"] + base + ["restore", "--only", "git"], home=home)
        payload = json.loads(proc.stdout)
        self.assertTrue(payload["success"])
        self.assertEqual(payload["categories"], ["git"])
        self.assertEqual(payload["files_restored"], 1)
        self.assertEqual((home / ".zshrc").read_text(), "local edit\n")
        self.assertEqual((home / ".gitconfig").read_text(), "[user]\n  name = someone\n")

    def test_restore_without_backups_fails(self):
        home, cfg = self.make_home()
        proc = self.run_cli(["--config", str(cfg), "restore", "--force"], home=home, expect=1)
        self.assertIn("no backups found", proc.stderr)

    def test_backup_missing_recipients_fails(self):
        home, cfg = self.make_home()
        proc = self.run_cli(["--config", str(cfg), "backup", "--encrypt", "age"], home=home, expect=1)
        self.assertIn("no recipients file", proc.stderr)


if __name__ == "__main__":
    unittest.main()
