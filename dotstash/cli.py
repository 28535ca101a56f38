from __future__ import annotations

import os
import sys
import argparse
import functools
import json as _json

from pathlib import Path
from typing import Any, Dict, List, Optional

from dotstash import __version__
from dotstash.backup import BackupOptions, run_backup
from dotstash.config import Config, default_config_path, load_with_profile, sample_config, validate_config
from dotstash.constants import BACKUP_DIR_MODE, KIND_DIR, KIND_FILE, KIND_SYMLINK
from dotstash.errors import ConfigError, DotstashError
from dotstash.logs import setup_logging
from dotstash.restore import RestoreOptions, diff_archive, find_latest_backup, list_backups, list_contents, run_restore
from dotstash.safety import prompt_sensitive_choice
from dotstash.sysutil import format_size

CATEGORY_HELP = "shell, git, editor, ssh, gpg, python, node, rust, go, cloud, docker, terminal, desktop, ai"


def _emit_json(obj: Dict[str, Any]) -> None:
    print(_json.dumps(obj, indent=2))


def _progress(i: int, total: int, rel: str) -> None:
    print(f"  [{i}/{total}] {rel}")


def _parse_categories(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [c.strip() for c in value.split(",") if c.strip()]


def cmd_backup(
    cfg: Config,
    *,
    dry_run: bool = False,
    estimate: bool = False,
    encrypt: str = "",
    no_encrypt: bool = False,
    no_secrets: bool = False,
    recipients: str = "",
    gpg_recipient: str = "",
    as_json: bool = False,
    verbose: bool = False,
) -> bool:
    """Create a backup archive from the configured items."""
    opts = BackupOptions(
        dry_run=dry_run,
        estimate=estimate,
        encryption="none" if no_encrypt else encrypt,
        include_secrets=not no_secrets,
        recipients_file=recipients,
        gpg_recipient=gpg_recipient,
        progress=_progress if (verbose and not as_json) else None,
    )
    result = run_backup(cfg, opts)
    if as_json:
        _emit_json(result.to_dict())
        if not result.success:
            print(f"Error: {result.error}", file=sys.stderr)
        return result.success
    if not result.success:
        print(f"Error: {result.error}", file=sys.stderr)
        return False

    stats = result.stats
    if estimate:
        print("Estimate:")
        print(f"  Files: {stats.files_backed_up}")
        print(f"  Size: {format_size(stats.total_size)}")
        return True
    if dry_run:
        print("Dry run - would backup:")
        for rel in result.files:
            print(f"  {rel}")
        if result.encrypted:
            print(f"\nWould encrypt with: {result.encryption_method}")
        return True

    print(f"Backup complete: {os.path.basename(result.archive)}")
    print(f"  Files: {stats.files_backed_up}")
    print(f"  Skipped: {stats.files_skipped}")
    if stats.files_excluded:
        print(f"  Excluded: {stats.files_excluded}")
    if stats.sensitive_files:
        print(f"  Sensitive: {stats.sensitive_files}")
    print(f"  Size: {format_size(stats.total_size)}")
    return True


def _confirm(archive: str, categories: List[str]) -> bool:
    print(f"\nRestore from: {os.path.basename(archive)}")
    if categories:
        print(f"Categories: {', '.join(categories)}")
    try:
        answer = input("\nContinue? [y/N] ")
    except EOFError:
        return False
    return answer.strip().lower() == "y"


def cmd_restore(
    cfg: Config,
    archive: Optional[str] = None,
    *,
    dry_run: bool = False,
    force: bool = False,
    no_backup: bool = False,
    only: Optional[str] = None,
    as_json: bool = False,
) -> bool:
    """Restore files from ``archive`` (latest backup when omitted)."""
    if not archive:
        archive = find_latest_backup(cfg.backup.backup_dir)
        if archive is None:
            raise DotstashError(f"no backups found in {cfg.backup.backup_dir}")
        if not as_json:
            print(f"Using latest backup: {os.path.basename(archive)}")

    categories = _parse_categories(only)
    if not force and not dry_run and not as_json:
        if not _confirm(archive, categories):
            print("Canceled.")
            return True

    prompt = functools.partial(prompt_sensitive_choice, stdout=sys.stderr if as_json else sys.stdout)
    opts = RestoreOptions(dry_run=dry_run, no_backup=no_backup, categories=categories)
    result = run_restore(cfg, archive, opts, prompt=prompt)
    if as_json:
        _emit_json(result.to_dict())
    if not result.success:
        print(f"Error: {result.error}", file=sys.stderr)
        return False
    if as_json:
        return True

    if result.safety_backup:
        print(f"Created safety backup: {os.path.basename(result.safety_backup)}")
    if dry_run:
        print("\nDry run - would restore:")
        for name in result.files:
            print(f"  {name}")
        print(f"\nWould restore {result.files_restored} files")
    else:
        print(f"\nRestored {result.files_restored} files")
    if result.skipped:
        print(f"Skipped {len(result.skipped)} entries (see warnings)", file=sys.stderr)
    return True


def cmd_list(cfg: Config, *, as_json: bool = False) -> bool:
    """List available backups, newest first."""
    result = list_backups(cfg.backup.backup_dir)
    if as_json:
        _emit_json(result.to_dict())
    if not result.success:
        print(f"Error: {result.error}", file=sys.stderr)
        return False
    if as_json:
        return True
    if not result.backups:
        print(f"No backups found in {cfg.backup.backup_dir}")
        return True
    print("Available backups:\n")
    for b in result.backups:
        enc = f" [{b.encryption}]" if b.encrypted else ""
        print(f"  {os.path.basename(b.archive)}{enc}")
        print(f"    Size: {format_size(b.size)}, Files: {b.file_count}")
        if b.hostname:
            print(f"    Host: {b.hostname}")
        print()
    return True


def cmd_contents(cfg: Config, archive: str, *, as_json: bool = False) -> bool:
    """List archive entries."""
    entries = list_contents(cfg, archive)
    if as_json:
        _emit_json({
            "archive": archive,
            "entries": [
                {"name": e.name, "kind": e.kind, "mode": e.mode, "size": e.size, "link_target": e.link_target}
                for e in entries
            ],
        })
        return True
    total = 0
    for e in entries:
        if e.kind == KIND_FILE:
            total += e.size
            print(f"{e.kind}\t{e.size}\t{e.name}")
        elif e.kind == KIND_SYMLINK:
            print(f"{e.kind}\t-> {e.link_target}\t{e.name}")
        elif e.kind == KIND_DIR:
            print(f"{e.kind}\t{e.name}")
        else:
            print(f"{e.kind}\t{e.name}")
    print(f"\nTotal: {len(entries)} entries, {format_size(total)}")
    return True


def cmd_diff(cfg: Config, archive: str, *, verbose: bool = False, as_json: bool = False) -> bool:
    """Compare an archive with the files currently in the home directory."""
    report = diff_archive(cfg, archive, verbose=verbose)
    if as_json:
        _emit_json(report.to_dict())
        return True
    if report.new:
        print(f"\nNew files ({len(report.new)}):")
        for name in report.new:
            print(f"  + {name}")
    if report.modified:
        print(f"\nModified files ({len(report.modified)}):")
        for mf in report.modified:
            print(f"  ~ {mf.name}")
            for line in mf.diff:
                print(f"    {line}")
    print(f"\nSummary: {report.summary()}")
    return True


def cmd_config_init(path: Optional[str] = None, *, force: bool = False) -> bool:
    """Write a commented sample configuration."""
    target = Path(path) if path else default_config_path()
    if target.exists() and not force:
        raise ConfigError(f"config already exists: {target} (use --force to overwrite)")
    target.parent.mkdir(parents=True, exist_ok=True, mode=BACKUP_DIR_MODE)
    target.write_text(sample_config(), encoding="utf-8")
    print(f"Created config: {target}")
    return True


def cmd_config_validate(cfg: Config, *, as_json: bool = False) -> bool:
    """Check the loaded configuration."""
    problems = validate_config(cfg)
    if as_json:
        _emit_json({"valid": not problems, "problems": problems})
    elif not problems:
        print("Config is valid")
        print(f"  Backup dir: {cfg.backup.backup_dir}")
        print(f"  Encryption: {cfg.backup.encryption}")
        print(f"  Items: {len(cfg.items)}, Sensitive: {len(cfg.sensitive)}, Excludes: {len(cfg.excludes)}")
    if problems:
        raise ConfigError("; ".join(problems))
    return True


def main(argv: List[str] | None = None):
    ap = argparse.ArgumentParser(
        prog="dotstash",
        description="Back up and restore dotfiles as tar.gz archives",
        epilog="Encrypted archives are produced by streaming through age or gpg; plaintext never touches disk.",
    )
    ap.add_argument("--config", help="Config file (default ~/.config/dotstash/config.toml)")
    ap.add_argument("--json", action="store_true", help="Emit JSON results")
    ap.add_argument("-v", "--verbose", action="store_true", help="Verbose logging")
    sub = ap.add_subparsers(dest="cmd", required=True)

    ap_backup = sub.add_parser("backup", help="Create a backup of dotfiles")
    ap_backup.add_argument("--dry-run", action="store_true", help="Preview without changes")
    ap_backup.add_argument("--estimate", action="store_true", help="Estimate backup size")
    ap_backup.add_argument("--encrypt", choices=["age", "gpg"], default="", help="Encryption method")
    ap_backup.add_argument("--no-encrypt", action="store_true", help="Disable encryption")
    ap_backup.add_argument("--no-secrets", action="store_true", help="Exclude sensitive files")
    ap_backup.add_argument("--recipients", default="", help="Path to age recipients file")
    ap_backup.add_argument("--gpg-recipient", default="", help="GPG recipient ID or email")
    ap_backup.add_argument("-p", "--profile", default="", help="Use named profile")

    ap_restore = sub.add_parser("restore", help="Restore dotfiles from a backup")
    ap_restore.add_argument("archive", nargs="?", help="Archive path (default: latest backup)")
    ap_restore.add_argument("--dry-run", action="store_true", help="Preview without changes")
    ap_restore.add_argument("-f", "--force", action="store_true", help="Skip confirmation")
    ap_restore.add_argument("--no-backup", action="store_true", help="Skip creating the safety backup")
    ap_restore.add_argument("--only", help=f"Comma-separated categories ({CATEGORY_HELP})")

    sub.add_parser("list", help="List available backups")

    ap_contents = sub.add_parser("contents", help="List archive contents")
    ap_contents.add_argument("archive", help="Archive path")

    ap_diff = sub.add_parser("diff", help="Compare an archive with current files")
    ap_diff.add_argument("archive", help="Archive path")
    ap_diff.add_argument("--verbose-diff", action="store_true", help="Show changed lines")

    ap_config = sub.add_parser("config", help="Manage configuration")
    config_sub = ap_config.add_subparsers(dest="config_cmd", required=True)
    ap_init = config_sub.add_parser("init", help="Write a sample config")
    ap_init.add_argument("--force", action="store_true", help="Overwrite an existing config")
    config_sub.add_parser("validate", help="Validate the config")

    sub.add_parser("version", help="Show version")

    args = ap.parse_args(argv)
    setup_logging(args.verbose)
    try:
        if args.cmd == "version":
            print(f"dotstash {__version__}")
            sys.exit(0)
        if args.cmd == "config" and args.config_cmd == "init":
            cmd_config_init(args.config, force=args.force)
            sys.exit(0)

        cfg = load_with_profile(args.config, getattr(args, "profile", ""))
        if args.cmd == "backup":
            success = cmd_backup(
                cfg,
                dry_run=args.dry_run,
                estimate=args.estimate,
                encrypt=args.encrypt,
                no_encrypt=args.no_encrypt,
                no_secrets=args.no_secrets,
                recipients=args.recipients,
                gpg_recipient=args.gpg_recipient,
                as_json=args.json,
                verbose=args.verbose,
            )
        elif args.cmd == "restore":
            success = cmd_restore(
                cfg,
                args.archive,
                dry_run=args.dry_run,
                force=args.force,
                no_backup=args.no_backup,
                only=args.only,
                as_json=args.json,
            )
        elif args.cmd == "list":
            success = cmd_list(cfg, as_json=args.json)
        elif args.cmd == "contents":
            success = cmd_contents(cfg, args.archive, as_json=args.json)
        elif args.cmd == "diff":
            success = cmd_diff(cfg, args.archive, verbose=args.verbose_diff, as_json=args.json)
        elif args.cmd == "config":
            success = cmd_config_validate(cfg, as_json=args.json)
        else:
            raise RuntimeError("Unknown command")
        sys.exit(0 if success else 1)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)
    except (DotstashError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
