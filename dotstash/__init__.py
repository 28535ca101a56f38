"""
dotstash — dotfiles backup and restore built on plain tar.gz archives.

Features:

- Collects configured home-relative items with glob/prefix exclusion; sensitive
  items (keys, credentials) are only read when the archive is encrypted.
- Streams the tar+gzip archive straight into an external encryptor (age or gpg)
  through an OS pipe, so plaintext never lands on disk.
- Extraction validates every entry name and symlink target against the home
  directory and enforces per-file and cumulative size quotas.
- Restores take a safety backup of files about to be overwritten, filtered by
  the same categories as the restore.

Configuration lives in ~/.config/dotstash/config.toml; see `dotstash config init`.
"""

__version__ = "0.1"

__all__ = [
    "collector",
    "writer",
    "reader",
    "extract",
    "safety",
    "backup",
    "restore",
    "encryption",
]

# Programmatic API: dotstash.backup.run_backup / dotstash.restore.run_restore
# take a loaded Config; the CLI functions in dotstash.cli wrap them.
