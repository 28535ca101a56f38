from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from .collector import BackupItem
from .constants import DEFAULT_MAX_BACKUPS
from .encryption import EncryptionMethod, EncryptionOptions
from .errors import ConfigError, EncryptionError
from .logs import get_logger
from .sysutil import home_dir, short_hostname

LOGGER = get_logger(__name__)

DEFAULT_ITEMS = [
    # shell
    ".zshrc", ".bashrc", ".profile", ".zprofile", ".bash_profile",
    ".zsh", ".oh-my-zsh/custom", ".config/fish", ".p10k.zsh", ".zshenv",
    # git
    ".gitconfig", ".gitignore_global", ".config/git",
    # editors
    ".vimrc", ".config/nvim", ".emacs", ".emacs.d", ".config/helix", ".config/zed",
    # terminal
    ".tmux.conf", ".config/alacritty", ".config/kitty", ".config/wezterm",
    ".config/starship.toml", ".config/zellij",
    ".config/raycast",
    # node
    ".npmrc", ".nvmrc", ".yarnrc", ".config/yarn", ".bunfig.toml",
    # python
    ".config/pip", ".config/ruff", ".config/mypy", ".condarc", ".jupyter",
    # ruby
    ".gemrc", ".irbrc", ".pryrc",
    # java
    ".gradle", ".m2/settings.xml",
    # rust, go
    ".cargo/config.toml", ".rustup/settings.toml", ".config/go",
    # devops
    ".ansible", ".ansible.cfg", ".config/podman",
    # ai tools
    ".claude/settings.json", ".claude/projects", ".codex/config.toml", ".codex/skills",
]

DEFAULT_SENSITIVE = [
    ".ssh", ".gnupg",
    ".aws", ".config/gcloud", ".azure", ".kube", ".s3cfg", ".yandex",
    ".terraform.d", ".terraformrc",
    ".pypirc",
    ".docker",
    ".zsh_history", ".bash_history", ".lesshst",
    ".claude.json", ".codex/auth.json", ".ai",
]

DEFAULT_EXCLUDES = [
    ".git", ".idea", "*.log", "*.swp", "*.bak", ".DS_Store", "*.sock", "*.cache",
    ".circleci", ".github", ".travis.yml", ".gitlab-ci.yml",
    "Makefile", "Dockerfile", "*.md", "LICENSE*", "COPYING*",
    "Gemfile*", "*.spec", "*.rb", "test", "tests", "spec",
    ".editorconfig", ".gitignore", ".gitattributes", ".rspec", ".rubocop*", ".ruby-version",
    "*.pyc", "__pycache__", ".venv", "venv",
    "node_modules",
    ".gradle/caches", ".gradle/daemon", ".m2/repository",
    "*.tfstate", "*.tfstate.*",
    "S.gpg-agent*", "random_seed", "*.status",
    ".token_seed*", "buildx/refs", "buildx/activity", "buildx/.lock",
    "known_hosts.old",
    "*.zwc",
    "*~", "#*#", ".emacs.d/elpa", ".emacs.d/eln-cache",
    ".config/nvim/lazy-lock.json",
    ".rbenv/versions", ".rvm/gems", ".rvm/rubies",
    "gitstatus/src", "gitstatus/deps", "gitstatus/usrbin",
    "*.png", "*.gif", "*.jpg", "*.svg",
    "test-data", "docs",
    "*.sh", "DESCRIPTION", "URL", "VERSION", "ZSH_VERSIONS", ".revision-hash", ".version",
]


@dataclass
class BackupSettings:
    backup_dir: str = ""
    max_backups: int = DEFAULT_MAX_BACKUPS
    encryption: str = "none"
    age_recipients: str = ""
    age_identity_files: List[str] = field(default_factory=list)
    gpg_recipient: str = ""


@dataclass
class Profile:
    items: List[str] = field(default_factory=list)
    sensitive: List[str] = field(default_factory=list)
    extra_items: List[str] = field(default_factory=list)
    extra_sensitive: List[str] = field(default_factory=list)
    excludes: List[str] = field(default_factory=list)


@dataclass
class HostConfig:
    extra_items: List[str] = field(default_factory=list)
    extra_sensitive: List[str] = field(default_factory=list)
    excludes: List[str] = field(default_factory=list)


@dataclass
class Config:
    backup: BackupSettings = field(default_factory=BackupSettings)
    items: List[str] = field(default_factory=list)
    sensitive: List[str] = field(default_factory=list)
    excludes: List[str] = field(default_factory=list)
    profiles: Dict[str, Profile] = field(default_factory=dict)
    hosts: Dict[str, HostConfig] = field(default_factory=dict)

    def backup_items(self) -> List[BackupItem]:
        return [BackupItem(p) for p in self.items]

    def sensitive_items(self) -> List[BackupItem]:
        return [BackupItem(p) for p in self.sensitive]

    def encryption_options(self) -> EncryptionOptions:
        return EncryptionOptions(
            age_recipients_file=self.backup.age_recipients,
            age_identity_files=list(self.backup.age_identity_files),
            gpg_recipient=self.backup.gpg_recipient,
        )

    def apply_host(self, host: HostConfig) -> None:
        self.items.extend(host.extra_items)
        self.sensitive.extend(host.extra_sensitive)
        self.excludes.extend(host.excludes)

    def apply_profile(self, profile: Profile) -> None:
        if profile.items:
            self.items = list(profile.items)
        if profile.sensitive:
            self.sensitive = list(profile.sensitive)
        self.items.extend(profile.extra_items)
        self.sensitive.extend(profile.extra_sensitive)
        self.excludes.extend(profile.excludes)


def expand_path(path: str, home: Optional[Path] = None) -> str:
    if path.startswith("~/"):
        base = home if home is not None else home_dir()
        return os.path.join(os.fspath(base), path[2:])
    return path


def _expand_all(paths: List[str], home: Optional[Path]) -> List[str]:
    return [expand_path(p.strip(), home) for p in paths if p and p.strip()]


def default_config(home: Optional[Path] = None) -> Config:
    base = home if home is not None else home_dir()
    return Config(
        backup=BackupSettings(backup_dir=os.path.join(os.fspath(base), "backups", "dotfiles")),
        items=list(DEFAULT_ITEMS),
        sensitive=list(DEFAULT_SENSITIVE),
        excludes=list(DEFAULT_EXCLUDES),
    )


def default_config_path(home: Optional[Path] = None) -> Path:
    base = home if home is not None else home_dir()
    return Path(base) / ".config" / "dotstash" / "config.toml"


def _str_list(section: Dict[str, Any], key: str, where: str) -> List[str]:
    value = section.get(key, [])
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise ConfigError(f"{where}.{key} must be a list of strings")
    return list(value)


def _table(raw: Dict[str, Any], key: str, where: str = "") -> Dict[str, Any]:
    value = raw.get(key, {})
    if not isinstance(value, dict):
        raise ConfigError(f"{where}{key} must be a table")
    return value


BACKUP_KEYS = (
    "backup_dir", "max_backups", "encryption",
    "age_recipients", "age_identity_files", "gpg_recipient",
)


def _excludes(section: Dict[str, Any], where: str) -> List[str]:
    return _str_list(_table(section, "excludes", where + "."), "patterns", where + ".excludes")


def parse_config(raw: Dict[str, Any], home: Optional[Path] = None) -> Config:
    """Build a Config from a decoded TOML document.

    The document replaces the default lists entirely; missing backup
    settings fall back to their defaults, and so does max_backups = 0.
    Unknown [backup] keys are logged, since a top-level key written
    below the [backup] header lands there.
    """
    base = home if home is not None else home_dir()
    b = _table(raw, "backup")
    for key in b:
        if key not in BACKUP_KEYS:
            LOGGER.warning("Unknown key in [backup]: %s", key)
    try:
        settings = BackupSettings(
            backup_dir=str(b.get("backup_dir", "") or os.path.join(os.fspath(base), "backups", "dotfiles")),
            max_backups=int(b.get("max_backups", 0)) or DEFAULT_MAX_BACKUPS,
            encryption=str(b.get("encryption", "") or "none"),
            age_recipients=str(b.get("age_recipients", "")),
            age_identity_files=_str_list(b, "age_identity_files", "backup"),
            gpg_recipient=str(b.get("gpg_recipient", "")),
        )
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"invalid [backup] section: {exc}") from exc

    settings.backup_dir = expand_path(settings.backup_dir, base)
    settings.age_recipients = expand_path(settings.age_recipients, base)
    settings.age_identity_files = _expand_all(settings.age_identity_files, base)

    profiles: Dict[str, Profile] = {}
    for name, p in _table(raw, "profile").items():
        where = f"profile.{name}"
        if not isinstance(p, dict):
            raise ConfigError(f"{where} must be a table")
        profiles[name] = Profile(
            items=_expand_all(_str_list(p, "items", where), base),
            sensitive=_expand_all(_str_list(p, "sensitive", where), base),
            extra_items=_expand_all(_str_list(p, "extra_items", where), base),
            extra_sensitive=_expand_all(_str_list(p, "extra_sensitive", where), base),
            excludes=_excludes(p, where),
        )

    hosts: Dict[str, HostConfig] = {}
    for name, h in _table(raw, "host").items():
        where = f"host.{name}"
        if not isinstance(h, dict):
            raise ConfigError(f"{where} must be a table")
        hosts[name] = HostConfig(
            extra_items=_expand_all(_str_list(h, "extra_items", where), base),
            extra_sensitive=_expand_all(_str_list(h, "extra_sensitive", where), base),
            excludes=_excludes(h, where),
        )

    return Config(
        backup=settings,
        items=_expand_all(_str_list(raw, "items", "config"), base),
        sensitive=_expand_all(_str_list(raw, "sensitive", "config"), base),
        excludes=_excludes(raw, "config"),
        profiles=profiles,
        hosts=hosts,
    )


def load_config(path: Optional[Path] = None, home: Optional[Path] = None) -> Config:
    """Load ``path`` (default ~/.config/dotstash/config.toml).

    A missing file yields the built-in defaults.
    """
    cfg_path = Path(path) if path is not None else default_config_path(home)
    try:
        text = cfg_path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return default_config(home)
    except OSError as exc:
        raise ConfigError(f"reading config: {exc}") from exc
    try:
        raw = tomllib.loads(text)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"parsing config: {exc}") from exc
    return parse_config(raw, home)


def load_with_profile(
    path: Optional[Path] = None,
    profile: str = "",
    *,
    home: Optional[Path] = None,
    hostname: Optional[str] = None,
) -> Config:
    """Load the config, then apply the host section and the named profile."""
    cfg = load_config(path, home)
    host = cfg.hosts.get(hostname if hostname is not None else short_hostname())
    if host is not None:
        cfg.apply_host(host)
    if profile:
        if profile not in cfg.profiles:
            raise ConfigError(f"profile not found: {profile}")
        cfg.apply_profile(cfg.profiles[profile])
    return cfg


def _check_item(item: str, home: str) -> Optional[str]:
    if os.path.isabs(item):
        rel = os.path.relpath(item, home)
        if rel == ".." or rel.startswith(".." + os.sep):
            return f"item outside home directory: {item}"
        item = rel
    if item.startswith("~"):
        return f"item must be home-relative: {item}"
    if ".." in item.replace("\\", "/").split("/"):
        return f"item may not contain '..': {item}"
    return None


def validate_config(cfg: Config, home: Optional[Path] = None) -> List[str]:
    """Return a list of problems; an empty list means the config is usable."""
    base = os.fspath(home if home is not None else home_dir())
    problems: List[str] = []
    try:
        EncryptionMethod.parse(cfg.backup.encryption)
    except EncryptionError as exc:
        problems.append(str(exc))
    if cfg.backup.max_backups < 0:
        problems.append(f"max_backups must not be negative: {cfg.backup.max_backups}")
    if not cfg.backup.backup_dir:
        problems.append("backup_dir is empty")
    if not cfg.items and not cfg.sensitive:
        problems.append("no backup items configured")
    for item in cfg.items + cfg.sensitive:
        msg = _check_item(item, base)
        if msg:
            problems.append(msg)
    for name, profile in cfg.profiles.items():
        for item in profile.items + profile.sensitive + profile.extra_items + profile.extra_sensitive:
            msg = _check_item(item, base)
            if msg:
                problems.append(f"profile.{name}: {msg}")
    return problems


SAMPLE_CONFIG = """\
# dotstash configuration
# items and sensitive must stay above the first [table] header

# Home-relative paths backed up on every run
items = [
    ".zshrc",
    ".bashrc",
    ".gitconfig",
    ".config/nvim",
]

# Only read when the archive is encrypted
sensitive = [
    ".ssh",
    ".gnupg",
    ".aws",
]

[backup]
backup_dir = "~/backups/dotfiles"
max_backups = 14
# none, age or gpg
encryption = "none"
# age_recipients = "~/.config/dotstash/recipients.txt"
# age_identity_files = ["~/.config/age/key.txt"]
# gpg_recipient = "you@example.com"

[excludes]
patterns = [".git", "*.log", "node_modules", "__pycache__", ".DS_Store"]

# [profile.work]
# extra_items = [".config/work"]

# [host.laptop]
# extra_items = [".config/laptop-only"]
"""


def sample_config() -> str:
    return SAMPLE_CONFIG
