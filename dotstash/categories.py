"""Named groups of home-relative path prefixes used to filter restores."""
from __future__ import annotations

from types import MappingProxyType
from typing import Iterable, Mapping, Sequence, Tuple


_DEFAULT_TABLE = {
    "shell": (
        ".zshrc",
        ".bashrc",
        ".profile",
        ".zprofile",
        ".bash_profile",
        ".zshenv",
        ".config/fish",
        ".oh-my-zsh",
        ".p10k.zsh",
    ),
    "git": (".gitconfig", ".gitignore_global", ".config/git"),
    "editor": (".vimrc", ".config/nvim", ".config/helix", ".config/zed", ".emacs", ".emacs.d", ".config/Code"),
    "ssh": (".ssh/",),
    "gpg": (".gnupg/",),
    "python": (".config/pip", ".config/ruff", ".config/mypy", ".jupyter", ".condarc"),
    "node": (".npmrc", ".yarnrc", ".config/yarn", ".bunfig.toml"),
    "rust": (".cargo/", ".rustup/settings.toml"),
    "go": (".config/go/",),
    "cloud": (".aws/", ".config/gcloud", ".azure/", ".s3cfg", ".yandex"),
    "docker": (".docker/config.json", ".config/podman"),
    "terminal": (
        ".tmux.conf",
        ".config/wezterm",
        ".config/alacritty",
        ".config/kitty",
        ".config/starship.toml",
        ".config/zellij",
    ),
    "desktop": ("Library/Application Support", "Library/Preferences", ".local/share", ".config"),
    "ai": (".claude", ".claude.json", ".codex", ".ai"),
}


def _strip_leading(path: str) -> str:
    if path.startswith("./"):
        path = path[2:]
    if path.startswith("/"):
        path = path[1:]
    return path


class CategoryTable:
    """Read-only mapping of category name -> path prefixes."""

    def __init__(self, table: Mapping[str, Iterable[str]]):
        frozen = {name.lower(): tuple(prefixes) for name, prefixes in table.items()}
        self._table: Mapping[str, Tuple[str, ...]] = MappingProxyType(frozen)

    def prefixes(self, name: str) -> Tuple[str, ...]:
        """Prefixes for ``name``; unknown names have none."""
        return self._table.get(name.lower(), ())

    def matches(self, path: str, selected: Sequence[str]) -> bool:
        """True if ``path`` starts with a prefix of any selected category.

        An empty selection matches nothing; callers treat "no categories"
        as "no filter" and must not call this in that case.
        """
        path = _strip_leading(path)
        for name in selected:
            for prefix in self.prefixes(name):
                if prefix.startswith("./"):
                    prefix = prefix[2:]
                if path.startswith(prefix):
                    return True
        return False


DEFAULT_CATEGORIES = CategoryTable(_DEFAULT_TABLE)


def matches_category(path: str, selected: Sequence[str], table: CategoryTable = DEFAULT_CATEGORIES) -> bool:
    return table.matches(path, selected)
