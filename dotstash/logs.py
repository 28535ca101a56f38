"""Logger helpers shared across dotstash modules."""
from __future__ import annotations

import logging

_ROOT_LOGGER_NAME = "dotstash"


def get_logger(name: str) -> logging.Logger:
    """Return the ``dotstash.<name>`` logger (module ``__name__`` works too)."""
    if name == _ROOT_LOGGER_NAME or name.startswith(_ROOT_LOGGER_NAME + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{_ROOT_LOGGER_NAME}.{name}")


def setup_logging(verbose: bool = False) -> logging.Logger:
    """Attach a single stderr handler to the package logger."""
    logger = logging.getLogger(_ROOT_LOGGER_NAME)
    logger.setLevel(logging.DEBUG if verbose else logging.WARNING)
    if not any(getattr(h, "_dotstash_cli", False) for h in logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
        handler._dotstash_cli = True  # type: ignore[attr-defined]
        logger.addHandler(handler)
    logger.propagate = False
    return logger
