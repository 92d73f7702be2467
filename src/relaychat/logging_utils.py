"""Process-wide logging setup for the relaychat server."""

from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Iterable, Optional

__all__ = ["configure_logging", "resolve_log_level"]

_MANAGED_HANDLER_FLAG = "_relaychat_managed_handler"

# Per-request client chatter from the HTTP stack drowns out relay messages.
NOISY_LOGGERS = ("httpx", "httpcore")

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def _default_log_directory() -> Path:
    env_override = os.environ.get("RELAYCHAT_LOG_DIR")
    if env_override:
        return Path(env_override).expanduser()

    for candidate in Path(__file__).resolve().parents:
        if (candidate / "pyproject.toml").exists():
            return candidate / "logs"
    return Path.cwd() / "logs"


def resolve_log_level(default: int = logging.INFO) -> int:
    """Read ``RELAYCHAT_LOG_LEVEL`` (a name such as ``DEBUG``), else ``default``."""

    raw = os.environ.get("RELAYCHAT_LOG_LEVEL", "").strip().upper()
    if not raw:
        return default
    level = logging.getLevelName(raw)
    return level if isinstance(level, int) else default


def _install(root: logging.Logger, handler: logging.Handler, level: int) -> None:
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    setattr(handler, _MANAGED_HANDLER_FLAG, True)
    root.addHandler(handler)


def configure_logging(
    log_name: str,
    *,
    level: Optional[int] = None,
    log_dir: Optional[Path] = None,
    include_console: bool = True,
    max_bytes: int = 10_000_000,
    backup_count: int = 3,
    quiet: Iterable[str] = NOISY_LOGGERS,
) -> Path:
    """Send root logging to ``<log_dir>/<log_name>.log`` and optionally stderr.

    Handlers installed by an earlier call are replaced, so calling this twice
    never duplicates output. Loggers named in ``quiet`` are raised to WARNING.
    """

    level = resolve_log_level() if level is None else level
    directory = Path(log_dir).expanduser() if log_dir else _default_log_directory()
    directory.mkdir(parents=True, exist_ok=True)
    log_path = directory / f"{log_name}.log"

    root = logging.getLogger()
    root.setLevel(level)
    for handler in list(root.handlers):
        if getattr(handler, _MANAGED_HANDLER_FLAG, False):
            root.removeHandler(handler)
            handler.close()

    _install(
        root,
        RotatingFileHandler(
            log_path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
        ),
        level,
    )
    if include_console:
        _install(root, logging.StreamHandler(), level)

    for name in quiet:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    logging.captureWarnings(True)
    return log_path
