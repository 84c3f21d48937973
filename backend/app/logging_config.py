import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from backend.app.config import config

FORMAT = (
    "%(asctime)s | %(levelname)-7s | %(name)s | "
    "%(filename)s:%(lineno)d | %(funcName)s() | %(message)s"
)

LOG_MAX_BYTES = 10 * 1024 * 1024
LOG_BACKUP_COUNT = 5

# file name -> logger names routed into it (level None = configured level)
CHANNELS = (
    ("core.log", ("backend.app", "addonmgr"), None),
    ("addons.log", ("backend.app.addons", "addonmgr.addons"), None),
    ("workshop.log", ("backend.app.addons.workshop", "addonmgr.workshop"), logging.DEBUG),
    ("uvicorn.log", ("uvicorn", "uvicorn.error", "uvicorn.access"), logging.INFO),
)


def _rotating(path: Path, level: int) -> RotatingFileHandler:
    handler = RotatingFileHandler(
        path, maxBytes=LOG_MAX_BYTES, backupCount=LOG_BACKUP_COUNT, encoding="utf-8"
    )
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(FORMAT))
    return handler


_handlers: dict[str, RotatingFileHandler] = {}


def _handler_for(path: Path, level: int) -> RotatingFileHandler:
    # one handler per file, reused when setup_logging runs again
    key = str(path.resolve())
    if key not in _handlers:
        _handlers[key] = _rotating(path, level)
    return _handlers[key]


def _route(names: tuple[str, ...], handler: RotatingFileHandler) -> None:
    for name in names:
        lg = logging.getLogger(name)
        if handler not in lg.handlers:
            lg.addHandler(handler)
        lg.propagate = False


def _resolve_level(level: Optional[str]) -> int:
    resolved = logging.getLevelName((level or config.log_level).upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def setup_logging(log_dir: Optional[Path] = None, level: Optional[str] = None) -> None:
    log_dir = log_dir or config.log_dir
    log_dir.mkdir(parents=True, exist_ok=True)
    base_level = _resolve_level(level)

    logging.getLogger().setLevel(logging.DEBUG)

    for filename, names, channel_level in CHANNELS:
        level_for_file = channel_level if channel_level is not None else base_level
        _route(names, _handler_for(log_dir / filename, level_for_file))
