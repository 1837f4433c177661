"""Logging setup for the console.

Everything logs through module loggers below the ``mftconsole`` namespace.
setup_logging() attaches a console handler and, unless MFT_LOG_FILE_ENABLE=0,
a size-rotated ``console.log`` under MFT_LOG_DIR. It is idempotent so app
factories and test fixtures can call it repeatedly.
"""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Dict, Optional

from mftconsole.core.config import Settings, get_settings

ROOT_LOGGER = "mftconsole"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

_STATE: Dict[str, object] = {
    "configured": False,
    "handlers": {},
}


def _parse_level(level_name: str) -> int:
    s = (level_name or "").strip().upper()
    if s in ("CRITICAL", "FATAL"):
        return logging.CRITICAL
    if s == "ERROR":
        return logging.ERROR
    if s in ("WARN", "WARNING"):
        return logging.WARNING
    if s == "DEBUG":
        return logging.DEBUG
    return logging.INFO


def _mk_rotating_handler(path: Path, settings: Settings) -> RotatingFileHandler:
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        path,
        maxBytes=settings.log_rotate_max_mb * 1024 * 1024,
        backupCount=settings.log_rotate_backups,
        encoding="utf-8",
        delay=True,
    )
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    return handler


def setup_logging(settings: Optional[Settings] = None) -> logging.Logger:
    settings = settings or get_settings()
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(_parse_level(settings.log_level))
    logger.propagate = False

    handlers: Dict[str, logging.Handler] = _STATE["handlers"]  # type: ignore[assignment]

    if "console" not in handlers:
        console = logging.StreamHandler()
        console.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(console)
        handlers["console"] = console

    file_handler = handlers.get("file")
    if settings.log_file_enabled:
        path = settings.log_dir / "console.log"
        if file_handler is None or Path(getattr(file_handler, "baseFilename", "")) != path.resolve():
            if file_handler is not None:
                logger.removeHandler(file_handler)
                file_handler.close()
            file_handler = _mk_rotating_handler(path, settings)
            logger.addHandler(file_handler)
            handlers["file"] = file_handler
    elif file_handler is not None:
        logger.removeHandler(file_handler)
        file_handler.close()
        handlers.pop("file", None)

    _STATE["configured"] = True
    return logger
