from __future__ import annotations

import logging
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path

from .settings import MwSettings

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(settings: MwSettings, root_logger: logging.Logger | None = None) -> logging.Logger:
    """Attach a console handler and a daily rotating file handler once per target file."""
    root = root_logger or logging.getLogger()
    level = getattr(logging, settings.log_level, logging.INFO)
    log_path = Path(settings.log_path)
    log_path.parent.mkdir(parents=True, exist_ok=True)
    formatter = logging.Formatter(LOG_FORMAT)
    root.setLevel(level)

    if not any(type(handler) is logging.StreamHandler for handler in root.handlers):
        console = logging.StreamHandler()
        console.setFormatter(formatter)
        root.addHandler(console)

    target = str(log_path.resolve())
    if not any(getattr(handler, "baseFilename", "") == target for handler in root.handlers):
        daily = TimedRotatingFileHandler(log_path, when="midnight", backupCount=30, encoding="utf-8")
        daily.suffix = "%Y-%m-%d"
        daily.setFormatter(formatter)
        root.addHandler(daily)
    return root
