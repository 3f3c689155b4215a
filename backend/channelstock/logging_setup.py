# Overview: Logging configuration for the Flask app and the service layer.

from __future__ import annotations

import logging
import logging.handlers
from pathlib import Path

from flask import Flask

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s - %(message)s"


def configure_logging(app: Flask) -> Path | None:
    """
    Configure package logging from app config.

    Sets the level on the ``channelstock`` logger tree and, when LOG_DIR is
    configured, adds a rotating file handler under LOG_DIR/channelstock.log.
    Returns the log file path, or None when logging to stderr only.
    """
    level = getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO)

    pkg_logger = logging.getLogger("channelstock")
    pkg_logger.setLevel(level)
    app.logger.setLevel(level)

    log_dir = app.config.get("LOG_DIR")
    if not log_dir:
        return None

    root = Path(log_dir).expanduser()
    root.mkdir(parents=True, exist_ok=True)
    log_path = root / "channelstock.log"

    # avoid duplicate handlers when create_app() runs more than once
    for h in pkg_logger.handlers:
        if isinstance(h, logging.handlers.RotatingFileHandler) and h.baseFilename == str(log_path.resolve()):
            return log_path

    handler = logging.handlers.RotatingFileHandler(log_path, maxBytes=5_000_000, backupCount=3, encoding="utf-8")
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.setLevel(level)
    pkg_logger.addHandler(handler)
    app.logger.addHandler(handler)
    return log_path
