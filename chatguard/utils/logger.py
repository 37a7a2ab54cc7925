import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from typing import Optional

# Plaintext message bodies must never be passed to this logger.

LOG_DIR_ENV = "CHATGUARD_LOG_DIR"

_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def _default_log_dir() -> str:
    return os.environ.get(LOG_DIR_ENV) or os.path.join(
        os.path.expanduser("~"), ".chatguard", "logs"
    )


def setup_logger(
    name: str = "chatguard",
    log_dir: Optional[str] = None,
    level: int = logging.INFO,
) -> logging.Logger:
    """
    Configure a logger writing to a rotating file and stderr.

    Module loggers (`logging.getLogger(__name__)`) are children of
    "chatguard" and inherit these handlers. Calling this twice does not
    duplicate handlers.
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    if getattr(logger, "_chatguard_configured", False):
        return logger

    formatter = logging.Formatter(_FORMAT)

    # File Handler (Rotating)
    # Max 5MB, keep 3 backups
    log_dir = log_dir or _default_log_dir()
    try:
        os.makedirs(log_dir, exist_ok=True)
        file_handler = RotatingFileHandler(
            os.path.join(log_dir, "chatguard.log"),
            maxBytes=5 * 1024 * 1024,
            backupCount=3,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
    except OSError as e:
        sys.stderr.write(f"chatguard: file logging disabled ({e})\n")

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    logger._chatguard_configured = True
    return logger


def set_level(level_name: str) -> None:
    """Change the level of the package logger (e.g. from config)."""
    level = logging.getLevelName(str(level_name).upper())
    if isinstance(level, int):
        logging.getLogger("chatguard").setLevel(level)


logger = setup_logger()
