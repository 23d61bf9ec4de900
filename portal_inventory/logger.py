import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from . import settings

# Third-party loggers that are too chatty at INFO for a counter terminal.
NOISY_LOGGERS = ("urllib3", "requests")


def setup_logger(
    name: Optional[str] = None,
    log_level: int | str | None = None,
    log_file: Optional[Path] = None,
) -> logging.Logger:
    """
    Attaches a console handler and a rotating file handler to `name`
    (the root logger when None). Module loggers under it inherit both.

    The console shows bare messages for the operator; the file keeps
    timestamps and logger names for later reconciliation work.
    """
    logger = logging.getLogger(name)
    level = log_level if log_level is not None else settings.LOG_LEVEL
    logger.setLevel(level)

    # Calling twice (e.g. report then claim in one process) must not duplicate output.
    if logger.handlers:
        return logger

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(console_handler)

    log_file = log_file or settings.LOG_DIR / "portal_inventory.log"
    log_file.parent.mkdir(parents=True, exist_ok=True)
    file_handler = RotatingFileHandler(
        log_file, maxBytes=5 * 1024 * 1024, backupCount=3, encoding="utf-8"  # 5 MB
    )
    file_handler.setLevel(level)
    file_handler.setFormatter(
        logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    )
    logger.addHandler(file_handler)

    for noisy in NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(logging.WARNING)

    return logger
