import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from .config import Settings

LOGGER_NAME = "filevault"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"


def setup_logging(settings: Settings) -> logging.Logger:
    """
    Attach a console handler and a rotating file handler to the filevault logger.
    Safe to call more than once; handlers are only added the first time.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(settings.log_level.upper())

    if getattr(logger, "_filevault_configured", False):
        return logger

    log_dir = Path(settings.log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    fmt = logging.Formatter(LOG_FORMAT)

    sh = logging.StreamHandler()
    sh.setFormatter(fmt)
    logger.addHandler(sh)

    fh = RotatingFileHandler(str(log_dir / "app.log"), maxBytes=5 * 1024 * 1024, backupCount=3)
    fh.setFormatter(fmt)
    logger.addHandler(fh)

    logger._filevault_configured = True  # type: ignore[attr-defined]
    return logger
