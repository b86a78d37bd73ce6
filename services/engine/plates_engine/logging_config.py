from __future__ import annotations

import logging
import sys

from .settings import Settings

PACKAGE_LOGGER = "plates_engine"
LOG_FILENAME = "engine.log"


def setup_logging(settings: Settings) -> logging.Logger:
    """
    Configures the `plates_engine` logger from the service settings.

    Console output always goes to stdout. With `log_to_file` set, records are
    also appended to `<data_root>/logs/engine.log`.
    """
    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(settings.log_level)
    # The app factory may run more than once per process (tests).
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(
        fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(settings.log_level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if settings.log_to_file:
        log_dir = settings.data_root / "logs"
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_dir / LOG_FILENAME, mode="a", encoding="utf-8")
        file_handler.setLevel(settings.log_level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logger.debug("Logging initialised at level %s", logging.getLevelName(settings.log_level))
    return logger
